"""Authorization log response schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class AuthLogResponse(BaseModel):
    id: str
    user_id: str
    client_id: str
    action: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class AuthLogPage(BaseModel):
    success: bool = True
    logs: List[AuthLogResponse]
    total: int
    page: int
    page_size: int
