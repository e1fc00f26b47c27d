"""System settings schemas"""

from typing import Optional

from pydantic import BaseModel


class PublicSettings(BaseModel):
    allow_registration: bool


class SettingsUpdate(BaseModel):
    allow_registration: Optional[bool] = None
