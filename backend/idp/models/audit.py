"""Authorization audit log model."""

import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Index

from idp.core.database import Base


class AuthLog(Base):
    """Immutable record of an authorize/consent/token/revoke event."""

    __tablename__ = "auth_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    client_id = Column(String(64), nullable=False, index=True)
    action = Column(String(32), nullable=False, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_auth_logs_created_at", "created_at"),
    )
