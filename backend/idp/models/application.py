"""OAuth client registration model"""

import json
import uuid
from datetime import datetime
from typing import List

from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from idp.core.database import Base


class Application(Base):
    """Registered OAuth client. ``client_id`` never changes after creation."""

    __tablename__ = "applications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(String(64), unique=True, nullable=False, index=True)
    client_secret_hash = Column(String(128), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    redirect_uris_json = Column("redirect_uris", Text, nullable=False, default="[]")
    scopes_json = Column("scopes", Text, nullable=False, default="[]")
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", back_populates="applications")

    @property
    def redirect_uris(self) -> List[str]:
        return json.loads(self.redirect_uris_json or "[]")

    @redirect_uris.setter
    def redirect_uris(self, value: List[str]) -> None:
        self.redirect_uris_json = json.dumps(list(value))

    @property
    def scopes(self) -> List[str]:
        return json.loads(self.scopes_json or "[]")

    @scopes.setter
    def scopes(self, value: List[str]) -> None:
        self.scopes_json = json.dumps(list(value))

    def __repr__(self):
        return f"<Application(client_id='{self.client_id}', name='{self.name}')>"

    def to_dict(self):
        """Convert to dictionary (never includes secret material)"""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "name": self.name,
            "description": self.description,
            "redirect_uris": self.redirect_uris,
            "scopes": self.scopes,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
