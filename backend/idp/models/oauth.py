"""Authorization code, token and consent persistence models."""

import uuid
from datetime import datetime

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from idp.core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class AuthorizationCode(Base):
    """One-time code binding (client, user, redirect URI, scope, PKCE challenge)."""

    __tablename__ = "authorization_codes"

    code = Column(String(128), primary_key=True)
    client_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    redirect_uri = Column(Text, nullable=False)
    scope = Column(Text, nullable=False)
    nonce = Column(String(255), nullable=True)
    code_challenge = Column(String(255), nullable=True)
    code_challenge_method = Column(String(10), nullable=True)
    auth_time = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_authorization_codes_user_client", "user_id", "client_id"),
        Index("idx_authorization_codes_expires_at", "expires_at"),
    )


class AccessToken(Base):
    """Opaque bearer token."""

    __tablename__ = "access_tokens"

    id = Column(String(36), primary_key=True, default=_new_id)
    token = Column(String(128), unique=True, nullable=False, index=True)
    client_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    scope = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="access_token",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_access_tokens_user_client", "user_id", "client_id"),
        Index("idx_access_tokens_expires_at", "expires_at"),
    )


class RefreshToken(Base):
    """Long-lived credential chained to the access token it was issued with."""

    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=_new_id)
    token = Column(String(128), unique=True, nullable=False, index=True)
    access_token_id = Column(
        String(36),
        ForeignKey("access_tokens.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    access_token = relationship("AccessToken", back_populates="refresh_tokens")


class UserConsent(Base):
    """Scope set a user approved for a client. One row per (user, client)."""

    __tablename__ = "user_consents"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    client_id = Column(String(64), nullable=False)
    scope = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "client_id", name="uq_user_consents_user_client"),
    )
