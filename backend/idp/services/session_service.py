"""Login session lifecycle for the interactive authorize/consent pages."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from idp.config import settings
from idp.core.security import generate_session_token
from idp.models.session import UserSession
from idp.models.user import User

logger = logging.getLogger(__name__)


class SessionService:
    """Server-side sessions keyed by an opaque cookie token."""

    @staticmethod
    def login(
        db: Session,
        user: User,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserSession:
        """
        Start a fresh session for ``user``.

        Every earlier session of the user is deleted in the same transaction,
        so a session token planted before login never becomes authenticated.
        """
        removed = db.query(UserSession).filter(UserSession.user_id == user.id).delete(
            synchronize_session=False
        )
        session = UserSession(
            user_id=user.id,
            token=generate_session_token(),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
            expires_at=datetime.utcnow() + timedelta(days=settings.SESSION_EXPIRE_DAYS),
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        logger.info("Session started for user %s (%d previous sessions dropped)", user.id, removed)
        return session

    @staticmethod
    def validate(db: Session, token: Optional[str]) -> Optional[Tuple[UserSession, User]]:
        """Resolve a cookie token to a live (session, active user) pair."""
        if not token:
            return None
        row = (
            db.query(UserSession, User)
            .join(User, User.id == UserSession.user_id)
            .filter(UserSession.token == token, UserSession.expires_at > datetime.utcnow())
            .first()
        )
        if row is None:
            return None
        session, user = row
        if not user.is_active:
            return None
        return session, user

    @staticmethod
    def logout(db: Session, session_id: str) -> bool:
        deleted = db.query(UserSession).filter(UserSession.id == session_id).delete(
            synchronize_session=False
        )
        db.commit()
        return deleted > 0

    @staticmethod
    def purge_expired(db: Session) -> int:
        deleted = db.query(UserSession).filter(UserSession.expires_at <= datetime.utcnow()).delete(
            synchronize_session=False
        )
        db.commit()
        return deleted


session_service = SessionService()
