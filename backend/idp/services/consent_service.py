"""User consent store."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from idp.models.application import Application
from idp.models.oauth import UserConsent
from idp.models.user import User
from idp.services.application_service import split_scope
from idp.services.token_service import token_service

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class ConsentService:
    """One consent row per (user, client); a later approval replaces the scope."""

    @staticmethod
    def save(db: Session, *, user_id: str, client_id: str, scope: str) -> None:
        """Idempotent upsert keyed on (user_id, client_id)."""
        now = datetime.utcnow()
        insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
        if insert is not None:
            table = UserConsent.__table__
            stmt = insert(table).values(
                id=str(uuid.uuid4()),
                user_id=user_id,
                client_id=client_id,
                scope=scope,
                created_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.user_id, table.c.client_id],
                set_={"scope": scope, "created_at": now},
            )
            db.execute(stmt)
        else:
            existing = (
                db.query(UserConsent)
                .filter(UserConsent.user_id == user_id, UserConsent.client_id == client_id)
                .with_for_update()
                .first()
            )
            if existing is None:
                db.add(UserConsent(user_id=user_id, client_id=client_id, scope=scope, created_at=now))
            else:
                existing.scope = scope
                existing.created_at = now
        db.commit()

    @staticmethod
    def get(db: Session, user_id: str, client_id: str) -> Optional[UserConsent]:
        return (
            db.query(UserConsent)
            .filter(UserConsent.user_id == user_id, UserConsent.client_id == client_id)
            .first()
        )

    @staticmethod
    def covers(db: Session, user_id: str, client_id: str, scope: str) -> bool:
        """Whether a stored consent already includes every requested scope token."""
        consent = ConsentService.get(db, user_id, client_id)
        if consent is None:
            return False
        return set(split_scope(scope)) <= set(split_scope(consent.scope))

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> List[Tuple[UserConsent, Application, User]]:
        return (
            db.query(UserConsent, Application, User)
            .join(Application, Application.client_id == UserConsent.client_id)
            .join(User, User.id == Application.user_id)
            .filter(UserConsent.user_id == user_id)
            .order_by(UserConsent.created_at.desc())
            .all()
        )

    @staticmethod
    def revoke(db: Session, user_id: str, client_id: str) -> bool:
        """
        Delete the consent and every token issued under it, atomically.

        Refresh tokens go first, then access tokens and outstanding codes,
        then the consent row. Returns False (and changes nothing) when no
        consent exists.
        """
        try:
            deleted = (
                db.query(UserConsent)
                .filter(UserConsent.user_id == user_id, UserConsent.client_id == client_id)
                .delete(synchronize_session=False)
            )
            if deleted == 0:
                db.rollback()
                return False
            counts = token_service.delete_grants(db, client_id=client_id, user_id=user_id)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(f"Consent revoked: user={user_id} client={client_id} {counts}")
        return True


consent_service = ConsentService()
