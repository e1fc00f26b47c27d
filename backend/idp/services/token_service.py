"""Authorization code, access token and refresh token persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy import delete, exists, select
from sqlalchemy.orm import Session

from idp.config import settings
from idp.core.database import supports_delete_returning
from idp.core.security import generate_authorization_code, generate_opaque_token
from idp.models.oauth import AccessToken, AuthorizationCode, RefreshToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodeBinding:
    """Snapshot of a consumed authorization code."""

    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scope: str
    nonce: Optional[str]
    code_challenge: Optional[str]
    code_challenge_method: Optional[str]
    auth_time: Optional[datetime]
    expires_at: datetime

    @property
    def expired(self) -> bool:
        return is_expired(self.expires_at)


def naive_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=None) if dt and dt.tzinfo else dt


def is_expired(expires_at: Optional[datetime]) -> bool:
    return expires_at is None or naive_utc(expires_at) <= datetime.utcnow()


class TokenService:
    """Storage primitives for every credential the authorization flow mints."""

    # Authorization codes

    @staticmethod
    def create_authorization_code(
        db: Session,
        *,
        client_id: str,
        user_id: str,
        redirect_uri: str,
        scope: str,
        nonce: Optional[str] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
        auth_time: Optional[datetime] = None,
    ) -> str:
        code = generate_authorization_code()
        db.add(
            AuthorizationCode(
                code=code,
                client_id=client_id,
                user_id=user_id,
                redirect_uri=redirect_uri,
                scope=scope,
                nonce=nonce or None,
                code_challenge=code_challenge or None,
                code_challenge_method=(code_challenge_method or None) if code_challenge else None,
                auth_time=auth_time,
                expires_at=datetime.utcnow()
                + timedelta(minutes=settings.AUTHORIZATION_CODE_EXPIRE_MINUTES),
            )
        )
        db.commit()
        return code

    @staticmethod
    def consume_authorization_code(db: Session, code: str) -> Optional[CodeBinding]:
        """
        Delete ``code`` and return what it was bound to.

        The delete is committed before the caller validates anything, so a
        code is spent by the first exchange attempt whether or not that
        attempt succeeds. Two concurrent attempts cannot both get a row back.
        """
        table = AuthorizationCode.__table__
        if supports_delete_returning(db):
            row = (
                db.execute(delete(table).where(table.c.code == code).returning(*table.c))
                .mappings()
                .first()
            )
        else:
            row = (
                db.execute(select(table).where(table.c.code == code).with_for_update())
                .mappings()
                .first()
            )
            if row is not None:
                db.execute(delete(table).where(table.c.code == code))
        db.commit()

        if row is None:
            return None
        return CodeBinding(
            code=row["code"],
            client_id=row["client_id"],
            user_id=row["user_id"],
            redirect_uri=row["redirect_uri"],
            scope=row["scope"],
            nonce=row["nonce"],
            code_challenge=row["code_challenge"],
            code_challenge_method=row["code_challenge_method"],
            auth_time=row["auth_time"],
            expires_at=row["expires_at"],
        )

    # Access / refresh tokens (flushed, committed by the caller)

    @staticmethod
    def create_access_token(db: Session, *, client_id: str, user_id: str, scope: str) -> AccessToken:
        record = AccessToken(
            token=generate_opaque_token(),
            client_id=client_id,
            user_id=user_id,
            scope=scope,
            expires_at=datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        )
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def create_refresh_token(db: Session, *, access_token_id: str) -> RefreshToken:
        record = RefreshToken(
            token=generate_opaque_token(),
            access_token_id=access_token_id,
            expires_at=datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def get_valid_access_token(db: Session, token: str) -> Optional[AccessToken]:
        record = db.query(AccessToken).filter(AccessToken.token == token).first()
        if record is None or is_expired(record.expires_at):
            return None
        return record

    @staticmethod
    def get_valid_refresh_token(db: Session, token: str) -> Optional[Tuple[RefreshToken, AccessToken]]:
        """Refresh token joined to its originating access token (client, user, scope)."""
        row = (
            db.query(RefreshToken, AccessToken)
            .join(AccessToken, AccessToken.id == RefreshToken.access_token_id)
            .filter(RefreshToken.token == token)
            .first()
        )
        if row is None or is_expired(row[0].expires_at):
            return None
        return row[0], row[1]

    @staticmethod
    def consume_refresh_token(db: Session, token: str) -> bool:
        """Delete a refresh token inside the caller's transaction; False if already gone."""
        result = db.execute(delete(RefreshToken.__table__).where(RefreshToken.__table__.c.token == token))
        return result.rowcount > 0

    @staticmethod
    def delete_access_token(db: Session, access_token_id: str) -> None:
        db.query(RefreshToken).filter(RefreshToken.access_token_id == access_token_id).delete(
            synchronize_session=False
        )
        db.query(AccessToken).filter(AccessToken.id == access_token_id).delete(
            synchronize_session=False
        )

    @staticmethod
    def revoke_token(db: Session, token: str) -> Optional[str]:
        """
        Delete ``token`` as an access token, else as a refresh token.

        Returns the kind of token removed, or None when nothing matched.
        Refresh tokens chained to a revoked access token go with it.
        """
        access = db.query(AccessToken).filter(AccessToken.token == token).first()
        if access is not None:
            TokenService.delete_access_token(db, access.id)
            db.commit()
            return "access_token"

        removed = TokenService.consume_refresh_token(db, token)
        db.commit()
        return "refresh_token" if removed else None

    @staticmethod
    def find_token_owner(db: Session, token: str) -> Optional[Tuple[str, str]]:
        """(user_id, client_id) of an access or refresh token, for audit logging."""
        access = db.query(AccessToken).filter(AccessToken.token == token).first()
        if access is None:
            access = (
                db.query(AccessToken)
                .join(RefreshToken, RefreshToken.access_token_id == AccessToken.id)
                .filter(RefreshToken.token == token)
                .first()
            )
        if access is None:
            return None
        return access.user_id, access.client_id

    @staticmethod
    def delete_grants(db: Session, *, client_id: str, user_id: Optional[str] = None) -> Dict[str, int]:
        """
        Delete every refresh token, access token and unredeemed code for a client
        (optionally narrowed to one user). Runs in the caller's transaction.
        """
        token_ids = select(AccessToken.id).where(AccessToken.client_id == client_id)
        access_filter = [AccessToken.client_id == client_id]
        code_filter = [AuthorizationCode.client_id == client_id]
        if user_id is not None:
            token_ids = token_ids.where(AccessToken.user_id == user_id)
            access_filter.append(AccessToken.user_id == user_id)
            code_filter.append(AuthorizationCode.user_id == user_id)

        refresh_deleted = db.query(RefreshToken).filter(
            RefreshToken.access_token_id.in_(token_ids)
        ).delete(synchronize_session=False)
        access_deleted = db.query(AccessToken).filter(*access_filter).delete(synchronize_session=False)
        codes_deleted = db.query(AuthorizationCode).filter(*code_filter).delete(synchronize_session=False)
        return {
            "refresh_tokens": refresh_deleted,
            "access_tokens": access_deleted,
            "authorization_codes": codes_deleted,
        }

    @staticmethod
    def purge_expired(db: Session) -> Dict[str, int]:
        """
        Remove expired codes and tokens.

        Expired access tokens that still anchor a live refresh token are kept,
        since the refresh grant reads client, user and scope through them.
        """
        now = datetime.utcnow()
        codes = db.query(AuthorizationCode).filter(AuthorizationCode.expires_at <= now).delete(
            synchronize_session=False
        )
        refresh = db.query(RefreshToken).filter(RefreshToken.expires_at <= now).delete(
            synchronize_session=False
        )
        live_refresh = exists().where(
            RefreshToken.access_token_id == AccessToken.id,
            RefreshToken.expires_at > now,
        ).correlate(AccessToken)
        access = db.query(AccessToken).filter(AccessToken.expires_at <= now, ~live_refresh).delete(
            synchronize_session=False
        )
        db.commit()
        counts = {"authorization_codes": codes, "refresh_tokens": refresh, "access_tokens": access}
        logger.info("Purged expired credentials: %s", counts)
        return counts


token_service = TokenService()
