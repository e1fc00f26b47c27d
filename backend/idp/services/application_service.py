"""Application (OAuth client) registry - lookup, validation and owner management"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from sqlalchemy.orm import Session

from idp.config import settings
from idp.core.exceptions import AuthorizationError, ResourceNotFoundError
from idp.core.security import (
    generate_client_id,
    generate_client_secret,
    hash_client_secret,
    verify_client_secret,
)
from idp.models.application import Application
from idp.models.audit import AuthLog
from idp.models.oauth import UserConsent
from idp.models.user import User
from idp.schemas.application import ApplicationCreate, ApplicationUpdate
from idp.services.token_service import token_service

logger = logging.getLogger(__name__)


def _origin_and_path(uri: str) -> Optional[Tuple[str, str, str]]:
    try:
        parts = urlsplit(uri)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts.scheme.lower(), parts.netloc.lower(), parts.path or "/"


def redirect_uri_matches(registered: Iterable[str], candidate: str) -> bool:
    """
    True when ``candidate`` matches a registered redirect URI.

    URL entries compare on scheme, host, port and path; query string and
    fragment are ignored. Entries that do not parse as absolute URLs (custom
    schemes, relative forms) fall back to a prefix match.
    """
    if not candidate:
        return False
    wanted = _origin_and_path(candidate)
    for entry in registered:
        if not entry:
            continue
        allowed = _origin_and_path(entry)
        if allowed is None:
            if candidate.startswith(entry):
                return True
        elif wanted is not None and allowed == wanted:
            return True
    return False


def split_scope(scope: Optional[str]) -> List[str]:
    return [token for token in (scope or "").split(" ") if token]


def disallowed_scopes(allowed: Sequence[str], requested: Iterable[str]) -> List[str]:
    """Requested scope tokens missing from ``allowed``, in request order."""
    allowed_set = set(allowed)
    return [token for token in requested if token not in allowed_set]


class ApplicationService:
    """Registry of OAuth clients"""

    @staticmethod
    def get_by_client_id(db: Session, client_id: Optional[str]) -> Optional[Application]:
        if not client_id:
            return None
        return db.query(Application).filter(Application.client_id == client_id).first()

    @staticmethod
    def get_by_id(db: Session, app_id: str) -> Optional[Application]:
        return db.query(Application).filter(Application.id == app_id).first()

    @staticmethod
    def verify_secret(app: Application, secret: str) -> bool:
        return verify_client_secret(secret, app.client_secret_hash)

    @staticmethod
    def create(db: Session, owner: User, data: ApplicationCreate) -> Tuple[Application, str]:
        """
        Register a client.

        Returns:
            (application, plaintext client secret) - the secret is not recoverable later
        """
        secret = generate_client_secret()
        app = Application(
            client_id=generate_client_id(),
            client_secret_hash=hash_client_secret(secret),
            name=data.name,
            description=data.description,
            user_id=owner.id,
        )
        app.redirect_uris = data.redirect_uris
        app.scopes = data.scopes
        db.add(app)
        db.commit()
        db.refresh(app)
        logger.info(f"Registered application {app.client_id} for user {owner.username}")
        return app, secret

    @staticmethod
    def list_for_user(db: Session, user: User) -> List[Application]:
        query = db.query(Application)
        if user.role != "admin":
            query = query.filter(Application.user_id == user.id)
        return query.order_by(Application.created_at.desc()).all()

    @staticmethod
    def get_owned(db: Session, app_id: str, user: User) -> Application:
        """Application ``app_id`` if ``user`` owns it or is an admin."""
        app = ApplicationService.get_by_id(db, app_id)
        if app is None:
            raise ResourceNotFoundError("Application")
        if app.user_id != user.id and user.role != "admin":
            raise AuthorizationError("Only the owner or an admin can manage this application")
        return app

    @staticmethod
    def update(db: Session, app: Application, data: ApplicationUpdate) -> Application:
        if data.name is not None:
            app.name = data.name
        if data.description is not None:
            app.description = data.description
        if data.redirect_uris is not None:
            app.redirect_uris = data.redirect_uris
        if data.scopes is not None:
            app.scopes = data.scopes
        db.commit()
        db.refresh(app)
        return app

    @staticmethod
    def regenerate_secret(db: Session, app: Application) -> str:
        """Rotate the client secret; the previous one stops working immediately."""
        secret = generate_client_secret()
        app.client_secret_hash = hash_client_secret(secret)
        db.commit()
        logger.info(f"Rotated client secret for {app.client_id}")
        return secret

    @staticmethod
    def delete(db: Session, app: Application) -> None:
        """
        Delete a client together with every grant issued to it.

        Refresh tokens, access tokens, codes, consents and auth logs for the
        client id are removed in one transaction with the application row.
        """
        client_id = app.client_id
        try:
            counts = token_service.delete_grants(db, client_id=client_id)
            db.query(UserConsent).filter(UserConsent.client_id == client_id).delete(
                synchronize_session=False
            )
            db.query(AuthLog).filter(AuthLog.client_id == client_id).delete(
                synchronize_session=False
            )
            db.delete(app)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(f"Deleted application {client_id} ({counts})")

    @staticmethod
    def supported_scopes() -> List[str]:
        return list(settings.OAUTH_SUPPORTED_SCOPES)


application_service = ApplicationService()
