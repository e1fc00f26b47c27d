"""API dependencies - session authentication, roles and shared app state"""

import json
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qsl

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from idp.config import settings
from idp.core.database import get_db
from idp.core.exceptions import AuthenticationError, AuthorizationError, InvalidRequestError
from idp.models.session import UserSession
from idp.models.user import User
from idp.services.key_manager import KeyManager
from idp.services.oauth_service import ClientContext
from idp.services.rate_limiter import InMemoryRateLimiter
from idp.services.session_service import session_service


def get_client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def get_client_context(request: Request) -> ClientContext:
    return ClientContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_optional_session(
    request: Request,
    db: Session = Depends(get_db)
) -> Optional[Tuple[UserSession, User]]:
    """
    Resolve the login session cookie, if any

    Returns:
        (session, user) for a live session, None otherwise
    """
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    return session_service.validate(db, token)


def get_current_session(
    auth: Optional[Tuple[UserSession, User]] = Depends(get_optional_session)
) -> Tuple[UserSession, User]:
    if auth is None:
        raise AuthenticationError("Not authenticated")
    return auth


def get_current_user(
    auth: Tuple[UserSession, User] = Depends(get_current_session)
) -> User:
    """
    Get current authenticated user from the session cookie

    Raises:
        AuthenticationError: If no live session exists
    """
    return auth[1]


def get_developer_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """Users allowed to register OAuth clients"""
    if current_user.role not in ("admin", "developer"):
        raise AuthorizationError("Developer access required")
    return current_user


def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Get current admin user (authorization check)

    Raises:
        AuthorizationError: If user is not admin
    """
    if current_user.role != "admin":
        raise AuthorizationError("Admin access required")
    return current_user


def get_key_manager(request: Request) -> KeyManager:
    return request.app.state.key_manager


def get_rate_limiter(request: Request) -> InMemoryRateLimiter:
    return request.app.state.rate_limiter


async def read_form_or_json(request: Request) -> Dict[str, str]:
    """
    Token and revocation endpoints accept form-encoded bodies (the OAuth
    wire format) and JSON. Only string values are kept.
    """
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    raw = await request.body()
    if not raw:
        return {}
    if content_type == "application/json":
        try:
            data = json.loads(raw)
        except ValueError:
            raise InvalidRequestError("Malformed JSON body") from None
        if not isinstance(data, dict):
            raise InvalidRequestError("Request body must be an object")
        return {key: value for key, value in data.items() if isinstance(value, str)}
    if content_type in ("application/x-www-form-urlencoded", "multipart/form-data"):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    return dict(parse_qsl(raw.decode("utf-8", errors="replace"), keep_blank_values=True))
