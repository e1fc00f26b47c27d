"""Authentication routes - login sessions for the interactive OAuth pages"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session
from typing import Tuple

from idp.api.deps import get_client_ip, get_current_session, get_current_user, get_rate_limiter
from idp.config import settings
from idp.core.database import get_db
from idp.core.exceptions import RateLimitExceededError, RegistrationDisabledError
from idp.models.session import UserSession
from idp.models.user import User
from idp.schemas.response import APIResponse
from idp.schemas.user import LoginResponse, UserLogin, UserRegister, UserResponse
from idp.services.rate_limiter import InMemoryRateLimiter
from idp.services.session_service import session_service
from idp.services.settings_service import settings_service
from idp.services.user_service import user_service

router = APIRouter()


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
    db: Session = Depends(get_db)
):
    """
    Login endpoint - authenticate user and start a cookie session

    Args:
        credentials: Username (or email) and password
        db: Database session

    Returns:
        Session expiry and user info
    """
    client_ip = get_client_ip(request)
    result = limiter.check(
        limiter.build_key("login", client_ip),
        settings.LOGIN_RATE_LIMIT,
        settings.LOGIN_RATE_WINDOW_SECONDS,
    )
    if not result.allowed:
        raise RateLimitExceededError(
            "Too many login attempts. Please try again later.",
            retry_after=int(result.retry_after) + 1,
        )

    user = user_service.authenticate_user(db, credentials.username.strip(), credentials.password)
    session = session_service.login(
        db,
        user,
        ip_address=client_ip,
        user_agent=request.headers.get("user-agent"),
    )

    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session.token,
        max_age=settings.SESSION_EXPIRE_DAYS * 24 * 3600,
        path="/",
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )
    return LoginResponse(expires_at=session.expires_at, user=UserResponse.model_validate(user))


@router.post("/logout", response_model=APIResponse, status_code=status.HTTP_200_OK)
def logout(
    response: Response,
    auth: Tuple[UserSession, User] = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    """
    Logout endpoint - delete the server-side session

    Returns:
        Success message
    """
    session_service.logout(db, auth[0].id)
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return APIResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """
    Get current user information

    Args:
        current_user: Current authenticated user

    Returns:
        User information
    """
    return UserResponse.model_validate(current_user)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(
    data: UserRegister,
    db: Session = Depends(get_db)
):
    """
    Self-service registration, available while ``allow_registration`` is on

    Raises:
        RegistrationDisabledError: Registration switched off by an admin
    """
    if not settings_service.is_registration_allowed(db):
        raise RegistrationDisabledError()
    user = user_service.create_user(db, data.to_create())
    return UserResponse.model_validate(user)
