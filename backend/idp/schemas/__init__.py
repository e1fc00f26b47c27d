"""Pydantic schemas for API validation"""

from idp.schemas.user import UserCreate, UserRegister, UserResponse, UserLogin, LoginResponse
from idp.schemas.application import (
    ApplicationCreate,
    ApplicationUpdate,
    ApplicationResponse,
    ApplicationWithSecret,
)
from idp.schemas.oauth import (
    AuthorizeRequest,
    ConsentRequest,
    ConsentResponse,
    AuthorizationCodeGrant,
    RefreshTokenGrant,
    TokenResponse,
    ClientInfo,
    ConsentedApplication,
)
from idp.schemas.audit import AuthLogResponse, AuthLogPage
from idp.schemas.setting import PublicSettings, SettingsUpdate
from idp.schemas.response import APIResponse, ErrorResponse, OAuthErrorResponse

__all__ = [
    "UserCreate", "UserRegister", "UserResponse", "UserLogin", "LoginResponse",
    "ApplicationCreate", "ApplicationUpdate", "ApplicationResponse", "ApplicationWithSecret",
    "AuthorizeRequest", "ConsentRequest", "ConsentResponse",
    "AuthorizationCodeGrant", "RefreshTokenGrant", "TokenResponse",
    "ClientInfo", "ConsentedApplication",
    "AuthLogResponse", "AuthLogPage",
    "PublicSettings", "SettingsUpdate",
    "APIResponse", "ErrorResponse", "OAuthErrorResponse"
]
