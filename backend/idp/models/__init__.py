"""Database models"""

from idp.models.user import User
from idp.models.session import UserSession
from idp.models.application import Application
from idp.models.oauth import AuthorizationCode, AccessToken, RefreshToken, UserConsent
from idp.models.audit import AuthLog
from idp.models.setting import SystemSetting

__all__ = [
    "User", "UserSession", "Application",
    "AuthorizationCode", "AccessToken", "RefreshToken", "UserConsent",
    "AuthLog", "SystemSetting",
]
