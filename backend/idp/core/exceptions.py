"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=401, details=details)


class InvalidCredentialsError(AuthenticationError):
    """Invalid username/email or password"""
    def __init__(self):
        super().__init__("Invalid username/email or password")


class AccountLockedError(AuthenticationError):
    """Account is locked due to failed login attempts"""
    def __init__(self, locked_until: str):
        super().__init__(
            f"Account is locked until {locked_until}",
            details={"locked_until": locked_until}
        )


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} already exists", status_code=409)


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


# Business Logic Errors
class BusinessLogicError(BaseAPIException):
    """Business logic error"""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class RegistrationDisabledError(BusinessLogicError):
    """Self-service registration is switched off"""
    def __init__(self):
        super().__init__("Registration is currently disabled")


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(self, message: str = "Rate limit exceeded. Please try again later.", retry_after: int = 60):
        super().__init__(message, status_code=429, details={"retry_after": retry_after})


# OAuth protocol errors (RFC 6749 section 5.2 shaped responses)
NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


class OAuthError(Exception):
    """Error rendered as ``{error, error_description}`` with no-cache headers."""

    def __init__(
        self,
        error: str,
        description: str,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None
    ):
        self.error = error
        self.description = description
        self.status_code = status_code
        self.headers = {**NO_STORE_HEADERS, **(headers or {})}
        super().__init__(f"{error}: {description}")

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.error, "error_description": self.description}


class InvalidClientError(OAuthError):
    def __init__(self, description: str = "Client authentication failed"):
        super().__init__("invalid_client", description)


class InvalidGrantError(OAuthError):
    def __init__(self, description: str = "Invalid authorization grant"):
        super().__init__("invalid_grant", description)


class InvalidRequestError(OAuthError):
    def __init__(self, description: str):
        super().__init__("invalid_request", description)


class InvalidTokenError(OAuthError):
    """Bearer token missing, unknown or expired"""
    def __init__(self, description: str = "Access token is invalid or expired"):
        super().__init__(
            "invalid_token",
            description,
            status_code=401,
            headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
        )


class SlowDownError(OAuthError):
    """Token endpoint rate limit"""
    def __init__(self, retry_after: int):
        super().__init__(
            "slow_down",
            "Too many requests",
            status_code=429,
            headers={"Retry-After": str(max(1, retry_after))},
        )


class OAuthRedirectError(OAuthError):
    """
    Error delivered to the client's callback.

    Only raised once the redirect URI has been matched against the registry.
    """

    def __init__(self, error: str, description: str, redirect_uri: str, state: Optional[str] = None):
        super().__init__(error, description, status_code=302)
        self.redirect_uri = redirect_uri
        self.state = state
