"""Application configuration management"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List
from urllib.parse import quote_plus

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: backend/
_BASE_DIR = Path(__file__).resolve().parent.parent

_DEV_SECRET_KEY = "dev-secret-key-change-in-production-use-openssl-rand-hex-32"


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "SSO Identity Provider"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Issuer and interactive pages
    ISSUER_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"
    LOGIN_PAGE_PATH: str = "/login"
    CONSENT_PAGE_PATH: str = "/oauth/authorize"

    # Database (PostgreSQL in production, SQLite for local use)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "sso_db"
    POSTGRES_USER: str = "sso"
    POSTGRES_PASSWORD: str = "sso"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20

    # Security
    SECRET_KEY: str = _DEV_SECRET_KEY
    SESSION_COOKIE_NAME: str = "auth_token"
    CSRF_COOKIE_NAME: str = "oauth_csrf"
    CSRF_HEADER_NAME: str = "X-CSRF-Token"
    SESSION_EXPIRE_DAYS: int = 7

    # Credential lifetimes
    AUTHORIZATION_CODE_EXPIRE_MINUTES: int = 10
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    ID_TOKEN_EXPIRE_MINUTES: int = 60

    # OAuth behaviour
    OAUTH_HARDENED_CONSENT: bool = True
    OAUTH_REVOKE_SUPERSEDED_ACCESS_TOKEN: bool = False
    OAUTH_SUPPORTED_SCOPES: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["openid", "profile", "email", "offline_access"]
    )

    # Signing key (env takes precedence over KEYS_DIR)
    RSA_PRIVATE_KEY: str = ""
    RSA_PUBLIC_KEY: str = ""
    RSA_KEY_ID: str = ""
    KEYS_DIR: str = ""

    # Rate Limiting
    TOKEN_RATE_LIMIT_PER_MINUTE: int = 60
    REVOKE_RATE_LIMIT_PER_MINUTE: int = 60
    LOGIN_RATE_LIMIT: int = 10
    LOGIN_RATE_WINDOW_SECONDS: int = 300
    RATE_LIMIT_MAX_BUCKETS: int = 10000
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: int = 60

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Admin
    ADMIN_USERNAME: str = "admin"
    ADMIN_EMAIL: str = "admin@localhost"
    ADMIN_PASSWORD: str = "admin123"

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", "OAUTH_SUPPORTED_SCOPES", mode="before")
    @classmethod
    def _parse_list(cls, value: Any) -> Any:
        """
        Accept JSON array, comma-separated or space-separated values from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            CORS_ORIGINS=http://localhost:3000,http://example.com
            OAUTH_SUPPORTED_SCOPES=openid profile email
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]

        return [item.strip() for item in raw.replace(",", " ").split() if item.strip()]

    def get_log_file(self) -> str:
        p = self.LOG_FILE
        if not p or p.startswith(".."):
            return str(_BASE_DIR.parent / "logs" / "app.log")
        return p

    def get_keys_dir(self) -> str:
        if not self.KEYS_DIR:
            return str(_BASE_DIR.parent / ".keys")
        return self.KEYS_DIR

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def issuer(self) -> str:
        return self.ISSUER_URL.rstrip("/")

    def frontend_url(self, path: str) -> str:
        return f"{self.FRONTEND_URL.rstrip('/')}{path}"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ValueError: If insecure defaults are detected.
        """
        if not self.is_production:
            return

        insecure_secret_markers = {
            "",
            _DEV_SECRET_KEY,
            "change-me",
        }
        insecure_admin_passwords = {
            "",
            "admin123",
            "change_this_password_immediately",
        }

        if self.SECRET_KEY in insecure_secret_markers or len(self.SECRET_KEY) < 32:
            raise ValueError(
                "Insecure SECRET_KEY for production. Use a strong key (e.g. `openssl rand -hex 32`)."
            )

        if self.ADMIN_PASSWORD in insecure_admin_passwords or len(self.ADMIN_PASSWORD) < 10:
            raise ValueError(
                "Insecure ADMIN_PASSWORD for production. Set a strong admin password before startup."
            )

        if not self.ISSUER_URL.startswith("https://"):
            raise ValueError("ISSUER_URL must use https in production.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
