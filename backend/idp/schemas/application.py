"""Application (OAuth client) schemas"""

from datetime import datetime
from typing import List, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

from idp.config import settings


def _check_redirect_uris(value: List[str]) -> List[str]:
    cleaned = []
    for uri in value:
        uri = uri.strip()
        if not uri:
            continue
        if urlsplit(uri).fragment:
            raise ValueError(f'Redirect URI "{uri}" must not contain a fragment')
        cleaned.append(uri)
    if not cleaned:
        raise ValueError('At least one redirect URI is required')
    return cleaned


def _check_scopes(value: List[str]) -> List[str]:
    supported = set(settings.OAUTH_SUPPORTED_SCOPES)
    unknown = [scope for scope in value if scope not in supported]
    if unknown:
        raise ValueError(f'Unsupported scopes: {", ".join(unknown)}')
    return list(dict.fromkeys(value))


class ApplicationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    redirect_uris: List[str] = Field(..., min_length=1)
    scopes: List[str] = Field(default_factory=lambda: ["openid", "profile", "email"])

    @field_validator('redirect_uris')
    @classmethod
    def validate_redirect_uris(cls, v):
        return _check_redirect_uris(v)

    @field_validator('scopes')
    @classmethod
    def validate_scopes(cls, v):
        return _check_scopes(v)


class ApplicationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    redirect_uris: Optional[List[str]] = None
    scopes: Optional[List[str]] = None

    @field_validator('redirect_uris')
    @classmethod
    def validate_redirect_uris(cls, v):
        return None if v is None else _check_redirect_uris(v)

    @field_validator('scopes')
    @classmethod
    def validate_scopes(cls, v):
        return None if v is None else _check_scopes(v)


class ApplicationResponse(BaseModel):
    id: str
    client_id: str
    name: str
    description: Optional[str] = None
    redirect_uris: List[str]
    scopes: List[str]
    user_id: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class ApplicationWithSecret(ApplicationResponse):
    """Returned only on creation and secret rotation"""
    client_secret: str
