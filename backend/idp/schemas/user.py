"""User and login schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    """User role enumeration"""
    ADMIN = "admin"
    DEVELOPER = "developer"
    USER = "user"


class UserLogin(BaseModel):
    """Login by username or email"""
    username: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=3)


class UserCreate(BaseModel):
    """User creation schema"""
    username: str = Field(..., min_length=3, max_length=50, pattern=r'^[a-zA-Z0-9_-]+$')
    email: str = Field(..., min_length=3, max_length=255)
    nickname: Optional[str] = Field(None, max_length=100)
    password: str = Field(..., min_length=8)
    role: UserRole = UserRole.USER

    @field_validator('username')
    @classmethod
    def username_alphanumeric(cls, v):
        """Validate username is alphanumeric"""
        if not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError('Username must be alphanumeric (with _ or - allowed)')
        return v.lower()

    @field_validator('email')
    @classmethod
    def email_shape(cls, v):
        v = v.strip().lower()
        local, _, domain = v.partition('@')
        if not local or not domain or ' ' in v:
            raise ValueError('Invalid email address')
        return v


class UserRegister(BaseModel):
    """Self-service registration; role is always ``user``"""
    username: str = Field(..., min_length=3, max_length=50, pattern=r'^[a-zA-Z0-9_-]+$')
    email: str = Field(..., min_length=3, max_length=255)
    nickname: Optional[str] = Field(None, max_length=100)
    password: str = Field(..., min_length=8)

    def to_create(self) -> UserCreate:
        return UserCreate(
            username=self.username,
            email=self.email,
            nickname=self.nickname,
            password=self.password,
            role=UserRole.USER,
        )


class UserResponse(BaseModel):
    """User response schema"""
    id: str
    username: str
    email: str
    nickname: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[datetime]
    last_login: Optional[datetime]

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    success: bool = True
    message: str = "Login successful"
    expires_at: datetime
    user: UserResponse
