"""User service - the user store consulted by login and the OAuth flows"""

from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime, timedelta
from idp.models.user import User
from idp.schemas.user import UserCreate
from idp.core.security import get_password_hash, verify_password
from idp.core.exceptions import (
    InvalidCredentialsError,
    AccountLockedError,
    ResourceAlreadyExistsError
)
import logging

logger = logging.getLogger(__name__)


class UserService:
    """Service for user management"""

    LOCKOUT_DURATION_MINUTES = 15
    MAX_FAILED_ATTEMPTS = 5

    @staticmethod
    def create_user(db: Session, user_data: UserCreate) -> User:
        """
        Create new user

        Args:
            db: Database session
            user_data: User creation data

        Returns:
            Created user
        """
        existing = (
            db.query(User)
            .filter(or_(User.username == user_data.username, User.email == user_data.email))
            .first()
        )
        if existing:
            field = "Username" if existing.username == user_data.username else "Email"
            raise ResourceAlreadyExistsError(field)

        user = User(
            username=user_data.username,
            email=user_data.email,
            nickname=user_data.nickname,
            password_hash=get_password_hash(user_data.password),
            role=user_data.role.value
        )

        db.add(user)
        db.commit()
        db.refresh(user)

        logger.info(f"Created user: {user.username} (role: {user.role})")
        return user

    @staticmethod
    def authenticate_user(db: Session, username_or_email: str, password: str) -> User:
        """
        Authenticate user by username or email with account lockout protection

        Args:
            db: Database session
            username_or_email: Username, falling back to email lookup
            password: Password

        Returns:
            Authenticated user
        """
        user = UserService.get_user_by_username(db, username_or_email)
        if not user:
            user = UserService.get_user_by_email(db, username_or_email)

        if not user or not user.is_active:
            raise InvalidCredentialsError()

        # Check if account is locked
        if user.locked_until and user.locked_until > datetime.utcnow():
            raise AccountLockedError(user.locked_until.isoformat())

        if not verify_password(password, user.password_hash):
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1

            if user.failed_login_attempts >= UserService.MAX_FAILED_ATTEMPTS:
                user.locked_until = datetime.utcnow() + timedelta(
                    minutes=UserService.LOCKOUT_DURATION_MINUTES
                )
                db.commit()
                logger.warning(f"Account locked for user: {user.username}")
                raise AccountLockedError(user.locked_until.isoformat())

            db.commit()
            raise InvalidCredentialsError()

        # Reset failed attempts on successful login
        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login = datetime.utcnow()
        db.commit()

        logger.info(f"User authenticated: {user.username}")
        return user

    @staticmethod
    def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_username(db: Session, username: str) -> Optional[User]:
        """Get user by username"""
        return db.query(User).filter(User.username == username).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email"""
        return db.query(User).filter(User.email == email.strip().lower()).first()


# Singleton instance
user_service = UserService()
