"""
Authentication Service
======================

Business logic for user authentication, registration, token management
and password reset links.
"""

import logging
from datetime import timedelta
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ancretoi.config import settings
from ancretoi.core.errors import ErrorCodes, ValidationError
from ancretoi.core.security import (
    create_tokens_for_user,
    decode_token,
    generate_link_token,
    hash_link_token,
    hash_password,
    issued_before,
    verify_password,
)
from ancretoi.models.user import PasswordReset, User, UserRole, default_limits
from ancretoi.schemas.auth import UserRegister
from ancretoi.services.cache import CacheInvalidator
from ancretoi.utils.helpers import utc_now
from ancretoi.utils.validators import RESET_PASSWORD_MIN_LENGTH

logger = logging.getLogger(__name__)


def _parse_subject(payload: dict) -> Optional[uuid.UUID]:
    user_id_str = payload.get("sub")
    if user_id_str is None:
        return None
    try:
        return uuid.UUID(user_id_str)
    except ValueError:
        return None


class AuthService:
    """Service for authentication operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email address."""
        stmt = select(User).where(User.email == email.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Get user by ID."""
        stmt = select(User).where(User.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_user(self, user_data: UserRegister) -> User:
        """
        Create a new learner account.

        Args:
            user_data: Registration data

        Returns:
            Created user object
        """
        user = User(
            email=user_data.email,
            password_hash=hash_password(user_data.password),
            password_changed_at=utc_now(),
            name=user_data.name,
            role=UserRole.USER.value,
            marketing=user_data.marketing,
            limits=default_limits(),
        )
        self.db.add(user)
        await self.db.flush()
        logger.info("Registered user %s", user.user_id)
        return user

    async def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """
        Authenticate user by email and password.

        Archived and suspended accounts never authenticate.

        Returns:
            User if authentication successful, None otherwise
        """
        user = await self.get_user_by_email(email)

        if user is None or user.password_hash is None:
            return None

        if not verify_password(password, user.password_hash):
            return None

        if user.deleted_at is not None or user.suspended_at is not None:
            logger.info("Refused login for inactive user %s", user.user_id)
            return None

        return user

    async def verify_token(self, token: str) -> Optional[User]:
        """
        Verify an access token and return the associated active user.

        A token issued before the last password change is rejected.
        """
        payload = decode_token(token)
        if payload is None or payload.get("type") != "access":
            return None

        user_id = _parse_subject(payload)
        if user_id is None:
            return None

        user = await self.get_user_by_id(user_id)
        if user is None or not is_active(user):
            return None
        if issued_before(payload, user.password_changed_at):
            return None
        return user

    async def refresh_tokens(self, refresh_token: str) -> Optional[dict]:
        """
        Generate new tokens from a refresh token.

        Returns:
            New tokens if refresh token is valid, None otherwise
        """
        payload = decode_token(refresh_token)
        if payload is None or payload.get("type") != "refresh":
            return None

        user_id = _parse_subject(payload)
        if user_id is None:
            return None

        user = await self.get_user_by_id(user_id)
        if user is None or not is_active(user):
            return None
        if issued_before(payload, user.password_changed_at):
            return None

        return create_tokens_for_user(
            user_id=user.user_id,
            email=user.email,
            role=user.role,
        )

    # -------------------------------------------------------------------------
    # Password reset
    # -------------------------------------------------------------------------

    async def create_password_reset(self, email: str) -> Optional[str]:
        """
        Issue a reset link token for a live account.

        Returns:
            The raw token to mail, or None when no live account matches
        """
        normalized = (email or "").strip().lower()
        if not normalized:
            return None

        user = await self.get_user_by_email(normalized)
        if user is None or user.deleted_at is not None:
            return None

        token = generate_link_token()
        self.db.add(PasswordReset(
            user_id=user.user_id,
            token_hash=hash_link_token(token),
            expires_at=utc_now() + timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES),
        ))
        await self.db.flush()
        logger.info("Password reset requested for user %s", user.user_id)
        return token

    async def _find_reset(self, token: str) -> Optional[PasswordReset]:
        if not token:
            return None
        result = await self.db.execute(
            select(PasswordReset).where(PasswordReset.token_hash == hash_link_token(token))
        )
        return result.scalar_one_or_none()

    async def reset_link_valid(self, token: str) -> bool:
        entry = await self._find_reset(token)
        return entry is not None and entry.usable(utc_now())

    async def reset_password(self, token: str, password: str) -> None:
        """
        Set a new password from a reset link and burn the link.

        Raises:
            ValidationError: missing fields, password under 8 characters, or
                an unknown, used or expired link
        """
        if not token or not password:
            raise ValidationError(message="Paramètres manquants.")
        if len(password) < RESET_PASSWORD_MIN_LENGTH:
            raise ValidationError(
                message=f"Mot de passe trop court (min {RESET_PASSWORD_MIN_LENGTH} caractères).",
                field="password",
                code=ErrorCodes.AUTH_WEAK_PASSWORD,
            )

        now = utc_now()
        entry = await self._find_reset(token)
        user = await self.get_user_by_id(entry.user_id) if entry is not None and entry.usable(now) else None
        if user is None:
            raise ValidationError(message="Lien invalide ou expiré.", code=ErrorCodes.AUTH_RESET_INVALID)

        user.password_hash = hash_password(password)
        user.password_changed_at = now
        entry.used_at = now
        await self.db.flush()
        await CacheInvalidator.on_user_change(str(user.user_id))
        logger.info("Password reset for user %s", user.user_id)


def is_active(user: User) -> bool:
    """Neither archived nor suspended."""
    return user.deleted_at is None and user.suspended_at is None
