"""
Account Service
===============

The signed-in user's own account: preferences, profile, password change,
self-service deletion and the personal data export.
"""

import json
import logging
from typing import Optional
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ancretoi.core.errors import ErrorCodes, NotFoundError, ValidationError
from ancretoi.core.security import create_tokens_for_user, hash_password, verify_password
from ancretoi.db.base import iso
from ancretoi.models.program import DayState, Enrollment
from ancretoi.models.user import Theme, User
from ancretoi.services.cache import CacheInvalidator
from ancretoi.utils.helpers import utc_now
from ancretoi.utils.validators import validate_strong_password

logger = logging.getLogger(__name__)

EXPORT_FILENAME = "ancretoi-export.json"


def account_export(user: User, exported_at: Optional[str] = None) -> dict:
    """Personal data export document."""
    return {
        "exportedAt": exported_at or iso(utc_now()),
        "account": {
            "email": user.email,
            "name": user.name,
            "avatarUrl": user.avatar_url,
            "theme": user.theme or Theme.SYSTEM.value,
            "marketing": bool(user.marketing),
            "productUpdates": user.product_updates is not False,
            "createdAt": iso(getattr(user, "created_at", None)),
            "updatedAt": iso(getattr(user, "updated_at", None)),
        },
    }


class AccountService:
    """Service for self-service account settings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, user_id: uuid.UUID) -> User:
        result = await self.db.execute(
            select(User).where(User.user_id == user_id, User.deleted_at.is_(None))
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError(code=ErrorCodes.USER_NOT_FOUND, message="Compte introuvable.")
        return user

    async def _saved(self, user: User) -> User:
        await self.db.flush()
        await CacheInvalidator.on_user_change(str(user.user_id))
        return user

    async def update_prefs(
        self,
        user_id: uuid.UUID,
        theme: Optional[str] = None,
        marketing: Optional[bool] = None,
        product_updates: Optional[bool] = None,
    ) -> User:
        user = await self._get(user_id)
        if theme:
            user.theme = theme
        if marketing is not None:
            user.marketing = marketing
        if product_updates is not None:
            user.product_updates = product_updates
        return await self._saved(user)

    async def update_profile(self, user_id: uuid.UUID, name: str) -> User:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError(message="Nom requis.", field="name")
        user = await self._get(user_id)
        user.name = cleaned
        return await self._saved(user)

    async def change_password(self, user_id: uuid.UUID, current: str, password: str) -> dict:
        """
        Replace the password after checking the current one.

        Tokens issued before the change stop working, so fresh tokens are
        returned.

        Raises:
            ValidationError: missing fields, wrong current password
                (``AUTH_WRONG_PASSWORD``) or a weak new one (``AUTH_WEAK_PASSWORD``)
        """
        if not current or not password:
            raise ValidationError(message="Champs requis.")

        user = await self._get(user_id)
        if not user.password_hash:
            raise ValidationError(message="Compte sans mot de passe.", code=ErrorCodes.AUTH_WRONG_PASSWORD)
        if not verify_password(current, user.password_hash):
            raise ValidationError(
                message="Mot de passe actuel incorrect.",
                field="current",
                code=ErrorCodes.AUTH_WRONG_PASSWORD,
            )
        validate_strong_password(password, user.email, user.name)

        user.password_hash = hash_password(password)
        user.password_changed_at = utc_now()
        await self._saved(user)
        logger.info("Password changed for user %s", user.user_id)
        return create_tokens_for_user(user_id=user.user_id, email=user.email, role=user.role)

    async def delete_account(self, user_id: uuid.UUID) -> None:
        """Archive the account and purge its enrollments and day states."""
        user = await self._get(user_id)
        await self.db.execute(delete(DayState).where(DayState.user_id == user.user_id))
        await self.db.execute(delete(Enrollment).where(Enrollment.user_id == user.user_id))
        user.deleted_at = utc_now()
        await self._saved(user)
        logger.info("User %s deleted their account", user.user_id)

    async def export(self, user_id: uuid.UUID) -> str:
        user = await self._get(user_id)
        return json.dumps(account_export(user), ensure_ascii=False, indent=2)
