"""
User Administration Service
===========================

Admin-side operations on user accounts: listing, detail with enrollment
progress, role changes, lifecycle (archive, suspend, hard delete) and
usage limits.
"""

import logging
from typing import Optional, Union
import uuid

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ancretoi.core.errors import ConflictError, ErrorCodes, NotFoundError, ValidationError
from ancretoi.db.base import iso
from ancretoi.models.program import Enrollment, Program
from ancretoi.models.user import User, UserRole
from ancretoi.services.cache import CacheInvalidator
from ancretoi.utils.helpers import LIKE_ESCAPE, js_round, like_contains, utc_now

logger = logging.getLogger(__name__)

USER_STATES = ("all", "active", "archived", "suspended")


# =============================================================================
# Guards
# =============================================================================

def check_role_change(
    actor_email: str,
    target_email: str,
    next_role: str,
    active_admin_emails: list[str],
) -> None:
    """
    Refuse a demotion that would leave the platform without an admin.

    Args:
        actor_email: Email of the admin making the change
        target_email: Email of the account being changed
        next_role: Requested role
        active_admin_emails: Emails of non-archived admins

    Raises:
        ConflictError: on self-demotion or when demoting the last admin
    """
    if next_role == UserRole.ADMIN.value:
        return
    if target_email == actor_email:
        raise ConflictError(
            code=ErrorCodes.USER_SELF_DEMOTION,
            message="Tu ne peux pas te retirer l'admin toi-même.",
        )
    if len(active_admin_emails) <= 1 and active_admin_emails and active_admin_emails[0] == target_email:
        raise ConflictError(
            code=ErrorCodes.USER_LAST_ADMIN,
            message="Tu es le dernier admin, impossible de te rétrograder.",
        )


def parse_features(raw: Union[str, list[str], None]) -> list[str]:
    """``"forum, chat"`` -> ``["forum", "chat"]``."""
    if raw is None:
        return []
    parts = raw.split(",") if isinstance(raw, str) else raw
    return [p.strip() for p in parts if p and p.strip()]


def progress_pct(current_day: Optional[int], units: Optional[int]) -> Optional[int]:
    """Rounded share of units reached, clamped to 0..100; None when unknown."""
    if not units or units <= 0 or current_day is None:
        return None
    return max(0, min(100, js_round(current_day / units * 100)))


def user_state(user: User) -> str:
    if user.deleted_at is not None:
        return "archived"
    if user.suspended_at is not None:
        return "suspended"
    return "active"


# =============================================================================
# Service
# =============================================================================

class UserAdminService:
    """Service for admin operations on users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, user_id: uuid.UUID) -> User:
        result = await self.db.execute(select(User).where(User.user_id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError(code=ErrorCodes.USER_NOT_FOUND, message="Utilisateur introuvable.")
        return user

    async def list_users(
        self,
        q: str = "",
        role: str = "all",
        state: str = "all",
    ) -> list[dict]:
        """
        Users matching a search text, role and lifecycle state.

        Args:
            q: Case-insensitive substring of email or name
            role: ``user``, ``admin`` or ``all``
            state: One of ``USER_STATES``
        """
        stmt = select(User)
        needle = q.strip().lower()
        if needle:
            pattern = like_contains(needle)
            stmt = stmt.where(
                func.lower(User.email).like(pattern, escape=LIKE_ESCAPE)
                | func.lower(func.coalesce(User.name, "")).like(pattern, escape=LIKE_ESCAPE)
            )
        if role in (UserRole.USER.value, UserRole.ADMIN.value):
            stmt = stmt.where(User.role == role)
        if state == "active":
            stmt = stmt.where(User.deleted_at.is_(None), User.suspended_at.is_(None))
        elif state == "archived":
            stmt = stmt.where(User.deleted_at.is_not(None))
        elif state == "suspended":
            stmt = stmt.where(User.suspended_at.is_not(None), User.deleted_at.is_(None))

        stmt = stmt.order_by(User.created_at.desc())
        result = await self.db.execute(stmt)
        rows = []
        for user in result.scalars().all():
            row = user.to_api_dict()
            row["state"] = user_state(user)
            rows.append(row)
        return rows

    async def get_detail(self, user_id: uuid.UUID) -> dict:
        """User profile plus enrollments with program title and progress."""
        user = await self._get(user_id)

        result = await self.db.execute(select(Enrollment).where(Enrollment.user_id == user.user_id))
        enrollments = list(result.scalars().all())

        slugs = sorted({e.program_slug for e in enrollments if e.program_slug})
        programs: dict[str, Program] = {}
        if slugs:
            result = await self.db.execute(select(Program).where(Program.slug.in_(slugs)))
            programs = {p.slug: p for p in result.scalars().all()}

        rows = []
        for e in enrollments:
            program = programs.get(e.program_slug)
            units = program.units_count if program is not None else None
            rows.append({
                "programSlug": e.program_slug,
                "programTitle": program.title if program is not None else e.program_slug,
                "coverUrl": program.cover_url if program is not None else None,
                "level": program.level if program is not None else None,
                "status": e.status,
                "startedAt": iso(e.started_at),
                "updatedAt": iso(getattr(e, "updated_at", None)),
                "currentDay": e.current_day,
                "unitsCount": units,
                "progressPct": progress_pct(e.current_day, units),
            })

        detail = user.to_api_dict()
        detail.update({
            "passwordChangedAt": iso(user.password_changed_at),
            "isArchived": user.deleted_at is not None,
            "isSuspended": user.suspended_at is not None,
            "enrollments": rows,
        })
        return detail

    async def set_role(self, actor: User, user_id: uuid.UUID, role: str) -> User:
        """Change a role, guarded against self-demotion and losing the last admin."""
        target = await self._get(user_id)
        result = await self.db.execute(
            select(User.email).where(User.role == UserRole.ADMIN.value, User.deleted_at.is_(None))
        )
        admins = [row[0] for row in result.all()]
        check_role_change(actor.email, target.email, role, admins)

        target.role = role
        await self.db.flush()
        await CacheInvalidator.on_user_change(str(target.user_id))
        logger.info("Role of %s set to %s by %s", target.user_id, role, actor.user_id)
        return target

    async def archive(self, user_id: uuid.UUID) -> User:
        return await self._stamp(user_id, "deleted_at", True)

    async def restore(self, user_id: uuid.UUID) -> User:
        return await self._stamp(user_id, "deleted_at", False)

    async def suspend(self, user_id: uuid.UUID) -> User:
        return await self._stamp(user_id, "suspended_at", True)

    async def unsuspend(self, user_id: uuid.UUID) -> User:
        return await self._stamp(user_id, "suspended_at", False)

    async def _stamp(self, user_id: uuid.UUID, column: str, on: bool) -> User:
        user = await self._get(user_id)
        setattr(user, column, utc_now() if on else None)
        await self.db.flush()
        await CacheInvalidator.on_user_change(str(user.user_id))
        return user

    async def hard_delete(self, user_id: uuid.UUID, confirm: bool) -> None:
        """Irreversibly delete an account; requires ``confirm``."""
        if not confirm:
            raise ValidationError(
                message="Confirmation requise pour une suppression définitive.",
                field="confirm",
                code=ErrorCodes.USER_CONFIRMATION_REQUIRED,
            )
        user = await self._get(user_id)
        await self.db.execute(delete(User).where(User.user_id == user.user_id))
        await CacheInvalidator.on_user_change(str(user_id))
        logger.info("Hard-deleted user %s", user_id)

    async def set_limits(
        self,
        user_id: uuid.UUID,
        max_concurrent_programs: Optional[int],
        features: Union[str, list[str], None],
    ) -> User:
        user = await self._get(user_id)
        user.limits = {
            "max_concurrent_programs": max_concurrent_programs,
            "features": parse_features(features),
        }
        await self.db.flush()
        await CacheInvalidator.on_user_change(str(user.user_id))
        return user
