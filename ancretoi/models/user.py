"""
User Model
==========

SQLAlchemy model for user accounts.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ancretoi.db.base import Base, TimestampMixin, iso

if TYPE_CHECKING:
    from ancretoi.models.program import Enrollment


class UserRole(str, Enum):
    """Account roles."""
    USER = "user"
    ADMIN = "admin"


class Theme(str, Enum):
    """Preferred colour theme."""
    SYSTEM = "system"
    LIGHT = "light"
    DARK = "dark"


def default_limits() -> dict:
    return {"max_concurrent_programs": None, "features": []}


class User(Base, TimestampMixin):
    """
    User account model.

    Archived accounts carry ``deleted_at``, suspended ones ``suspended_at``;
    both are refused at login. Only an explicit admin action removes a row.
    """

    __tablename__ = "users"

    # Primary Key
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Account fields
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=UserRole.USER.value,
        index=True,
    )
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    password_changed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Profile
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    theme: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=Theme.SYSTEM.value,
    )
    marketing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    product_updates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Lifecycle
    suspended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # {max_concurrent_programs: int | None, features: [str]}
    limits: Mapped[Optional[dict]] = mapped_column(
        JSONB,
        nullable=True,
        default=default_limits,
    )

    enrollments: Mapped[list["Enrollment"]] = relationship(
        "Enrollment",
        back_populates="user",
        lazy="noload",
        cascade="all, delete-orphan",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return self.email.split("@")[0] if self.email else ""

    @property
    def max_concurrent_programs(self) -> Optional[int]:
        return (self.limits or {}).get("max_concurrent_programs")

    @property
    def features(self) -> list[str]:
        return list((self.limits or {}).get("features") or [])

    def to_api_dict(self) -> dict:
        """Serialize to the admin API format."""
        return {
            "id": str(self.user_id),
            "email": self.email,
            "name": self.name,
            "displayName": self.display_name,
            "role": self.role or UserRole.USER.value,
            "avatarUrl": self.avatar_url,
            "theme": self.theme or Theme.SYSTEM.value,
            "marketing": bool(self.marketing),
            "productUpdates": self.product_updates is not False,
            "suspendedAt": iso(self.suspended_at),
            "deletedAt": iso(self.deleted_at),
            "limits": {
                "maxConcurrentPrograms": self.max_concurrent_programs,
                "features": self.features,
            },
            "createdAt": iso(getattr(self, "created_at", None)),
            "updatedAt": iso(getattr(self, "updated_at", None)),
        }

    def __repr__(self) -> str:
        return f"<User(user_id={self.user_id}, email={self.email}, role={self.role})>"


class PasswordReset(Base, TimestampMixin):
    """
    One-time password reset link.

    Only the sha256 of the mailed token is stored. An entry is usable once,
    before ``expires_at``.
    """

    __tablename__ = "password_resets"

    reset_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def usable(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now

    def __repr__(self) -> str:
        return f"<PasswordReset(user_id={self.user_id}, expires_at={self.expires_at})>"
