"""
Program Models
==============

SQLAlchemy models for programs, enrollments and per-day learner state.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ancretoi.db.base import Base, TimestampMixin, iso

if TYPE_CHECKING:
    from ancretoi.models.user import User


class ProgramStatus(str, Enum):
    """Publication status of a program."""
    DRAFT = "draft"
    PREFLIGHT = "preflight"
    PUBLISHED = "published"


class ProgramLevel(str, Enum):
    """Marketing level of a program."""
    BASIQUE = "Basique"
    CIBLE = "Cible"
    PREMIUM = "Premium"


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle."""
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"


class Program(Base, TimestampMixin):
    """
    Purchasable curriculum.

    The day-by-day content lives in the packaged JSON definitions
    (see ``ancretoi.curriculum``); this row carries catalogue data.
    """

    __tablename__ = "programs"

    program_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    slug: Mapped[str] = mapped_column(String(120), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=ProgramStatus.DRAFT.value,
        index=True,
    )
    level: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    cover_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    duration_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    est_minutes_per_day: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    units_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    # hero, benefits, faq, seo, objective, ideal_if, duration_label
    marketing: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True, default=dict)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_api_dict(self) -> dict:
        """Serialize to API response format."""
        return {
            "id": str(self.program_id) if self.program_id else None,
            "slug": self.slug,
            "title": self.title,
            "status": self.status or ProgramStatus.DRAFT.value,
            "level": self.level,
            "coverUrl": self.cover_url,
            "durationDays": self.duration_days,
            "estMinutesPerDay": self.est_minutes_per_day,
            "unitsCount": self.units_count or 0,
            "priceCents": self.price_cents,
            "currency": self.currency or "EUR",
            "marketing": self.marketing or {},
            "deletedAt": iso(self.deleted_at),
            "createdAt": iso(getattr(self, "created_at", None)),
            "updatedAt": iso(getattr(self, "updated_at", None)),
        }

    def __repr__(self) -> str:
        return f"<Program(slug={self.slug}, status={self.status})>"


class Enrollment(Base, TimestampMixin):
    """A user taking a program. One row per (user, program)."""

    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "program_slug", name="uq_enrollments_user_program"),
        CheckConstraint("current_day BETWEEN 1 AND 365", name="ck_enrollments_current_day"),
    )

    enrollment_id: Mapped[uuid.UUID] = mapped_column(
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
    program_slug: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=EnrollmentStatus.ACTIVE.value,
    )
    current_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    intro_engaged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    user: Mapped["User"] = relationship("User", back_populates="enrollments")

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.enrollment_id) if self.enrollment_id else None,
            "userId": str(self.user_id),
            "programSlug": self.program_slug,
            "status": self.status or EnrollmentStatus.ACTIVE.value,
            "currentDay": self.current_day or 1,
            "startedAt": iso(self.started_at),
            "completedAt": iso(self.completed_at),
            "introEngaged": bool(self.intro_engaged),
            "updatedAt": iso(getattr(self, "updated_at", None)),
        }


class DayState(Base, TimestampMixin):
    """
    Authoritative per-day learner record.

    ``data`` maps field paths to answers; ``sliders`` and ``checkout`` hold
    the 0..10 self-ratings taken before and after the session.
    """

    __tablename__ = "day_states"
    __table_args__ = (
        UniqueConstraint("user_id", "program_slug", "day", name="uq_day_states_user_program_day"),
        CheckConstraint("day >= 1", name="ck_day_states_day"),
    )

    day_state_id: Mapped[uuid.UUID] = mapped_column(
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
    program_slug: Mapped[str] = mapped_column(String(120), nullable=False)
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True, default=dict)
    sliders: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    checkout: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    practiced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mantra3x: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_api_dict(self) -> dict:
        return {
            "programSlug": self.program_slug,
            "day": self.day,
            "data": self.data or {},
            "sliders": self.sliders,
            "checkout": self.checkout,
            "practiced": bool(self.practiced),
            "mantra3x": bool(self.mantra3x),
            "completed": bool(self.completed),
            "updatedAt": iso(getattr(self, "updated_at", None)),
        }
