"""
Newsletter Model
================

SQLAlchemy model for newsletter subscribers.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from ancretoi.db.base import Base, TimestampMixin, iso


class SubscriberStatus(str, Enum):
    """Subscriber lifecycle. Transitions are admin or link triggered only."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"
    COMPLAINED = "complained"


class NewsletterSubscriber(Base, TimestampMixin):
    """Newsletter subscriber (double opt-in)."""

    __tablename__ = "newsletter_subscribers"

    subscriber_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=SubscriberStatus.PENDING.value,
        index=True,
    )
    source: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String(64)), nullable=False, default=list)

    confirm_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    unsub_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    consent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    unsubscribed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # {ip, user_agent}
    meta: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.subscriber_id) if self.subscriber_id else None,
            "email": self.email,
            "status": self.status or SubscriberStatus.PENDING.value,
            "tags": list(self.tags or []),
            "source": self.source,
            "consentAt": iso(self.consent_at),
            "confirmedAt": iso(self.confirmed_at),
            "unsubscribedAt": iso(self.unsubscribed_at),
            "createdAt": iso(getattr(self, "created_at", None)),
            "updatedAt": iso(getattr(self, "updated_at", None)),
        }
