"""
Newsletter Service
==================

Double opt-in subscriptions, confirmation/unsubscribe links, admin status
changes, exports and campaign sends.
"""

import asyncio
import json
import logging
from typing import Iterable, Optional, Union
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ancretoi.config import settings
from ancretoi.core.errors import ErrorCodes, NotFoundError, ServiceUnavailableError, ValidationError
from ancretoi.core.security import generate_link_token
from ancretoi.db.base import iso
from ancretoi.models.newsletter import NewsletterSubscriber, SubscriberStatus
from ancretoi.services.mailer import (
    Mailer,
    MailerError,
    confirm_url,
    render_campaign_html,
    render_confirm_html,
    unsubscribe_url,
)
from ancretoi.utils.helpers import LIKE_ESCAPE, like_contains, parse_tags, utc_now
from ancretoi.utils.validators import validate_email

logger = logging.getLogger(__name__)

CONFIRM_SUBJECT = "Confirme ton inscription à Ancre-toi"

CSV_HEADER = (
    "email",
    "status",
    "tags",
    "source",
    "consentAt",
    "confirmedAt",
    "unsubscribedAt",
    "createdAt",
    "updatedAt",
)

ALLOWED_STATUSES = tuple(s.value for s in SubscriberStatus)


# =============================================================================
# Export
# =============================================================================

def _quote(value: object) -> str:
    return '"' + str(value).replace('"', '""') + '"'


def export_csv(subscribers: Iterable[NewsletterSubscriber]) -> str:
    """
    CSV with every cell double-quoted.

    Tags are written as a JSON array, dates as ISO strings.
    """
    lines = [",".join(CSV_HEADER)]
    for s in subscribers:
        tags = json.dumps(list(s.tags or []), ensure_ascii=False, separators=(",", ":"))
        cells = [
            s.email,
            s.status or "",
            tags,
            s.source or "",
            iso(s.consent_at) or "",
            iso(s.confirmed_at) or "",
            iso(s.unsubscribed_at) or "",
            iso(getattr(s, "created_at", None)) or "",
            iso(getattr(s, "updated_at", None)) or "",
        ]
        lines.append(",".join(_quote(c) for c in cells))
    return "\n".join(lines)


def redirect_path(outcome: str, code: Optional[str] = None) -> str:
    """Public page a confirm/unsubscribe link lands on."""
    base = settings.APP_URL.rstrip("/")
    if code:
        return f"{base}/newsletter/error?code={code}"
    return f"{base}/newsletter/{outcome}"


# =============================================================================
# Service
# =============================================================================

class NewsletterService:
    """Service for newsletter subscribers."""

    def __init__(self, db: AsyncSession, mailer: Optional[Mailer] = None):
        self.db = db
        self.mailer = mailer or Mailer()

    def _require_mail(self) -> None:
        if not (self.mailer.configured and settings.APP_URL):
            raise ServiceUnavailableError(
                code=ErrorCodes.NEWSLETTER_MISSING_ENV,
                message="Envoi d'e-mails non configuré.",
            )

    async def get_by_email(self, email: str) -> Optional[NewsletterSubscriber]:
        result = await self.db.execute(
            select(NewsletterSubscriber).where(NewsletterSubscriber.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Public flow
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        email: str,
        source: Optional[str] = "site",
        tags: Union[str, list[str], None] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> NewsletterSubscriber:
        """
        Register (or re-register) an address as pending and mail the confirmation link.

        Fresh confirm and unsubscribe tokens are issued on every call.

        Raises:
            ValidationError: invalid address
            ServiceUnavailableError: mail not configured or the send failed
        """
        self._require_mail()
        email = validate_email(email, code=ErrorCodes.NEWSLETTER_INVALID_EMAIL)

        subscriber = await self.get_by_email(email)
        if subscriber is None:
            subscriber = NewsletterSubscriber(email=email, tags=parse_tags(tags))
            self.db.add(subscriber)
        elif tags:
            subscriber.tags = parse_tags([*(subscriber.tags or []), *parse_tags(tags)])

        subscriber.status = SubscriberStatus.PENDING.value
        subscriber.source = source or "site"
        subscriber.confirm_token = generate_link_token()
        subscriber.unsub_token = generate_link_token()
        subscriber.consent_at = None
        subscriber.meta = {"ip": ip, "user_agent": user_agent}
        await self.db.flush()

        unsub_link = unsubscribe_url(subscriber.unsub_token)
        try:
            await self.mailer.send(
                to=email,
                subject=CONFIRM_SUBJECT,
                html=render_confirm_html(confirm_url(subscriber.confirm_token), unsub_link),
                unsub_link=unsub_link,
            )
        except MailerError as e:
            raise ServiceUnavailableError(
                code=ErrorCodes.NEWSLETTER_SEND_FAILED,
                message="L'e-mail de confirmation n'a pas pu être envoyé.",
            ) from e

        logger.info("Newsletter subscription pending for %s", subscriber.subscriber_id)
        return subscriber

    async def confirm(self, token: str) -> str:
        """Confirm by link token; returns the redirect URL."""
        if not token:
            return redirect_path("error", "invalid_token")
        result = await self.db.execute(
            select(NewsletterSubscriber).where(NewsletterSubscriber.confirm_token == token)
        )
        subscriber = result.scalar_one_or_none()
        if subscriber is None:
            return redirect_path("error", "invalid_token")

        now = utc_now()
        subscriber.status = SubscriberStatus.CONFIRMED.value
        subscriber.confirm_token = None
        subscriber.confirmed_at = now
        if subscriber.consent_at is None:
            subscriber.consent_at = now
        await self.db.flush()
        return redirect_path("confirmed")

    async def unsubscribe(self, token: str) -> str:
        """Unsubscribe by link token; returns the redirect URL."""
        if not token:
            return redirect_path("error", "invalid_unsub")
        result = await self.db.execute(
            select(NewsletterSubscriber).where(NewsletterSubscriber.unsub_token == token)
        )
        subscriber = result.scalar_one_or_none()
        if subscriber is None:
            return redirect_path("error", "invalid_unsub")

        subscriber.status = SubscriberStatus.UNSUBSCRIBED.value
        subscriber.unsubscribed_at = utc_now()
        await self.db.flush()
        return redirect_path("unsubscribed")

    # -------------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------------

    async def list_subscribers(
        self,
        q: str = "",
        status: str = "all",
        tag: Optional[str] = None,
    ) -> list[NewsletterSubscriber]:
        stmt = select(NewsletterSubscriber)
        needle = q.strip().lower()
        if needle:
            stmt = stmt.where(NewsletterSubscriber.email.ilike(like_contains(needle), escape=LIKE_ESCAPE))
        if status and status != "all":
            stmt = stmt.where(NewsletterSubscriber.status == status)
        if tag and tag.strip():
            stmt = stmt.where(NewsletterSubscriber.tags.any(tag.strip().lower()))
        stmt = stmt.order_by(NewsletterSubscriber.created_at.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def set_status(
        self,
        status: str,
        email: Optional[str] = None,
        subscriber_id: Optional[str] = None,
    ) -> NewsletterSubscriber:
        """
        Admin status change.

        ``confirmed`` stamps ``confirmed_at`` once; ``unsubscribed`` stamps
        ``unsubscribed_at`` every time.
        """
        if status not in ALLOWED_STATUSES:
            raise ValidationError(message="Statut invalide.", field="status")

        subscriber = None
        if subscriber_id:
            try:
                sid = uuid.UUID(subscriber_id)
            except ValueError:
                sid = None
            if sid is not None:
                result = await self.db.execute(
                    select(NewsletterSubscriber).where(NewsletterSubscriber.subscriber_id == sid)
                )
                subscriber = result.scalar_one_or_none()
        elif email and email.strip():
            subscriber = await self.get_by_email(email)
        else:
            raise ValidationError(message="E-mail ou identifiant requis.", field="email")

        if subscriber is None:
            raise NotFoundError(code=ErrorCodes.NEWSLETTER_NOT_FOUND, message="Abonné introuvable.")

        subscriber.status = status
        if status == SubscriberStatus.CONFIRMED.value and subscriber.confirmed_at is None:
            subscriber.confirmed_at = utc_now()
        if status == SubscriberStatus.UNSUBSCRIBED.value:
            subscriber.unsubscribed_at = utc_now()
        await self.db.flush()
        return subscriber

    async def send_campaign(
        self,
        subject: str,
        html: str,
        text: Optional[str] = None,
        tag: Optional[str] = None,
        test_email: Optional[str] = None,
    ) -> dict:
        """
        Send a campaign.

        With ``test_email`` a single copy goes to that address using a
        throwaway unsubscribe token. Otherwise every confirmed subscriber
        (optionally having ``tag``) receives it, in batches of
        ``NEWSLETTER_BATCH_SIZE``; individual failures are counted, not raised.

        Returns:
            ``{"mode": "test"}`` or ``{"mode": "bulk", total, sent, failed, tag}``
        """
        self._require_mail()
        subject = (subject or "").strip()
        html = (html or "").strip()
        if not subject or not html:
            raise ValidationError(message="Sujet et contenu requis.", field="subject")

        if test_email and test_email.strip():
            to = validate_email(test_email, code=ErrorCodes.NEWSLETTER_INVALID_EMAIL)
            unsub_link = unsubscribe_url(generate_link_token(24))
            try:
                await self.mailer.send(to, subject, render_campaign_html(html, unsub_link), unsub_link, text)
            except MailerError as e:
                raise ServiceUnavailableError(
                    code=ErrorCodes.NEWSLETTER_SEND_FAILED,
                    message="Échec de l'envoi test.",
                ) from e
            return {"mode": "test", "to": to}

        tag = (tag or "").strip().lower() or None
        recipients = await self.list_subscribers(status=SubscriberStatus.CONFIRMED.value, tag=tag)
        for r in recipients:
            if not r.unsub_token:
                r.unsub_token = generate_link_token(24)
        await self.db.flush()

        sent = 0
        failed = 0
        batch = settings.NEWSLETTER_BATCH_SIZE
        for start in range(0, len(recipients), batch):
            chunk = recipients[start:start + batch]
            results = await asyncio.gather(
                *(
                    self.mailer.send(
                        r.email,
                        subject,
                        render_campaign_html(html, unsubscribe_url(r.unsub_token)),
                        unsubscribe_url(r.unsub_token),
                        text,
                    )
                    for r in chunk
                ),
                return_exceptions=True,
            )
            for outcome in results:
                if isinstance(outcome, BaseException):
                    failed += 1
                    logger.warning("Campaign send failed: %s", outcome)
                else:
                    sent += 1

        logger.info("Campaign %r: %d sent, %d failed", subject, sent, failed)
        return {"mode": "bulk", "total": len(recipients), "sent": sent, "failed": failed, "tag": tag}
