"""
Admin Newsletter API Endpoints
==============================

Subscriber list, status changes, exports and campaign sends.
"""

import json
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Response

from ancretoi.core.errors import ValidationError
from ancretoi.dependencies import CurrentAdmin, DBSession, ListParams
from ancretoi.schemas.common import DataResponse, PaginatedResponse
from ancretoi.schemas.newsletter import CampaignRequest, StatusUpdate
from ancretoi.services.mailer import Mailer, get_mailer
from ancretoi.services.newsletter_service import NewsletterService, export_csv
from ancretoi.services.toolbar import apply_query, subscriber_haystack
from ancretoi.utils.helpers import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()

MailerDep = Annotated[Mailer, Depends(get_mailer)]


@router.get("", response_model=PaginatedResponse[dict])
async def list_subscribers(admin: CurrentAdmin, db: DBSession, query: ListParams):
    """Subscribers filtered by email text, status and tag."""
    subscribers = await NewsletterService(db).list_subscribers(
        q=query.q,
        status=query.status,
        tag=query.tag,
    )
    rows = [s.to_api_dict() for s in subscribers]
    page, meta = apply_query(rows, query, subscriber_haystack, title_key="email")
    return PaginatedResponse[dict](data=page, pagination=meta)


@router.post("/status", response_model=DataResponse)
async def set_status(body: StatusUpdate, admin: CurrentAdmin, db: DBSession):
    """Change a subscriber's status, addressed by ``id`` or ``email``."""
    subscriber = await NewsletterService(db).set_status(
        body.status,
        email=body.email,
        subscriber_id=body.subscriber_id,
    )
    return DataResponse(data=subscriber.to_api_dict(), message="Statut mis à jour.")


@router.get("/export")
async def export_subscribers(
    admin: CurrentAdmin,
    db: DBSession,
    format: str = Query(default="csv"),
    q: str = Query(default=""),
    status: str = Query(default="all"),
    tag: Optional[str] = Query(default=None),
):
    """Download the filtered subscriber list as CSV or JSON."""
    fmt = format.lower()
    if fmt not in ("csv", "json"):
        raise ValidationError(message="Format non supporté (csv ou json).", field="format")

    subscribers = await NewsletterService(db).list_subscribers(q=q, status=status, tag=tag)
    stamp = utc_now().strftime("%Y%m%d-%H%M%S")

    if fmt == "csv":
        body = export_csv(subscribers)
        media_type = "text/csv; charset=utf-8"
    else:
        body = json.dumps([s.to_api_dict() for s in subscribers], ensure_ascii=False, indent=2)
        media_type = "application/json; charset=utf-8"

    logger.info("Exported %d subscribers as %s", len(subscribers), fmt)
    return Response(
        content=body,
        media_type=media_type,
        headers={
            "Content-Disposition": f'attachment; filename="newsletter-{stamp}.{fmt}"',
            "Cache-Control": "no-store",
        },
    )


@router.post("/send", response_model=DataResponse)
async def send_campaign(
    body: CampaignRequest,
    admin: CurrentAdmin,
    db: DBSession,
    mailer: MailerDep,
):
    """
    Send a campaign to confirmed subscribers, or a single copy to
    ``testEmail``.
    """
    result = await NewsletterService(db, mailer).send_campaign(
        subject=body.subject,
        html=body.html,
        text=body.text,
        tag=body.tag,
        test_email=body.test_email,
    )
    return DataResponse(data=result)
