"""
Newsletter API Endpoints
========================

Public double opt-in: subscribe, then confirm by the emailed link.
Confirm and unsubscribe links redirect to the public site.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse

from ancretoi.core.errors import ValidationError
from ancretoi.core.rate_limit import create_rate_limit_dependency
from ancretoi.dependencies import DBSession
from ancretoi.schemas.common import DataResponse
from ancretoi.schemas.newsletter import SubscribeRequest
from ancretoi.services.mailer import Mailer, get_mailer
from ancretoi.services.newsletter_service import NewsletterService

router = APIRouter()


@router.post(
    "/subscribe",
    response_model=DataResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(create_rate_limit_dependency("subscribe"))],
)
async def subscribe(
    body: SubscribeRequest,
    request: Request,
    db: DBSession,
    mailer: Annotated[Mailer, Depends(get_mailer)],
):
    """Register the address as pending and send the confirmation email."""
    if not body.consent:
        raise ValidationError(message="Consentement requis.", field="consent")

    subscriber = await NewsletterService(db, mailer).subscribe(
        email=body.email,
        source=body.source,
        tags=body.tags,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return DataResponse(
        data={"status": subscriber.status},
        message="Vérifie ta boîte mail pour confirmer ton inscription.",
    )


@router.get("/confirm")
async def confirm(db: DBSession, token: str = Query(default="")):
    url = await NewsletterService(db).confirm(token)
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/unsubscribe")
async def unsubscribe(db: DBSession, token: str = Query(default="")):
    url = await NewsletterService(db).unsubscribe(token)
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)
