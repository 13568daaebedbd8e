"""
Newsletter Schemas
==================

Public subscription and admin campaign payloads.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

SubscriberStatusLiteral = Literal["pending", "confirmed", "unsubscribed", "bounced", "complained"]


class SubscribeRequest(BaseModel):
    """Public subscription form. Email format is checked by the service."""

    email: str = Field(max_length=255)
    source: Optional[str] = Field("site", max_length=64)
    tags: Union[str, list[str], None] = None
    consent: bool = True


class StatusUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    subscriber_id: Optional[str] = Field(None, alias="id")
    status: SubscriberStatusLiteral


class CampaignRequest(BaseModel):
    """Campaign send. ``test_email`` sends a single test copy."""

    model_config = ConfigDict(populate_by_name=True)

    subject: str = Field(min_length=1, max_length=200)
    html: str = Field(min_length=1)
    text: Optional[str] = None
    tag: Optional[str] = None
    test_email: Optional[str] = Field(None, alias="testEmail")
