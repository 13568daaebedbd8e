"""
Program Schemas
===============

Admin payloads for creating and updating programs.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

ProgramStatusLiteral = Literal["draft", "preflight", "published"]
ProgramLevelLiteral = Literal["Basique", "Cible", "Premium"]


class _Camel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Benefit(_Camel):
    icon: Optional[str] = None
    title: str = Field(min_length=1)
    text: str = Field(min_length=1)


class FaqItem(_Camel):
    q: str = Field(min_length=1)
    a: str = Field(min_length=1)


class Hero(_Camel):
    title: str = Field(min_length=1)
    subtitle: Optional[str] = None
    cta_href: Optional[str] = Field(None, alias="ctaHref")
    hero_image: Optional[str] = Field(None, alias="heroImage")


class Seo(_Camel):
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class Marketing(_Camel):
    hero: Hero
    objective: Optional[str] = None
    duration_label: Optional[str] = Field(None, alias="durationLabel")
    ideal_if: Optional[str] = Field(None, alias="idealIf")
    benefits: list[Benefit] = Field(default_factory=list, max_length=3)
    faq: list[FaqItem] = Field(default_factory=list)
    seo: Seo = Field(default_factory=Seo)


class ProgramDayOutline(_Camel):
    title: str = Field(min_length=1)
    video_url: HttpUrl = Field(alias="videoUrl")
    mantra: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    status: Literal["draft", "published"] = "draft"


class ProgramCreate(_Camel):
    """Create or upsert a program (matched on slug)."""

    slug: str = Field(min_length=1)
    title: str = Field(min_length=1)
    status: ProgramStatusLiteral = "draft"
    level: ProgramLevelLiteral = "Basique"
    duration_days: int = Field(7, ge=1, le=365, alias="durationDays")
    est_minutes_per_day: int = Field(20, ge=1, le=180, alias="estMinutesPerDay")
    price_cents: Optional[int] = Field(None, ge=0, alias="priceCents")
    cover_url: Optional[str] = Field(None, alias="coverUrl")
    marketing: Marketing
    days: list[ProgramDayOutline] = Field(min_length=1)


class ProgramUpdate(_Camel):
    """Partial update of catalogue fields."""

    title: Optional[str] = Field(None, min_length=1)
    status: Optional[ProgramStatusLiteral] = None
    level: Optional[ProgramLevelLiteral] = None
    duration_days: Optional[int] = Field(None, ge=1, le=365, alias="durationDays")
    est_minutes_per_day: Optional[int] = Field(None, ge=1, le=180, alias="estMinutesPerDay")
    price_cents: Optional[int] = Field(None, ge=0, alias="priceCents")
    cover_url: Optional[str] = Field(None, alias="coverUrl")
    marketing: Optional[Marketing] = None
