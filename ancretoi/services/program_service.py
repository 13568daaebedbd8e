"""
Program Service
===============

Catalogue side of programs: admin upsert from the validated creation
payload, metadata/status updates, deletion preview and soft delete, and
the published catalogue.
"""

import logging
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ancretoi.core.errors import ErrorCodes, NotFoundError, ValidationError
from ancretoi.models.program import DayState, Enrollment, Program, ProgramStatus
from ancretoi.schemas.program import Marketing, ProgramCreate, ProgramDayOutline, ProgramUpdate
from ancretoi.services.cache import CacheInvalidator, CacheKeys, CacheManager
from ancretoi.utils.helpers import slugify, utc_now

logger = logging.getLogger(__name__)

NON_NULLABLE_FIELDS = ("title", "status")
# fields shown in the derived marketing keys
PAGE_FIELDS = {"title", "level", "duration_days", "est_minutes_per_day"}
DEFAULT_DURATION_DAYS = 7
DEFAULT_MINUTES_PER_DAY = 20


def extract_asset_id(url: Optional[str]) -> str:
    """YouTube or Vimeo video id of ``url``; empty for other hosts."""
    if not url:
        return ""
    parsed = urlparse(url)
    host = parsed.hostname or ""
    if "youtube.com" in host:
        return (parse_qs(parsed.query).get("v") or [""])[0]
    if host == "youtu.be":
        return parsed.path.lstrip("/")
    if "vimeo.com" in host:
        parts = [p for p in parsed.path.split("/") if p]
        return parts[-1] if parts else ""
    return ""


def duration_badge(marketing: Marketing, duration_days: int, minutes: int) -> str:
    label = (marketing.duration_label or "").strip()
    return label or f"{duration_days} jours • {minutes} min/j"


def marketing_page(m: Marketing, title: str, level: Optional[str], duration_days: int, minutes: int) -> dict:
    """Marketing keys derived from the page payload: hero, card and highlights included."""
    hero_image = (m.hero.hero_image or "").strip() or None
    badge = duration_badge(m, duration_days, minutes)

    highlights = []
    if (m.ideal_if or "").strip():
        highlights.append({"icon": "✅", "title": "Idéal si…", "text": m.ideal_if.strip()})
    highlights.extend({"icon": b.icon or "", "title": b.title, "text": b.text} for b in m.benefits)

    return {
        "hero": {
            "title": m.hero.title or title,
            "subtitle": m.hero.subtitle or "",
            "ctaLabel": "Commencer" if m.hero.cta_href else "",
            "ctaHref": m.hero.cta_href or "",
            "heroImage": hero_image,
        },
        "card": {
            "image": hero_image,
            "tagline": m.duration_label or badge,
            "summary": m.objective or "",
            "badges": [badge, level] if level else [badge],
        },
        "objective": m.objective or "",
        "durationLabel": m.duration_label or "",
        "idealIf": m.ideal_if or "",
        "benefits": [b.model_dump() for b in m.benefits],
        "highlights": highlights,
        "faq": [f.model_dump() for f in m.faq],
        "seo": m.seo.model_dump(exclude_none=True),
    }


def build_marketing(data: ProgramCreate) -> dict:
    """Marketing document stored on the program row."""
    return {
        **marketing_page(data.marketing, data.title, data.level, data.duration_days, data.est_minutes_per_day),
        "curriculum": [{"label": d.title, "summary": ""} for d in data.days],
        "units": build_units(data.days, data.status),
    }


def stored_page(marketing: Optional[dict]) -> Optional[Marketing]:
    """Page payload read back from a stored marketing document, None when incomplete."""
    if not marketing:
        return None
    try:
        return Marketing.model_validate(marketing)
    except PydanticValidationError:
        return None


def build_units(days: list[ProgramDayOutline], program_status: str) -> list[dict]:
    units = []
    for idx, day in enumerate(days, start=1):
        video_url = str(day.video_url)
        units.append({
            "unitIndex": idx,
            "title": day.title,
            "mantra": day.mantra or "",
            "videoUrl": video_url,
            "videoAssetId": extract_asset_id(video_url),
            "contentParagraphs": [day.description] if day.description else [],
            "status": day.status or ("published" if program_status == ProgramStatus.PUBLISHED.value else "draft"),
        })
    return units


def published_units(program: Program) -> int:
    units = (program.marketing or {}).get("units") or []
    return sum(1 for u in units if u.get("status") == "published")


class ProgramService:
    """Service for program catalogue operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find(self, slug: str, include_deleted: bool = False) -> Optional[Program]:
        stmt = select(Program).where(Program.slug == slugify(slug))
        if not include_deleted:
            stmt = stmt.where(Program.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, slug: str) -> Program:
        program = await self.find(slug)
        if program is None:
            raise NotFoundError(code=ErrorCodes.PROGRAM_NOT_FOUND, message="Programme introuvable.")
        return program

    async def list_programs(self) -> list[dict]:
        result = await self.db.execute(
            select(Program).where(Program.deleted_at.is_(None)).order_by(Program.updated_at.desc())
        )
        return [p.to_api_dict() for p in result.scalars().all()]

    async def list_published(self) -> list[dict]:
        """Published catalogue, cached for 15 minutes."""
        cached = await CacheManager.get(CacheKeys.programs_published())
        if cached is not None:
            return cached

        result = await self.db.execute(
            select(Program)
            .where(Program.deleted_at.is_(None), Program.status == ProgramStatus.PUBLISHED.value)
            .order_by(Program.title)
        )
        rows = [p.to_api_dict() for p in result.scalars().all()]
        await CacheManager.set(CacheKeys.programs_published(), rows, ttl=CacheManager.TTL_MEDIUM)
        return rows

    async def get_published(self, slug: str) -> dict:
        """One published program, cached for 15 minutes."""
        program_slug = slugify(slug)
        cached = await CacheManager.get(CacheKeys.program(program_slug))
        if cached is not None:
            return cached

        program = await self.find(program_slug)
        if program is None or program.status != ProgramStatus.PUBLISHED.value:
            raise NotFoundError(code=ErrorCodes.PROGRAM_NOT_FOUND, message="Programme introuvable.")
        row = program.to_api_dict()
        await CacheManager.set(CacheKeys.program(program_slug), row, ttl=CacheManager.TTL_MEDIUM)
        return row

    async def upsert(self, data: ProgramCreate, path_slug: Optional[str] = None) -> dict:
        """
        Create or replace a program keyed on its slug.

        Args:
            data: Validated payload
            path_slug: Slug from the URL on updates; must match the payload

        Returns:
            ``{"programSlug", "units"}``
        """
        program_slug = slugify(data.slug)
        if not program_slug:
            raise ValidationError(message="Slug invalide.", field="slug")
        if path_slug is not None and slugify(path_slug) != program_slug:
            raise ValidationError(message="Le slug ne correspond pas.", field="slug")

        program = await self.find(program_slug, include_deleted=True)
        if program is None:
            program = Program(slug=program_slug)
            self.db.add(program)

        program.title = data.title
        program.status = data.status
        program.level = data.level
        program.duration_days = data.duration_days
        program.est_minutes_per_day = data.est_minutes_per_day
        program.price_cents = data.price_cents
        program.currency = "EUR"
        if data.cover_url is not None:
            program.cover_url = data.cover_url
        program.units_count = len(data.days)
        program.marketing = build_marketing(data)
        program.deleted_at = None

        await self.db.flush()
        await CacheInvalidator.on_program_change(program_slug)
        logger.info("Upserted program %s (%d units)", program_slug, program.units_count)
        return {"programSlug": program_slug, "units": program.units_count}

    async def update(self, slug: str, data: ProgramUpdate) -> Program:
        """
        Partial update. Publishing needs at least one published unit.

        Explicit nulls are ignored for ``title`` and ``status``. The derived
        marketing keys (hero, card, highlights) are rebuilt whenever the page
        or a field they show changes.
        """
        program = await self.get(slug)
        fields = {
            name: value
            for name, value in data.model_dump(exclude_unset=True).items()
            if value is not None or name not in NON_NULLABLE_FIELDS
        }

        publishing = fields.get("status") == ProgramStatus.PUBLISHED.value and program.status != fields["status"]
        if publishing and (program.marketing or {}).get("units") and not published_units(program):
            raise ValidationError(
                message="Aucune unité publiée pour ce programme.",
                field="status",
                code=ErrorCodes.PROGRAM_NO_PUBLISHED_UNITS,
            )

        for name in ("title", "status", "level", "duration_days", "est_minutes_per_day", "price_cents", "cover_url"):
            if name in fields:
                setattr(program, name, fields[name])

        page = data.marketing
        if page is None and fields.keys() & PAGE_FIELDS:
            page = stored_page(program.marketing)
        if page is not None:
            marketing: dict[str, Any] = dict(program.marketing or {})
            marketing.update(marketing_page(
                page,
                program.title,
                program.level,
                program.duration_days or DEFAULT_DURATION_DAYS,
                program.est_minutes_per_day or DEFAULT_MINUTES_PER_DAY,
            ))
            program.marketing = marketing

        await self.db.flush()
        await CacheInvalidator.on_program_change(program.slug)
        return program

    async def delete_preview(self, slug: str) -> dict:
        """What deleting would affect."""
        program = await self.get(slug)
        enrollments = await self.db.execute(
            select(func.count()).select_from(Enrollment).where(Enrollment.program_slug == program.slug)
        )
        states = await self.db.execute(
            select(func.count()).select_from(DayState).where(DayState.program_slug == program.slug)
        )
        return {
            "program": program.to_api_dict(),
            "units": program.units_count or 0,
            "enrollments": int(enrollments.scalar_one() or 0),
            "states": int(states.scalar_one() or 0),
        }

    async def soft_delete(self, slug: str) -> dict:
        preview = await self.delete_preview(slug)
        program = await self.get(slug)
        program.deleted_at = utc_now()
        await self.db.flush()
        await CacheInvalidator.on_program_change(program.slug)
        logger.info("Archived program %s", program.slug)
        return {"deleted": 1, **{k: v for k, v in preview.items() if k != "program"}}
