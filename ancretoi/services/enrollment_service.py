"""
Enrollment Service
==================

Authoritative learner progress: enrollments, per-day state upserts, the
``setDay``/``completeDay`` progress actions, intro engagement, the
activity streak, progress summary and the notes export.
"""

import csv
import io
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional
import uuid

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ancretoi.core.errors import ErrorCodes, ForbiddenError, ValidationError
from ancretoi.curriculum import get_catalog, normalize_program_slug
from ancretoi.curriculum.definition import has_text_questions
from ancretoi.models.program import DayState, Enrollment, EnrollmentStatus, Program
from ancretoi.models.user import User
from ancretoi.schemas.member import DayStatePatch
from ancretoi.utils.helpers import js_round, utc_now

logger = logging.getLogger(__name__)

SLIDER_KEYS = ("energie", "focus", "paix", "estime")
EXPORT_FORMATS = ("json", "csv")
STREAK_DEFAULT_DAYS = 180
STREAK_MIN_DAYS = 14
STREAK_MAX_DAYS = 365


# =============================================================================
# Pure helpers
# =============================================================================

def clamp_day(day: Optional[int], last: int) -> int:
    return max(1, min(last, day if day is not None else 1))


def any_text_answer(data: Optional[dict]) -> bool:
    """At least one non-blank string answer."""
    return any(isinstance(v, str) and v.strip() for v in (data or {}).values())


def slider_averages(rows: list[Optional[dict]]) -> dict[str, Optional[float]]:
    """Mean of each slider key across rows, one decimal; None when no value."""
    out: dict[str, Optional[float]] = {}
    for key in SLIDER_KEYS:
        values = [r[key] for r in rows if r and isinstance(r.get(key), (int, float))]
        out[key] = round(sum(values) / len(values), 1) if values else None
    return out


def progress_numbers(status: str, current_day: Optional[int], total: int) -> dict:
    """
    Days done and completion percentage.

    A completed enrollment counts every unit; otherwise the days before the
    current one are done.
    """
    current = max(1, min(total or 1, current_day or 1))
    done = total if status == EnrollmentStatus.COMPLETED.value else max(0, current - 1)
    percent = js_round(done / total * 100) if total else 0
    return {"total": total, "currentDay": current, "done": done, "percent": percent}


def export_csv(states: list[DayState]) -> str:
    """One row per stored answer; days without answers get a single empty row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["programSlug", "day", "practiced", "completed", "field", "value", "updatedAt"])
    for s in states:
        base = [s.program_slug, s.day, bool(s.practiced), bool(s.completed)]
        updated = s.to_api_dict()["updatedAt"] or ""
        entries = list((s.data or {}).items()) or [("", "")]
        for key, value in entries:
            text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
            writer.writerow([*base, key, text, updated])
    return buffer.getvalue()


def clamp_window(days: Optional[int]) -> int:
    """Streak window length, ``STREAK_DEFAULT_DAYS`` when missing."""
    if days is None:
        return STREAK_DEFAULT_DAYS
    return max(STREAK_MIN_DAYS, min(STREAK_MAX_DAYS, days))


def activity_series(moments: Iterable[Optional[datetime]], days: int, now: datetime) -> dict:
    """
    Daily activity over the ``days`` UTC days ending today.

    Rows run oldest to newest; ``streak`` counts the active days at the end.
    """
    today = now.astimezone(timezone.utc).date()
    first = today - timedelta(days=days - 1)
    active = {
        m.astimezone(timezone.utc).date()
        for m in moments
        if m is not None and m <= now
    }
    rows = []
    for offset in range(days):
        day = first + timedelta(days=offset)
        rows.append({"dateISO": day.isoformat(), "active": day in active})

    streak = 0
    for row in reversed(rows):
        if not row["active"]:
            break
        streak += 1

    return {
        "days": days,
        "rows": rows,
        "streak": streak,
        "totalActive": sum(1 for r in rows if r["active"]),
    }


# =============================================================================
# Service
# =============================================================================

class EnrollmentService:
    """Service for learner progress."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def last_published_unit(self, program_slug: str) -> int:
        """
        Highest day a learner may reach.

        Published units of the program row first, then its unit count, then
        the packaged curriculum.
        """
        result = await self.db.execute(
            select(Program).where(Program.slug == program_slug, Program.deleted_at.is_(None))
        )
        program = result.scalar_one_or_none()
        if program is not None:
            units = (program.marketing or {}).get("units") or []
            published = [u.get("unitIndex", 0) for u in units if u.get("status") == "published"]
            if published:
                return max(published)
            if not units and program.units_count:
                return program.units_count

        definition = get_catalog().get(program_slug)
        return definition.max_day if definition is not None else 0

    async def _units_or_fail(self, program_slug: str) -> int:
        last = await self.last_published_unit(program_slug)
        if last == 0:
            raise ValidationError(
                message="Aucune unité publiée pour ce programme.",
                code=ErrorCodes.PROGRAM_NO_PUBLISHED_UNITS,
            )
        return last

    async def get_enrollment(self, user_id: uuid.UUID, program_slug: str) -> Optional[Enrollment]:
        result = await self.db.execute(
            select(Enrollment).where(
                Enrollment.user_id == user_id,
                Enrollment.program_slug == program_slug,
            )
        )
        return result.scalar_one_or_none()

    async def get_day_state(self, user_id: uuid.UUID, program_slug: str, day: int) -> Optional[DayState]:
        result = await self.db.execute(
            select(DayState).where(
                DayState.user_id == user_id,
                DayState.program_slug == program_slug,
                DayState.day == day,
            )
        )
        return result.scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Enrollment
    # -------------------------------------------------------------------------

    async def enroll(self, user: User, program_slug: str) -> Enrollment:
        """
        Create or reactivate an enrollment.

        Raises:
            ForbiddenError: the user already has ``max_concurrent_programs``
                other active enrollments
        """
        program_slug = normalize_program_slug(program_slug)
        await self._units_or_fail(program_slug)

        enrollment = await self.get_enrollment(user.user_id, program_slug)
        if enrollment is not None and enrollment.status == EnrollmentStatus.ACTIVE.value:
            return enrollment

        limit = user.max_concurrent_programs
        if limit is not None:
            result = await self.db.execute(
                select(func.count()).select_from(Enrollment).where(
                    Enrollment.user_id == user.user_id,
                    Enrollment.status == EnrollmentStatus.ACTIVE.value,
                )
            )
            active = int(result.scalar_one() or 0)
            if active >= limit:
                raise ForbiddenError(
                    code=ErrorCodes.MEMBER_LIMIT_REACHED,
                    message="Nombre maximal de programmes en cours atteint.",
                    limit=limit,
                )

        if enrollment is None:
            enrollment = Enrollment(
                user_id=user.user_id,
                program_slug=program_slug,
                status=EnrollmentStatus.ACTIVE.value,
                current_day=1,
                started_at=utc_now(),
            )
            self.db.add(enrollment)
        else:
            enrollment.status = EnrollmentStatus.ACTIVE.value
            enrollment.completed_at = None

        await self.db.flush()
        logger.info("User %s enrolled in %s", user.user_id, program_slug)
        return enrollment

    # -------------------------------------------------------------------------
    # Day state
    # -------------------------------------------------------------------------

    async def upsert_state(
        self,
        user_id: uuid.UUID,
        program_slug: str,
        day: int,
        patch: DayStatePatch,
    ) -> DayState:
        """Apply only the provided parts of ``patch`` to the day's record."""
        program_slug = normalize_program_slug(program_slug)
        state = await self.get_day_state(user_id, program_slug, day)
        if state is None:
            state = DayState(user_id=user_id, program_slug=program_slug, day=day, data={})
            self.db.add(state)

        if patch.data is not None:
            state.data = dict(patch.data)
        if patch.sliders is not None:
            state.sliders = patch.sliders.model_dump(exclude_none=True)
        if patch.checkout is not None:
            state.checkout = patch.checkout.model_dump(exclude_none=True)
        for flag in ("practiced", "mantra3x", "completed"):
            value = getattr(patch, flag)
            if value is not None:
                setattr(state, flag, value)

        await self.db.flush()
        return state

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    async def _ensure_enrollment(self, user_id: uuid.UUID, program_slug: str) -> Enrollment:
        enrollment = await self.get_enrollment(user_id, program_slug)
        if enrollment is None:
            enrollment = Enrollment(
                user_id=user_id,
                program_slug=program_slug,
                status=EnrollmentStatus.ACTIVE.value,
                current_day=1,
                started_at=utc_now(),
            )
            self.db.add(enrollment)
            await self.db.flush()
        return enrollment

    def _day_has_text_questions(self, program_slug: str, day: int) -> bool:
        definition = get_catalog().get(program_slug)
        if definition is None:
            return False
        day_def = definition.get_day(day)
        return day_def is not None and has_text_questions(day_def)

    async def set_day(self, user_id: uuid.UUID, program_slug: str, day: Optional[int]) -> dict:
        """Move the enrollment to ``day`` (clamped); reaching the last unit completes it."""
        program_slug = normalize_program_slug(program_slug)
        last = await self._units_or_fail(program_slug)
        enrollment = await self._ensure_enrollment(user_id, program_slug)

        target = clamp_day(day, last)
        status = EnrollmentStatus.COMPLETED.value if target >= last else EnrollmentStatus.ACTIVE.value
        enrollment.current_day = target
        enrollment.status = status
        enrollment.completed_at = utc_now() if status == EnrollmentStatus.COMPLETED.value else None
        await self.db.flush()
        return {"currentDay": target, "lastPublished": last, "status": status}

    async def complete_day(self, user_id: uuid.UUID, program_slug: str, day: Optional[int]) -> dict:
        """
        Mark a day completed and advance the enrollment.

        The day must have been practiced and, when it asks free-text
        questions, carry at least one non-empty text answer. The enrollment
        only moves forward when the completed day is at or past the current one.

        Raises:
            ValidationError: ``MEMBER_INCOMPLETE_DAY`` with the unmet requirements
        """
        program_slug = normalize_program_slug(program_slug)
        last = await self._units_or_fail(program_slug)
        enrollment = await self._ensure_enrollment(user_id, program_slug)

        current = clamp_day(enrollment.current_day, last)
        done_day = clamp_day(day if day is not None else current, last)

        state = await self.get_day_state(user_id, program_slug, done_day)
        practiced = bool(state is not None and state.practiced)
        any_text = True
        if self._day_has_text_questions(program_slug, done_day):
            any_text = any_text_answer(state.data if state is not None else None)

        if not practiced or not any_text:
            raise ValidationError(
                message="Journée incomplète.",
                code=ErrorCodes.MEMBER_INCOMPLETE_DAY,
                requirements={"practiced": practiced, "anyText": any_text},
            )

        if state is not None:
            state.completed = True

        if done_day >= current:
            if done_day >= last:
                next_day, status = last, EnrollmentStatus.COMPLETED.value
                enrollment.completed_at = utc_now()
            else:
                next_day, status = done_day + 1, EnrollmentStatus.ACTIVE.value
            enrollment.current_day = next_day
            enrollment.status = status
            await self.db.flush()
            return {"currentDay": next_day, "lastPublished": last, "status": status}

        await self.db.flush()
        return {"currentDay": current, "lastPublished": last, "status": enrollment.status}

    # -------------------------------------------------------------------------
    # Intro and activity
    # -------------------------------------------------------------------------

    async def set_intro(self, user_id: uuid.UUID, program_slug: str, engaged: bool) -> dict:
        """
        Engage with a program from its intro page, or step back out.

        Engaging unlocks day 1 without advancing. Disengaging is a full reset:
        every day state of the program is deleted and the enrollment goes
        back to day 1 with no start or completion date.
        """
        program_slug = normalize_program_slug(program_slug)
        last = await self.last_published_unit(program_slug)
        enrollment = await self._ensure_enrollment(user_id, program_slug)

        enrollment.intro_engaged = engaged
        enrollment.current_day = 1
        enrollment.status = EnrollmentStatus.ACTIVE.value
        if engaged:
            if enrollment.started_at is None:
                enrollment.started_at = utc_now()
        else:
            await self.db.execute(
                delete(DayState).where(
                    DayState.user_id == user_id,
                    DayState.program_slug == program_slug,
                )
            )
            enrollment.started_at = None
            enrollment.completed_at = None
            logger.info("User %s reset %s from the intro", user_id, program_slug)

        await self.db.flush()
        return {"engaged": engaged, "lastPublished": last, "reset": not engaged}

    async def streak(self, user_id: uuid.UUID, days: Optional[int] = None) -> dict:
        """Active days of the caller, from enrollment start, update and completion dates."""
        result = await self.db.execute(
            select(Enrollment.updated_at, Enrollment.started_at, Enrollment.completed_at).where(
                Enrollment.user_id == user_id,
            )
        )
        moments = [moment for row in result.all() for moment in row]
        return activity_series(moments, clamp_window(days), utc_now())

    # -------------------------------------------------------------------------
    # Summary and export
    # -------------------------------------------------------------------------

    async def list_states(
        self,
        user_id: uuid.UUID,
        program_slug: Optional[str] = None,
    ) -> list[DayState]:
        stmt = select(DayState).where(DayState.user_id == user_id)
        if program_slug:
            stmt = stmt.where(DayState.program_slug == normalize_program_slug(program_slug))
        stmt = stmt.order_by(DayState.program_slug, DayState.day)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def summary(self, user_id: uuid.UUID, program_slug: str) -> dict:
        """Progress of one enrollment with day-state aggregates."""
        program_slug = normalize_program_slug(program_slug)
        enrollment = await self.get_enrollment(user_id, program_slug)
        if enrollment is None:
            raise ForbiddenError(code=ErrorCodes.MEMBER_NOT_ENROLLED, message="Pas inscrit à ce programme.")

        total = await self.last_published_unit(program_slug)
        result = await self.db.execute(select(Program).where(Program.slug == program_slug))
        program = result.scalar_one_or_none()
        marketing = (program.marketing or {}) if program is not None else {}
        hero = marketing.get("hero") or {}

        states = await self.list_states(user_id, program_slug)
        out: dict[str, Any] = {
            "programSlug": program_slug,
            "title": hero.get("title") or (program.title if program is not None else program_slug),
            "subtitle": hero.get("subtitle") or None,
            "coverUrl": hero.get("heroImage") or (program.cover_url if program is not None else None),
            "level": program.level if program is not None else None,
            "durationDays": program.duration_days if program is not None else None,
            "status": enrollment.status,
            **progress_numbers(enrollment.status, enrollment.current_day, total),
            "daysCompleted": sum(1 for s in states if s.completed),
            "daysPracticed": sum(1 for s in states if s.practiced),
            "averages": {
                "before": slider_averages([s.sliders for s in states]),
                "after": slider_averages([s.checkout for s in states]),
            },
        }
        return out

    async def export_notes(
        self,
        user_id: uuid.UUID,
        program_slug: Optional[str] = None,
        q: str = "",
        fmt: str = "json",
    ) -> tuple[str, str, str]:
        """
        Export the caller's day states.

        Returns:
            ``(body, media_type, filename)``

        Raises:
            ValidationError: unsupported format
        """
        fmt = (fmt or "json").lower()
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(
                message="Format non supporté (json ou csv).",
                field="format",
                code=ErrorCodes.MEMBER_UNSUPPORTED_FORMAT,
            )

        program_slug = normalize_program_slug(program_slug) if program_slug else None
        states = await self.list_states(user_id, program_slug)
        needle = q.strip().lower()
        if needle:
            states = [
                s for s in states
                if any(isinstance(v, str) and needle in v.lower() for v in (s.data or {}).values())
            ]

        label = program_slug or "all"
        if fmt == "csv":
            return export_csv(states), "text/csv; charset=utf-8", f"notes-{label}.csv"

        payload = {
            "programSlug": label,
            "userId": str(user_id),
            "q": needle or None,
            "days": [
                {
                    "programSlug": s.program_slug,
                    "day": s.day,
                    "data": s.data or {},
                    "practiced": bool(s.practiced),
                    "completed": bool(s.completed),
                    "updatedAt": s.to_api_dict()["updatedAt"],
                }
                for s in states
            ],
        }
        body = json.dumps(payload, ensure_ascii=False, indent=2)
        return body, "application/json; charset=utf-8", f"notes-{label}.json"
