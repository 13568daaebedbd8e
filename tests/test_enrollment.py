"""
Enrollment Tests
================

Tests for learner progress including:
- Progress arithmetic and slider averages
- The last published unit resolution
- completeDay requirements and enrollment advancement
- Intro engagement and the activity streak
- Notes export formats
"""

import csv
import io
import json
from datetime import datetime, timedelta, timezone
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ancretoi.core.errors import ErrorCodes, ForbiddenError, ValidationError
from ancretoi.models.program import DayState, Enrollment, Program
from ancretoi.services.enrollment_service import (
    EnrollmentService,
    activity_series,
    any_text_answer,
    clamp_day,
    clamp_window,
    export_csv,
    progress_numbers,
    slider_averages,
)

USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
NOW = datetime(2026, 3, 15, 18, 0, tzinfo=timezone.utc)


def _enrollment(current_day: int = 1, status: str = "active") -> Enrollment:
    return Enrollment(
        user_id=USER_ID,
        program_slug="reset-7",
        status=status,
        current_day=current_day,
    )


def _state(day: int, practiced: bool = True, data: dict | None = None) -> DayState:
    return DayState(
        user_id=USER_ID,
        program_slug="reset-7",
        day=day,
        data=data if data is not None else {},
        practiced=practiced,
        mantra3x=False,
        completed=False,
    )


def _result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestHelpers:

    def test_clamp_day(self):
        assert clamp_day(None, 7) == 1
        assert clamp_day(0, 7) == 1
        assert clamp_day(12, 7) == 7

    def test_any_text_answer(self):
        assert any_text_answer({"a": "  ", "b": 3}) is False
        assert any_text_answer({"a": "ok"}) is True
        assert any_text_answer(None) is False

    def test_slider_averages(self):
        rows = [{"energie": 4, "focus": 6}, {"energie": 7}, None]
        averages = slider_averages(rows)
        assert averages["energie"] == 5.5
        assert averages["focus"] == 6.0
        assert averages["paix"] is None

    def test_progress_numbers(self):
        assert progress_numbers("active", 3, 7) == {"total": 7, "currentDay": 3, "done": 2, "percent": 29}
        assert progress_numbers("completed", 7, 7)["percent"] == 100
        assert progress_numbers("active", None, 0)["percent"] == 0


# ---------------------------------------------------------------------------
# Last published unit
# ---------------------------------------------------------------------------

class TestLastPublishedUnit:

    @pytest.mark.asyncio
    async def test_published_units_win(self):
        program = Program(
            slug="reset-7",
            title="Reset 7",
            units_count=7,
            marketing={"units": [
                {"unitIndex": 1, "status": "published"},
                {"unitIndex": 2, "status": "published"},
                {"unitIndex": 3, "status": "draft"},
            ]},
        )
        db = AsyncMock()
        db.execute.return_value = _result(program)
        assert await EnrollmentService(db).last_published_unit("reset-7") == 2

    @pytest.mark.asyncio
    async def test_units_count_without_unit_list(self):
        program = Program(slug="reset-7", title="Reset 7", units_count=5, marketing={})
        db = AsyncMock()
        db.execute.return_value = _result(program)
        assert await EnrollmentService(db).last_published_unit("reset-7") == 5

    @pytest.mark.asyncio
    async def test_falls_back_to_curriculum(self):
        db = AsyncMock()
        db.execute.return_value = _result(None)
        assert await EnrollmentService(db).last_published_unit("reset-7") == 7
        assert await EnrollmentService(db).last_published_unit("inconnu") == 0


# ---------------------------------------------------------------------------
# Progress actions
# ---------------------------------------------------------------------------

def _service(enrollment: Enrollment, state, last: int = 7) -> EnrollmentService:
    service = EnrollmentService(AsyncMock())
    service.last_published_unit = AsyncMock(return_value=last)
    service.get_enrollment = AsyncMock(return_value=enrollment)
    service.get_day_state = AsyncMock(return_value=state)
    return service


class TestCompleteDay:

    @pytest.mark.asyncio
    async def test_advances_to_next_day(self):
        enrollment = _enrollment(current_day=1)
        state = _state(1, data={"ex.journal.constat": "Je respire mieux"})
        result = await _service(enrollment, state).complete_day(USER_ID, "reset-7", 1)

        assert result == {"currentDay": 2, "lastPublished": 7, "status": "active"}
        assert state.completed is True
        assert enrollment.current_day == 2

    @pytest.mark.asyncio
    async def test_requires_practice_and_text(self):
        enrollment = _enrollment(current_day=1)
        with pytest.raises(ValidationError) as exc:
            await _service(enrollment, _state(1, practiced=True, data={})).complete_day(USER_ID, "reset-7", 1)

        assert exc.value.code == ErrorCodes.MEMBER_INCOMPLETE_DAY
        assert exc.value.extra["requirements"] == {"practiced": True, "anyText": False}
        assert enrollment.current_day == 1

    @pytest.mark.asyncio
    async def test_missing_state_is_incomplete(self):
        with pytest.raises(ValidationError) as exc:
            await _service(_enrollment(), None).complete_day(USER_ID, "reset-7", 1)
        assert exc.value.extra["requirements"]["practiced"] is False

    @pytest.mark.asyncio
    async def test_last_day_completes_enrollment(self):
        enrollment = _enrollment(current_day=7)
        state = _state(7, data={"ex.review.suite": "Continuer"})
        result = await _service(enrollment, state).complete_day(USER_ID, "reset-7", None)

        assert result["status"] == "completed"
        assert result["currentDay"] == 7
        assert enrollment.completed_at is not None

    @pytest.mark.asyncio
    async def test_earlier_day_does_not_move_back(self):
        enrollment = _enrollment(current_day=5)
        state = _state(2, data={"ex.journal.moment": "Le midi"})
        result = await _service(enrollment, state).complete_day(USER_ID, "reset-7", 2)

        assert result["currentDay"] == 5
        assert enrollment.current_day == 5

    @pytest.mark.asyncio
    async def test_no_published_units(self):
        with pytest.raises(ValidationError) as exc:
            await _service(_enrollment(), None, last=0).complete_day(USER_ID, "reset-7", 1)
        assert exc.value.code == ErrorCodes.PROGRAM_NO_PUBLISHED_UNITS


class TestSetDay:

    @pytest.mark.asyncio
    async def test_day_is_clamped_and_last_completes(self):
        enrollment = _enrollment(current_day=2)
        result = await _service(enrollment, None).set_day(USER_ID, "Reset-7", 40)

        assert result == {"currentDay": 7, "lastPublished": 7, "status": "completed"}
        assert enrollment.status == "completed"

    @pytest.mark.asyncio
    async def test_moving_back_reactivates(self):
        enrollment = _enrollment(current_day=7, status="completed")
        result = await _service(enrollment, None).set_day(USER_ID, "reset-7", 3)

        assert result["status"] == "active"
        assert enrollment.completed_at is None

    @pytest.mark.asyncio
    async def test_slug_is_normalized(self):
        service = _service(_enrollment(), None)
        await service.set_day(USER_ID, "  Reset_7 ", 2)

        service.last_published_unit.assert_awaited_once_with("reset-7")
        service.get_enrollment.assert_awaited_once_with(USER_ID, "reset-7")


class TestIntro:

    @pytest.mark.asyncio
    async def test_engage_unlocks_day_one(self):
        enrollment = _enrollment(current_day=4, status="completed")
        service = _service(enrollment, None)

        result = await service.set_intro(USER_ID, "Reset_7", True)

        assert result == {"engaged": True, "lastPublished": 7, "reset": False}
        assert enrollment.intro_engaged is True
        assert enrollment.current_day == 1
        assert enrollment.status == "active"
        assert enrollment.started_at is not None
        service.db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disengage_resets_everything(self):
        enrollment = _enrollment(current_day=5, status="completed")
        enrollment.started_at = datetime(2026, 3, 1, tzinfo=timezone.utc)
        enrollment.completed_at = datetime(2026, 3, 8, tzinfo=timezone.utc)
        service = _service(enrollment, None)

        result = await service.set_intro(USER_ID, "reset-7", False)

        assert result == {"engaged": False, "lastPublished": 7, "reset": True}
        assert enrollment.intro_engaged is False
        assert enrollment.current_day == 1
        assert enrollment.status == "active"
        assert enrollment.started_at is None
        assert enrollment.completed_at is None
        statement = str(service.db.execute.await_args.args[0])
        assert statement.startswith("DELETE FROM day_states")

    @pytest.mark.asyncio
    async def test_missing_enrollment_is_created(self):
        service = _service(None, None)
        service.db.add = MagicMock()

        await service.set_intro(USER_ID, "reset-7", True)

        created = service.db.add.call_args.args[0]
        assert created.program_slug == "reset-7"
        assert created.intro_engaged is True


class TestStreak:

    def test_clamp_window(self):
        assert clamp_window(None) == 180
        assert clamp_window(3) == 14
        assert clamp_window(1000) == 365
        assert clamp_window(30) == 30

    def test_trailing_active_days(self):
        moments = [
            datetime(2026, 3, 14, 22, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 15, 7, 30, tzinfo=timezone.utc),
            datetime(2026, 3, 12, 9, 0, tzinfo=timezone.utc),
            None,
        ]
        series = activity_series(moments, 14, NOW)

        assert series["days"] == 14
        assert len(series["rows"]) == 14
        assert series["rows"][0] == {"dateISO": "2026-03-02", "active": False}
        assert series["rows"][-1] == {"dateISO": "2026-03-15", "active": True}
        assert series["streak"] == 2
        assert series["totalActive"] == 3

    def test_outside_window_ignored(self):
        moments = [
            datetime(2026, 1, 1, tzinfo=timezone.utc),
            datetime(2026, 3, 16, tzinfo=timezone.utc),
        ]
        series = activity_series(moments, 14, NOW)

        assert series["totalActive"] == 0
        assert series["streak"] == 0

    def test_local_offsets_count_in_utc(self):
        paris = timezone(timedelta(hours=1))
        series = activity_series([datetime(2026, 3, 15, 0, 30, tzinfo=paris)], 14, NOW)

        assert series["rows"][-2] == {"dateISO": "2026-03-14", "active": True}
        assert series["streak"] == 0

    @pytest.mark.asyncio
    async def test_streak_reads_enrollment_dates(self):
        rows = MagicMock()
        rows.all.return_value = [(NOW, NOW - timedelta(days=1), None)]
        db = AsyncMock()
        db.execute.return_value = rows

        with patch("ancretoi.services.enrollment_service.utc_now", return_value=NOW):
            series = await EnrollmentService(db).streak(USER_ID, days=20)

        assert series["days"] == 20
        assert series["streak"] == 2

class TestEnrollAndSummary:

    @pytest.mark.asyncio
    async def test_enroll_limit_reached(self, user_factory):
        user = user_factory()
        user.limits = {"max_concurrent_programs": 1, "features": []}

        db = AsyncMock()
        count = MagicMock()
        count.scalar_one.return_value = 1
        db.execute.return_value = count

        service = EnrollmentService(db)
        service.last_published_unit = AsyncMock(return_value=7)
        service.get_enrollment = AsyncMock(return_value=None)

        with pytest.raises(ForbiddenError) as exc:
            await service.enroll(user, "reset-7")
        assert exc.value.code == ErrorCodes.MEMBER_LIMIT_REACHED

    @pytest.mark.asyncio
    async def test_new_enrollment_uses_normalized_slug(self, user_factory):
        user = user_factory()
        db = AsyncMock()
        db.add = MagicMock()
        count = MagicMock()
        count.scalar_one.return_value = 0
        db.execute.return_value = count

        service = EnrollmentService(db)
        service.last_published_unit = AsyncMock(return_value=7)
        service.get_enrollment = AsyncMock(return_value=None)

        enrollment = await service.enroll(user, " Reset 7 ")

        assert enrollment.program_slug == "reset-7"
        service.get_enrollment.assert_awaited_once_with(user.user_id, "reset-7")

    @pytest.mark.asyncio
    async def test_active_enrollment_is_returned_as_is(self, user_factory):
        existing = _enrollment(current_day=3)
        service = EnrollmentService(AsyncMock())
        service.last_published_unit = AsyncMock(return_value=7)
        service.get_enrollment = AsyncMock(return_value=existing)

        assert await service.enroll(user_factory(), "reset-7") is existing

    @pytest.mark.asyncio
    async def test_summary_requires_enrollment(self):
        service = EnrollmentService(AsyncMock())
        service.get_enrollment = AsyncMock(return_value=None)

        with pytest.raises(ForbiddenError) as exc:
            await service.summary(USER_ID, "reset-7")
        assert exc.value.code == ErrorCodes.MEMBER_NOT_ENROLLED


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

class TestExport:

    def test_csv_rows(self):
        states = [
            _state(1, data={"ex.journal.constat": 'Il a dit "stop"', "daily.energie": 6}),
            _state(2, practiced=False),
        ]
        rows = list(csv.reader(io.StringIO(export_csv(states))))

        assert rows[0] == ["programSlug", "day", "practiced", "completed", "field", "value", "updatedAt"]
        assert rows[1][4:6] == ["ex.journal.constat", 'Il a dit "stop"']
        assert rows[2][4:6] == ["daily.energie", "6"]
        # day without answers still gets a row
        assert rows[3][:2] == ["reset-7", "2"]

    @pytest.mark.asyncio
    async def test_unsupported_format(self):
        with pytest.raises(ValidationError) as exc:
            await EnrollmentService(AsyncMock()).export_notes(USER_ID, fmt="pdf")
        assert exc.value.code == ErrorCodes.MEMBER_UNSUPPORTED_FORMAT

    @pytest.mark.asyncio
    async def test_json_export_filters_by_text(self):
        service = EnrollmentService(AsyncMock())
        states = [
            _state(1, data={"ex.journal.constat": "Calme retrouvé"}),
            _state(2, data={"ex.journal.moment": "Réunion tendue"}),
        ]
        with patch.object(service, "list_states", AsyncMock(return_value=states)):
            body, media_type, filename = await service.export_notes(USER_ID, "reset-7", q="CALME")

        payload = json.loads(body)
        assert media_type.startswith("application/json")
        assert filename == "notes-reset-7.json"
        assert [d["day"] for d in payload["days"]] == [1]
        assert payload["q"] == "calme"
