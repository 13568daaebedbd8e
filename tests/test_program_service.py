"""
Program Service Tests
=====================

Tests for the program catalogue including:
- Upsert from the creation payload
- Partial updates and the derived marketing keys
- Deletion preview and soft delete
- The cached published detail and the public read limit
"""

from datetime import datetime, timezone
import json
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ancretoi.core.errors import ErrorCodes, NotFoundError, ValidationError
from ancretoi.core.rate_limit import RateLimiter
from ancretoi.models.program import Program
from ancretoi.schemas.program import ProgramCreate, ProgramUpdate
from ancretoi.services.cache import CacheKeys
from ancretoi.services.program_service import ProgramService, build_marketing


def _payload(**overrides) -> ProgramCreate:
    data = {
        "slug": "Reset 7",
        "title": "Reset 7 jours",
        "status": "published",
        "level": "Basique",
        "durationDays": 7,
        "estMinutesPerDay": 20,
        "marketing": {
            "hero": {"title": "Reset", "heroImage": "/img/reset.jpg"},
            "objective": "Retrouver le calme.",
            "idealIf": "Tu scrolles trop.",
            "benefits": [{"icon": "🌿", "title": "Calme", "text": "Moins d'écrans."}],
        },
        "days": [
            {"title": "Jour 1", "videoUrl": "https://youtu.be/abc123", "status": "published"},
            {"title": "Jour 2", "videoUrl": "https://vimeo.com/42"},
        ],
    }
    data.update(overrides)
    return ProgramCreate.model_validate(data)


def _program(**overrides) -> Program:
    payload = _payload()
    program = Program(
        program_id=uuid.uuid4(),
        slug="reset-7",
        title=payload.title,
        status="draft",
        level=payload.level,
        duration_days=7,
        est_minutes_per_day=20,
        units_count=2,
        marketing=build_marketing(payload),
    )
    for name, value in overrides.items():
        setattr(program, name, value)
    return program


def _one(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _count(value: int) -> MagicMock:
    result = MagicMock()
    result.scalar_one.return_value = value
    return result


def _db(*results) -> AsyncMock:
    db = AsyncMock()
    db.add = MagicMock()
    db.execute.side_effect = list(results)
    return db


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------

class TestUpsert:

    @pytest.mark.asyncio
    async def test_creates_missing_program(self):
        db = _db(_one(None))
        result = await ProgramService(db).upsert(_payload())

        assert result == {"programSlug": "reset-7", "units": 2}
        program = db.add.call_args.args[0]
        assert program.slug == "reset-7"
        assert program.currency == "EUR"
        units = program.marketing["units"]
        assert [u["videoAssetId"] for u in units] == ["abc123", "42"]
        assert [u["status"] for u in units] == ["published", "draft"]

    @pytest.mark.asyncio
    async def test_revives_archived_program(self):
        program = _program(deleted_at=datetime(2026, 2, 1, tzinfo=timezone.utc))
        db = _db(_one(program))

        await ProgramService(db).upsert(_payload(title="Reset v2"))

        db.add.assert_not_called()
        assert program.deleted_at is None
        assert program.title == "Reset v2"

    @pytest.mark.asyncio
    async def test_path_slug_must_match(self):
        with pytest.raises(ValidationError) as exc_info:
            await ProgramService(_db()).upsert(_payload(), path_slug="autre")

        assert exc_info.value.field == "slug"

    @pytest.mark.asyncio
    async def test_marketing_card_and_highlights(self):
        db = _db(_one(None))
        await ProgramService(db).upsert(_payload())

        marketing = db.add.call_args.args[0].marketing
        assert marketing["card"]["badges"] == ["7 jours • 20 min/j", "Basique"]
        assert marketing["card"]["image"] == "/img/reset.jpg"
        assert [h["title"] for h in marketing["highlights"]] == ["Idéal si…", "Calme"]


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

class TestUpdate:

    @pytest.mark.asyncio
    async def test_null_title_and_status_are_ignored(self):
        program = _program()
        update = ProgramUpdate.model_validate({"title": None, "status": None, "priceCents": 900})

        await ProgramService(_db(_one(program))).update("reset-7", update)

        assert program.title == "Reset 7 jours"
        assert program.status == "draft"
        assert program.price_cents == 900

    @pytest.mark.asyncio
    async def test_new_page_rebuilds_derived_keys(self):
        program = _program()
        update = ProgramUpdate.model_validate({
            "marketing": {
                "hero": {"title": "Nouveau"},
                "durationLabel": "Une semaine",
                "benefits": [{"title": "Sommeil", "text": "Dormir mieux."}],
            },
        })

        await ProgramService(_db(_one(program))).update("reset-7", update)

        marketing = program.marketing
        assert marketing["hero"]["title"] == "Nouveau"
        assert marketing["card"]["badges"] == ["Une semaine", "Basique"]
        assert marketing["card"]["image"] is None
        assert [h["title"] for h in marketing["highlights"]] == ["Sommeil"]
        assert len(marketing["units"]) == 2

    @pytest.mark.asyncio
    async def test_level_change_refreshes_card(self):
        program = _program()
        update = ProgramUpdate.model_validate({"level": "Premium", "estMinutesPerDay": 30})

        await ProgramService(_db(_one(program))).update("reset-7", update)

        card = program.marketing["card"]
        assert card["badges"] == ["7 jours • 30 min/j", "Premium"]
        assert card["image"] == "/img/reset.jpg"
        assert program.marketing["objective"] == "Retrouver le calme."

    @pytest.mark.asyncio
    async def test_publish_needs_a_published_unit(self):
        program = _program()
        for unit in program.marketing["units"]:
            unit["status"] = "draft"

        with pytest.raises(ValidationError) as exc_info:
            await ProgramService(_db(_one(program))).update(
                "reset-7",
                ProgramUpdate(status="published"),
            )

        assert exc_info.value.code == ErrorCodes.PROGRAM_NO_PUBLISHED_UNITS


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------

class TestDeletion:

    @pytest.mark.asyncio
    async def test_delete_preview_counts(self):
        db = _db(_one(_program()), _count(3), _count(11))
        preview = await ProgramService(db).delete_preview("reset-7")

        assert preview["units"] == 2
        assert preview["enrollments"] == 3
        assert preview["states"] == 11
        assert preview["program"]["slug"] == "reset-7"

    @pytest.mark.asyncio
    async def test_soft_delete_stamps_deleted_at(self, fake_redis):
        program = _program(status="published")
        fake_redis.store[CacheKeys.program("reset-7")] = "{}"
        db = _db(_one(program), _count(1), _count(0), _one(program))

        result = await ProgramService(db).soft_delete("reset-7")

        assert result == {"deleted": 1, "units": 2, "enrollments": 1, "states": 0}
        assert program.deleted_at is not None
        assert CacheKeys.program("reset-7") not in fake_redis.store

    @pytest.mark.asyncio
    async def test_missing_program(self):
        with pytest.raises(NotFoundError):
            await ProgramService(_db(_one(None))).delete_preview("absent")


# ---------------------------------------------------------------------------
# Published detail
# ---------------------------------------------------------------------------

class TestPublishedDetail:

    @pytest.mark.asyncio
    async def test_detail_is_cached(self, fake_redis):
        db = _db(_one(_program(status="published")))

        first = await ProgramService(db).get_published("Reset_7")
        second = await ProgramService(db).get_published("reset-7")

        assert first == second
        assert db.execute.await_count == 1
        assert fake_redis.ttls[CacheKeys.program("reset-7")] == 900
        assert json.loads(fake_redis.store[CacheKeys.program("reset-7")])["slug"] == "reset-7"

    @pytest.mark.asyncio
    async def test_draft_is_hidden(self):
        with pytest.raises(NotFoundError):
            await ProgramService(_db(_one(_program()))).get_published("reset-7")


@pytest.mark.asyncio
async def test_public_reads_are_rate_limited(client, monkeypatch):
    monkeypatch.setitem(RateLimiter.LIMITS, "read", {"max_requests": 1, "window_seconds": 60})

    with patch(
        "ancretoi.api.v1.programs.ProgramService.list_published",
        AsyncMock(return_value=[]),
    ):
        first = await client.get("/api/v1/programs")
        second = await client.get("/api/v1/programs")

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json()["error"]["code"] == "RATE_LIMIT"
