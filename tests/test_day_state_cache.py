"""
Day-State Cache Tests
=====================

Tests for the learner day-state cache including:
- User-scoped keys and the one-time legacy key migration
- Graceful degradation when storage fails
- Debounced saving and the saving -> saved -> idle status cycle
- Navigation flushing the pending save
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from ancretoi.curriculum import DayNotFoundError, get_catalog
from ancretoi.curriculum.fields import FieldValueError
from ancretoi.services.day_state_cache import (
    DayStateCache,
    DayStateSession,
    Debouncer,
    STATUS_IDLE,
    STATUS_SAVED,
    STATUS_SAVING,
)
from conftest import MemoryStorage

USER_KEY = "00000000-0000-0000-0000-000000000001"


def _broken_storage() -> AsyncMock:
    storage = AsyncMock()
    storage.get.side_effect = ConnectionError("Redis down")
    storage.set.side_effect = ConnectionError("Redis down")
    return storage


# ---------------------------------------------------------------------------
# DayStateCache
# ---------------------------------------------------------------------------

class TestDayStateCache:

    def test_keys_are_user_scoped(self):
        cache = DayStateCache(MemoryStorage(), USER_KEY, "reset-7")
        assert cache.day_key(2) == f"{USER_KEY}:reset-7:day:2"
        assert cache.last_day_key() == f"{USER_KEY}:reset-7:lastDay"

    def test_missing_user_key_is_anonymous(self):
        assert DayStateCache(MemoryStorage(), None, "reset-7").user_key == "anon"

    @pytest.mark.asyncio
    async def test_save_then_load(self):
        storage = MemoryStorage()
        cache = DayStateCache(storage, USER_KEY, "reset-7")

        assert await cache.save(3, {"daily.focus": 6}) is True
        assert await cache.load(3) == {"daily.focus": 6}
        assert await cache.last_day() == 3

    @pytest.mark.asyncio
    async def test_legacy_key_migrated_once(self):
        storage = MemoryStorage({"reset-7:day:1": json.dumps({"daily.energie": 4})})
        cache = DayStateCache(storage, USER_KEY, "reset-7")

        assert await cache.load(1) == {"daily.energie": 4}
        assert "reset-7:day:1" not in storage.data
        assert json.loads(storage.data[cache.day_key(1)]) == {"daily.energie": 4}

    @pytest.mark.asyncio
    async def test_user_entry_wins_over_legacy(self):
        storage = MemoryStorage({
            "reset-7:day:1": json.dumps({"daily.energie": 1}),
            f"{USER_KEY}:reset-7:day:1": json.dumps({"daily.energie": 9}),
        })
        cache = DayStateCache(storage, USER_KEY, "reset-7")

        assert await cache.load(1) == {"daily.energie": 9}
        assert "reset-7:day:1" in storage.data

    @pytest.mark.asyncio
    async def test_unreadable_entry_loads_empty(self):
        storage = MemoryStorage({f"{USER_KEY}:reset-7:day:1": "{not json"})
        cache = DayStateCache(storage, USER_KEY, "reset-7")
        assert await cache.load(1) == {}

    @pytest.mark.asyncio
    async def test_non_object_entry_loads_empty(self):
        storage = MemoryStorage({f"{USER_KEY}:reset-7:day:1": "[1, 2]"})
        assert await DayStateCache(storage, USER_KEY, "reset-7").load(1) == {}

    @pytest.mark.asyncio
    async def test_storage_failure_never_raises(self):
        cache = DayStateCache(_broken_storage(), USER_KEY, "reset-7")

        assert await cache.load(1) == {}
        assert await cache.save(1, {"a": 1}) is False
        assert await cache.last_day() is None

    @pytest.mark.asyncio
    async def test_clear_keeps_other_programs(self):
        storage = MemoryStorage({f"{USER_KEY}:sommeil:day:1": "{}"})
        cache = DayStateCache(storage, USER_KEY, "reset-7")
        await cache.save(1, {"a": 1})
        await cache.save(4, {"b": 2})

        await cache.clear(7)

        assert list(storage.data) == [f"{USER_KEY}:sommeil:day:1"]


# ---------------------------------------------------------------------------
# Debouncer
# ---------------------------------------------------------------------------

class TestDebouncer:

    @pytest.mark.asyncio
    async def test_runs_once_after_last_trigger(self):
        callback = AsyncMock()
        debouncer = Debouncer(0.02, callback)

        debouncer.trigger()
        debouncer.trigger()
        debouncer.trigger()
        await asyncio.sleep(0.06)

        callback.assert_awaited_once()
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_flush_runs_pending_callback_now(self):
        callback = AsyncMock()
        debouncer = Debouncer(10, callback)

        debouncer.trigger()
        await debouncer.flush()

        callback.assert_awaited_once()
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_flush_without_pending_does_nothing(self):
        callback = AsyncMock()
        await Debouncer(10, callback).flush()
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_drops_pending_callback(self):
        callback = AsyncMock()
        debouncer = Debouncer(0.01, callback)

        debouncer.trigger()
        debouncer.cancel()
        await asyncio.sleep(0.03)

        callback.assert_not_awaited()


# ---------------------------------------------------------------------------
# DayStateSession
# ---------------------------------------------------------------------------

@pytest.fixture
def definition():
    return get_catalog().get("reset-7")


def _session(storage, definition, statuses, save_delay=0.02, saved_reset=0.02):
    async def on_status(value):
        statuses.append(value)

    cache = DayStateCache(storage, USER_KEY, "reset-7")
    return DayStateSession(cache, definition, save_delay, saved_reset, on_status=on_status)


class TestDayStateSession:

    @pytest.mark.asyncio
    async def test_status_cycle(self, definition):
        statuses: list[str] = []
        storage = MemoryStorage()
        session = _session(storage, definition, statuses, saved_reset=0.2)

        await session.open(1)
        await session.set_field(session.field_at("daily.energie"), "daily.energie", "7")
        assert session.status == STATUS_SAVING

        await asyncio.sleep(0.08)
        assert session.status == STATUS_SAVED

        await asyncio.sleep(0.25)
        assert session.status == STATUS_IDLE
        assert statuses[-2:] == [STATUS_SAVED, STATUS_IDLE]

        saved = json.loads(storage.data[f"{USER_KEY}:reset-7:day:1"])
        assert saved["daily.energie"] == 7
        await session.close()

    @pytest.mark.asyncio
    async def test_failed_save_returns_to_idle(self, definition):
        statuses: list[str] = []
        storage = MemoryStorage()
        session = _session(storage, definition, statuses)
        await session.open(1)

        session.cache.storage = _broken_storage()
        await session.set_value("daily.energie", 3)
        await asyncio.sleep(0.1)

        assert session.status == STATUS_IDLE
        assert STATUS_SAVED not in statuses
        await session.close()

    @pytest.mark.asyncio
    async def test_goto_flushes_current_day(self, definition):
        storage = MemoryStorage()
        session = _session(storage, definition, [], save_delay=10)

        await session.open(1)
        await session.set_value("daily.energie", 2)
        await session.goto(2)

        assert json.loads(storage.data[f"{USER_KEY}:reset-7:day:1"]) == {"daily.energie": 2}
        assert session.day == 2
        assert session.values == {}
        await session.close()

    @pytest.mark.asyncio
    async def test_goto_out_of_range(self, definition):
        session = _session(MemoryStorage(), definition, [])
        await session.open(1)
        with pytest.raises(DayNotFoundError):
            await session.goto(8)
        assert session.day == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_close_flushes_pending_save(self, definition):
        storage = MemoryStorage()
        session = _session(storage, definition, [], save_delay=10)

        await session.open(2)
        await session.toggle("ex.triggers.liste", "Faim")
        await session.close()

        saved = json.loads(storage.data[f"{USER_KEY}:reset-7:day:2"])
        assert saved == {"ex.triggers.liste": ["Faim"]}
        assert storage.data[f"{USER_KEY}:reset-7:lastDay"] == "2"

    @pytest.mark.asyncio
    async def test_repeater_actions(self, definition):
        session = _session(MemoryStorage(), definition, [], save_delay=10)
        await session.open(3)
        field = session.field_at("ex.pauses.entries")

        for _ in range(5):
            await session.add_item(field, "ex.pauses.entries")
        # max_items is 3
        assert len(session.values["ex.pauses.entries"]) == 3

        await session.remove_item(field, "ex.pauses.entries", 0)
        assert len(session.values["ex.pauses.entries"]) == 2
        await session.close()

    @pytest.mark.asyncio
    async def test_unknown_path(self, definition):
        session = _session(MemoryStorage(), definition, [])
        await session.open(1)
        with pytest.raises(FieldValueError):
            session.field_at("daily.inexistant")
        await session.close()

    @pytest.mark.asyncio
    async def test_render_applies_values(self, definition):
        session = _session(MemoryStorage(), definition, [], save_delay=10)
        await session.open(1)
        await session.set_value("daily.energie", 9)

        view = session.render()
        energie = next(c for c in view["dailyCheck"] if c["key"] == "energie")
        assert energie["value"] == 9
        await session.close()

    @pytest.mark.asyncio
    async def test_day_survives_navigation(self, definition):
        storage = MemoryStorage()
        cache = DayStateCache(storage, "u1", "reset-7")
        session = DayStateSession(cache, definition, save_delay=10, saved_reset=0.02)

        await session.open(3)
        field = session.field_at("ex.breathing.duration")
        await session.set_field(field, "ex.breathing.duration", "8")
        await session.goto(4)
        await session.goto(3)

        assert session.values == {"ex.breathing.duration": 8}
        assert json.loads(storage.data["u1:reset-7:day:3"]) == {"ex.breathing.duration": 8}

        controls = [
            control
            for section in session.render()["sections"]
            for exercise in section["exercises"]
            for control in exercise["fields"]
        ]
        duration = next(c for c in controls if c["path"] == "ex.breathing.duration")
        assert duration["value"] == 8
        await session.close()
