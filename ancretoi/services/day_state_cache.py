"""
Day-State Cache
===============

Non-authoritative cache of a learner's in-progress answers for one
program day, addressed by user key, program slug and day number.

Keys:
    {user_key}:{slug}:day:{n}   answers of day n (JSON object)
    {user_key}:{slug}:lastDay   last visited day
    {slug}:day:{n}              legacy unscoped key, migrated once on load

The cache never raises to its caller: unreadable or unavailable storage
loads as an empty mapping and a failed save reports ``False``.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from ancretoi.config import settings
from ancretoi.curriculum.definition import (
    DayNotFoundError,
    ProgramDefinition,
    day_field_map,
    render_day,
)
from ancretoi.curriculum.fields import (
    FieldValueError,
    RepeaterField,
    add_repeater_item,
    coerce_input,
    remove_repeater_item,
    toggle_option,
)
from ancretoi.services.storage import KeyValueStorage

logger = logging.getLogger(__name__)

ANONYMOUS_USER_KEY = "anon"

STATUS_IDLE = "idle"
STATUS_SAVING = "saving"
STATUS_SAVED = "saved"


class DayStateCache:
    """Read and write day answers for one (user key, program)."""

    def __init__(self, storage: KeyValueStorage, user_key: Optional[str], program_slug: str):
        self.storage = storage
        self.user_key = user_key or ANONYMOUS_USER_KEY
        self.program_slug = program_slug

    def day_key(self, day: int) -> str:
        return f"{self.user_key}:{self.program_slug}:day:{day}"

    def last_day_key(self) -> str:
        return f"{self.user_key}:{self.program_slug}:lastDay"

    def legacy_day_key(self, day: int) -> str:
        return f"{self.program_slug}:day:{day}"

    async def load(self, day: int) -> dict[str, Any]:
        """
        Answers of ``day``.

        A legacy unscoped entry is copied to the user-scoped key and then
        removed, so it is migrated exactly once.
        """
        key = self.day_key(day)
        try:
            raw = await self.storage.get(key)

            if not raw:
                legacy_key = self.legacy_day_key(day)
                old = await self.storage.get(legacy_key)
                if old:
                    await self.storage.set(key, old)
                    await self.storage.delete(legacy_key)
                    logger.info("Migrated legacy day state %s -> %s", legacy_key, key)
                    raw = old

            values = json.loads(raw) if raw else {}
        except Exception as e:
            logger.warning("Day state load failed for %s: %s", key, e)
            return {}

        return values if isinstance(values, dict) else {}

    async def save(self, day: int, values: dict[str, Any]) -> bool:
        """Write answers and the last visited day. Returns False on failure."""
        try:
            await self.storage.set(self.day_key(day), json.dumps(values, ensure_ascii=False))
            await self.storage.set(self.last_day_key(), str(day))
            return True
        except Exception as e:
            logger.warning("Day state save failed for %s: %s", self.day_key(day), e)
            return False

    async def last_day(self) -> Optional[int]:
        try:
            raw = await self.storage.get(self.last_day_key())
            return int(raw) if raw else None
        except Exception as e:
            logger.warning("Last day lookup failed for %s: %s", self.last_day_key(), e)
            return None

    async def clear(self, max_day: int) -> None:
        """Drop the answers of days 1..``max_day`` and the last visited day."""
        try:
            for day in range(1, max_day + 1):
                await self.storage.delete(self.day_key(day))
            await self.storage.delete(self.last_day_key())
        except Exception as e:
            logger.warning("Day state clear failed for %s:%s: %s", self.user_key, self.program_slug, e)


class Debouncer:
    """
    Run ``callback`` once ``delay`` seconds after the last ``trigger()``.

    Each trigger restarts the timer; ``flush()`` runs a pending callback
    right away and ``cancel()`` drops it.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self.delay = delay
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        self._task = None
        await self.callback()

    async def flush(self) -> None:
        if self.pending:
            self.cancel()
            await self.callback()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


StatusListener = Callable[[str], Awaitable[None]]


class DayStateSession:
    """
    Live runner state for one learner working through a program.

    Every change schedules a debounced save of the whole mapping; the
    status goes ``saving`` -> ``saved`` -> ``idle``, or straight back to
    ``idle`` when the save fails.
    """

    def __init__(
        self,
        cache: DayStateCache,
        definition: ProgramDefinition,
        save_delay: Optional[float] = None,
        saved_reset: Optional[float] = None,
        on_status: Optional[StatusListener] = None,
    ):
        self.cache = cache
        self.definition = definition
        self.day: Optional[int] = None
        self.values: dict[str, Any] = {}
        self.loaded = False
        self.status = STATUS_IDLE
        self.on_status = on_status

        if save_delay is None:
            save_delay = settings.DAY_STATE_SAVE_DELAY_MS / 1000
        if saved_reset is None:
            saved_reset = settings.DAY_STATE_SAVED_RESET_MS / 1000
        self.saved_reset = saved_reset

        self._debouncer = Debouncer(save_delay, self._save)
        self._reset_task: Optional[asyncio.Task] = None
        self._fields: dict[str, Any] = {}

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    async def open(self, day: int) -> dict[str, Any]:
        """Load ``day`` and schedule the visit to be recorded."""
        day_def = self.definition.get_day(day)
        if day_def is None:
            raise DayNotFoundError(f"Jour introuvable: {day}")

        await self._debouncer.flush()
        self.loaded = False
        self.day = day
        self._fields = day_field_map(day_def)
        self.values = await self.cache.load(day)
        self.loaded = True
        await self._schedule()
        return self.values

    async def goto(self, day: int) -> dict[str, Any]:
        """Move to another day; the pending save of the current day is flushed first."""
        if not 1 <= day <= self.definition.max_day:
            raise DayNotFoundError(f"Jour introuvable: {day}")
        return await self.open(day)

    async def close(self) -> None:
        await self._debouncer.flush()
        if self._reset_task is not None:
            self._reset_task.cancel()
            self._reset_task = None

    # -------------------------------------------------------------------------
    # Edits
    # -------------------------------------------------------------------------

    def field_at(self, path: str) -> Any:
        field = self._fields.get(path)
        if field is None:
            raise FieldValueError(path, "Champ inconnu.")
        return field

    async def set_value(self, path: str, value: Any) -> None:
        self.values = {**self.values, path: value}
        await self._schedule()

    async def set_field(self, field: Any, path: str, raw: Any) -> Any:
        value = coerce_input(field, raw, path)
        await self.set_value(path, value)
        return value

    async def toggle(self, path: str, option: str) -> list[str]:
        selected = toggle_option(self.values.get(path), option)
        await self.set_value(path, selected)
        return selected

    async def add_item(self, field: RepeaterField, path: str) -> list[dict]:
        current = self.values.get(path)
        items = add_repeater_item(field, current)
        if isinstance(current, list) and len(items) == len(current):
            return items
        await self.set_value(path, items)
        return items

    async def remove_item(self, field: RepeaterField, path: str, idx: int) -> list[dict]:
        current = self.values.get(path)
        items = remove_repeater_item(field, current, idx)
        if not isinstance(current, list) or len(items) == len(current):
            return items
        await self.set_value(path, items)
        return items

    def render(self) -> dict:
        if self.day is None:
            raise DayNotFoundError("Aucun jour ouvert.")
        return render_day(self.definition, self.day, self.values)

    # -------------------------------------------------------------------------
    # Saving
    # -------------------------------------------------------------------------

    async def _set_status(self, status: str) -> None:
        self.status = status
        if self.on_status is not None:
            try:
                await self.on_status(status)
            except Exception as e:
                logger.warning("Status listener failed: %s", e)

    async def _schedule(self) -> None:
        if not self.loaded or self.day is None:
            return
        if self._reset_task is not None:
            self._reset_task.cancel()
            self._reset_task = None
        await self._set_status(STATUS_SAVING)
        self._debouncer.trigger()

    async def _save(self) -> None:
        if self.day is None:
            return
        ok = await self.cache.save(self.day, dict(self.values))
        if ok:
            await self._set_status(STATUS_SAVED)
            self._reset_task = asyncio.create_task(self._reset_after_saved())
        else:
            await self._set_status(STATUS_IDLE)

    async def _reset_after_saved(self) -> None:
        await asyncio.sleep(self.saved_reset)
        if self.status == STATUS_SAVED:
            await self._set_status(STATUS_IDLE)
