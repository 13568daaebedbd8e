"""
Program Definitions
===================

Day-by-day curricula shipped as JSON files in ``ancretoi/curriculum/data``,
the catalogue that resolves a program slug to its definition, and the
builder of the learner's day view.
"""

import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from typing import Any, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ancretoi.curriculum.fields import (
    AnyField,
    BooleanField,
    DONE_KEY,
    MultiSelectField,
    NumberField,
    RepeaterField,
    SelectField,
    SliderField,
    TEXT_KINDS,
    can_add_item,
    can_remove_item,
    daily_path,
    done_path,
    exercise_path,
    item_path,
    resolve_value,
)

logger = logging.getLogger(__name__)


class CurriculumError(Exception):
    """Base error for program definitions."""


class ProgramDefinitionError(CurriculumError):
    """A definition file is malformed."""


class DayNotFoundError(CurriculumError, LookupError):
    """The requested day does not exist in the definition."""


# =============================================================================
# Definition models
# =============================================================================

class Exercise(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str
    title: str
    # breath | journal | practice | movement | walk | planning | reflection | checklist | message
    type: str
    timer_sec: Optional[int] = None
    required: bool = False
    description: Optional[str] = None
    fields: list[AnyField] = Field(default_factory=list)


class DaySection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    duration_min: Optional[str] = None
    exercises: list[Exercise] = Field(default_factory=list)


class DayBlocks(BaseModel):
    model_config = ConfigDict(extra="ignore")

    morning: Optional[DaySection] = None
    noon: Optional[DaySection] = None
    evening: Optional[DaySection] = None


class Day(BaseModel):
    model_config = ConfigDict(extra="ignore")

    day: int
    title: str
    objectives: list[str] = Field(default_factory=list)
    outcomes: list[str] = Field(default_factory=list)
    blocks: DayBlocks = Field(default_factory=DayBlocks)
    daily_check: dict[str, AnyField] = Field(default_factory=dict)


class ProgramDefinition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product: str
    version: str
    timezone: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    days: list[Day]

    @property
    def max_day(self) -> int:
        return len(self.days)

    def get_day(self, day_number: int) -> Optional[Day]:
        for day in self.days:
            if day.day == day_number:
                return day
        return None


SECTION_LABELS = (
    ("morning", "Matin"),
    ("noon", "Midi"),
    ("evening", "Soir"),
)


def load_definition(raw: Any) -> ProgramDefinition:
    """
    Validate a parsed JSON document as a program definition.

    Raises:
        ProgramDefinitionError: when ``days`` is missing or a field is invalid
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("days"), list):
        raise ProgramDefinitionError("Invalid program JSON: missing days[]")
    try:
        return ProgramDefinition.model_validate(raw)
    except ValidationError as e:
        raise ProgramDefinitionError(f"Invalid program JSON: {e}") from e


# =============================================================================
# Catalogue
# =============================================================================

_SLUG_SEPARATORS = re.compile(r"[\s_]+")


def normalize_program_slug(slug: str) -> str:
    """Trim, lowercase, and turn runs of ``_`` or whitespace into ``-``."""
    return _SLUG_SEPARATORS.sub("-", (slug or "").strip().lower())


class CurriculumCatalog:
    """Slug -> packaged JSON definition, loaded lazily and kept in memory."""

    def __init__(self, files: dict[str, str], package: str = "ancretoi.curriculum.data"):
        self._files = {normalize_program_slug(slug): name for slug, name in files.items()}
        self._package = package
        self._loaded: dict[str, ProgramDefinition] = {}

    def slugs(self) -> list[str]:
        return sorted(self._files)

    def __contains__(self, slug: str) -> bool:
        return normalize_program_slug(slug) in self._files

    def get(self, slug: str) -> Optional[ProgramDefinition]:
        key = normalize_program_slug(slug)
        if key in self._loaded:
            return self._loaded[key]

        filename = self._files.get(key)
        if filename is None:
            return None

        text = resources.files(self._package).joinpath(filename).read_text(encoding="utf-8")
        definition = load_definition(json.loads(text))
        self._loaded[key] = definition
        logger.info("Loaded program definition %s (%d days)", key, definition.max_day)
        return definition


PROGRAM_FILES = {
    "reset-7": "reset7.json",
}


@lru_cache
def get_catalog() -> CurriculumCatalog:
    """Shared catalogue of packaged programs."""
    return CurriculumCatalog(PROGRAM_FILES)


# =============================================================================
# Field enumeration
# =============================================================================

@dataclass(frozen=True)
class FieldSlot:
    """One control of a day and the path its value is stored under."""

    path: str
    field: Any
    exercise_key: Optional[str] = None


def _done_field() -> BooleanField:
    return BooleanField(key=DONE_KEY, label="Marquer comme terminé", type="boolean")


def iter_day_fields(day: Day) -> Iterator[FieldSlot]:
    """Every storable path of a day: daily check, exercise fields, done flags."""
    for field in day.daily_check.values():
        yield FieldSlot(daily_path(field.key), field)
    for name, _label in SECTION_LABELS:
        section = getattr(day.blocks, name)
        if section is None:
            continue
        for exercise in section.exercises:
            for field in exercise.fields:
                yield FieldSlot(exercise_path(exercise.key, field.key), field, exercise.key)
            yield FieldSlot(done_path(exercise.key), _done_field(), exercise.key)


def day_field_map(day: Day) -> dict[str, Any]:
    return {slot.path: slot.field for slot in iter_day_fields(day)}


def has_text_questions(day: Day) -> bool:
    """True when the day asks at least one free-text question."""
    return any(isinstance(slot.field, TEXT_KINDS) for slot in iter_day_fields(day))


# =============================================================================
# Rendering
# =============================================================================

def _control(field: Any, path: str, value: Any) -> dict:
    control: dict[str, Any] = {
        "path": path,
        "key": field.key,
        "label": field.label,
        "type": field.type,
        "required": field.required,
        "value": resolve_value(field, value),
    }
    if isinstance(field, (NumberField, SliderField)):
        control["min"] = field.min
        control["max"] = field.max
    if isinstance(field, (SelectField, MultiSelectField)):
        control["options"] = list(field.options)
    if isinstance(field, RepeaterField):
        items = control["value"]
        control["minItems"] = field.min_items
        control["maxItems"] = field.max_items
        control["canAdd"] = can_add_item(field, items)
        control["canRemove"] = can_remove_item(field, items)
        control["items"] = [
            [
                _control(sub, item_path(path, idx, sub.key), item.get(sub.key))
                for sub in field.sub_fields
            ]
            for idx, item in enumerate(items)
        ]
    return control


def render_day(
    definition: ProgramDefinition,
    day_number: int,
    values: dict[str, Any],
) -> dict:
    """
    Build the learner view of one day with ``values`` applied.

    Raises:
        DayNotFoundError: when the day is not in the definition
    """
    day = definition.get_day(day_number)
    if day is None:
        raise DayNotFoundError(f"Jour introuvable: {day_number}")

    max_day = definition.max_day
    sections = []
    for name, label in SECTION_LABELS:
        section = getattr(day.blocks, name)
        if section is None:
            continue
        sections.append({
            "key": name,
            "label": label,
            "durationMin": section.duration_min,
            "exercises": [
                {
                    "key": ex.key,
                    "title": ex.title,
                    "type": ex.type,
                    "timerSec": ex.timer_sec,
                    "required": ex.required,
                    "description": ex.description,
                    "fields": [
                        _control(f, exercise_path(ex.key, f.key), values.get(exercise_path(ex.key, f.key)))
                        for f in ex.fields
                    ],
                    "donePath": done_path(ex.key),
                    "done": bool(values.get(done_path(ex.key))),
                }
                for ex in section.exercises
            ],
        })

    return {
        "header": {
            "product": definition.product,
            "day": day.day,
            "maxDay": max_day,
            "title": day.title,
            "version": definition.version,
        },
        "objectives": list(day.objectives),
        "outcomes": list(day.outcomes),
        "dailyCheck": [
            _control(f, daily_path(f.key), values.get(daily_path(f.key)))
            for f in day.daily_check.values()
        ],
        "sections": sections,
        "navigation": {
            "previous": day_number - 1 if day_number > 1 else None,
            "next": day_number + 1 if day_number < max_day else None,
        },
    }
