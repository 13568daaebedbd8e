"""
Curriculum Fields
=================

Form controls of a program day, expressed as a tagged union over the
``type`` key, together with the value rules each kind enforces.

Every function below dispatches over the full union and raises
``TypeError`` for anything else, so adding a field kind means updating
each of them.

Stored value shapes:
    text / textarea / select -> str ("" when empty)
    number                    -> int | float, or "" when empty
    slider                    -> int within [min, max]
    multi_select              -> list[str] of distinct options
    boolean                   -> bool
    repeater                  -> list[dict[sub_key, scalar value]]
"""

import math
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ancretoi.utils.helpers import js_round


class FieldValueError(ValueError):
    """A value does not fit the field it is stored under."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


# =============================================================================
# Field kinds
# =============================================================================

class _FieldBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    key: str
    label: str = ""
    required: bool = False


class TextField(_FieldBase):
    type: Literal["text"]


class TextareaField(_FieldBase):
    type: Literal["textarea"]


class NumberField(_FieldBase):
    type: Literal["number"]
    min: Optional[float] = None
    max: Optional[float] = None


class SliderField(_FieldBase):
    type: Literal["slider"]
    min: int
    max: int

    @property
    def midpoint(self) -> int:
        return js_round((self.min + self.max) / 2)


class SelectField(_FieldBase):
    type: Literal["select"]
    options: list[str] = Field(default_factory=list)


class MultiSelectField(_FieldBase):
    type: Literal["multi_select"]
    options: list[str] = Field(default_factory=list)


class BooleanField(_FieldBase):
    type: Literal["boolean"]


RepeaterSubField = Annotated[
    Union[TextField, TextareaField, NumberField, SliderField, SelectField, BooleanField],
    Field(discriminator="type"),
]


class RepeaterField(_FieldBase):
    type: Literal["repeater"]
    sub_fields: list[RepeaterSubField] = Field(default_factory=list, alias="schema")
    min_items: Optional[int] = None
    max_items: Optional[int] = None


AnyField = Annotated[
    Union[
        TextField,
        TextareaField,
        NumberField,
        SliderField,
        SelectField,
        MultiSelectField,
        BooleanField,
        RepeaterField,
    ],
    Field(discriminator="type"),
]

TEXT_KINDS = (TextField, TextareaField)


def _is_number(value: Any) -> bool:
    """Finite int or float; bools, NaN and infinities are not numbers here."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _unsupported(field: Any) -> TypeError:
    return TypeError(f"Unsupported field type: {getattr(field, 'type', field)!r}")


# =============================================================================
# Field paths
# =============================================================================

DONE_KEY = "__done"


def daily_path(key: str) -> str:
    return f"daily.{key}"


def exercise_path(exercise_key: str, field_key: str) -> str:
    return f"ex.{exercise_key}.{field_key}"


def done_path(exercise_key: str) -> str:
    return exercise_path(exercise_key, DONE_KEY)


def item_path(base: str, idx: int, sub_key: str) -> str:
    return f"{base}[{idx}].{sub_key}"


# =============================================================================
# Value rules
# =============================================================================

def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def resolve_value(field: Any, value: Any) -> Any:
    """
    Value a control shows for a stored (possibly missing) value.

    Missing or mistyped values fall back to the empty value of the kind;
    a slider without a number shows its midpoint.
    """
    if isinstance(field, (TextField, TextareaField, SelectField)):
        return value if isinstance(value, str) else ""
    if isinstance(field, NumberField):
        return value if _is_number(value) else ""
    if isinstance(field, SliderField):
        if _is_number(value):
            return int(_clamp(js_round(value), field.min, field.max))
        return field.midpoint
    if isinstance(field, MultiSelectField):
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, str)]
    if isinstance(field, BooleanField):
        return bool(value)
    if isinstance(field, RepeaterField):
        items = value if isinstance(value, list) else []
        return [
            {
                sub.key: resolve_value(sub, item.get(sub.key) if isinstance(item, dict) else None)
                for sub in field.sub_fields
            }
            for item in items
        ]
    raise _unsupported(field)


def _coerce_number(path: str, raw: Any) -> Any:
    if raw is None or raw == "":
        return ""
    if _is_number(raw):
        return raw
    try:
        number = float(str(raw).strip().replace(",", "."))
    except ValueError:
        raise FieldValueError(path, "Nombre attendu.") from None
    if not math.isfinite(number):
        raise FieldValueError(path, "Nombre attendu.")
    return int(number) if number.is_integer() else number


def coerce_input(field: Any, raw: Any, path: str = "") -> Any:
    """
    Turn raw client input into the stored shape of ``field``.

    Raises:
        FieldValueError: when the input cannot represent a value of the kind
    """
    path = path or field.key
    if isinstance(field, (TextField, TextareaField)):
        return "" if raw is None else str(raw)
    if isinstance(field, NumberField):
        return _coerce_number(path, raw)
    if isinstance(field, SliderField):
        number = _coerce_number(path, raw)
        if number == "":
            return field.midpoint
        return int(_clamp(js_round(number), field.min, field.max))
    if isinstance(field, SelectField):
        choice = "" if raw is None else str(raw)
        if choice and choice not in field.options:
            raise FieldValueError(path, f"Option inconnue: {choice}")
        return choice
    if isinstance(field, MultiSelectField):
        if not isinstance(raw, list):
            raise FieldValueError(path, "Liste attendue.")
        selected: list[str] = []
        for option in raw:
            option = str(option)
            if option not in field.options:
                raise FieldValueError(path, f"Option inconnue: {option}")
            if option not in selected:
                selected.append(option)
        return selected
    if isinstance(field, BooleanField):
        if isinstance(raw, str):
            return raw.strip().lower() in ("true", "1", "on", "yes")
        return bool(raw)
    if isinstance(field, RepeaterField):
        if not isinstance(raw, list):
            raise FieldValueError(path, "Liste attendue.")
        items = []
        for idx, item in enumerate(raw):
            item = item if isinstance(item, dict) else {}
            items.append({
                sub.key: coerce_input(sub, item.get(sub.key), item_path(path, idx, sub.key))
                if sub.key in item else empty_value(sub)
                for sub in field.sub_fields
            })
        return items
    raise _unsupported(field)


def check_value(field: Any, value: Any, path: str = "") -> None:
    """
    Check that a stored value has the shape of its field.

    Repeater item counts are not checked here; ``min_items``/``max_items``
    only gate the add/remove actions.

    Raises:
        FieldValueError: describing the first offending path
    """
    path = path or field.key
    if isinstance(field, (TextField, TextareaField)):
        if not isinstance(value, str):
            raise FieldValueError(path, "Texte attendu.")
        return
    if isinstance(field, NumberField):
        if value != "" and not _is_number(value):
            raise FieldValueError(path, "Nombre attendu.")
        return
    if isinstance(field, SliderField):
        if not _is_number(value) or int(value) != value:
            raise FieldValueError(path, "Entier attendu.")
        if not field.min <= value <= field.max:
            raise FieldValueError(path, f"Valeur hors limites [{field.min}, {field.max}].")
        return
    if isinstance(field, SelectField):
        if not isinstance(value, str):
            raise FieldValueError(path, "Texte attendu.")
        if value and value not in field.options:
            raise FieldValueError(path, f"Option inconnue: {value}")
        return
    if isinstance(field, MultiSelectField):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise FieldValueError(path, "Liste de textes attendue.")
        if len(set(value)) != len(value):
            raise FieldValueError(path, "Options en double.")
        unknown = [v for v in value if v not in field.options]
        if unknown:
            raise FieldValueError(path, f"Option inconnue: {unknown[0]}")
        return
    if isinstance(field, BooleanField):
        if not isinstance(value, bool):
            raise FieldValueError(path, "Booléen attendu.")
        return
    if isinstance(field, RepeaterField):
        if not isinstance(value, list):
            raise FieldValueError(path, "Liste attendue.")
        subs = {sub.key: sub for sub in field.sub_fields}
        for idx, item in enumerate(value):
            if not isinstance(item, dict):
                raise FieldValueError(f"{path}[{idx}]", "Objet attendu.")
            for sub_key, sub_value in item.items():
                sub = subs.get(sub_key)
                if sub is None:
                    raise FieldValueError(item_path(path, idx, sub_key), "Champ inconnu.")
                check_value(sub, sub_value, item_path(path, idx, sub_key))
        return
    raise _unsupported(field)


def empty_value(field: Any) -> Any:
    """Stored value of a control nobody touched."""
    if isinstance(field, BooleanField):
        return False
    if isinstance(field, MultiSelectField):
        return []
    if isinstance(field, RepeaterField):
        return []
    if isinstance(field, SliderField):
        return field.midpoint
    if isinstance(field, (TextField, TextareaField, NumberField, SelectField)):
        return ""
    raise _unsupported(field)


# =============================================================================
# Control actions
# =============================================================================

def toggle_option(current: Any, option: str) -> list[str]:
    """
    Toggle ``option`` in a multi-select value.

    A selected option is removed, an unselected one appended once.
    """
    selected = [v for v in current if isinstance(v, str)] if isinstance(current, list) else []
    if option in selected:
        return [v for v in selected if v != option]
    return selected + [option]


def empty_repeater_item(field: RepeaterField) -> dict:
    """New repeater row: boolean sub-fields start False, every other one ""."""
    return {
        sub.key: False if isinstance(sub, BooleanField) else ""
        for sub in field.sub_fields
    }


def can_add_item(field: RepeaterField, items: list) -> bool:
    return len(items) < field.max_items if field.max_items else True


def can_remove_item(field: RepeaterField, items: list) -> bool:
    return len(items) > (field.min_items or 0)


def add_repeater_item(field: RepeaterField, current: Any) -> list[dict]:
    """Append an empty row unless ``max_items`` is reached."""
    items = list(current) if isinstance(current, list) else []
    if not can_add_item(field, items):
        return items
    return items + [empty_repeater_item(field)]


def remove_repeater_item(field: RepeaterField, current: Any, idx: int) -> list[dict]:
    """Remove row ``idx`` unless that would go below ``min_items``."""
    items = list(current) if isinstance(current, list) else []
    if not can_remove_item(field, items) or not 0 <= idx < len(items):
        return items
    del items[idx]
    return items
