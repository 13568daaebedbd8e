"""
Curriculum Module
=================

Program day definitions and field semantics.
"""

from ancretoi.curriculum.definition import (
    DayNotFoundError,
    ProgramDefinition,
    ProgramDefinitionError,
    get_catalog,
    iter_day_fields,
    load_definition,
    normalize_program_slug,
    render_day,
)

__all__ = [
    "DayNotFoundError",
    "ProgramDefinition",
    "ProgramDefinitionError",
    "get_catalog",
    "iter_day_fields",
    "load_definition",
    "normalize_program_slug",
    "render_day",
]
