"""
Learner Schemas
===============

Payloads of the member runner, day-state and progress endpoints.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class DayValues(BaseModel):
    """Whole answer mapping of one day (field path -> value)."""

    values: dict[str, Any] = Field(default_factory=dict)


class SliderScores(BaseModel):
    """0..10 self-ratings."""

    model_config = ConfigDict(extra="forbid")

    energie: Optional[float] = Field(None, ge=0, le=10)
    focus: Optional[float] = Field(None, ge=0, le=10)
    paix: Optional[float] = Field(None, ge=0, le=10)
    estime: Optional[float] = Field(None, ge=0, le=10)


class DayStatePatch(BaseModel):
    data: Optional[dict[str, str]] = None
    sliders: Optional[SliderScores] = None
    checkout: Optional[SliderScores] = None
    practiced: Optional[bool] = None
    mantra3x: Optional[bool] = None
    completed: Optional[bool] = None


class DayStateUpsert(BaseModel):
    slug: str = Field(min_length=1)
    day: int = Field(ge=1)
    patch: DayStatePatch


class ProgressRequest(BaseModel):
    slug: str = Field(min_length=1)
    action: Literal["setDay", "completeDay"]
    day: Optional[int] = Field(None, ge=1)


class IntroRequest(BaseModel):
    """``engaged=False`` resets the whole program."""

    slug: str = Field(min_length=1)
    engaged: bool
