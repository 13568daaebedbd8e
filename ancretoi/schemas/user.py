"""
User Admin Schemas
==================

Request schemas for admin actions on user accounts.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class RoleUpdate(BaseModel):
    role: Literal["user", "admin"]


class LimitsUpdate(BaseModel):
    """Usage limits. ``features`` accepts a CSV string or a list."""

    model_config = ConfigDict(populate_by_name=True)

    max_concurrent_programs: Optional[int] = Field(None, ge=0, alias="maxConcurrentPrograms")
    features: Union[str, list[str], None] = None


class HardDeleteRequest(BaseModel):
    """Irreversible deletion must be confirmed explicitly."""

    confirm: bool = False
