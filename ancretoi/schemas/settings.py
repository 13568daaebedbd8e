"""
Account Settings Schemas
========================

Request schemas for the signed-in user's own settings.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PrefsUpdate(BaseModel):
    """Each preference is optional; missing ones stay unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    theme: Optional[Literal["system", "light", "dark"]] = None
    marketing: Optional[bool] = None
    product_updates: Optional[bool] = Field(None, alias="productUpdates")


class ProfileUpdate(BaseModel):
    name: str = Field(max_length=255)


class PasswordChange(BaseModel):
    current: str = ""
    password: str = Field("", max_length=100)
