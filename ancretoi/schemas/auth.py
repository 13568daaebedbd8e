"""
Authentication Schemas
======================

Pydantic schemas for authentication endpoints.
"""

from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class UserRegister(BaseModel):
    """Request schema for user registration."""

    email: EmailStr
    password: str = Field(min_length=8, max_length=100)
    name: Optional[str] = Field(None, max_length=255)
    marketing: bool = False

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password strength."""
        if not any(c.isalpha() for c in v):
            raise ValueError("Le mot de passe doit contenir au moins une lettre")
        if not any(c.isdigit() for c in v):
            raise ValueError("Le mot de passe doit contenir au moins un chiffre")
        return v


class UserLogin(BaseModel):
    """Request schema for user login."""

    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()


class TokenResponse(BaseModel):
    """Response schema for tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class RefreshTokenRequest(BaseModel):
    """Request schema for token refresh."""

    refresh_token: str


class AuthResponse(BaseModel):
    """Response schema for authentication endpoints."""

    success: bool = True
    data: dict[str, Any]
    message: Optional[str] = None


class LogoutResponse(BaseModel):
    """Response schema for logout."""

    success: bool = True
    message: str = "Déconnecté."


class ForgotPasswordRequest(BaseModel):
    """Any address is accepted; the answer never reveals whether it exists."""

    email: str = Field("", max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = ""
    password: str = Field("", max_length=100)
