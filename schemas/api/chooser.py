"""Typed request/response shapes for the chooser routes."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


class LoginRequest(BaseModel):
    """Form fields shared by /new-login and /done-login, validated once at the boundary."""

    email: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = Field(default=None, max_length=1024, repr=False)
    providerId: Optional[str] = Field(default=None, max_length=64)
    idToken: Optional[str] = Field(default=None, repr=False)
    displayName: Optional[str] = Field(default=None, max_length=255)
    destination: Optional[str] = Field(default=None, description="Page to return to when input is missing.")

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        value = _blank_to_none(value)
        return value.lower() if value else None

    @field_validator("providerId")
    @classmethod
    def _normalize_provider(cls, value: Optional[str]) -> Optional[str]:
        value = _blank_to_none(value)
        return value.lower() if value else None

    @field_validator("idToken", "displayName", "destination")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)

    @field_validator("password")
    @classmethod
    def _empty_password(cls, value: Optional[str]) -> Optional[str]:
        # Passwords keep surrounding whitespace; only the empty string counts as absent.
        return value or None


class AccountStatusResponse(BaseModel):
    authUri: Optional[str] = None
    registered: Optional[bool] = None


class ColorResponse(BaseModel):
    email: str
    color: Optional[str] = None
    displayName: Optional[str] = None


__all__ = ["AccountStatusResponse", "ColorResponse", "LoginRequest"]
