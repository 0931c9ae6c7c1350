"""Shared types and the error taxonomy for login flows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from services.account_store import normalize_email


class ChooserError(RuntimeError):
    """Base error carrying a stable code and the HTTP status it maps to."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        *,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.extra = dict(extra or {})


class InputMissing(ChooserError):
    """A required form field was absent; the caller is sent back where they came from."""

    def __init__(self, field_name: str, *, fallback: str):
        super().__init__("auth.input_missing", f"Missing required field: {field_name}.", 303)
        self.field_name = field_name
        self.fallback = fallback


class VerificationError(ChooserError):
    """A provider rejected the credential or could not be reached."""

    def __init__(self, message: str, *, provider_id: Optional[str] = None, code: str = "auth.verification_failed"):
        super().__init__(code, message, 403, extra={"providerId": provider_id} if provider_id else None)
        self.provider_id = provider_id


class NotFound(ChooserError):
    def __init__(self, message: str = "No account for that email."):
        super().__init__("auth.not_found", message, 404)


class DuplicateAccount(ChooserError):
    def __init__(self, email: str):
        super().__init__("auth.email_taken", f"An account for {email} already exists.", 303)
        self.email = email


class UnsupportedOperation(ChooserError):
    def __init__(self, provider_id: str, operation: str):
        super().__init__(
            "auth.unsupported_operation",
            f"Provider '{provider_id}' does not support {operation}.",
            403,
        )
        self.provider_id = provider_id


@dataclass(frozen=True)
class IdentityRecord:
    """Provider-normalised result of a successful external authentication."""

    email: str
    provider_id: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "email", normalize_email(self.email))


@dataclass(frozen=True)
class AuthorizationHint:
    """Profile fields used to pre-fill an outbound authorization request."""

    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    returning: bool = False


@dataclass(frozen=True)
class RequestContext:
    ip: Optional[str]
    user_agent: Optional[str]
    base_url: str = "http://localhost:8000"
    referer: Optional[str] = None
    bearer_token: Optional[str] = None
    flow_nonce: Optional[str] = None

    def callback_url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


__all__ = [
    "AuthorizationHint",
    "ChooserError",
    "DuplicateAccount",
    "IdentityRecord",
    "InputMissing",
    "NotFound",
    "RequestContext",
    "UnsupportedOperation",
    "VerificationError",
]
