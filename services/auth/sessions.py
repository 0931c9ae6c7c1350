"""Session carriers and the manager that resolves the logged-in email."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from core.logging import get_logger
from core.settings import ChooserSettings
from services.account_store import normalize_email
from services.auth.common import RequestContext

logger = get_logger(__name__)


class SignedTokenCodec:
    """HS256 JWT wrapper shared by the session cookie and the bearer token."""

    def __init__(self, secret: str, *, scope: str, issuer: str, audience: str, algorithm: str = "HS256"):
        self.secret = secret
        self.scope = scope
        self.issuer = issuer
        self.audience = audience
        self.algorithm = algorithm

    def encode(self, email: str, *, ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": normalize_email(email),
            "aud": self.audience,
            "iss": self.issuer,
            "scope": self.scope,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except jwt.ExpiredSignatureError:
            logger.debug("%s token expired.", self.scope)
            return None
        except jwt.InvalidTokenError as exc:
            logger.info("Rejected %s token: %s", self.scope, exc)
            return None
        if payload.get("scope") != self.scope:
            return None
        return payload

    def email_from(self, token: Optional[str]) -> Optional[str]:
        payload = self.decode(token)
        email = normalize_email(payload.get("sub")) if payload else ""
        return email or None


class SessionCarrier:
    """Where the logged-in email lives for the current request."""

    def get(self) -> Optional[str]:
        raise NotImplementedError

    def set(self, email: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class CookieSessionCarrier(SessionCarrier):
    """Backed by a long-lived signed cookie; changes are flushed by the web layer."""

    def __init__(self, codec: SignedTokenCodec, raw_cookie: Optional[str], *, ttl_seconds: int):
        self.codec = codec
        self.ttl_seconds = ttl_seconds
        self._email = codec.email_from(raw_cookie)
        self._presented = bool(raw_cookie)
        self.dirty = False

    def get(self) -> Optional[str]:
        return self._email

    def set(self, email: str) -> None:
        self._email = normalize_email(email) or None
        self.dirty = True

    def clear(self) -> None:
        # Only a cookie the client actually sent needs deleting.
        self.dirty = self.dirty or self._presented
        self._email = None

    def cookie_value(self) -> Optional[str]:
        """Signed value to write, or None when the cookie should be deleted."""
        if not self._email:
            return None
        return self.codec.encode(self._email, ttl_seconds=self.ttl_seconds)


class BearerSessionCarrier(SessionCarrier):
    """Identity derived from a bearer token on every request; nothing is stored."""

    def __init__(self, codec: SignedTokenCodec, token: Optional[str]):
        self.codec = codec
        self.token = token
        self.dirty = False

    def get(self) -> Optional[str]:
        return self.codec.email_from(self.token)

    def set(self, email: str) -> None:
        logger.debug("Bearer session ignores establish for %s.", email)

    def clear(self) -> None:
        logger.debug("Bearer session tokens are revoked elsewhere.")


class SessionManager:
    def __init__(self, cookie_codec: SignedTokenCodec, bearer_codec: SignedTokenCodec, *, cookie_ttl_seconds: int):
        self.cookie_codec = cookie_codec
        self.bearer_codec = bearer_codec
        self.cookie_ttl_seconds = cookie_ttl_seconds

    @classmethod
    def from_settings(cls, settings: ChooserSettings) -> "SessionManager":
        cookie_codec = SignedTokenCodec(
            settings.session_secret,
            scope="session",
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            algorithm=settings.token_algorithm,
        )
        bearer_codec = SignedTokenCodec(
            settings.bearer_secret,
            scope="gat",
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            algorithm=settings.token_algorithm,
        )
        return cls(cookie_codec, bearer_codec, cookie_ttl_seconds=settings.session_ttl_seconds)

    def carrier_for(self, session_cookie: Optional[str]) -> CookieSessionCarrier:
        """Logins always land in the cookie; bearer tokens are only read by ``resolve``."""
        return CookieSessionCarrier(self.cookie_codec, session_cookie, ttl_seconds=self.cookie_ttl_seconds)

    def establish(self, carrier: SessionCarrier, email: str) -> None:
        carrier.set(email)

    def resolve(self, carrier: SessionCarrier, context: RequestContext) -> Optional[str]:
        email = carrier.get()
        if email:
            return email
        return BearerSessionCarrier(self.bearer_codec, context.bearer_token).get()

    def terminate(self, carrier: SessionCarrier) -> None:
        carrier.clear()


__all__ = [
    "BearerSessionCarrier",
    "CookieSessionCarrier",
    "SessionCarrier",
    "SessionManager",
    "SignedTokenCodec",
]
