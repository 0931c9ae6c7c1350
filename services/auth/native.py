"""Native-client provider: verifies ID tokens a trusted mobile app already obtained."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import jwt
from jwt import PyJWKClient

from core.auth.constants import NATIVE_PROVIDER_ID
from core.env import env_csv, env_float, env_str
from core.logging import get_logger
from services.auth.common import IdentityRecord, RequestContext, VerificationError
from services.auth.providers import ProviderAdapter

logger = get_logger(__name__)

_ASYMMETRIC_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256"]


@dataclass(frozen=True)
class NativeTokenConfig:
    audiences: Tuple[str, ...]
    issuers: Tuple[str, ...]
    jwks_url: Optional[str] = None
    shared_secret: Optional[str] = None
    upstream_provider_id: str = "google"
    leeway_seconds: float = 30.0
    timeout_seconds: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.audiences and (self.jwks_url or self.shared_secret))


def load_native_config() -> NativeTokenConfig:
    return NativeTokenConfig(
        audiences=env_csv("CHOOSER_NATIVE_AUDIENCES"),
        issuers=env_csv("CHOOSER_NATIVE_ISSUERS", ("https://accounts.google.com", "accounts.google.com")),
        jwks_url=env_str("CHOOSER_NATIVE_JWKS_URL", "https://www.googleapis.com/oauth2/v3/certs"),
        shared_secret=env_str("CHOOSER_NATIVE_SHARED_SECRET"),
        upstream_provider_id=env_str("CHOOSER_NATIVE_PROVIDER_ID", "google") or "google",
        leeway_seconds=env_float("CHOOSER_NATIVE_LEEWAY_SECONDS", 30.0, minimum=0.0),
        timeout_seconds=env_float("CHOOSER_PROVIDER_TIMEOUT_SECONDS", 10.0, minimum=1.0),
    )


class NativeIdTokenProvider(ProviderAdapter):
    """ID tokens are checked for signature, audience, issuer and expiry.

    A shared secret takes precedence over the JWKS endpoint so first-party
    clients can mint HS256 tokens without a key server.
    """

    provider_id = NATIVE_PROVIDER_ID
    display_name = "Mobile app"

    def __init__(self, config: NativeTokenConfig, *, jwks_client: Optional[PyJWKClient] = None):
        self.config = config
        self._jwks_client = jwks_client

    def _signing_key(self, token: str) -> Tuple[Any, list]:
        if self.config.shared_secret:
            return self.config.shared_secret, ["HS256"]
        if self._jwks_client is None:
            if not self.config.jwks_url:
                raise VerificationError("No ID token verification key is configured.", provider_id=self.provider_id)
            self._jwks_client = PyJWKClient(self.config.jwks_url, timeout=int(self.config.timeout_seconds))
        return self._jwks_client.get_signing_key_from_jwt(token).key, _ASYMMETRIC_ALGORITHMS

    def decode(self, credential: str) -> Dict[str, Any]:
        token = (credential or "").strip()
        if not token:
            raise VerificationError("ID token is missing.", provider_id=self.provider_id)
        if not self.config.audiences:
            raise VerificationError("No ID token audience is configured.", provider_id=self.provider_id)
        try:
            key, algorithms = self._signing_key(token)
            claims = jwt.decode(
                token,
                key,
                algorithms=algorithms,
                audience=list(self.config.audiences),
                leeway=self.config.leeway_seconds,
                options={"require": ["exp", "aud", "iss"]},
            )
        except jwt.PyJWTError as exc:
            logger.info("ID token rejected: %s", exc)
            raise VerificationError("The ID token could not be verified.", provider_id=self.provider_id) from exc
        if self.config.issuers and claims.get("iss") not in self.config.issuers:
            raise VerificationError("The ID token was issued by an unexpected party.", provider_id=self.provider_id)
        return claims

    def verify_callback(self, credential: str, *, context: Optional[RequestContext] = None) -> IdentityRecord:
        claims = self.decode(credential)
        email = claims.get("email")
        if not email:
            raise VerificationError("The ID token carries no email claim.", provider_id=self.provider_id)
        if claims.get("email_verified") is False:
            raise VerificationError("The ID token email is unverified.", provider_id=self.provider_id)
        return IdentityRecord(
            email=str(email),
            provider_id=self.config.upstream_provider_id,
            display_name=claims.get("name"),
            photo_url=claims.get("picture"),
        )


__all__ = ["NativeIdTokenProvider", "NativeTokenConfig", "load_native_config"]
