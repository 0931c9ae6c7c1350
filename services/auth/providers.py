"""Identity provider adapters and the registry that selects them by id."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple
from urllib.parse import urlencode

import httpx

from core.auth.constants import ACCOUNT_CHOOSER_ALIASES, ACCOUNT_CHOOSER_URLS
from core.env import env_csv, env_str
from core.logging import get_logger
from services.auth.common import (
    AuthorizationHint,
    IdentityRecord,
    RequestContext,
    UnsupportedOperation,
    VerificationError,
)

logger = get_logger(__name__)


class ProviderAdapter:
    """Capability set shared by every identity provider.

    Redirect providers override ``build_authorization_uri``; every provider
    implements ``verify_callback``.
    """

    provider_id: str = ""
    display_name: str = ""
    chooser_url: Optional[str] = None
    chooser_aliases: Tuple[str, ...] = ()
    supports_redirect: bool = False

    def build_authorization_uri(
        self,
        hint: AuthorizationHint,
        callback_context: RequestContext,
        state: str,
    ) -> str:
        raise UnsupportedOperation(self.provider_id, "redirect login")

    def verify_callback(self, credential: str, *, context: Optional[RequestContext] = None) -> IdentityRecord:
        raise NotImplementedError


@dataclass(frozen=True)
class OAuthProviderConfig:
    provider_id: str
    display_name: str
    client_id: Optional[str]
    client_secret: Optional[str]
    authorization_url: str
    token_url: str
    userinfo_url: str
    scopes: Tuple[str, ...] = ("openid", "email", "profile")
    redirect_uri: Optional[str] = None
    first_visit_prompt: Optional[str] = "select_account"
    email_claim: str = "email"
    name_claim: str = "name"
    photo_claim: str = "picture"

    @property
    def enabled(self) -> bool:
        return bool(self.client_id and self.client_secret)


_OAUTH_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "google": {
        "display_name": "Google",
        "authorization_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://openidconnect.googleapis.com/v1/userinfo",
        "scopes": ("openid", "email", "profile"),
    },
    "facebook": {
        "display_name": "Facebook",
        "authorization_url": "https://www.facebook.com/v19.0/dialog/oauth",
        "token_url": "https://graph.facebook.com/v19.0/oauth/access_token",
        "userinfo_url": "https://graph.facebook.com/me?fields=id,name,email,picture",
        "scopes": ("email", "public_profile"),
        "first_visit_prompt": None,
    },
    "microsoft": {
        "display_name": "Microsoft",
        "authorization_url": "https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        "token_url": "https://login.microsoftonline.com/common/oauth2/v2.0/token",
        "userinfo_url": "https://graph.microsoft.com/oidc/userinfo",
        "scopes": ("openid", "email", "profile"),
    },
}


def load_oauth_config(provider_id: str) -> OAuthProviderConfig:
    """Read ``CHOOSER_<ID>_*`` variables on top of the built-in endpoint defaults."""
    defaults = _OAUTH_DEFAULTS.get(provider_id, {})
    prefix = f"CHOOSER_{provider_id.upper()}_"
    return OAuthProviderConfig(
        provider_id=provider_id,
        display_name=env_str(f"{prefix}DISPLAY_NAME", defaults.get("display_name")) or provider_id.title(),
        client_id=env_str(f"{prefix}CLIENT_ID"),
        client_secret=env_str(f"{prefix}CLIENT_SECRET"),
        authorization_url=env_str(f"{prefix}AUTHORIZATION_URL", defaults.get("authorization_url")) or "",
        token_url=env_str(f"{prefix}TOKEN_URL", defaults.get("token_url")) or "",
        userinfo_url=env_str(f"{prefix}USERINFO_URL", defaults.get("userinfo_url")) or "",
        scopes=env_csv(f"{prefix}SCOPES", defaults.get("scopes", ("openid", "email", "profile"))),
        redirect_uri=env_str(f"{prefix}REDIRECT_URI"),
        first_visit_prompt=env_str(f"{prefix}PROMPT", defaults.get("first_visit_prompt", "select_account")),
    )


def _coerce_photo(value: Any) -> Optional[str]:
    # Graph API nests the picture as {"data": {"url": ...}}.
    if isinstance(value, Mapping):
        data = value.get("data")
        if isinstance(data, Mapping):
            value = data.get("url")
        else:
            value = value.get("url")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class OAuthRedirectProvider(ProviderAdapter):
    """OAuth2 authorization-code flow: redirect out, exchange the code on return."""

    supports_redirect = True

    def __init__(
        self,
        config: OAuthProviderConfig,
        *,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config
        self.provider_id = config.provider_id
        self.display_name = config.display_name
        self.chooser_url = ACCOUNT_CHOOSER_URLS.get(config.provider_id)
        self.chooser_aliases = ACCOUNT_CHOOSER_ALIASES.get(config.provider_id, ())
        self.timeout = timeout or httpx.Timeout(10.0, connect=5.0)
        self.transport = transport

    def redirect_uri(self, context: Optional[RequestContext]) -> str:
        if self.config.redirect_uri:
            return self.config.redirect_uri
        if context is None:
            raise VerificationError("Callback URL is unknown.", provider_id=self.provider_id)
        return context.callback_url(f"/oauth/{self.provider_id}/callback")

    def build_authorization_uri(
        self,
        hint: AuthorizationHint,
        callback_context: RequestContext,
        state: str,
    ) -> str:
        params: Dict[str, Any] = {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri(callback_context),
            "scope": " ".join(self.config.scopes),
            "state": state,
        }
        if hint.email:
            params["login_hint"] = hint.email
        # A returning account already granted consent; let the IdP skip its account picker.
        if not hint.returning and self.config.first_visit_prompt:
            params["prompt"] = self.config.first_visit_prompt
        return f"{self.config.authorization_url}?{urlencode(params)}"

    def verify_callback(self, credential: str, *, context: Optional[RequestContext] = None) -> IdentityRecord:
        code = (credential or "").strip()
        if not code:
            raise VerificationError("Authorization code is missing.", provider_id=self.provider_id)
        token_request = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri(context),
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                token_resp = client.post(self.config.token_url, data=token_request, headers={"Accept": "application/json"})
                token_resp.raise_for_status()
                token_payload = token_resp.json()
                if not isinstance(token_payload, Mapping):
                    raise VerificationError(
                        f"{self.display_name} returned a malformed token response.",
                        provider_id=self.provider_id,
                    )
                access_token = token_payload.get("access_token")
                if not access_token:
                    raise VerificationError("Token response carried no access_token.", provider_id=self.provider_id)
                userinfo_resp = client.get(
                    self.config.userinfo_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                userinfo_resp.raise_for_status()
                userinfo = userinfo_resp.json()
        except httpx.HTTPError as exc:
            logger.warning("%s code exchange failed: %s", self.provider_id, exc)
            raise VerificationError(
                f"Could not complete sign-in with {self.display_name}.",
                provider_id=self.provider_id,
            ) from exc
        except ValueError as exc:
            raise VerificationError(f"{self.display_name} returned a malformed response.", provider_id=self.provider_id) from exc
        return self._identity_from_userinfo(userinfo)

    def _identity_from_userinfo(self, userinfo: Any) -> IdentityRecord:
        if not isinstance(userinfo, Mapping):
            raise VerificationError(
                f"{self.display_name} returned malformed profile data.",
                provider_id=self.provider_id,
            )
        email = userinfo.get(self.config.email_claim) or userinfo.get("email") or userinfo.get("preferred_username")
        if not email:
            raise VerificationError(f"{self.display_name} did not share an email address.", provider_id=self.provider_id)
        if userinfo.get("email_verified") is False:
            raise VerificationError(f"{self.display_name} reports the email as unverified.", provider_id=self.provider_id)
        name = userinfo.get(self.config.name_claim) or userinfo.get("given_name")
        return IdentityRecord(
            email=str(email),
            provider_id=self.provider_id,
            display_name=str(name).strip() or None if name else None,
            photo_url=_coerce_photo(userinfo.get(self.config.photo_claim)),
        )


class ProviderRegistry(Mapping[str, ProviderAdapter]):
    """Provider id -> adapter instance."""

    def __init__(self, adapters: Iterable[ProviderAdapter] = ()):
        self._adapters: Dict[str, ProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.provider_id] = adapter

    def __getitem__(self, provider_id: str) -> ProviderAdapter:
        return self._adapters[provider_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def by_chooser_url(self, url: Optional[str]) -> Optional[ProviderAdapter]:
        """Find the redirect provider account chooser knows under ``url``."""
        if not url:
            return None
        needle = url.strip().rstrip("/").lower()
        for adapter in self._adapters.values():
            if not adapter.supports_redirect or not adapter.chooser_url:
                continue
            known = (adapter.chooser_url,) + tuple(adapter.chooser_aliases)
            if needle in {value.rstrip("/").lower() for value in known}:
                return adapter
        return None


__all__ = [
    "OAuthProviderConfig",
    "OAuthRedirectProvider",
    "ProviderAdapter",
    "ProviderRegistry",
    "load_oauth_config",
]
