"""Runtime settings for the chooser service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.auth.constants import BEARER_COOKIE_DEFAULT, FLOW_COOKIE_DEFAULT, SESSION_COOKIE_DEFAULT
from core.env import env_bool, env_float, env_int, env_str


@dataclass(frozen=True)
class ChooserSettings:
    """Secrets, cookie options, TTLs and timeouts resolved from the environment."""

    session_secret: str
    session_cookie_name: str
    session_ttl_seconds: int
    cookie_secure: bool
    bearer_secret: str
    bearer_cookie_name: str
    flow_cookie_name: str
    token_issuer: str
    token_audience: str
    token_algorithm: str
    state_ttl_seconds: int
    provider_timeout_seconds: float
    provider_connect_timeout_seconds: float
    public_base_url: Optional[str]
    account_chooser_script: str
    app_title: str


def load_settings() -> ChooserSettings:
    session_secret = env_str("CHOOSER_SESSION_SECRET")
    if not session_secret:
        raise RuntimeError("CHOOSER_SESSION_SECRET must be set to sign session cookies.")
    return ChooserSettings(
        session_secret=session_secret,
        session_cookie_name=env_str("CHOOSER_SESSION_COOKIE", SESSION_COOKIE_DEFAULT) or SESSION_COOKIE_DEFAULT,
        session_ttl_seconds=env_int("CHOOSER_SESSION_TTL_SECONDS", 60 * 60 * 24 * 30, minimum=300),
        cookie_secure=env_bool("CHOOSER_COOKIE_SECURE", True),
        bearer_secret=env_str("CHOOSER_GAT_SECRET") or session_secret,
        bearer_cookie_name=env_str("CHOOSER_GAT_COOKIE", BEARER_COOKIE_DEFAULT) or BEARER_COOKIE_DEFAULT,
        flow_cookie_name=env_str("CHOOSER_FLOW_COOKIE", FLOW_COOKIE_DEFAULT) or FLOW_COOKIE_DEFAULT,
        token_issuer=env_str("CHOOSER_TOKEN_ISSUER", "favcolor") or "favcolor",
        token_audience=env_str("CHOOSER_TOKEN_AUDIENCE", "favcolor-web") or "favcolor-web",
        token_algorithm=env_str("CHOOSER_TOKEN_ALG", "HS256") or "HS256",
        state_ttl_seconds=env_int("CHOOSER_STATE_TTL_SECONDS", 600, minimum=30),
        provider_timeout_seconds=env_float("CHOOSER_PROVIDER_TIMEOUT_SECONDS", 10.0, minimum=1.0),
        provider_connect_timeout_seconds=env_float("CHOOSER_PROVIDER_CONNECT_TIMEOUT_SECONDS", 5.0, minimum=0.5),
        public_base_url=env_str("CHOOSER_BASE_URL"),
        account_chooser_script=env_str("CHOOSER_AC_SCRIPT_URL", "https://www.accountchooser.com/ac.js")
        or "https://www.accountchooser.com/ac.js",
        app_title=env_str("CHOOSER_APP_TITLE", "FavColor") or "FavColor",
    )


__all__ = ["ChooserSettings", "load_settings"]
