"""Auth-related shared utilities."""

from .constants import (
    ACCOUNT_CHOOSER_ALIASES,
    ACCOUNT_CHOOSER_URLS,
    ASSERTION_PROVIDER_ID,
    BOOTSTRAP_FIELDS,
    LoginFlow,
    NATIVE_PROVIDER_ID,
    REDIRECT_PROVIDER_IDS,
)

__all__ = [
    "ACCOUNT_CHOOSER_ALIASES",
    "ACCOUNT_CHOOSER_URLS",
    "ASSERTION_PROVIDER_ID",
    "BOOTSTRAP_FIELDS",
    "LoginFlow",
    "NATIVE_PROVIDER_ID",
    "REDIRECT_PROVIDER_IDS",
]
