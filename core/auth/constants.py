"""Centralized constants for login flows."""

from __future__ import annotations

from typing import Dict, Literal, Tuple

LoginFlow = Literal["password", "register", "federated", "assertion", "native"]

REDIRECT_PROVIDER_IDS: Tuple[str, ...] = ("google", "facebook", "microsoft")
ASSERTION_PROVIDER_ID = "saml"
NATIVE_PROVIDER_ID = "native"

# Account chooser identifies IdPs by URL rather than by provider id.
ACCOUNT_CHOOSER_URLS = {
    "google": "https://accounts.google.com",
    "facebook": "https://www.facebook.com",
    "microsoft": "https://login.live.com",
}

# Older account chooser clients post these instead.
ACCOUNT_CHOOSER_ALIASES: Dict[str, Tuple[str, ...]] = {
    "google": ("http://google.com", "https://google.com"),
}

BOOTSTRAP_FIELDS: Tuple[str, ...] = ("email", "displayName", "photoUrl", "providerId")

SESSION_COOKIE_DEFAULT = "chooser_session"
BEARER_COOKIE_DEFAULT = "chooser_gat"
FLOW_COOKIE_DEFAULT = "chooser_flow"

LOGIN_PATH = "/account-login"
REGISTER_PATH = "/account-create"
DUPLICATE_PATH = "/dupe"
HOME_PATH = "/"

__all__ = [
    "ACCOUNT_CHOOSER_ALIASES",
    "ACCOUNT_CHOOSER_URLS",
    "ASSERTION_PROVIDER_ID",
    "BEARER_COOKIE_DEFAULT",
    "BOOTSTRAP_FIELDS",
    "DUPLICATE_PATH",
    "FLOW_COOKIE_DEFAULT",
    "HOME_PATH",
    "LOGIN_PATH",
    "LoginFlow",
    "NATIVE_PROVIDER_ID",
    "REDIRECT_PROVIDER_IDS",
    "REGISTER_PATH",
    "SESSION_COOKIE_DEFAULT",
]
