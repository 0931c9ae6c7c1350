"""Correlation tokens round-tripped through provider redirects."""

from __future__ import annotations

import hashlib
import secrets
from typing import Optional

from core.logging import get_logger
from services.account_store import AccountStore

logger = get_logger(__name__)

_TOKEN_BYTES = 32


def new_browser_nonce() -> str:
    """Value for the flow cookie that ties state tokens to one browser."""
    return secrets.token_urlsafe(_TOKEN_BYTES)


def _fingerprint(browser_nonce: Optional[str]) -> str:
    if not browser_nonce:
        return ""
    return hashlib.sha256(browser_nonce.encode("utf-8")).hexdigest()


class StateTokenIssuer:
    """Issues unguessable tokens and binds each to an email hint.

    A token is bound to the provider it was issued for and to the browser
    holding ``browser_nonce``. Tokens stay resolvable until the store's TTL
    lapses, so reloading a callback page resolves the same token again.
    """

    def __init__(self, store: AccountStore):
        self.store = store

    def issue(self, email_hint: Optional[str], *, provider_id: str, browser_nonce: str) -> str:
        token = secrets.token_urlsafe(_TOKEN_BYTES)
        self.store.bind_state(
            token,
            email_hint or "",
            provider_id=provider_id,
            browser_binding=_fingerprint(browser_nonce),
        )
        logger.debug("Issued %s state token bound=%s", provider_id, bool(email_hint))
        return token

    def resolve(self, token: Optional[str]) -> Optional[str]:
        """Any live token, whichever provider or browser it was issued to."""
        return self.store.resolve_state(token)

    def resolve_for(self, token: Optional[str], provider_id: str, browser_nonce: Optional[str]) -> Optional[str]:
        """Resolve a redirect callback's token; provider and browser must both match."""
        return self.store.resolve_state(
            token,
            provider_id=provider_id,
            browser_binding=_fingerprint(browser_nonce),
        )


__all__ = ["StateTokenIssuer", "new_browser_nonce"]
