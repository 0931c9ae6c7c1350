"""Merge policy for folding a verified identity into the stored account."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional, Tuple

from core.logging import get_logger
from services.account_store import Account, AccountStore
from services.auth.common import IdentityRecord

logger = get_logger(__name__)

_MERGE_FIELDS = ("display_name", "photo_url", "provider_id")


def merge_identity(existing: Optional[Account], incoming: IdentityRecord) -> Tuple[Account, bool]:
    """Pure merge: only empty fields on ``existing`` are filled in."""
    if existing is None:
        account = Account(
            email=incoming.email,
            display_name=incoming.display_name or None,
            photo_url=incoming.photo_url or None,
            provider_id=incoming.provider_id or None,
        )
        return account, True

    updates = {}
    for name in _MERGE_FIELDS:
        current = getattr(existing, name)
        offered = getattr(incoming, name)
        if not current and offered:
            updates[name] = offered
    if not updates:
        return existing, False
    return replace(existing, **updates), True


class AccountReconciler:
    def __init__(self, store: AccountStore):
        self.store = store

    def reconcile(self, existing: Optional[Account], incoming: IdentityRecord) -> Tuple[Account, bool]:
        """Merge ``incoming`` and persist the result when anything changed."""
        account, changed = merge_identity(existing, incoming)
        if not changed:
            return account, False
        if existing is None:
            if self.store.create(account):
                logger.info("Created %s account for %s.", incoming.provider_id, account.email)
                return account, True
            # A concurrent login created the row first; merge into that one.
            winner = self.store.find_by_email(account.email)
            if winner is None:
                raise RuntimeError(f"Account {account.email} missing after a conflicting insert.")
            account, changed = merge_identity(winner, incoming)
            if not changed:
                return account, False
        self.store.save(account)
        logger.info("Updated account %s from %s.", account.email, incoming.provider_id)
        return account, True


__all__ = ["AccountReconciler", "merge_identity"]
