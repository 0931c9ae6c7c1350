"""Key-value persistence for accounts and state-token bindings."""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.auth.constants import BOOTSTRAP_FIELDS
from core.logging import get_logger
from models.account import AccountModel, StateBindingModel

logger = get_logger(__name__)

_PROFILE_FIELDS = ("display_name", "photo_url", "provider_id")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


@dataclass
class Account:
    """Durable identity record keyed by email."""

    email: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    provider_id: Optional[str] = None
    password_hash: Optional[str] = field(default=None, repr=False)
    color: Optional[str] = None

    @property
    def is_federated(self) -> bool:
        return bool(self.provider_id)

    def public_profile(self) -> Dict[str, str]:
        """Account chooser fields, skipping anything empty."""
        candidates = {
            "email": self.email,
            "displayName": self.display_name,
            "photoUrl": self.photo_url,
            "providerId": self.provider_id,
        }
        return {key: candidates[key] for key in BOOTSTRAP_FIELDS if candidates[key]}


def _to_account(row: AccountModel) -> Account:
    return Account(
        email=row.email,
        display_name=row.display_name,
        photo_url=row.photo_url,
        provider_id=row.provider_id,
        password_hash=row.password_hash,
        color=row.color,
    )


def _as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AccountStore:
    """SQLAlchemy-backed store; one instance per request-scoped session."""

    def __init__(self, session: Session, *, state_ttl_seconds: int = 600):
        self.session = session
        self.state_ttl_seconds = state_ttl_seconds

    def find_by_email(self, email: Optional[str]) -> Optional[Account]:
        key = normalize_email(email)
        if not key:
            return None
        row = self.session.get(AccountModel, key)
        return _to_account(row) if row is not None else None

    def create(self, account: Account) -> bool:
        """Insert the account unless the email already exists.

        Returns False when another writer got there first; the primary key on
        ``accounts.email`` makes the insert atomic.
        """
        key = normalize_email(account.email)
        if self.session.get(AccountModel, key) is not None:
            return False
        row = AccountModel(
            email=key,
            display_name=account.display_name,
            photo_url=account.photo_url,
            provider_id=account.provider_id,
            password_hash=account.password_hash,
            color=account.color,
        )
        self.session.add(row)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info("Account %s already exists; insert skipped.", row.email)
            return False
        return True

    def save(self, account: Account) -> None:
        key = normalize_email(account.email)
        row = self.session.get(AccountModel, key)
        if row is None:
            if self.create(account):
                return
            # Lost a creation race: update the winner's row instead.
            row = self.session.get(AccountModel, key)
            if row is None:
                raise RuntimeError(f"Account {key} vanished after a conflicting insert.")
        for name in _PROFILE_FIELDS + ("password_hash", "color"):
            setattr(row, name, getattr(account, name))
        self.session.commit()

    def bind_state(
        self,
        token: str,
        email_hint: Optional[str],
        *,
        provider_id: str = "",
        browser_binding: str = "",
    ) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.state_ttl_seconds)
        self.session.add(
            StateBindingModel(
                token=token,
                email_hint=normalize_email(email_hint),
                provider_id=provider_id,
                browser_binding=browser_binding,
                expires_at=expires_at,
            )
        )
        self.session.commit()

    def resolve_state(
        self,
        token: Optional[str],
        *,
        provider_id: Optional[str] = None,
        browser_binding: Optional[str] = None,
    ) -> Optional[str]:
        """Return the bound email hint ("" when unbound) or None for unknown/expired tokens.

        ``provider_id`` and ``browser_binding``, when given, must match what the
        token was issued with.
        """
        if not token:
            return None
        row = self.session.get(StateBindingModel, token)
        if row is None:
            return None
        if _as_utc(row.expires_at) <= datetime.now(timezone.utc):
            logger.info("State token expired at %s.", row.expires_at)
            return None
        if provider_id is not None and (row.provider_id or "") != provider_id:
            logger.warning("State token issued for %r presented to %r.", row.provider_id, provider_id)
            return None
        if browser_binding is not None:
            bound = row.browser_binding or ""
            if not bound or not hmac.compare_digest(bound, browser_binding):
                logger.warning("State token presented by a browser that did not start the login.")
                return None
        return row.email_hint or ""


__all__ = ["Account", "AccountStore", "normalize_email"]
