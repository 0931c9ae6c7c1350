"""Login state machine: decides where each request goes next."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from core.auth.constants import (
    ASSERTION_PROVIDER_ID,
    HOME_PATH,
    LOGIN_PATH,
    NATIVE_PROVIDER_ID,
    REGISTER_PATH,
)
from schemas.api.chooser import LoginRequest
from services.account_store import Account, AccountStore
from services.auth.common import (
    AuthorizationHint,
    DuplicateAccount,
    IdentityRecord,
    InputMissing,
    NotFound,
    RequestContext,
    UnsupportedOperation,
    VerificationError,
)
from services.auth.passwords import hash_password, verify_password
from services.auth.providers import ProviderAdapter, ProviderRegistry
from services.auth.reconciler import AccountReconciler
from services.auth.sessions import SessionCarrier, SessionManager
from services.auth.state_tokens import StateTokenIssuer, new_browser_nonce
from services.login_metrics import record_login


@dataclass(frozen=True)
class Redirect:
    location: str
    # Set when the redirect starts a provider flow; the web layer stores it in the flow cookie.
    flow_nonce: Optional[str] = None


@dataclass(frozen=True)
class Bootstrap:
    """Session established; the client should cache these profile fields."""

    account: Account

    @property
    def fields(self) -> Dict[str, str]:
        return self.account.public_profile()


@dataclass(frozen=True)
class AuthenticatedView:
    account: Account


@dataclass(frozen=True)
class JsonReply:
    payload: Optional[Dict[str, Any]]
    status_code: int = 200
    flow_nonce: Optional[str] = None


FlowResult = Union[Redirect, Bootstrap, AuthenticatedView, JsonReply]


def color_projection(account: Account) -> Dict[str, Any]:
    """Fields the native client may see."""
    payload: Dict[str, Any] = {"email": account.email, "color": account.color}
    if account.display_name:
        payload["displayName"] = account.display_name
    return payload


class LoginOrchestrator:
    """Sequences state tokens, providers, reconciliation and sessions per route.

    Every collaborator is injected; one instance serves one request.
    """

    def __init__(
        self,
        *,
        store: AccountStore,
        providers: ProviderRegistry,
        sessions: SessionManager,
        logger: logging.Logger,
        state_tokens: Optional[StateTokenIssuer] = None,
        reconciler: Optional[AccountReconciler] = None,
    ):
        self.store = store
        self.providers = providers
        self.sessions = sessions
        self.logger = logger
        self.state_tokens = state_tokens or StateTokenIssuer(store)
        self.reconciler = reconciler or AccountReconciler(store)

    # Status and entry

    def home(self, carrier: SessionCarrier, context: RequestContext) -> FlowResult:
        email = self.sessions.resolve(carrier, context)
        if not email:
            return Redirect(LOGIN_PATH)
        account = self.store.find_by_email(email)
        if account is None:
            self.logger.warning("Session for %s has no stored account; clearing it.", email)
            self.sessions.terminate(carrier)
            return Redirect(LOGIN_PATH)
        return AuthenticatedView(account)

    def account_status(self, email: Optional[str], auth_url: Optional[str], context: RequestContext) -> JsonReply:
        """Answer the account chooser status query for ``email``."""
        adapter = self.providers.by_chooser_url(auth_url)
        if adapter is not None:
            redirect = self._authorization_redirect(adapter, email, context)
            return JsonReply({"authUri": redirect.location}, flow_nonce=redirect.flow_nonce)
        return JsonReply({"registered": self.store.find_by_email(email) is not None})

    def logout(self, carrier: SessionCarrier) -> Redirect:
        self.sessions.terminate(carrier)
        return Redirect(HOME_PATH)

    # Password and registration

    def new_login(self, request: LoginRequest, carrier: SessionCarrier, context: RequestContext) -> FlowResult:
        if request.providerId and not request.password:
            return self.begin_federated(request.providerId, request.email, context)
        back = request.destination or REGISTER_PATH
        email = self._require(request.email, "email", back)
        password = self._require(request.password, "password", back)

        if self.store.find_by_email(email) is not None:
            record_login("register", "local", False)
            raise DuplicateAccount(email)
        account = Account(email=email, display_name=request.displayName, password_hash=hash_password(password))
        if not self.store.create(account):
            record_login("register", "local", False)
            raise DuplicateAccount(email)
        self.logger.info("Registered password account %s.", email)
        record_login("register", "local", True)
        return self._establish(carrier, account)

    def done_login(self, request: LoginRequest, carrier: SessionCarrier, context: RequestContext) -> FlowResult:
        if request.providerId and not request.password:
            return self.begin_federated(request.providerId, request.email, context)
        back = request.destination or LOGIN_PATH
        email = self._require(request.email, "email", back)
        password = self._require(request.password, "password", back)

        account = self.store.find_by_email(email)
        if account is None:
            return Redirect(REGISTER_PATH)
        if account.provider_id:
            # Accounts that have federated never fall back to a password.
            self.logger.info("Routing %s to %s instead of checking a password.", email, account.provider_id)
            return self.begin_federated(account.provider_id, account.email, context)
        if not verify_password(account.password_hash, password):
            record_login("password", "local", False)
            raise VerificationError("Incorrect email or password.", code="auth.invalid_credentials")
        record_login("password", "local", True)
        return self._establish(carrier, account)

    # Federated flows

    def begin_federated(self, provider_id: str, email_hint: Optional[str], context: RequestContext) -> Redirect:
        return self._authorization_redirect(self._adapter(provider_id), email_hint, context)

    def complete_redirect(
        self,
        provider_id: str,
        *,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str],
        error_description: Optional[str],
        carrier: SessionCarrier,
        context: RequestContext,
    ) -> Bootstrap:
        try:
            adapter = self._adapter(provider_id)
            if error:
                raise VerificationError(error_description or error, provider_id=provider_id, code="auth.provider_error")
            email_hint = self.state_tokens.resolve_for(state, provider_id, context.flow_nonce)
            if email_hint is None:
                raise VerificationError(
                    "This sign-in request expired or was not started here.",
                    provider_id=provider_id,
                    code="auth.invalid_state",
                )
            identity = adapter.verify_callback(code or "", context=context)
        except VerificationError:
            record_login("federated", provider_id, False)
            raise
        if email_hint and email_hint != identity.email:
            self.logger.warning(
                "%s returned %s for a request started as %s; trusting the provider.",
                provider_id,
                identity.email,
                email_hint,
            )
        return self._finish_federated("federated", identity, carrier)

    def complete_assertion(
        self,
        assertion: Optional[str],
        state: Optional[str],
        carrier: SessionCarrier,
        context: RequestContext,
    ) -> Bootstrap:
        try:
            adapter = self._adapter(ASSERTION_PROVIDER_ID)
            if state and self.state_tokens.resolve(state) is None:
                raise VerificationError(
                    "This sign-in request expired or was not started here.",
                    provider_id=ASSERTION_PROVIDER_ID,
                    code="auth.invalid_state",
                )
            identity = adapter.verify_callback(assertion or "", context=context)
        except VerificationError:
            record_login("assertion", ASSERTION_PROVIDER_ID, False)
            raise
        return self._finish_federated("assertion", identity, carrier)

    # Native client data API

    def native_get_color(self, id_token: Optional[str]) -> JsonReply:
        account = self._native_account(id_token)
        return JsonReply(color_projection(account))

    def native_set_color(self, id_token: Optional[str], color: Optional[str]) -> JsonReply:
        account = self._native_account(id_token)
        account.color = color
        self.store.save(account)
        return JsonReply(None)

    def set_color(self, color: Optional[str], carrier: SessionCarrier, context: RequestContext) -> Redirect:
        email = self.sessions.resolve(carrier, context)
        account = self.store.find_by_email(email) if email else None
        if account is None:
            return Redirect(LOGIN_PATH)
        account.color = color
        self.store.save(account)
        return Redirect(HOME_PATH)

    # Helpers

    def _require(self, value: Optional[str], field_name: str, back: str) -> str:
        if not value:
            raise InputMissing(field_name, fallback=back)
        return value

    def _adapter(self, provider_id: str) -> ProviderAdapter:
        adapter = self.providers.get(provider_id)
        if adapter is None:
            raise VerificationError(
                f"Sign-in with '{provider_id}' is not available.",
                provider_id=provider_id,
                code="auth.unknown_provider",
            )
        return adapter

    def _authorization_redirect(
        self,
        adapter: ProviderAdapter,
        email_hint: Optional[str],
        context: RequestContext,
    ) -> Redirect:
        if not adapter.supports_redirect:
            raise UnsupportedOperation(adapter.provider_id, "redirect login")
        hint = AuthorizationHint(email=email_hint)
        if email_hint:
            existing = self.store.find_by_email(email_hint)
            if existing is not None and existing.provider_id == adapter.provider_id:
                hint = AuthorizationHint(
                    email=existing.email,
                    display_name=existing.display_name,
                    photo_url=existing.photo_url,
                    returning=True,
                )
        nonce = context.flow_nonce or new_browser_nonce()
        state = self.state_tokens.issue(email_hint, provider_id=adapter.provider_id, browser_nonce=nonce)
        return Redirect(adapter.build_authorization_uri(hint, context, state), flow_nonce=nonce)

    def _finish_federated(self, flow: str, identity: IdentityRecord, carrier: SessionCarrier) -> Bootstrap:
        existing = self.store.find_by_email(identity.email)
        account, changed = self.reconciler.reconcile(existing, identity)
        if changed:
            self.logger.info("Account %s reconciled from %s.", account.email, identity.provider_id)
        record_login(flow, identity.provider_id, True)
        return self._establish(carrier, account)

    def _establish(self, carrier: SessionCarrier, account: Account) -> Bootstrap:
        self.sessions.establish(carrier, account.email)
        return Bootstrap(account)

    def _native_account(self, id_token: Optional[str]) -> Account:
        native = self.providers.get(NATIVE_PROVIDER_ID)
        if native is None:
            raise NotFound("Native sign-in is not configured.")
        try:
            identity = native.verify_callback(id_token or "")
        except VerificationError as exc:
            record_login("native", NATIVE_PROVIDER_ID, False)
            raise NotFound(str(exc)) from exc
        account = self.store.find_by_email(identity.email)
        if account is None:
            raise NotFound()
        record_login("native", identity.provider_id, True)
        return account


__all__ = [
    "AuthenticatedView",
    "Bootstrap",
    "FlowResult",
    "JsonReply",
    "LoginOrchestrator",
    "Redirect",
    "color_projection",
]
