"""Login orchestration submodule exports."""

from __future__ import annotations

from .common import (
    AuthorizationHint,
    ChooserError,
    DuplicateAccount,
    IdentityRecord,
    InputMissing,
    NotFound,
    RequestContext,
    UnsupportedOperation,
    VerificationError,
)
from .orchestrator import AuthenticatedView, Bootstrap, FlowResult, JsonReply, LoginOrchestrator, Redirect
from .providers import OAuthRedirectProvider, ProviderAdapter, ProviderRegistry
from .reconciler import AccountReconciler
from .sessions import BearerSessionCarrier, CookieSessionCarrier, SessionCarrier, SessionManager
from .state_tokens import StateTokenIssuer

__all__ = [
    "AccountReconciler",
    "AuthenticatedView",
    "AuthorizationHint",
    "BearerSessionCarrier",
    "Bootstrap",
    "ChooserError",
    "CookieSessionCarrier",
    "DuplicateAccount",
    "FlowResult",
    "IdentityRecord",
    "InputMissing",
    "JsonReply",
    "LoginOrchestrator",
    "NotFound",
    "OAuthRedirectProvider",
    "ProviderAdapter",
    "ProviderRegistry",
    "Redirect",
    "RequestContext",
    "SessionCarrier",
    "SessionManager",
    "StateTokenIssuer",
    "UnsupportedOperation",
    "VerificationError",
]
