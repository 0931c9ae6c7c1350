"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.settings import ChooserSettings, load_settings
from database import get_db
from services.account_store import AccountStore
from services.auth.common import RequestContext
from services.auth.orchestrator import LoginOrchestrator
from services.auth.providers import ProviderRegistry
from services.auth.registry import build_provider_registry
from services.auth.sessions import SessionCarrier, SessionManager
from services.page_renderer import PageRenderer

orchestrator_logger = get_logger("chooser.orchestrator")


@lru_cache(maxsize=1)
def get_settings() -> ChooserSettings:
    return load_settings()


@lru_cache(maxsize=1)
def _provider_registry() -> ProviderRegistry:
    return build_provider_registry(get_settings())


def get_provider_registry() -> ProviderRegistry:
    return _provider_registry()


def get_session_manager(settings: ChooserSettings = Depends(get_settings)) -> SessionManager:
    return SessionManager.from_settings(settings)


def get_page_renderer(settings: ChooserSettings = Depends(get_settings)) -> PageRenderer:
    return PageRenderer(settings)


def _extract_bearer(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    value = header_value.strip()
    if value.lower().startswith("bearer "):
        token = value[7:].strip()
        return token or None
    return None


def _same_origin_path(referer: Optional[str], request: Request) -> Optional[str]:
    """Keep the referer only when it points back at this host."""
    if not referer:
        return None
    parts = urlsplit(referer)
    if parts.netloc and parts.netloc != request.url.netloc:
        return None
    path = parts.path or "/"
    if not path.startswith("/") or path.startswith("//"):
        return None
    return f"{path}?{parts.query}" if parts.query else path


def get_request_context(request: Request, settings: ChooserSettings = Depends(get_settings)) -> RequestContext:
    bearer = _extract_bearer(request.headers.get("authorization")) or request.cookies.get(settings.bearer_cookie_name)
    return RequestContext(
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        base_url=settings.public_base_url or str(request.base_url),
        referer=_same_origin_path(request.headers.get("referer"), request),
        bearer_token=bearer,
        flow_nonce=request.cookies.get(settings.flow_cookie_name),
    )


def get_session_carrier(
    request: Request,
    settings: ChooserSettings = Depends(get_settings),
    sessions: SessionManager = Depends(get_session_manager),
    context: RequestContext = Depends(get_request_context),
) -> SessionCarrier:
    return sessions.carrier_for(request.cookies.get(settings.session_cookie_name))


def get_orchestrator(
    db: Session = Depends(get_db),
    settings: ChooserSettings = Depends(get_settings),
    providers: ProviderRegistry = Depends(get_provider_registry),
    sessions: SessionManager = Depends(get_session_manager),
) -> LoginOrchestrator:
    store = AccountStore(db, state_ttl_seconds=settings.state_ttl_seconds)
    return LoginOrchestrator(store=store, providers=providers, sessions=sessions, logger=orchestrator_logger)


__all__ = [
    "get_orchestrator",
    "get_page_renderer",
    "get_provider_registry",
    "get_request_context",
    "get_session_carrier",
    "get_session_manager",
    "get_settings",
]
