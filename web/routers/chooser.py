"""Login, registration and colour endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Form, Response, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError

from core.auth.constants import DUPLICATE_PATH, LOGIN_PATH, REGISTER_PATH
from core.logging import get_logger
from core.settings import ChooserSettings
from schemas.api.chooser import AccountStatusResponse, LoginRequest
from services.auth.common import (
    ChooserError,
    DuplicateAccount,
    InputMissing,
    NotFound,
    RequestContext,
)
from services.auth.orchestrator import (
    AuthenticatedView,
    Bootstrap,
    FlowResult,
    JsonReply,
    LoginOrchestrator,
    Redirect,
)
from services.auth.providers import ProviderRegistry
from services.auth.saml import SamlAssertionProvider
from services.auth.sessions import CookieSessionCarrier, SessionCarrier
from services.page_renderer import PageRenderer
from web.deps import (
    get_orchestrator,
    get_page_renderer,
    get_provider_registry,
    get_request_context,
    get_session_carrier,
    get_settings,
)

logger = get_logger(__name__)

router = APIRouter(tags=["Chooser"])


def _commit_session(response: Response, carrier: SessionCarrier, settings: ChooserSettings) -> Response:
    if not isinstance(carrier, CookieSessionCarrier) or not carrier.dirty:
        return response
    value = carrier.cookie_value()
    if value is None:
        response.delete_cookie(settings.session_cookie_name, path="/")
        return response
    response.set_cookie(
        key=settings.session_cookie_name,
        value=value,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    return response


def _commit_flow(response: Response, flow_nonce: Optional[str], settings: ChooserSettings) -> Response:
    if flow_nonce:
        response.set_cookie(
            key=settings.flow_cookie_name,
            value=flow_nonce,
            max_age=settings.state_ttl_seconds,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
            path="/",
        )
    return response


def _respond(
    result: FlowResult,
    carrier: SessionCarrier,
    renderer: PageRenderer,
    settings: ChooserSettings,
) -> Response:
    if isinstance(result, Redirect):
        response: Response = RedirectResponse(result.location, status_code=status.HTTP_303_SEE_OTHER)
    elif isinstance(result, Bootstrap):
        response = HTMLResponse(renderer.bootstrap(result.fields))
    elif isinstance(result, AuthenticatedView):
        response = HTMLResponse(renderer.color_chooser(result.account))
    elif isinstance(result, JsonReply):
        if result.payload is None:
            response = Response(status_code=result.status_code)
        else:
            response = JSONResponse(result.payload, status_code=result.status_code)
    else:  # pragma: no cover - exhaustive over FlowResult
        raise TypeError(f"Unhandled flow result {result!r}")
    if isinstance(result, (Redirect, JsonReply)):
        _commit_flow(response, result.flow_nonce, settings)
    return _commit_session(response, carrier, settings)


def _fail(exc: ChooserError, renderer: PageRenderer) -> Response:
    if isinstance(exc, InputMissing):
        return RedirectResponse(exc.fallback, status_code=status.HTTP_303_SEE_OTHER)
    if isinstance(exc, DuplicateAccount):
        return RedirectResponse(DUPLICATE_PATH, status_code=status.HTTP_303_SEE_OTHER)
    if isinstance(exc, NotFound):
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    logger.info("Login flow failed: code=%s message=%s", exc.code, exc)
    return HTMLResponse(renderer.auth_failed(str(exc)), status_code=exc.status_code)


def _login_request(
    context: RequestContext,
    fallback: str,
    email: Optional[str],
    password: Optional[str],
    provider_id: Optional[str],
    id_token: Optional[str],
    display_name: Optional[str],
) -> LoginRequest:
    try:
        return LoginRequest(
            email=email,
            password=password,
            providerId=provider_id,
            idToken=id_token,
            displayName=display_name,
            destination=context.referer,
        )
    except ValidationError as exc:
        field_name = ".".join(str(part) for part in exc.errors()[0]["loc"]) if exc.errors() else "input"
        raise InputMissing(field_name, fallback=context.referer or fallback) from exc


@router.get("/", summary="Colour chooser or redirect to login")
def home_route(
    orchestrator: LoginOrchestrator = Depends(get_orchestrator),
    carrier: SessionCarrier = Depends(get_session_carrier),
    context: RequestContext = Depends(get_request_context),
    renderer: PageRenderer = Depends(get_page_renderer),
    settings: ChooserSettings = Depends(get_settings),
) -> Response:
    return _respond(orchestrator.home(carrier, context), carrier, renderer, settings)


@router.get("/account-login", response_class=HTMLResponse, summary="Login page")
def account_login_page(
    renderer: PageRenderer = Depends(get_page_renderer),
    providers: ProviderRegistry = Depends(get_provider_registry),
) -> HTMLResponse:
    return HTMLResponse(renderer.login(providers.values()))


@router.get("/account-create", response_class=HTMLResponse, summary="Registration page")
def account_create_page(renderer: PageRenderer = Depends(get_page_renderer)) -> HTMLResponse:
    return HTMLResponse(renderer.register())


@router.get("/dupe", response_class=HTMLResponse, summary="Duplicate account notice")
def duplicate_page(renderer: PageRenderer = Depends(get_page_renderer)) -> HTMLResponse:
    return HTMLResponse(renderer.duplicate())


@router.post("/account-status", response_model=AccountStatusResponse, response_model_exclude_none=True)
def account_status_route(
    email: Optional[str] = Form(default=None),
    auth_url: Optional[str] = Form(default=None, alias="authUrl"),
    orchestrator: LoginOrchestrator = Depends(get_orchestrator),
    context: RequestContext = Depends(get_request_context),
    renderer: PageRenderer = Depends(get_page_renderer),
    settings: ChooserSettings = Depends(get_settings),
) -> Response:
    try:
        reply = orchestrator.account_status(email, auth_url, context)
    except ChooserError as exc:
        return _fail(exc, renderer)
    return _commit_flow(JSONResponse(reply.payload, status_code=reply.status_code), reply.flow_nonce, settings)


@router.post("/new-login", summary="Register or start a federated login")
def new_login_route(
    email: Optional[str] = Form(default=None),
    password: Optional[str] = Form(default=None),
    provider_id: Optional[str] = Form(default=None, alias="providerId"),
    id_token: Optional[str] = Form(default=None, alias="idToken"),
    display_name: Optional[str] = Form(default=None, alias="displayName"),
    orchestrator: LoginOrchestrator = Depends(get_orchestrator),
    carrier: SessionCarrier = Depends(get_session_carrier),
    context: RequestContext = Depends(get_request_context),
    renderer: PageRenderer = Depends(get_page_renderer),
    settings: ChooserSettings = Depends(get_settings),
) -> Response:
    try:
        login = _login_request(context, REGISTER_PATH, email, password, provider_id, id_token, display_name)
        result = orchestrator.new_login(login, carrier, context)
    except ChooserError as exc:
        return _fail(exc, renderer)
    return _respond(result, carrier, renderer, settings)


@router.post("/done-login", summary="Password login or start a federated login")
def done_login_route(
    email: Optional[str] = Form(default=None),
    password: Optional[str] = Form(default=None),
    provider_id: Optional[str] = Form(default=None, alias="providerId"),
    id_token: Optional[str] = Form(default=None, alias="idToken"),
    orchestrator: LoginOrchestrator = Depends(get_orchestrator),
    carrier: SessionCarrier = Depends(get_session_carrier),
    context: RequestContext = Depends(get_request_context),
    renderer: PageRenderer = Depends(get_page_renderer),
    settings: ChooserSettings = Depends(get_settings),
) -> Response:
    try:
        login = _login_request(context, LOGIN_PATH, email, password, provider_id, id_token, None)
        result = orchestrator.done_login(login, carrier, context)
    except ChooserError as exc:
        return _fail(exc, renderer)
    return _respond(result, carrier, renderer, settings)


@router.get("/oauth/{provider_id}/callback", summary="Redirect provider callback")
def oauth_callback_route(
    provider_id: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    orchestrator: LoginOrchestrator = Depends(get_orchestrator),
    carrier: SessionCarrier = Depends(get_session_carrier),
    context: RequestContext = Depends(get_request_context),
    renderer: PageRenderer = Depends(get_page_renderer),
    settings: ChooserSettings = Depends(get_settings),
) -> Response:
    try:
        result = orchestrator.complete_redirect(
            provider_id.lower(),
            code=code,
            state=state,
            error=error,
            error_description=error_description,
            carrier=carrier,
            context=context,
        )
    except ChooserError as exc:
        return _fail(exc, renderer)
    return _respond(result, carrier, renderer, settings)


@router.post("/assertion-login", summary="Assertion-based provider login")
def assertion_login_route(
    assertion: Optional[str] = Form(default=None, alias="SAMLResponse"),
    relay_state: Optional[str] = Form(default=None, alias="RelayState"),
    orchestrator: LoginOrchestrator = Depends(get_orchestrator),
    carrier: SessionCarrier = Depends(get_session_carrier),
    context: RequestContext = Depends(get_request_context),
    renderer: PageRenderer = Depends(get_page_renderer),
    settings: ChooserSettings = Depends(get_settings),
) -> Response:
    try:
        result = orchestrator.complete_assertion(assertion, relay_state, carrier, context)
    except ChooserError as exc:
        return _fail(exc, renderer)
    return _respond(result, carrier, renderer, settings)


@router.get("/saml/metadata", summary="SAML SP metadata")
def saml_metadata_route(providers: ProviderRegistry = Depends(get_provider_registry)) -> Response:
    adapter = providers.get("saml")
    if not isinstance(adapter, SamlAssertionProvider):
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    try:
        metadata = adapter.metadata()
    except ChooserError:
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    return Response(content=metadata, media_type="application/samlmetadata+xml")


@router.post("/get-color", summary="Native client: read the favourite colour")
def get_color_route(
    id_token: Optional[str] = Form(default=None, alias="idToken"),
    orchestrator: LoginOrchestrator = Depends(get_orchestrator),
    renderer: PageRenderer = Depends(get_page_renderer),
) -> Response:
    try:
        reply = orchestrator.native_get_color(id_token)
    except ChooserError as exc:
        return _fail(exc, renderer)
    return JSONResponse(reply.payload, status_code=reply.status_code)


@router.post("/set-color", summary="Save the favourite colour")
def set_color_route(
    color: Optional[str] = Form(default=None, max_length=64),
    id_token: Optional[str] = Form(default=None, alias="idToken"),
    orchestrator: LoginOrchestrator = Depends(get_orchestrator),
    carrier: SessionCarrier = Depends(get_session_carrier),
    context: RequestContext = Depends(get_request_context),
    renderer: PageRenderer = Depends(get_page_renderer),
    settings: ChooserSettings = Depends(get_settings),
) -> Response:
    if id_token:
        try:
            reply = orchestrator.native_set_color(id_token, color)
        except ChooserError as exc:
            return _fail(exc, renderer)
        return _respond(reply, carrier, renderer, settings)
    return _respond(orchestrator.set_color(color, carrier, context), carrier, renderer, settings)


@router.post("/logout", summary="End the cookie session")
def logout_route(
    orchestrator: LoginOrchestrator = Depends(get_orchestrator),
    carrier: SessionCarrier = Depends(get_session_carrier),
    renderer: PageRenderer = Depends(get_page_renderer),
    settings: ChooserSettings = Depends(get_settings),
) -> Response:
    return _respond(orchestrator.logout(carrier), carrier, renderer, settings)
