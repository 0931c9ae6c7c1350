import time
from typing import Dict, Generator, List, Tuple
from urllib.parse import parse_qs, urlsplit

import httpx
import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from core.settings import ChooserSettings
from database import get_db
from services.account_store import Account, AccountStore
from services.auth.native import NativeIdTokenProvider, NativeTokenConfig
from services.auth.passwords import hash_password
from services.auth.providers import OAuthProviderConfig, OAuthRedirectProvider, ProviderRegistry
from services.auth.sessions import SessionManager
from web.deps import get_provider_registry, get_settings
from web.routers import chooser

NATIVE_SECRET = "native-shared-secret-for-tests-0123456789"
NATIVE_AUDIENCE = "favcolor-ios"

# Userinfo returned by the fake identity provider, keyed by authorization code.
PROFILES: Dict[str, Dict[str, object]] = {
    "code-bob": {"email": "bob@example.com", "email_verified": True, "name": "Bob", "picture": "https://img.test/bob.png"},
    "code-alice": {"email": "Alice@Example.com", "email_verified": True, "name": "Alicia", "picture": "https://img.test/a.png"},
    "code-bob-bare": {"email": "bob@example.com", "email_verified": True},
}


def _idp_transport(calls: List[str]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            code = parse_qs(request.content.decode())["code"][0]
            if code not in PROFILES:
                return httpx.Response(400, json={"error": "invalid_grant"})
            calls.append(code)
            return httpx.Response(200, json={"access_token": f"access-{code}"})
        if request.url.path == "/userinfo":
            code = request.headers["Authorization"].split("access-", 1)[1]
            return httpx.Response(200, json=PROFILES[code])
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture()
def exchanged_codes() -> List[str]:
    return []


@pytest.fixture()
def providers(exchanged_codes: List[str]) -> ProviderRegistry:
    google = OAuthRedirectProvider(
        OAuthProviderConfig(
            provider_id="google",
            display_name="Google",
            client_id="client-123",
            client_secret="secret-456",
            authorization_url="https://idp.test/authorize",
            token_url="https://idp.test/token",
            userinfo_url="https://idp.test/userinfo",
        ),
        transport=_idp_transport(exchanged_codes),
    )
    native = NativeIdTokenProvider(
        NativeTokenConfig(audiences=(NATIVE_AUDIENCE,), issuers=("https://accounts.google.com",), shared_secret=NATIVE_SECRET)
    )
    return ProviderRegistry([google, native])


@pytest.fixture()
def chooser_client(
    session_factory: sessionmaker,
    settings: ChooserSettings,
    providers: ProviderRegistry,
) -> Generator[TestClient, None, None]:
    app = FastAPI()
    app.include_router(chooser.router)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_provider_registry] = lambda: providers
    client = TestClient(app)
    try:
        yield client
    finally:
        client.close()


def _id_token(email: str) -> str:
    claims = {
        "iss": "https://accounts.google.com",
        "aud": NATIVE_AUDIENCE,
        "email": email,
        "email_verified": True,
        "exp": int(time.time()) + 300,
    }
    return jwt.encode(claims, NATIVE_SECRET, algorithm="HS256")


def _start_federated(client: TestClient, email: str = "") -> Tuple[str, Dict[str, List[str]]]:
    data = {"providerId": "google"}
    if email:
        data["email"] = email
    response = client.post("/done-login", data=data, follow_redirects=False)
    assert response.status_code == 303, response.text
    location = response.headers["location"]
    return location, parse_qs(urlsplit(location).query)


def test_register_then_duplicate(chooser_client: TestClient, db_session: Session) -> None:
    response = chooser_client.post(
        "/new-login",
        data={"email": "A@example.com", "password": "pw-1", "displayName": "A"},
        follow_redirects=False,
    )
    assert response.status_code == 200, response.text
    assert '"email": "a@example.com"' in response.text
    assert '"displayName": "A"' in response.text
    assert "providerId" not in response.text
    assert "chooser_session" in response.cookies

    home = chooser_client.get("/", follow_redirects=False)
    assert home.status_code == 200
    assert "Signed in as A" in home.text

    duplicate = chooser_client.post(
        "/new-login",
        data={"email": "a@example.com", "password": "other"},
        follow_redirects=False,
    )
    assert duplicate.status_code == 303
    assert duplicate.headers["location"] == "/dupe"

    stored = AccountStore(db_session).find_by_email("a@example.com")
    assert stored.display_name == "A"
    assert stored.provider_id is None


def test_missing_input_redirects_back(chooser_client: TestClient) -> None:
    response = chooser_client.post(
        "/done-login",
        data={"email": "a@example.com"},
        headers={"referer": "http://testserver/account-login?from=chooser"},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/account-login?from=chooser"

    foreign = chooser_client.post(
        "/new-login",
        data={"password": "pw"},
        headers={"referer": "https://evil.example.com/phish"},
        follow_redirects=False,
    )
    assert foreign.status_code == 303
    assert foreign.headers["location"] == "/account-create"


def test_password_login_paths(chooser_client: TestClient, db_session: Session) -> None:
    AccountStore(db_session).create(Account(email="pw@example.com", password_hash=hash_password("correct horse")))

    unknown = chooser_client.post("/done-login", data={"email": "nobody@example.com", "password": "x"}, follow_redirects=False)
    assert unknown.status_code == 303
    assert unknown.headers["location"] == "/account-create"

    wrong = chooser_client.post("/done-login", data={"email": "pw@example.com", "password": "nope"}, follow_redirects=False)
    assert wrong.status_code == 403
    assert "Incorrect email or password." in wrong.text
    assert 'href="/"' in wrong.text

    ok = chooser_client.post(
        "/done-login",
        data={"email": "PW@example.com", "password": "correct horse"},
        follow_redirects=False,
    )
    assert ok.status_code == 200
    assert '"email": "pw@example.com"' in ok.text


def test_federated_first_login_creates_account(
    chooser_client: TestClient,
    db_session: Session,
    exchanged_codes: List[str],
) -> None:
    location, params = _start_federated(chooser_client, "bob@example.com")
    assert location.startswith("https://idp.test/authorize?")
    assert params["login_hint"] == ["bob@example.com"]
    assert params["redirect_uri"] == ["http://testserver/oauth/google/callback"]

    callback = chooser_client.get(
        "/oauth/google/callback",
        params={"code": "code-bob", "state": params["state"][0]},
        follow_redirects=False,
    )
    assert callback.status_code == 200, callback.text
    assert '"providerId": "google"' in callback.text
    assert '"photoUrl": "https://img.test/bob.png"' in callback.text
    assert exchanged_codes == ["code-bob"]

    stored = AccountStore(db_session).find_by_email("bob@example.com")
    assert stored.provider_id == "google"
    assert stored.display_name == "Bob"

    # A later login with sparser data never clears what is stored.
    _, again = _start_federated(chooser_client, "bob@example.com")
    repeat = chooser_client.get(
        "/oauth/google/callback",
        params={"code": "code-bob-bare", "state": again["state"][0]},
        follow_redirects=False,
    )
    assert repeat.status_code == 200
    db_session.expire_all()
    stored = AccountStore(db_session).find_by_email("bob@example.com")
    assert stored.display_name == "Bob"
    assert stored.photo_url == "https://img.test/bob.png"


def test_federated_login_merges_into_password_account(chooser_client: TestClient, db_session: Session) -> None:
    AccountStore(db_session).create(
        Account(email="alice@example.com", display_name="Alice", password_hash=hash_password("pw"))
    )

    _, params = _start_federated(chooser_client)
    callback = chooser_client.get(
        "/oauth/google/callback",
        params={"code": "code-alice", "state": params["state"][0]},
        follow_redirects=False,
    )
    assert callback.status_code == 200

    db_session.expire_all()
    stored = AccountStore(db_session).find_by_email("alice@example.com")
    assert stored.display_name == "Alice"
    assert stored.photo_url == "https://img.test/a.png"
    assert stored.provider_id == "google"
    assert stored.password_hash


def test_provider_bound_account_never_checks_password(
    chooser_client: TestClient,
    db_session: Session,
    exchanged_codes: List[str],
) -> None:
    AccountStore(db_session).create(
        Account(email="fed@example.com", display_name="Fed", provider_id="google", password_hash=hash_password("old"))
    )

    for password in ("old", "wrong"):
        response = chooser_client.post(
            "/done-login",
            data={"email": "fed@example.com", "password": password},
            follow_redirects=False,
        )
        assert response.status_code == 303
        assert response.headers["location"].startswith("https://idp.test/authorize?")
        assert parse_qs(urlsplit(response.headers["location"]).query)["login_hint"] == ["fed@example.com"]
    assert "chooser_session" not in chooser_client.cookies
    assert exchanged_codes == []


@pytest.mark.parametrize(
    "params",
    [
        {"code": "code-bob"},
        {"code": "code-bob", "state": "forged-state"},
        {"error": "access_denied", "error_description": "User cancelled"},
    ],
)
def test_callback_failures_render_403(chooser_client: TestClient, exchanged_codes: List[str], params) -> None:
    response = chooser_client.get("/oauth/google/callback", params=params, follow_redirects=False)

    assert response.status_code == 403
    assert "Authorization failed" in response.text
    assert exchanged_codes == []


def test_callback_rejects_bad_code(chooser_client: TestClient) -> None:
    _, params = _start_federated(chooser_client)
    response = chooser_client.get(
        "/oauth/google/callback",
        params={"code": "code-unknown", "state": params["state"][0]},
        follow_redirects=False,
    )
    assert response.status_code == 403


def test_unknown_and_non_redirect_providers(chooser_client: TestClient) -> None:
    unknown = chooser_client.post("/new-login", data={"providerId": "myspace"}, follow_redirects=False)
    assert unknown.status_code == 403

    native = chooser_client.post("/done-login", data={"providerId": "native"}, follow_redirects=False)
    assert native.status_code == 403


def test_account_status(chooser_client: TestClient, db_session: Session) -> None:
    AccountStore(db_session).create(Account(email="known@example.com"))

    registered = chooser_client.post("/account-status", data={"email": "known@example.com"})
    assert registered.json() == {"registered": True}

    missing = chooser_client.post("/account-status", data={"email": "ghost@example.com", "authUrl": "https://other.test"})
    assert missing.json() == {"registered": False}

    federated = chooser_client.post(
        "/account-status",
        data={"email": "known@example.com", "authUrl": "https://accounts.google.com"},
    )
    auth_uri = federated.json()["authUri"]
    assert auth_uri.startswith("https://idp.test/authorize?")
    assert parse_qs(urlsplit(auth_uri).query)["state"][0]
    assert "chooser_flow" in federated.cookies

    legacy = chooser_client.post("/account-status", data={"email": "known@example.com", "authUrl": "http://google.com"})
    assert legacy.json()["authUri"].startswith("https://idp.test/authorize?")


def test_native_color_api(chooser_client: TestClient, db_session: Session) -> None:
    AccountStore(db_session).create(Account(email="native@example.com", display_name="Nat"))
    token = _id_token("native@example.com")

    assert chooser_client.post("/get-color", data={"idToken": "garbage"}).status_code == 404
    assert chooser_client.post("/get-color", data={"idToken": _id_token("stranger@example.com")}).status_code == 404
    assert chooser_client.post("/get-color").status_code == 404

    saved = chooser_client.post("/set-color", data={"idToken": token, "color": "blue"}, follow_redirects=False)
    assert saved.status_code == 200
    assert saved.content == b""

    fetched = chooser_client.post("/get-color", data={"idToken": token})
    assert fetched.status_code == 200
    assert fetched.json() == {"email": "native@example.com", "color": "blue", "displayName": "Nat"}

    bad_set = chooser_client.post("/set-color", data={"idToken": "garbage", "color": "red"}, follow_redirects=False)
    assert bad_set.status_code == 404


def test_browser_color_flow_and_logout(chooser_client: TestClient) -> None:
    anonymous = chooser_client.post("/set-color", data={"color": "red"}, follow_redirects=False)
    assert anonymous.status_code == 303
    assert anonymous.headers["location"] == "/account-login"

    chooser_client.post("/new-login", data={"email": "c@example.com", "password": "pw"}, follow_redirects=False)
    saved = chooser_client.post("/set-color", data={"color": "indigo"}, follow_redirects=False)
    assert saved.status_code == 303
    assert saved.headers["location"] == "/"

    home = chooser_client.get("/", follow_redirects=False)
    assert "Your favorite color is" in home.text
    assert "indigo" in home.text

    logout = chooser_client.post("/logout", follow_redirects=False)
    assert logout.status_code == 303
    assert logout.headers["location"] == "/"

    after = chooser_client.get("/", follow_redirects=False)
    assert after.status_code == 303
    assert after.headers["location"] == "/account-login"


def test_bearer_token_session(chooser_client: TestClient, db_session: Session, settings: ChooserSettings) -> None:
    AccountStore(db_session).create(Account(email="gat@example.com", color="green"))
    token = SessionManager.from_settings(settings).bearer_codec.encode("gat@example.com", ttl_seconds=300)

    home = chooser_client.get("/", headers={"Authorization": f"Bearer {token}"}, follow_redirects=False)
    assert home.status_code == 200
    assert "green" in home.text

    logout = chooser_client.post("/logout", headers={"Authorization": f"Bearer {token}"}, follow_redirects=False)
    assert "chooser_session" not in logout.headers.get("set-cookie", "")


def test_login_replaces_bearer_identity(chooser_client: TestClient, db_session: Session, settings: ChooserSettings) -> None:
    store = AccountStore(db_session)
    store.create(Account(email="gat@example.com", color="green"))
    store.create(Account(email="bob@example.com", color="purple", password_hash=hash_password("pw")))
    chooser_client.cookies.set(
        settings.bearer_cookie_name,
        SessionManager.from_settings(settings).bearer_codec.encode("gat@example.com", ttl_seconds=300),
    )

    login = chooser_client.post("/done-login", data={"email": "bob@example.com", "password": "pw"}, follow_redirects=False)
    assert login.status_code == 200
    assert "chooser_session" in login.cookies

    home = chooser_client.get("/", follow_redirects=False)
    assert "Signed in as bob@example.com" in home.text


def test_callback_from_another_browser_is_refused(chooser_client: TestClient, exchanged_codes: List[str]) -> None:
    _, params = _start_federated(chooser_client)
    assert "chooser_flow" in chooser_client.cookies

    with TestClient(chooser_client.app) as other_browser:
        replay = other_browser.get(
            "/oauth/google/callback",
            params={"code": "code-bob", "state": params["state"][0]},
            follow_redirects=False,
        )
        assert replay.status_code == 403
        assert "chooser_session" not in replay.cookies
    assert exchanged_codes == []

    own = chooser_client.get(
        "/oauth/google/callback",
        params={"code": "code-bob", "state": params["state"][0]},
        follow_redirects=False,
    )
    assert own.status_code == 200


def test_entry_pages(chooser_client: TestClient) -> None:
    login = chooser_client.get("/account-login")
    assert login.status_code == 200
    assert 'name="providerId" value="google"' in login.text
    assert 'value="native"' not in login.text

    assert chooser_client.get("/account-create").status_code == 200
    assert "already exists" in chooser_client.get("/dupe").text
