"""Tests for the OAuth2 grant flows."""

import base64
import hashlib
from urllib.parse import parse_qs, urlsplit

import anyio
import httpx
import pytest

from fhirsession.client.auth.oauth2 import OAuth2Client
from fhirsession.client.auth.protocol import AuthContext, AuthProperties, InMemoryTokenStorage
from fhirsession.shared.auth import AuthSettings, OAuthToken
from fhirsession.shared.exceptions import AuthorizationError

REDIRECT_URI = "https://app.example.org/callback"


class TokenEndpoint:
    """Token endpoint double that answers with a fixed payload and records form posts."""

    def __init__(self, payload: dict | None = None, status: int = 200):
        self.payload = payload or {"access_token": "new-token", "token_type": "bearer", "expires_in": 3600}
        self.status = status
        self.forms: list[dict[str, list[str]]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.forms.append(parse_qs(request.content.decode()))
        return httpx.Response(self.status, json=self.payload)

    def client_factory(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), **kwargs)


class Browser:
    """Plays the user agent: remembers the authorize URL and answers the callback."""

    def __init__(self, answer=None):
        self.visited: list[str] = []
        self.answer = answer

    async def redirect(self, url: str) -> None:
        self.visited.append(url)

    def query(self) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlsplit(self.visited[-1]).query).items()}

    async def callback(self) -> str:
        return self.answer(self.query())


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    return TokenEndpoint()


@pytest.fixture
def settings() -> AuthSettings:
    return AuthSettings(
        client_id="my-app",
        authorize_uri="https://auth.example.org/authorize",
        token_uri="https://auth.example.org/token",
        redirect_uris=[REDIRECT_URI],
        scope="patient/*.read openid",
    )


def make_client(settings: AuthSettings, token_endpoint: TokenEndpoint, browser: Browser | None = None, **kwargs):
    context = AuthContext(
        server_url="https://fhir.example.org/r4/",
        aud="https://fhir.example.org/r4",
        redirect_handler=browser.redirect if browser else None,
        callback_handler=browser.callback if browser else None,
        http_client_factory=token_endpoint.client_factory,
        **kwargs,
    )
    return OAuth2Client(settings, context)


def test_authorize_url(settings, token_endpoint):
    client = make_client(settings, token_endpoint)
    url = client.authorize_url("code", "xyz", AuthProperties(launch="launch-1"), code_challenge="challenge")
    query = {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}

    assert url.startswith("https://auth.example.org/authorize?")
    assert query == {
        "response_type": "code",
        "client_id": "my-app",
        "scope": "patient/*.read openid launch/patient launch",
        "state": "xyz",
        "aud": "https://fhir.example.org/r4",
        "redirect_uri": REDIRECT_URI,
        "code_challenge": "challenge",
        "code_challenge_method": "S256",
        "launch": "launch-1",
    }


def test_authorize_url_needs_client_id(token_endpoint):
    client = make_client(AuthSettings(authorize_uri="https://auth.example.org/authorize"), token_endpoint)
    with pytest.raises(AuthorizationError, match="client_id"):
        client.authorize_url("code", "xyz", AuthProperties())


@pytest.mark.anyio
async def test_code_grant_with_pkce(settings, token_endpoint):
    browser = Browser(lambda q: f"{REDIRECT_URI}?code=auth-code&state={q['state']}")
    client = make_client(settings, token_endpoint, browser)

    result = await client.authorize("authorization_code", AuthProperties(granularity="token_only"))

    assert result["access_token"] == "new-token"
    assert client.has_valid_token()
    form = token_endpoint.forms[0]
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["auth-code"]
    assert form["redirect_uri"] == [REDIRECT_URI]
    verifier = form["code_verifier"][0]
    expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")
    assert browser.query()["code_challenge"] == expected


@pytest.mark.anyio
async def test_code_grant_rejects_state_mismatch(settings, token_endpoint):
    browser = Browser(lambda q: f"{REDIRECT_URI}?code=auth-code&state=forged")
    client = make_client(settings, token_endpoint, browser)

    with pytest.raises(AuthorizationError, match="State parameter mismatch"):
        await client.authorize("authorization_code", AuthProperties())
    assert token_endpoint.forms == []


@pytest.mark.anyio
async def test_error_redirect(settings, token_endpoint):
    browser = Browser(lambda q: f"{REDIRECT_URI}?error=access_denied&error_description=User+said+no")
    client = make_client(settings, token_endpoint, browser)

    with pytest.raises(AuthorizationError, match="User said no"):
        await client.authorize("authorization_code", AuthProperties())


@pytest.mark.anyio
async def test_implicit_grant_reads_fragment(settings, token_endpoint):
    browser = Browser(
        lambda q: f"{REDIRECT_URI}#access_token=frag-token&token_type=bearer&patient=p9&state={q['state']}"
    )
    client = make_client(settings, token_endpoint, browser)

    result = await client.authorize("implicit", AuthProperties())

    assert browser.query()["response_type"] == "token"
    assert result["access_token"] == "frag-token"
    assert result["patient"] == "p9"
    assert token_endpoint.forms == []


@pytest.mark.anyio
async def test_interactive_grant_needs_handlers(settings, token_endpoint):
    client = make_client(settings, token_endpoint)
    with pytest.raises(AuthorizationError, match="redirect_handler"):
        await client.authorize("authorization_code", AuthProperties())


@pytest.mark.anyio
async def test_password_grant(settings, token_endpoint):
    client = make_client(settings, token_endpoint)

    await client.authorize("password", AuthProperties(username="alice", password="wonderland"))

    form = token_endpoint.forms[0]
    assert form["grant_type"] == ["password"]
    assert form["username"] == ["alice"]
    assert client.access_token == "new-token"


@pytest.mark.anyio
async def test_password_grant_needs_credentials(settings, token_endpoint):
    client = make_client(settings, token_endpoint)
    with pytest.raises(AuthorizationError, match="username and a password"):
        await client.authorize("password", AuthProperties())


@pytest.mark.anyio
async def test_token_endpoint_error(settings):
    endpoint = TokenEndpoint({"error": "invalid_grant"}, status=400)
    client = make_client(settings, endpoint)
    with pytest.raises(AuthorizationError, match="400"):
        await client.authorize("password", AuthProperties(username="alice", password="x"))


@pytest.mark.anyio
async def test_client_secret_is_sent(settings, token_endpoint):
    client = make_client(settings.merged(client_secret="s3cret"), token_endpoint)
    await client.authorize("password", AuthProperties(username="alice", password="x"))
    assert token_endpoint.forms[0]["client_secret"] == ["s3cret"]


@pytest.mark.anyio
async def test_stored_valid_token_is_reused(settings, token_endpoint):
    storage = InMemoryTokenStorage()
    await storage.set_tokens(OAuthToken(access_token="stored", expires_in=3600))
    client = make_client(settings, token_endpoint, storage=storage)

    result = await client.authorize("password", AuthProperties())

    assert result["access_token"] == "stored"
    assert token_endpoint.forms == []


@pytest.mark.anyio
async def test_expired_token_is_refreshed(settings, token_endpoint):
    storage = InMemoryTokenStorage()
    await storage.set_tokens(OAuthToken(access_token="old", expires_in=-10, refresh_token="refresh-1"))
    client = make_client(settings, token_endpoint, storage=storage)

    result = await client.authorize("authorization_code", AuthProperties())

    assert result["access_token"] == "new-token"
    assert token_endpoint.forms[0]["grant_type"] == ["refresh_token"]
    assert client.tokens is not None
    assert client.tokens.refresh_token == "refresh-1"
    stored = await storage.get_tokens()
    assert stored is not None and stored.access_token == "new-token"


@pytest.mark.anyio
async def test_reset_clears_tokens(settings, token_endpoint):
    storage = InMemoryTokenStorage()
    await storage.set_tokens(OAuthToken(access_token="stored"))
    client = make_client(settings, token_endpoint, storage=storage)
    await client.initialize()

    request = client.sign(httpx.Request("GET", "https://fhir.example.org/r4/Patient"))
    assert request.headers["Authorization"] == "Bearer stored"

    await client.reset()

    assert client.access_token is None
    assert await storage.get_tokens() is None
    assert "Authorization" not in client.sign(httpx.Request("GET", "https://fhir.example.org/r4/Patient")).headers


@pytest.mark.anyio
async def test_abort_cancels_pending_flow(settings, token_endpoint):
    redirected = anyio.Event()

    async def redirect(url: str) -> None:
        redirected.set()

    async def callback() -> str:
        await anyio.sleep_forever()
        raise AssertionError("unreachable")

    context = AuthContext(
        server_url="https://fhir.example.org/r4/",
        aud="https://fhir.example.org/r4",
        redirect_handler=redirect,
        callback_handler=callback,
        http_client_factory=token_endpoint.client_factory,
    )
    client = OAuth2Client(settings, context)
    errors: list[AuthorizationError] = []

    async def run() -> None:
        try:
            await client.authorize("authorization_code", AuthProperties())
        except AuthorizationError as exc:
            errors.append(exc)

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(run)
            await redirected.wait()
            client.abort()

    assert [e.message for e in errors] == ["Authorization was aborted"]


@pytest.mark.anyio
async def test_flow_timeout(settings, token_endpoint):
    async def callback() -> str:
        await anyio.sleep_forever()
        raise AssertionError("unreachable")

    async def redirect(url: str) -> None:
        pass

    context = AuthContext(
        server_url="https://fhir.example.org/r4/",
        aud="https://fhir.example.org/r4",
        redirect_handler=redirect,
        callback_handler=callback,
        http_client_factory=token_endpoint.client_factory,
        timeout=0.05,
    )
    with pytest.raises(AuthorizationError, match="timed out"):
        await OAuth2Client(settings, context).authorize("authorization_code", AuthProperties())
