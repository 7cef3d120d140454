from collections.abc import Callable
from typing import Any

import httpx
import pytest

from fhirsession.client.auth.registry import AuthTypeRegistry
from fhirsession.client.server import FHIRServer
from fhirsession.settings import ClientSettings
from fhirsession.types import SMART_OAUTH_URIS_EXTENSION

BASE_URL = "https://fhir.example.org/r4/"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def restore_auth_registry():
    yield
    AuthTypeRegistry.restore_defaults()


class MockFHIRBackend:
    """Serves canned JSON per URL path and records every request it sees."""

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, body: Any, status: int = 200) -> None:
        self.routes[path] = (status, body)

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(
                404,
                json={
                    "resourceType": "OperationOutcome",
                    "issue": [{"severity": "error", "code": "not-found", "diagnostics": "Not found"}],
                },
            )
        status, body = route
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    def client_factory(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), **kwargs)


@pytest.fixture
def backend() -> MockFHIRBackend:
    return MockFHIRBackend()


@pytest.fixture
def make_server(backend: MockFHIRBackend) -> Callable[..., FHIRServer]:
    def factory(base_url: str = BASE_URL, auth: dict[str, Any] | None = None, **kwargs: Any) -> FHIRServer:
        kwargs.setdefault("settings", ClientSettings(_env_file=None))  # type: ignore[call-arg]
        kwargs.setdefault("http_client_factory", backend.client_factory)
        return FHIRServer(base_url, auth, **kwargs)

    return factory


def smart_security(
    authorize: str | None = "https://auth.example.org/authorize",
    token: str | None = "https://auth.example.org/token",
    register: str | None = None,
) -> dict[str, Any]:
    uris = [
        {"url": key, "valueUri": value}
        for key, value in (("authorize", authorize), ("token", token), ("register", register))
        if value
    ]
    return {
        "service": [{"coding": [{"system": "http://hl7.org/fhir/restful-security-service", "code": "SMART-on-FHIR"}]}],
        "extension": [{"url": SMART_OAUTH_URIS_EXTENSION, "extension": uris}],
    }


def capability_statement(
    *rests: dict[str, Any],
    name: str | None = "Test Server",
) -> dict[str, Any]:
    statement: dict[str, Any] = {
        "resourceType": "CapabilityStatement",
        "status": "active",
        "fhirVersion": "4.0.1",
        "rest": list(rests),
    }
    if name:
        statement["name"] = name
    return statement


@pytest.fixture
def smart_security_factory() -> Callable[..., dict[str, Any]]:
    return smart_security


@pytest.fixture
def capability_factory() -> Callable[..., dict[str, Any]]:
    return capability_statement
