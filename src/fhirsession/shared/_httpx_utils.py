"""Utilities for creating standardized httpx AsyncClient instances."""

from typing import Any, Protocol

import httpx

__all__ = ["FHIR_JSON_MIME_TYPE", "HttpClientFactory", "create_fhir_http_client"]

FHIR_JSON_MIME_TYPE = "application/fhir+json"


class HttpClientFactory(Protocol):
    def __call__(self, **kwargs: Any) -> httpx.AsyncClient: ...


def create_fhir_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """Create an httpx AsyncClient with the defaults used for FHIR servers.

    Defaults:
    - follow_redirects=True
    - a 30 second timeout
    - ``Accept: application/fhir+json``

    Any keyword argument accepted by httpx.AsyncClient overrides the defaults;
    ``headers`` are merged with the default headers.

    Note:
        The returned AsyncClient must be closed (``aclose()`` or ``async with``)
        to release its connections.

    Examples:
        async with create_fhir_http_client() as client:
            response = await client.get("https://fhir.example.org/r4/metadata")

        # Observing every request, e.g. for logging
        async def log_request(request: httpx.Request) -> None:
            print(request.method, request.url)

        client = create_fhir_http_client(event_hooks={"request": [log_request]})
    """
    default_kwargs: dict[str, Any] = {
        "follow_redirects": True,
        "timeout": httpx.Timeout(30.0),
    }
    headers = {"Accept": FHIR_JSON_MIME_TYPE, **(kwargs.pop("headers", None) or {})}
    default_kwargs.update(kwargs)
    default_kwargs["headers"] = headers
    return httpx.AsyncClient(**default_kwargs)
