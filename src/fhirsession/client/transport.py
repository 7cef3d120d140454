"""Lazily created, reusable HTTP session for one FHIR server."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

import anyio
import httpx
from typing_extensions import Self

from fhirsession.shared._httpx_utils import HttpClientFactory, create_fhir_http_client
from fhirsession.shared.exceptions import TransportError

logger = logging.getLogger(__name__)

EventHooks = dict[str, list[Callable[..., Awaitable[Any]]]]


class TransportSessionManager:
    """Owns the single `httpx.AsyncClient` used to talk to a server.

    The client is created on first use and reused afterwards. Assigning
    `event_hooks` once a client exists discards that client so the next request
    creates a new one that carries the new hooks; the discarded client is
    closed by the next `send` that finds no request in flight. `abort()`
    cancels every request currently in flight and discards the client.
    """

    def __init__(
        self,
        client_factory: HttpClientFactory = create_fhir_http_client,
        client_kwargs: dict[str, Any] | None = None,
        event_hooks: EventHooks | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._client_kwargs = dict(client_kwargs or {})
        self._event_hooks = event_hooks
        self._client: httpx.AsyncClient | None = None
        self._in_flight: set[anyio.CancelScope] = set()
        self._retired: list[httpx.AsyncClient] = []

    @property
    def event_hooks(self) -> EventHooks | None:
        return self._event_hooks

    @event_hooks.setter
    def event_hooks(self, hooks: EventHooks | None) -> None:
        self._event_hooks = hooks
        if self._client is not None:
            logger.debug("Event hooks changed, discarding current HTTP session")
            self._retire_client()

    @property
    def has_session(self) -> bool:
        return self._client is not None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def create_default_session(self) -> httpx.AsyncClient:
        """Create a new client. Override to customize how sessions are built."""
        kwargs = dict(self._client_kwargs)
        if self._event_hooks is not None:
            kwargs["event_hooks"] = self._event_hooks
        return self._client_factory(**kwargs)

    def session(self) -> httpx.AsyncClient:
        """Return the current client, creating it if needed."""
        if self._client is None:
            self._client = self.create_default_session()
            logger.debug("Created HTTP session %r", self._client)
        return self._client

    async def send(self, request: httpx.Request) -> httpx.Response:
        """Send `request` through the current session.

        Raises:
            TransportError: The request failed at the network level or was
                cancelled by `abort()`.
        """
        if self._retired and not self._in_flight:
            await self._close_retired()
        client = self.session()
        response: httpx.Response | None = None
        with anyio.CancelScope() as scope:
            self._in_flight.add(scope)
            try:
                response = await client.send(request)
                await response.aread()
            except httpx.HTTPError as exc:
                raise TransportError(f"Request to {request.url} failed: {exc}") from exc
            finally:
                self._in_flight.discard(scope)
        if response is None or scope.cancelled_caught:
            raise TransportError(f"Request to {request.url} was cancelled")
        return response

    def _retire_client(self) -> None:
        if self._client is not None:
            self._retired.append(self._client)
            self._client = None

    async def _close_retired(self) -> None:
        retired, self._retired = self._retired, []
        for client in retired:
            await client.aclose()

    async def abort(self) -> None:
        """Cancel every in-flight request and discard the session."""
        for scope in list(self._in_flight):
            scope.cancel()
        self._in_flight.clear()
        self._retire_client()
        await self._close_retired()
        logger.debug("HTTP session aborted")

    async def aclose(self) -> None:
        self._retire_client()
        await self._close_retired()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
