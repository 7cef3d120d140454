"""Authorization strategy abstractions.

This module defines the shared interfaces used by the authorization strategies
a `FHIRServer` can hold.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

import httpx

from fhirsession.shared._httpx_utils import HttpClientFactory, create_fhir_http_client
from fhirsession.shared.auth import AuthSettings, OAuthClientInformationFull, OAuthToken

if TYPE_CHECKING:
    from fhirsession.client.auth.oauth2 import OAuth2Client


class AuthType(str, Enum):
    """The authorization variants a server session can use."""

    NONE = "none"
    IMPLICIT_GRANT = "implicit"
    CODE_GRANT = "authorization_code"
    PASSWORD_GRANT = "password"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: str | None) -> AuthType | None:
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class TokenStorage(Protocol):
    """Storage interface for tokens and registered client information."""

    async def get_tokens(self) -> OAuthToken | None: ...

    async def set_tokens(self, tokens: OAuthToken | None) -> None:
        """Store tokens; None removes them."""
        ...

    async def get_client_info(self) -> OAuthClientInformationFull | None: ...

    async def set_client_info(self, client_info: OAuthClientInformationFull | None) -> None: ...


class InMemoryTokenStorage:
    """Keeps tokens for the lifetime of the process."""

    def __init__(self) -> None:
        self._tokens: OAuthToken | None = None
        self._client_info: OAuthClientInformationFull | None = None

    async def get_tokens(self) -> OAuthToken | None:
        return self._tokens

    async def set_tokens(self, tokens: OAuthToken | None) -> None:
        self._tokens = tokens

    async def get_client_info(self) -> OAuthClientInformationFull | None:
        return self._client_info

    async def set_client_info(self, client_info: OAuthClientInformationFull | None) -> None:
        self._client_info = client_info


Granularity = Literal["token_only", "launch_context", "patient_select_native", "patient_select_web"]


@dataclass
class AuthProperties:
    """Per-call options for `FHIRServer.authorize`.

    Attributes:
        granularity: Which launch context to ask for. ``patient_select_web``
            adds the ``launch/patient`` scope so the server shows its patient picker.
        launch: Launch id received from an EHR launch, sent as ``launch``.
        scope: Scope to request instead of the configured one.
        username: Resource owner name for the password grant.
        password: Resource owner password for the password grant.
    """

    granularity: Granularity = "patient_select_web"
    launch: str | None = None
    scope: str | None = None
    username: str | None = None
    password: str | None = None
    extra_params: dict[str, str] = field(default_factory=dict)


RedirectHandler = Callable[[str], Awaitable[None]]
"""Sends the user agent to the authorize URL (opens a browser, a web view, ...)."""

CallbackHandler = Callable[[], Awaitable[str]]
"""Waits for the authorization redirect and returns the full redirect URL."""


@dataclass
class AuthContext:
    """Everything a strategy needs from its server, without network access."""

    server_url: str
    aud: str
    storage: TokenStorage = field(default_factory=InMemoryTokenStorage)
    redirect_handler: RedirectHandler | None = None
    callback_handler: CallbackHandler | None = None
    http_client_factory: HttpClientFactory = create_fhir_http_client
    event_hooks: dict[str, list[Callable[..., Awaitable[Any]]]] | None = None
    timeout: float = 300.0


class AuthStrategy(Protocol):
    """Uniform interface of every authorization variant."""

    type: AuthType
    settings: AuthSettings

    @property
    def client_id(self) -> str | None: ...

    @property
    def client_secret(self) -> str | None: ...

    async def initialize(self) -> None:
        """Load persisted credentials; called before the first request is signed."""
        ...

    def sign(self, request: httpx.Request) -> httpx.Request:
        """Attach credentials to `request`; returns it unchanged when there are none."""
        ...

    async def authorize(self, properties: AuthProperties) -> dict[str, Any]:
        """Run the authorization flow and return its result parameters.

        SMART servers return launch context next to the token; ``patient``
        carries the selected patient id and ``patient_resource`` a resolved
        `Patient` when the flow produced one.
        """
        ...

    async def reset(self) -> None:
        """Forget every token this strategy holds."""
        ...

    def abort(self) -> None:
        """Cancel an authorization flow in progress."""
        ...


@runtime_checkable
class OAuth2Strategy(AuthStrategy, Protocol):
    """A strategy backed by an `OAuth2Client`."""

    oauth: OAuth2Client
