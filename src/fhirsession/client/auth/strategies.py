"""The authorization variants a `FHIRServer` can hold.

Constructing a strategy only stores configuration. Persisted tokens are
loaded by `initialize()`, which the server awaits before signing a request;
no network I/O happens until `authorize()` is awaited.
"""

import logging
from typing import Any

import httpx

from fhirsession.client.auth.oauth2 import OAuth2Client
from fhirsession.client.auth.protocol import AuthContext, AuthProperties, AuthType
from fhirsession.shared.auth import AuthSettings

logger = logging.getLogger(__name__)


class NoneAuth:
    """Open server: requests are sent unsigned."""

    type = AuthType.NONE

    def __init__(self, settings: AuthSettings, context: AuthContext):
        self.settings = settings
        self.context = context

    @property
    def client_id(self) -> str | None:
        return None

    @property
    def client_secret(self) -> str | None:
        return None

    async def initialize(self) -> None:
        pass

    def sign(self, request: httpx.Request) -> httpx.Request:
        return request

    async def authorize(self, properties: AuthProperties) -> dict[str, Any]:
        return {}

    async def reset(self) -> None:
        pass

    def abort(self) -> None:
        pass


class OAuth2Auth:
    """Shared implementation of the grant-based variants."""

    type: AuthType
    grant: str

    def __init__(self, settings: AuthSettings, context: AuthContext):
        self.settings = settings
        self.context = context
        self.oauth = OAuth2Client(settings, context)

    @property
    def client_id(self) -> str | None:
        return self.oauth.client_id

    @property
    def client_secret(self) -> str | None:
        return self.oauth.client_secret

    async def initialize(self) -> None:
        await self.oauth.initialize()

    def sign(self, request: httpx.Request) -> httpx.Request:
        return self.oauth.sign(request)

    async def authorize(self, properties: AuthProperties) -> dict[str, Any]:
        logger.debug("Authorizing with %s grant", self.grant)
        return await self.oauth.authorize(self.grant, properties)

    async def reset(self) -> None:
        await self.oauth.reset()

    def abort(self) -> None:
        self.oauth.abort()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} client_id={self.client_id!r}>"


class ImplicitGrantAuth(OAuth2Auth):
    type = AuthType.IMPLICIT_GRANT
    grant = "implicit"


class CodeGrantAuth(OAuth2Auth):
    type = AuthType.CODE_GRANT
    grant = "authorization_code"


class PasswordGrantAuth(OAuth2Auth):
    type = AuthType.PASSWORD_GRANT
    grant = "password"


class HeaderAuth:
    """Custom authorization: static headers (an API key, a pre-issued token) from ``settings.headers``."""

    type = AuthType.CUSTOM

    def __init__(self, settings: AuthSettings, context: AuthContext):
        self.settings = settings
        self.context = context
        self._headers = dict(settings.headers or {})

    @property
    def client_id(self) -> str | None:
        return self.settings.client_id

    @property
    def client_secret(self) -> str | None:
        return self.settings.client_secret

    async def initialize(self) -> None:
        pass

    def sign(self, request: httpx.Request) -> httpx.Request:
        request.headers.update(self._headers)
        return request

    async def authorize(self, properties: AuthProperties) -> dict[str, Any]:
        return {}

    async def reset(self) -> None:
        self._headers = {}

    def abort(self) -> None:
        pass
