from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from enum import Enum
from types import TracebackType
from typing import Any

import anyio
import httpx
from typing_extensions import Self

from fhirsession.client.auth.protocol import (
    AuthContext,
    AuthProperties,
    AuthStrategy,
    CallbackHandler,
    InMemoryTokenStorage,
    OAuth2Strategy,
    RedirectHandler,
    TokenStorage,
)
from fhirsession.client.auth.registration import DynamicRegistration
from fhirsession.client.auth.selector import open_server_strategy, select_from_capabilities, select_from_settings
from fhirsession.client.capabilities import find_operation, select_rest
from fhirsession.client.operations import FHIROperation
from fhirsession.client.requests import JSONRequestHandler, RequestHandler, ResponseT
from fhirsession.client.responses import ServerJSONResponse
from fhirsession.client.transport import EventHooks, TransportSessionManager
from fhirsession.settings import ClientSettings
from fhirsession.shared._httpx_utils import HttpClientFactory, create_fhir_http_client
from fhirsession.shared.auth import AuthSettings, OAuthClientInformationFull
from fhirsession.shared.exceptions import (
    AuthMethodUndetectedError,
    DiscoveryError,
    FHIRClientError,
    InvalidBaseURLError,
    OperationValidationError,
    PathResolutionError,
    RegistrationError,
    RequestPreparationError,
    ServerResponseError,
    TransportError,
    UnsupportedOperationError,
)
from fhirsession.shared.once import AppendOnlyDict, SetOnce
from fhirsession.types import (
    CapabilityRestOperation,
    CapabilityStatement,
    OperationDefinition,
    Patient,
    Reference,
    Resource,
    ResourceT,
)

logger = logging.getLogger(__name__)

_INVALID_PATH_CHARACTERS = re.compile(r'[\s<>"{}\\^`\x00-\x1f\x7f]')


class ReadinessState(str, Enum):
    NO_AUTH = "no_auth"
    READY = "ready"


def canonical_base_url(base_url: str | httpx.URL) -> httpx.URL:
    """Validate `base_url` and make sure it ends with a ``/``.

    Raises:
        InvalidBaseURLError: `base_url` is not an absolute http(s) URL.
    """
    raw = str(base_url)
    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL as exc:
        raise InvalidBaseURLError(f"Invalid base URL {raw!r}: {exc}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidBaseURLError(f"Base URL must be an absolute http(s) URL, got {raw!r}")
    if url.query or url.fragment:
        raise InvalidBaseURLError(f"Base URL must not carry a query or fragment, got {raw!r}")
    if raw.endswith("/"):
        return url
    return httpx.URL(raw + "/")


class FHIRServer:
    """
    The FHIR resource server a client connects to.

    The server holds on to one authorization strategy, created from the
    settings given at construction or from the server's capability statement,
    whichever is available. The capability statement is downloaded on demand
    (see `ready` and `get_capabilities`) and is also used to look up and
    validate operations.

    Requests go through one lazily created `httpx.AsyncClient`. Pass
    `session_hooks` (httpx event hooks) to observe requests and responses, or a
    custom `http_client_factory` to change how the client is built.

    Example:
        async with FHIRServer("https://launch.smarthealthit.org/v/r4/fhir") as server:
            await server.ready()
            patient = await server.read("Patient/123", Patient)
    """

    def __init__(
        self,
        base_url: str | httpx.URL,
        auth: Mapping[str, Any] | AuthSettings | None = None,
        *,
        name: str | None = None,
        settings: ClientSettings | None = None,
        storage: TokenStorage | None = None,
        redirect_handler: RedirectHandler | None = None,
        callback_handler: CallbackHandler | None = None,
        http_client_factory: HttpClientFactory = create_fhir_http_client,
        session_hooks: EventHooks | None = None,
    ) -> None:
        """
        Args:
            base_url: The service URL; a trailing ``/`` is added when missing
            auth: Authorization settings (``client_id``, ``redirect_uris``,
                ``authorize_uri``, ...), typically loaded from a config file
            name: Display name; read from the capability statement when unset
            settings: Client settings; read from the environment when omitted
            storage: Where tokens and registered client info are kept
            redirect_handler: Opens the authorize URL for interactive grants
            callback_handler: Waits for and returns the authorization redirect URL
            http_client_factory: Builds the `httpx.AsyncClient` used for requests
            session_hooks: httpx event hooks installed on every client

        Raises:
            InvalidBaseURLError: `base_url` is malformed.
        """
        self.aud = str(base_url)
        self.base_url = canonical_base_url(base_url)
        self.name = name
        self.settings = settings or ClientSettings()

        client_kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(self.settings.timeout),
            "follow_redirects": self.settings.follow_redirects,
        }
        if self.settings.user_agent:
            client_kwargs["headers"] = {"User-Agent": self.settings.user_agent}
        self._transport = TransportSessionManager(
            client_factory=http_client_factory,
            client_kwargs=client_kwargs,
            event_hooks=session_hooks,
        )
        self._auth_context = AuthContext(
            server_url=str(self.base_url),
            aud=self.aud,
            storage=storage or InMemoryTokenStorage(),
            redirect_handler=redirect_handler,
            callback_handler=callback_handler,
            http_client_factory=http_client_factory,
            event_hooks=session_hooks,
        )

        self._capabilities: SetOnce[CapabilityStatement] = SetOnce("capability statement")
        self._capability_operations: SetOnce[list[CapabilityRestOperation]] = SetOnce("capability operations")
        self._operations: AppendOnlyDict[str, OperationDefinition] = AppendOnlyDict()
        self._discovery_lock = anyio.Lock()

        self._auth_settings = AuthSettings.from_mapping(auth)
        self.auth: AuthStrategy | None = select_from_settings(self._auth_settings, self._auth_context)

    def __repr__(self) -> str:
        return f"<FHIRServer {self.base_url} state={self.state.value}>"

    # MARK: - Settings

    @property
    def auth_settings(self) -> AuthSettings:
        return self._auth_settings

    @auth_settings.setter
    def auth_settings(self, settings: Mapping[str, Any] | AuthSettings | None) -> None:
        """Replace the settings and rebuild the strategy from the best available source."""
        self._auth_settings = AuthSettings.from_mapping(settings)
        statement = self._capabilities.get()
        rest = select_rest(statement.rest) if statement else None
        if rest is not None and rest.security is not None:
            self.auth = select_from_capabilities(rest.security, self._auth_settings, self._auth_context)
            return
        strategy = select_from_settings(self._auth_settings, self._auth_context)
        if strategy is not None:
            self.auth = strategy

    @property
    def session_hooks(self) -> EventHooks | None:
        return self._transport.event_hooks

    @session_hooks.setter
    def session_hooks(self, hooks: EventHooks | None) -> None:
        self._transport.event_hooks = hooks
        self._auth_context.event_hooks = hooks
        if isinstance(self.auth, OAuth2Strategy):
            self.auth.oauth.event_hooks = hooks

    @property
    def transport(self) -> TransportSessionManager:
        return self._transport

    # MARK: - Capabilities

    @property
    def capabilities(self) -> CapabilityStatement | None:
        return self._capabilities.get()

    @property
    def capability_operations(self) -> list[CapabilityRestOperation] | None:
        return self._capability_operations.get()

    @property
    def operations(self) -> Mapping[str, OperationDefinition]:
        return self._operations

    async def get_capabilities(self) -> CapabilityStatement:
        """Fetch the capability statement unless it is already cached.

        Concurrent callers share a single fetch.

        Raises:
            DiscoveryError: The statement could not be fetched or parsed; a
                later call will try again.
        """
        statement = self._capabilities.get()
        if statement is not None:
            return statement

        async with self._discovery_lock:
            statement = self._capabilities.get()
            if statement is not None:
                return statement
            try:
                statement = await self.read(self.settings.metadata_path, CapabilityStatement)
            except FHIRClientError as exc:
                raise DiscoveryError(f"Failed to fetch the capability statement: {exc.message}") from exc
            self._did_fetch_capabilities(statement)
            return statement

    def _did_fetch_capabilities(self, statement: CapabilityStatement) -> None:
        # nothing is cached until a strategy has been chosen
        rest = select_rest(statement.rest)
        auth = self.auth
        operations: list[CapabilityRestOperation] | None = None
        if rest is None:
            logger.debug("Capability statement declares no rest interactions")
        else:
            if rest.security is not None:
                auth = select_from_capabilities(rest.security, self._auth_settings, self._auth_context)
            if auth is None:
                auth = open_server_strategy(self._auth_settings, self._auth_context)
            operations = list(rest.operation or [])

        self._capabilities.set(statement)
        if not self.name and statement.name:
            self.name = statement.name
        self.auth = auth
        if operations is not None:
            self._capability_operations.set(operations)

    # MARK: - Authorization

    @property
    def state(self) -> ReadinessState:
        return ReadinessState.READY if self.auth is not None else ReadinessState.NO_AUTH

    def client_credentials(self) -> tuple[str, str | None] | None:
        """The client id and secret of the active strategy, if it has a client id."""
        if self.auth is not None and self.auth.client_id:
            return self.auth.client_id, self.auth.client_secret
        return None

    async def ready(self) -> None:
        """Make sure an authorization strategy exists, fetching the capability statement if needed.

        Raises:
            DiscoveryError: The capability statement could not be fetched.
            AuthMethodUndetectedError: The statement did not allow choosing a strategy.
        """
        if self.auth is not None:
            return
        try:
            await self.get_capabilities()
        except DiscoveryError:
            if self.auth is None:
                raise
        if self.auth is None:
            raise AuthMethodUndetectedError("Failed to detect the authorization method from server metadata")

    async def authorize(self, properties: AuthProperties | None = None) -> Patient | None:
        """Ensure the server is ready, then run the strategy's authorization flow.

        Returns:
            The patient selected during authorization, or None when the
            authorization is not patient scoped.
        """
        await self.ready()
        if self.auth is None:
            raise AuthMethodUndetectedError("Client error, no auth instance created")
        parameters = await self.auth.authorize(properties or AuthProperties())

        patient = parameters.get("patient_resource")
        if isinstance(patient, Patient):
            return patient
        if isinstance(patient, dict):
            return Patient.model_validate(patient)

        patient_id = parameters.get("patient")
        if patient_id:
            resource = await self.read(f"Patient/{patient_id}", Patient)
            logger.debug("Did read patient %s", resource.id)
            return resource
        return None

    async def reset(self) -> None:
        """Reset authorization state, including any known access and refresh tokens."""
        await self.abort_session()
        if self.auth is not None:
            await self.auth.reset()

    async def ensure_registered(self, registrar: DynamicRegistration) -> OAuthClientInformationFull | None:
        """Register the OAuth2 client with the server unless it already has a client id."""
        await self.ready()
        if not isinstance(self.auth, OAuth2Strategy):
            raise RegistrationError("No OAuth2 handle, cannot register client")
        return await registrar.register_if_needed(self.auth.oauth, self.auth.type.value)

    # MARK: - Requests

    def resolve_path(self, path: str) -> httpx.URL:
        """Resolve `path`, which may carry a query, against the base URL.

        Raises:
            PathResolutionError: The path is not a valid URL reference.
        """
        if _INVALID_PATH_CHARACTERS.search(path):
            raise PathResolutionError(f"Failed to parse path {path!r} relative to base URL {self.base_url}")
        try:
            return self.base_url.join(path)
        except httpx.InvalidURL as exc:
            raise PathResolutionError(
                f"Failed to parse path {path!r} relative to base URL {self.base_url}: {exc}"
            ) from exc

    def is_within_base(self, url: httpx.URL) -> bool:
        """Whether `url` points into this server, i.e. may carry its credentials."""
        base = self.base_url
        if (url.scheme, url.host, url.port) != (base.scheme, base.host, base.port):
            return False
        return url.path.startswith(base.path)

    async def perform_request(self, path: str, handler: RequestHandler[ResponseT]) -> ResponseT:
        """Sign, prepare and send a request against `path`.

        Only requests that stay within the base URL are signed; absolute
        URLs pointing elsewhere are sent without credentials.

        Never raises: failures are reported in the returned response's `error`.
        """
        try:
            url = self.resolve_path(path)
        except PathResolutionError as exc:
            return handler.not_sent(exc)

        request = httpx.Request(handler.method, url)
        if self.auth is not None:
            if self.is_within_base(url):
                await self.auth.initialize()
                request = self.auth.sign(request)
            else:
                logger.debug("Not signing request to %s, which is outside %s", url, self.base_url)
        try:
            prepared = handler.prepare_request(request)
        except RequestPreparationError as exc:
            return handler.not_sent(RequestPreparationError(f"Failed to prepare request against {url}: {exc.message}"))
        return await self.perform_prepared_request(prepared, handler)

    async def perform_prepared_request(self, request: httpx.Request, handler: RequestHandler[ResponseT]) -> ResponseT:
        """Send an already prepared request through the server's session."""
        logger.debug("Performing %s request against %s", request.method, request.url)
        try:
            response = await self._transport.send(request)
        except TransportError as exc:
            res = handler.response(None)
            res.error = exc
            logger.debug("Request against %s failed: %s", request.url, exc)
            return res
        res = handler.response(response)
        logger.debug("Server responded with status %s", res.status)
        return res

    async def read(self, path: str, model: type[ResourceT] = Resource) -> ResourceT:  # type: ignore[assignment]
        """GET `path` and parse the body as `model`.

        Raises:
            FHIRClientError: The request failed or returned something else.
        """
        response = await self.perform_request(path, JSONRequestHandler("GET"))
        if response.error is not None:
            raise response.error
        resource = response.resource(model)
        if resource is None:
            raise ServerResponseError(f"{path} did not return a {model.__name__}", status=response.status)
        return resource

    async def resolve_reference(self, reference: Reference, model: type[ResourceT]) -> ResourceT | None:
        """Read the resource `reference` points to; None when it cannot be resolved."""
        target = reference.reference
        if not target or target.startswith("#"):
            logger.warning("Cannot resolve reference %r", target)
            return None
        target = target.split("|", 1)[0]
        try:
            return await self.read(target, model)
        except FHIRClientError as exc:
            logger.warning("Failed to resolve %s: %s", target, exc)
            return None

    # MARK: - Operations

    async def operation(self, name: str) -> OperationDefinition | None:
        """The definition of operation `name`, from cache or from the server.

        Must be used after the capability statement has been fetched, i.e.
        after `ready` or `get_capabilities`.
        """
        key = name.lstrip("$")
        cached = self._operations.get(key)
        if cached is not None:
            return cached

        advertised = find_operation(self._capability_operations.get(), key)
        if advertised is None or advertised.definition is None:
            return None
        definition = await self.resolve_reference(advertised.definition, OperationDefinition)
        if definition is None:
            return None
        return self._operations.insert(key, definition)

    async def perform_operation(self, operation: FHIROperation) -> ServerJSONResponse:
        """Validate `operation` against its definition and perform it."""
        definition = await self.operation(operation.name)
        if definition is None:
            return ServerJSONResponse.not_sent(
                UnsupportedOperationError(f"The server does not support operation ${operation.name}")
            )
        try:
            operation.validate_with(definition)
        except OperationValidationError as exc:
            return ServerJSONResponse.not_sent(exc)
        return await operation.perform(self, definition)

    # MARK: - Session management

    async def abort_session(self) -> None:
        """Cancel the strategy's pending flow and every in-flight request, and drop the session."""
        if self.auth is not None:
            self.auth.abort()
        await self._transport.abort()

    async def aclose(self) -> None:
        await self._transport.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
