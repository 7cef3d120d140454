"""
OAuth2 client used by the grant-based authorization strategies.

This module implements the authorization code grant (with PKCE), the implicit
grant and the resource owner password grant against the endpoints a FHIR server
declares, plus refresh and token bookkeeping. Presenting the authorize page to
the user is left to the integrator's redirect and callback handlers.
"""

import logging
import secrets
import time
from typing import Any
from urllib.parse import urlencode

import anyio
import httpx
from pydantic import ValidationError

from fhirsession.client.auth.protocol import AuthContext, AuthProperties
from fhirsession.shared.auth import AuthSettings, OAuthToken
from fhirsession.shared.auth_utils import generate_pkce_pair, redirect_parameters, token_expiry
from fhirsession.shared.exceptions import AuthorizationError
from fhirsession.utilities.logging import redact_sensitive_data

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "user/*.* openid profile"


class OAuth2Client:
    """
    Token handling for one FHIR server.
    Holds the client credentials and tokens and performs the grant flows.
    """

    def __init__(self, settings: AuthSettings, context: AuthContext):
        self.settings = settings
        self.context = context
        self.client_id: str | None = settings.client_id
        self.client_secret: str | None = settings.client_secret
        self.event_hooks = context.event_hooks

        self._current_tokens: OAuthToken | None = None
        self._token_expiry_time: float | None = None
        self._loaded = False
        self._flow_scope: anyio.CancelScope | None = None
        self._token_lock = anyio.Lock()
        self._load_lock = anyio.Lock()

    @property
    def access_token(self) -> str | None:
        return self._current_tokens.access_token if self._current_tokens else None

    @property
    def tokens(self) -> OAuthToken | None:
        return self._current_tokens

    def has_valid_token(self) -> bool:
        if not self._current_tokens or not self._current_tokens.access_token:
            return False
        if self._token_expiry_time and time.time() > self._token_expiry_time:
            return False
        return True

    def sign(self, request: httpx.Request) -> httpx.Request:
        if self.access_token:
            request.headers["Authorization"] = f"Bearer {self.access_token}"
        return request

    async def initialize(self) -> None:
        """Load stored tokens and client information once."""
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            tokens = await self.context.storage.get_tokens()
            if tokens is not None:
                self._set_tokens(tokens)
            client_info = await self.context.storage.get_client_info()
            if client_info is not None and not self.client_id:
                self.client_id = client_info.client_id
                self.client_secret = client_info.client_secret
            self._loaded = True

    def _set_tokens(self, tokens: OAuthToken | None) -> None:
        self._current_tokens = tokens
        self._token_expiry_time = token_expiry(tokens.expires_in) if tokens else None

    def _token_parameters(self) -> dict[str, Any]:
        assert self._current_tokens is not None
        return self._current_tokens.model_dump(exclude_none=True)

    def _scope_for(self, properties: AuthProperties) -> str:
        scopes = (properties.scope or self.settings.scope or DEFAULT_SCOPE).split()
        if properties.granularity == "patient_select_web" and "launch/patient" not in scopes:
            scopes.append("launch/patient")
        if properties.launch and "launch" not in scopes:
            scopes.append("launch")
        return " ".join(scopes)

    def authorize_url(
        self,
        response_type: str,
        state: str,
        properties: AuthProperties,
        code_challenge: str | None = None,
    ) -> str:
        if not self.settings.authorize_uri:
            raise AuthorizationError("No authorize_uri configured")
        if not self.client_id:
            raise AuthorizationError("No client_id configured; register the client first")

        params: dict[str, str] = {
            "response_type": response_type,
            "client_id": self.client_id,
            "scope": self._scope_for(properties),
            "state": state,
            "aud": self.context.aud,
        }
        if self.settings.redirect_uri:
            params["redirect_uri"] = self.settings.redirect_uri
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        if properties.launch:
            params["launch"] = properties.launch
        params.update(properties.extra_params)
        separator = "&" if "?" in self.settings.authorize_uri else "?"
        return f"{self.settings.authorize_uri}{separator}{urlencode(params)}"

    async def authorize(self, grant: str, properties: AuthProperties) -> dict[str, Any]:
        """Return token parameters, running the `grant` flow when no usable token exists."""
        async with self._token_lock:
            await self.initialize()
            if self.has_valid_token():
                return self._token_parameters()
            if self._current_tokens and self._current_tokens.refresh_token and await self.refresh():
                return self._token_parameters()

            tokens: OAuthToken | None = None
            with anyio.CancelScope() as scope:
                self._flow_scope = scope
                try:
                    with anyio.fail_after(self.context.timeout):
                        if grant == "authorization_code":
                            tokens = await self._code_flow(properties)
                        elif grant == "implicit":
                            tokens = await self._implicit_flow(properties)
                        elif grant == "password":
                            tokens = await self._password_flow(properties)
                        else:
                            raise AuthorizationError(f"Unsupported grant type {grant}")
                except TimeoutError as exc:
                    raise AuthorizationError("Authorization timed out") from exc
                finally:
                    self._flow_scope = None
            if tokens is None:
                raise AuthorizationError("Authorization was aborted")

            self._set_tokens(tokens)
            await self.context.storage.set_tokens(tokens)
            return self._token_parameters()

    async def _redirect(self, url: str) -> dict[str, str]:
        if self.context.redirect_handler is None or self.context.callback_handler is None:
            raise AuthorizationError("Interactive authorization needs a redirect_handler and a callback_handler")
        await self.context.redirect_handler(url)
        params = redirect_parameters(await self.context.callback_handler())
        if "error" in params:
            raise AuthorizationError(params.get("error_description") or params["error"])
        return params

    async def _code_flow(self, properties: AuthProperties) -> OAuthToken:
        logger.debug("Starting authorization code flow")
        pkce = generate_pkce_pair()
        state = secrets.token_urlsafe(32)
        params = await self._redirect(self.authorize_url("code", state, properties, pkce.challenge))

        if params.get("state") != state:
            raise AuthorizationError("State parameter mismatch")
        code = params.get("code")
        if not code:
            raise AuthorizationError("No authorization code received")

        token_data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.client_id,
            "code_verifier": pkce.verifier,
        }
        if self.settings.redirect_uri:
            token_data["redirect_uri"] = self.settings.redirect_uri
        return await self._request_token(token_data)

    async def _implicit_flow(self, properties: AuthProperties) -> OAuthToken:
        logger.debug("Starting implicit grant flow")
        state = secrets.token_urlsafe(32)
        params = await self._redirect(self.authorize_url("token", state, properties))
        if params.get("state") != state:
            raise AuthorizationError("State parameter mismatch")
        try:
            return OAuthToken.model_validate(params)
        except ValidationError as exc:
            raise AuthorizationError(f"Invalid implicit grant response: {exc}") from exc

    async def _password_flow(self, properties: AuthProperties) -> OAuthToken:
        logger.debug("Starting resource owner password flow")
        username = properties.username or self.settings.username
        password = properties.password or self.settings.password
        if not username or not password:
            raise AuthorizationError("The password grant needs a username and a password")
        return await self._request_token(
            {
                "grant_type": "password",
                "username": username,
                "password": password,
                "scope": self._scope_for(properties),
                "client_id": self.client_id,
            }
        )

    async def refresh(self) -> bool:
        """Refresh the access token using the refresh token."""
        if not self._current_tokens or not self._current_tokens.refresh_token:
            return False
        try:
            tokens = await self._request_token(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": self._current_tokens.refresh_token,
                    "client_id": self.client_id,
                }
            )
        except AuthorizationError as exc:
            logger.warning("Token refresh failed: %s", exc)
            return False
        if not tokens.refresh_token:
            tokens = tokens.model_copy(update={"refresh_token": self._current_tokens.refresh_token})
        self._set_tokens(tokens)
        await self.context.storage.set_tokens(tokens)
        return True

    async def _request_token(self, data: dict[str, str | None]) -> OAuthToken:
        if not self.settings.token_uri:
            raise AuthorizationError("No token_uri configured")
        form = {k: v for k, v in data.items() if v is not None}
        if self.client_secret:
            form["client_secret"] = self.client_secret
        logger.debug("Token request to %s: %s", self.settings.token_uri, redact_sensitive_data(form))

        kwargs: dict[str, Any] = {}
        if self.event_hooks is not None:
            kwargs["event_hooks"] = self.event_hooks
        async with self.context.http_client_factory(**kwargs) as client:
            try:
                response = await client.post(
                    self.settings.token_uri,
                    data=form,
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as exc:
                raise AuthorizationError(f"Token request failed: {exc}") from exc

        if response.status_code != 200:
            raise AuthorizationError(f"Token request failed: {response.status_code} {response.text}")
        try:
            return OAuthToken.model_validate(response.json())
        except (ValidationError, ValueError) as exc:
            raise AuthorizationError(f"Invalid token response: {exc}") from exc

    async def reset(self) -> None:
        self._set_tokens(None)
        await self.context.storage.set_tokens(None)
        logger.debug("Forgot OAuth2 tokens")

    def abort(self) -> None:
        if self._flow_scope is not None:
            self._flow_scope.cancel()
