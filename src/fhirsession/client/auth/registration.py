"""OAuth 2.0 Dynamic Client Registration (RFC 7591) for strategies without a client id."""

import logging

import httpx
from pydantic import AnyUrl, ValidationError

from fhirsession.client.auth.oauth2 import OAuth2Client
from fhirsession.shared.auth import OAuthClientInformationFull, OAuthClientMetadata
from fhirsession.shared.exceptions import RegistrationError

logger = logging.getLogger(__name__)

GRANT_TYPES = {
    "authorization_code": ["authorization_code", "refresh_token"],
    "implicit": ["implicit"],
    "password": ["password", "refresh_token"],
}
RESPONSE_TYPES = {
    "authorization_code": ["code"],
    "implicit": ["token"],
    "password": [],
}


class DynamicRegistration:
    """Registers an OAuth2 client with the server's registration endpoint.

    Args:
        client_name: Name sent when the settings carry none
        token_endpoint_auth_method: Requested client authentication method;
            ``none`` registers a public client
        extra_metadata: Additional RFC 7591 fields sent as-is
    """

    def __init__(
        self,
        client_name: str | None = None,
        token_endpoint_auth_method: str = "none",
        extra_metadata: dict[str, object] | None = None,
    ):
        self.client_name = client_name
        self.token_endpoint_auth_method = token_endpoint_auth_method
        self.extra_metadata = extra_metadata or {}

    def client_metadata(self, oauth: OAuth2Client, grant: str) -> OAuthClientMetadata:
        settings = oauth.settings
        if not settings.redirect_uris:
            raise RegistrationError("Cannot register a client without redirect_uris")
        return OAuthClientMetadata.model_validate(
            {
                "redirect_uris": [AnyUrl(uri) for uri in settings.redirect_uris],
                "token_endpoint_auth_method": self.token_endpoint_auth_method,
                "grant_types": GRANT_TYPES.get(grant, ["authorization_code"]),
                "response_types": RESPONSE_TYPES.get(grant, ["code"]),
                "scope": settings.scope,
                "client_name": settings.client_name or self.client_name,
                **self.extra_metadata,
            }
        )

    async def register_if_needed(self, oauth: OAuth2Client, grant: str) -> OAuthClientInformationFull | None:
        """Register `oauth` unless it already has a client id.

        Returns:
            The registration response, or None when no registration was needed.
        """
        await oauth.initialize()
        if oauth.client_id:
            logger.debug("Client already registered as %s", oauth.client_id)
            return None
        registration_uri = oauth.settings.registration_uri
        if not registration_uri:
            raise RegistrationError("The server does not declare a registration endpoint")

        metadata = self.client_metadata(oauth, grant)
        registration_data = metadata.model_dump(by_alias=True, mode="json", exclude_none=True)

        kwargs: dict[str, object] = {}
        if oauth.event_hooks is not None:
            kwargs["event_hooks"] = oauth.event_hooks
        async with oauth.context.http_client_factory(**kwargs) as client:
            try:
                response = await client.post(
                    registration_uri,
                    json=registration_data,
                    headers={"Content-Type": "application/json", "Accept": "application/json"},
                )
            except httpx.HTTPError as exc:
                raise RegistrationError(f"Registration request failed: {exc}") from exc

        if response.status_code not in (200, 201):
            raise RegistrationError(f"Registration failed: {response.status_code} {response.text}")
        try:
            client_info = OAuthClientInformationFull.model_validate(response.json())
        except (ValidationError, ValueError) as exc:
            raise RegistrationError(f"Invalid registration response: {exc}") from exc

        logger.debug("Registration successful, client id %s", client_info.client_id)
        oauth.client_id = client_info.client_id
        oauth.client_secret = client_info.client_secret
        await oauth.context.storage.set_client_info(client_info)
        return client_info
