from collections.abc import Mapping
from typing import Any, Literal

from pydantic import AnyUrl, BaseModel, ConfigDict, Field, field_validator


class OAuthToken(BaseModel):
    """See https://datatracker.ietf.org/doc/html/rfc6749#section-5.1

    SMART launch context parameters (``patient``, ``encounter``, ...) are returned
    alongside the token and kept as extra fields.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: Literal["Bearer"] = "Bearer"
    expires_in: int | None = None
    scope: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    patient: str | None = None

    @field_validator("token_type", mode="before")
    @classmethod
    def normalize_token_type(cls, v: str | None) -> str | None:
        if isinstance(v, str):
            # Bearer is title-cased in RFC 6750, so we normalize it
            # https://datatracker.ietf.org/doc/html/rfc6750#section-4
            return v.title()
        return v


class AuthSettings(BaseModel):
    """Typed view over the opaque authorization settings of a server.

    Settings are usually given as a plain mapping (they may come from a JSON
    config file); unknown keys are preserved.
    """

    model_config = ConfigDict(extra="allow")

    authorize_type: str | None = None
    authorize_uri: str | None = None
    token_uri: str | None = None
    registration_uri: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    client_name: str | None = None
    redirect_uris: list[str] | None = None
    scope: str | None = None
    username: str | None = None
    password: str | None = None
    headers: dict[str, str] | None = None

    @classmethod
    def from_mapping(cls, settings: "Mapping[str, Any] | AuthSettings | None") -> "AuthSettings":
        if settings is None:
            return cls()
        if isinstance(settings, AuthSettings):
            return settings
        return cls.model_validate(dict(settings))

    @property
    def redirect_uri(self) -> str | None:
        return self.redirect_uris[0] if self.redirect_uris else None

    def merged(self, **overrides: Any) -> "AuthSettings":
        """Return a copy with the non-None `overrides` applied."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return AuthSettings.model_validate(data)


class OAuthClientMetadata(BaseModel):
    """RFC 7591 OAuth 2.0 Dynamic Client Registration metadata.
    See https://datatracker.ietf.org/doc/html/rfc7591#section-2
    for the full field list.
    """

    redirect_uris: list[AnyUrl] = Field(..., min_length=1)
    token_endpoint_auth_method: Literal["none", "client_secret_post", "client_secret_basic"] | None = None
    grant_types: list[str] = ["authorization_code", "refresh_token"]
    response_types: list[str] = ["code"]
    scope: str | None = None
    client_name: str | None = None
    software_id: str | None = None
    software_version: str | None = None


class OAuthClientInformationFull(OAuthClientMetadata):
    """RFC 7591 OAuth 2.0 Dynamic Client Registration full response
    (client information plus metadata).
    """

    client_id: str
    client_secret: str | None = None
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None
