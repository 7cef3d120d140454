"""Choose the authorization strategy for a server.

Two sources are consulted: the static settings handed to the server, and the
security descriptor of the server's capability statement. The capability
statement is the more authoritative of the two and always yields a strategy.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fhirsession.client.auth.protocol import AuthContext, AuthStrategy, AuthType
from fhirsession.client.auth.registry import AuthTypeRegistry
from fhirsession.shared.auth import AuthSettings
from fhirsession.types import CapabilityRestSecurity, SMART_SECURITY_CODES

logger = logging.getLogger(__name__)


def infer_auth_type(settings: AuthSettings) -> AuthType | None:
    """Determine the variant named by, or implied by, the settings.

    An explicit, known ``authorize_type`` other than ``none`` wins. Otherwise an
    ``authorize_uri`` together with a ``token_uri`` means the code grant and an
    ``authorize_uri`` alone the implicit grant.
    """
    auth_type = AuthType.parse(settings.authorize_type)
    if auth_type is not None and auth_type is not AuthType.NONE and AuthTypeRegistry.get(auth_type) is not None:
        return auth_type
    if settings.authorize_uri:
        return AuthType.CODE_GRANT if settings.token_uri else AuthType.IMPLICIT_GRANT
    return None


def select_from_settings(
    settings: Mapping[str, Any] | AuthSettings | None,
    context: AuthContext,
) -> AuthStrategy | None:
    """Build the strategy described by static settings, or None if they describe none."""
    auth_settings = AuthSettings.from_mapping(settings)
    auth_type = infer_auth_type(auth_settings)
    if auth_type is None:
        return None
    strategy = AuthTypeRegistry.create(auth_type, auth_settings, context)
    logger.debug("Initialized server auth of type %s from settings", auth_type.value)
    return strategy


def endpoints_from_security(security: CapabilityRestSecurity) -> dict[str, str]:
    """Extract OAuth2 endpoints from a capability security descriptor."""
    uris = security.oauth_uris()
    if not uris:
        return {}
    codes = security.service_codes()
    if codes and not codes & SMART_SECURITY_CODES:
        logger.debug("Security services %s do not include OAuth2, endpoints used anyway", sorted(codes))
    endpoints: dict[str, str] = {}
    if "authorize" in uris:
        endpoints["authorize_uri"] = uris["authorize"]
    if "token" in uris:
        endpoints["token_uri"] = uris["token"]
    if "register" in uris:
        endpoints["registration_uri"] = uris["register"]
    return endpoints


def select_from_capabilities(
    security: CapabilityRestSecurity,
    fallback_settings: Mapping[str, Any] | AuthSettings | None,
    context: AuthContext,
) -> AuthStrategy:
    """Build the strategy for a server's declared security; never returns None.

    Endpoints found in the descriptor override those in `fallback_settings`.
    Without a recognizable scheme the server is treated as open.
    """
    settings = AuthSettings.from_mapping(fallback_settings).merged(**endpoints_from_security(security))
    auth_type = infer_auth_type(settings) or AuthType.NONE
    strategy = AuthTypeRegistry.create(auth_type, settings, context)
    logger.debug("Initialized server auth of type %s from capability statement", auth_type.value)
    return strategy


def open_server_strategy(
    fallback_settings: Mapping[str, Any] | AuthSettings | None,
    context: AuthContext,
) -> AuthStrategy:
    logger.debug("Server seems to be open, proceeding with none-type auth")
    return AuthTypeRegistry.create(AuthType.NONE, AuthSettings.from_mapping(fallback_settings), context)
