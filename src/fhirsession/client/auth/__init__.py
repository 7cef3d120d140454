"""
Authorization strategies for FHIR servers.

Implements the SMART on FHIR authorization variants and their selection from
settings or from a server's capability statement.
"""

from fhirsession.client.auth.oauth2 import OAuth2Client
from fhirsession.client.auth.protocol import (
    AuthContext,
    AuthProperties,
    AuthStrategy,
    AuthType,
    InMemoryTokenStorage,
    OAuth2Strategy,
    TokenStorage,
)
from fhirsession.client.auth.registration import DynamicRegistration
from fhirsession.client.auth.registry import AuthTypeRegistry
from fhirsession.client.auth.selector import select_from_capabilities, select_from_settings
from fhirsession.client.auth.strategies import (
    CodeGrantAuth,
    HeaderAuth,
    ImplicitGrantAuth,
    NoneAuth,
    OAuth2Auth,
    PasswordGrantAuth,
)

__all__ = [
    "AuthContext",
    "AuthProperties",
    "AuthStrategy",
    "AuthType",
    "AuthTypeRegistry",
    "CodeGrantAuth",
    "DynamicRegistration",
    "HeaderAuth",
    "ImplicitGrantAuth",
    "InMemoryTokenStorage",
    "NoneAuth",
    "OAuth2Auth",
    "OAuth2Client",
    "OAuth2Strategy",
    "PasswordGrantAuth",
    "TokenStorage",
    "select_from_capabilities",
    "select_from_settings",
]
