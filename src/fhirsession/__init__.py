from fhirsession.client import (
    FHIROperation,
    FHIRRequestHandler,
    FHIRServer,
    JSONRequestHandler,
    ReadinessState,
    ServerJSONResponse,
    ServerResponse,
)
from fhirsession.client.auth import AuthProperties, AuthType, AuthTypeRegistry, DynamicRegistration
from fhirsession.settings import ClientSettings
from fhirsession.shared.auth import AuthSettings, OAuthToken
from fhirsession.shared.exceptions import (
    AlreadySetError,
    AuthMethodUndetectedError,
    AuthorizationError,
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
from fhirsession.types import CapabilityStatement, OperationDefinition, Patient, Resource

__all__ = [
    "AlreadySetError",
    "AuthMethodUndetectedError",
    "AuthProperties",
    "AuthSettings",
    "AuthType",
    "AuthTypeRegistry",
    "AuthorizationError",
    "CapabilityStatement",
    "ClientSettings",
    "DiscoveryError",
    "DynamicRegistration",
    "FHIRClientError",
    "FHIROperation",
    "FHIRRequestHandler",
    "FHIRServer",
    "InvalidBaseURLError",
    "JSONRequestHandler",
    "OAuthToken",
    "OperationDefinition",
    "OperationValidationError",
    "Patient",
    "PathResolutionError",
    "ReadinessState",
    "RegistrationError",
    "RequestPreparationError",
    "Resource",
    "ServerJSONResponse",
    "ServerResponse",
    "TransportError",
    "UnsupportedOperationError",
]
