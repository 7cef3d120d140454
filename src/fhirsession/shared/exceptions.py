from __future__ import annotations

from typing import Any


class FHIRClientError(Exception):
    """Base class for every error reported by fhirsession.

    Attributes:
        message: Human-readable description of the failure
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidBaseURLError(FHIRClientError, ValueError):
    """Raised when a server is constructed from a malformed base URL.

    This is a programming error on the integrator's side and is raised eagerly
    from the constructor rather than reported through a response.
    """


class TransportError(FHIRClientError):
    """The network layer reported an error (connect failure, timeout, cancellation)."""


class DiscoveryError(FHIRClientError):
    """The capability statement could not be fetched or did not parse."""


class AuthMethodUndetectedError(FHIRClientError):
    """No authorization strategy could be established for the server."""


class OperationValidationError(FHIRClientError):
    """Operation call parameters do not match the operation definition."""


class UnsupportedOperationError(FHIRClientError):
    """The server does not advertise the requested operation."""


class RequestPreparationError(FHIRClientError):
    """A request handler could not build a valid request."""


class PathResolutionError(FHIRClientError):
    """A relative path could not be resolved against the server's base URL."""


class ServerResponseError(FHIRClientError):
    """The server answered with an error status.

    Attributes:
        status: HTTP status code of the response
        outcome: The ``OperationOutcome`` returned by the server, if any
    """

    def __init__(self, message: str, status: int, outcome: dict[str, Any] | None = None):
        super().__init__(message)
        self.status = status
        self.outcome = outcome


class AuthorizationError(FHIRClientError):
    """An authorization flow failed (state mismatch, token endpoint error, ...)."""


class RegistrationError(AuthorizationError):
    """Dynamic client registration failed or is not possible."""


class AlreadySetError(FHIRClientError):
    """A write-once value was assigned a second time."""
