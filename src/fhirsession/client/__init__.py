from fhirsession.client.operations import FHIROperation
from fhirsession.client.requests import FHIRRequestHandler, JSONRequestHandler, RequestHandler
from fhirsession.client.responses import ServerJSONResponse, ServerResponse
from fhirsession.client.server import FHIRServer, ReadinessState
from fhirsession.client.transport import TransportSessionManager

__all__ = [
    "FHIROperation",
    "FHIRRequestHandler",
    "FHIRServer",
    "JSONRequestHandler",
    "ReadinessState",
    "RequestHandler",
    "ServerJSONResponse",
    "ServerResponse",
    "TransportSessionManager",
]
