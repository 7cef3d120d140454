"""Request handlers: turn a logical call into an HTTP request and its response into an outcome."""

from __future__ import annotations

import json
from typing import Any, Generic, Protocol, TypeVar

import httpx
from pydantic import BaseModel

from fhirsession.client.responses import ServerJSONResponse, ServerResponse
from fhirsession.shared._httpx_utils import FHIR_JSON_MIME_TYPE
from fhirsession.shared.exceptions import FHIRClientError, RequestPreparationError

ResponseT = TypeVar("ResponseT", bound=ServerResponse)
ResponseT_co = TypeVar("ResponseT_co", bound=ServerResponse, covariant=True)

SUPPORTED_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"})
METHODS_WITH_BODY = frozenset({"POST", "PUT", "PATCH"})


class RequestHandler(Protocol[ResponseT_co]):
    """Contract between the request pipeline and one kind of request."""

    method: str

    def prepare_request(self, request: httpx.Request) -> httpx.Request:
        """Finish a (possibly signed) base request: method, headers, body.

        Raises:
            RequestPreparationError: The request cannot be built.
        """
        ...

    def response(self, response: httpx.Response | None) -> ResponseT_co:
        """Map the HTTP response, or its absence after a transport error, to an outcome."""
        ...

    def not_sent(self, error: FHIRClientError) -> ResponseT_co:
        """Outcome for a request that was never sent."""
        ...


class FHIRRequestHandler(Generic[ResponseT]):
    """Sends an optional raw body and produces a plain `ServerResponse`."""

    response_class: type[ServerResponse] = ServerResponse

    def __init__(
        self,
        method: str = "GET",
        body: bytes | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> None:
        self.method = method.upper()
        self.body = body
        self.headers = dict(headers or {})
        self.params = params

    def prepare_request(self, request: httpx.Request) -> httpx.Request:
        if self.method not in SUPPORTED_METHODS:
            raise RequestPreparationError(f"Unsupported HTTP method {self.method}")
        if self.method in METHODS_WITH_BODY and self.body is None:
            raise RequestPreparationError(f"A {self.method} request requires a body")

        headers = httpx.Headers(request.headers)
        headers.update(self.headers)
        url = request.url.copy_merge_params(self.params) if self.params else request.url
        return httpx.Request(self.method, url, headers=headers, content=self.body)

    def response(self, response: httpx.Response | None) -> ResponseT:
        return self.response_class.from_response(response)  # type: ignore[return-value]

    def not_sent(self, error: FHIRClientError) -> ResponseT:
        return self.response_class.not_sent(error)  # type: ignore[return-value]


class JSONRequestHandler(FHIRRequestHandler[ServerJSONResponse]):
    """Sends and receives FHIR JSON."""

    response_class = ServerJSONResponse

    def __init__(
        self,
        method: str = "GET",
        resource: BaseModel | dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(method, headers=headers, params=params)
        self.resource = resource

    def prepare_request(self, request: httpx.Request) -> httpx.Request:
        if self.resource is not None:
            try:
                if isinstance(self.resource, BaseModel):
                    payload = self.resource.model_dump(mode="json", exclude_none=True)
                else:
                    payload = self.resource
                self.body = json.dumps(payload).encode("utf-8")
            except (TypeError, ValueError) as exc:
                raise RequestPreparationError(f"Cannot serialize resource: {exc}") from exc
            self.headers.setdefault("Content-Type", f"{FHIR_JSON_MIME_TYPE}; charset=utf-8")
        self.headers.setdefault("Accept", FHIR_JSON_MIME_TYPE)
        return super().prepare_request(request)
