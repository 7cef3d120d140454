"""Typed outcomes of requests against a FHIR server.

A response object is always produced, whether or not the request reached the
server: failures are carried in `error` instead of being raised.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from fhirsession.shared.exceptions import FHIRClientError, ServerResponseError
from fhirsession.types import ResourceT

logger = logging.getLogger(__name__)

NOT_SENT_STATUS = 0


class ServerResponse:
    """Outcome of a request: status, headers, body and an optional error."""

    def __init__(
        self,
        status: int = NOT_SENT_STATUS,
        headers: httpx.Headers | None = None,
        body: bytes = b"",
        error: Exception | None = None,
    ) -> None:
        self.status = status
        self.headers = headers if headers is not None else httpx.Headers()
        self.body = body
        self.error = error

    @classmethod
    def from_response(cls, response: httpx.Response | None) -> ServerResponse:
        if response is None:
            return cls()
        res = cls(status=response.status_code, headers=response.headers, body=response.content)
        if response.status_code >= 400:
            res.error = ServerResponseError(
                f"Server responded with status {response.status_code}", status=response.status_code
            )
        return res

    @classmethod
    def not_sent(cls, error: FHIRClientError) -> ServerResponse:
        return cls(error=error)

    @property
    def sent(self) -> bool:
        return self.status != NOT_SENT_STATUS

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300

    @property
    def location(self) -> str | None:
        return self.headers.get("Location")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} status={self.status} error={self.error!r}>"


class ServerJSONResponse(ServerResponse):
    """Outcome of a request whose body is FHIR JSON."""

    def __init__(
        self,
        status: int = NOT_SENT_STATUS,
        headers: httpx.Headers | None = None,
        body: bytes = b"",
        error: Exception | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(status=status, headers=headers, body=body, error=error)
        self.json = json_body

    @classmethod
    def from_response(cls, response: httpx.Response | None) -> ServerJSONResponse:
        if response is None:
            return cls()
        res = cls(status=response.status_code, headers=response.headers, body=response.content)
        if response.content:
            try:
                parsed = json.loads(response.content)
            except ValueError as exc:
                res.error = ServerResponseError(
                    f"Failed to parse JSON response: {exc}", status=response.status_code
                )
                return res
            if isinstance(parsed, dict):
                res.json = parsed
            else:
                res.error = ServerResponseError(
                    f"Expected a JSON object, got {type(parsed).__name__}", status=response.status_code
                )
                return res

        if response.status_code >= 400:
            outcome = res.json if res.json and res.json.get("resourceType") == "OperationOutcome" else None
            message = _outcome_message(outcome) or f"Server responded with status {response.status_code}"
            res.error = ServerResponseError(message, status=response.status_code, outcome=outcome)
        return res

    @classmethod
    def not_sent(cls, error: FHIRClientError) -> ServerJSONResponse:
        return cls(error=error)

    def resource(self, model: type[ResourceT]) -> ResourceT | None:
        """Validate the JSON body as `model`, or return None if it does not fit."""
        if self.json is None:
            return None
        try:
            return model.model_validate(self.json)
        except ValidationError as exc:
            logger.debug("Response body is not a %s: %s", model.__name__, exc)
            return None


def _outcome_message(outcome: dict[str, Any] | None) -> str | None:
    if not outcome:
        return None
    messages: list[str] = []
    for issue in outcome.get("issue") or []:
        if not isinstance(issue, dict):
            continue
        text = issue.get("diagnostics") or (issue.get("details") or {}).get("text")
        if text:
            messages.append(str(text))
    return "; ".join(messages) or None
