"""Tests for request handlers and the response types they produce."""

import json

import httpx
import pytest

from fhirsession.client.requests import FHIRRequestHandler, JSONRequestHandler
from fhirsession.client.responses import ServerJSONResponse, ServerResponse
from fhirsession.shared.exceptions import RequestPreparationError, ServerResponseError, TransportError
from fhirsession.types import Patient


@pytest.fixture
def base_request() -> httpx.Request:
    request = httpx.Request("GET", "https://fhir.example.org/r4/Patient")
    request.headers["Authorization"] = "Bearer tok"
    return request


class TestFHIRRequestHandler:
    def test_keeps_signature_and_merges_headers(self, base_request):
        handler = FHIRRequestHandler("delete", headers={"If-Match": 'W/"1"'})
        prepared = handler.prepare_request(base_request)

        assert prepared.method == "DELETE"
        assert prepared.headers["Authorization"] == "Bearer tok"
        assert prepared.headers["If-Match"] == 'W/"1"'

    def test_params_are_added_to_the_url(self, base_request):
        prepared = FHIRRequestHandler(params={"name": "smith", "_count": 5}).prepare_request(base_request)
        assert prepared.url.params["name"] == "smith"
        assert prepared.url.params["_count"] == "5"

    def test_unsupported_method(self, base_request):
        with pytest.raises(RequestPreparationError, match="Unsupported HTTP method"):
            FHIRRequestHandler("TRACE").prepare_request(base_request)

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH"])
    def test_body_required(self, base_request, method):
        with pytest.raises(RequestPreparationError, match="requires a body"):
            FHIRRequestHandler(method).prepare_request(base_request)

    def test_plain_response(self):
        response = FHIRRequestHandler().response(httpx.Response(204, headers={"Location": "Patient/1/_history/2"}))
        assert isinstance(response, ServerResponse)
        assert response.ok
        assert response.location == "Patient/1/_history/2"


class TestJSONRequestHandler:
    def test_serializes_model(self, base_request):
        handler = JSONRequestHandler("PUT", resource=Patient(id="1", active=True))
        prepared = handler.prepare_request(base_request)

        assert json.loads(prepared.content) == {"resourceType": "Patient", "id": "1", "active": True}
        assert prepared.headers["Content-Type"].startswith("application/fhir+json")
        assert prepared.headers["Accept"] == "application/fhir+json"

    def test_unserializable_resource(self, base_request):
        handler = JSONRequestHandler("POST", resource={"resourceType": "Parameters", "value": object()})
        with pytest.raises(RequestPreparationError, match="Cannot serialize"):
            handler.prepare_request(base_request)

    def test_missing_response_is_not_sent(self):
        response = JSONRequestHandler().response(None)
        assert response.status == 0
        assert not response.sent
        assert response.json is None


class TestServerJSONResponse:
    def test_parses_json_object(self):
        response = ServerJSONResponse.from_response(httpx.Response(200, json={"resourceType": "Patient", "id": "7"}))
        assert response.error is None
        patient = response.resource(Patient)
        assert patient is not None
        assert patient.id == "7"

    def test_resource_of_wrong_type(self):
        response = ServerJSONResponse.from_response(httpx.Response(200, json={"resourceType": "Observation"}))
        assert response.resource(Patient) is None

    def test_invalid_json(self):
        response = ServerJSONResponse.from_response(httpx.Response(200, content=b"<html>"))
        assert isinstance(response.error, ServerResponseError)
        assert response.json is None
        assert not response.ok

    def test_json_array_is_rejected(self):
        response = ServerJSONResponse.from_response(httpx.Response(200, json=[1, 2]))
        assert isinstance(response.error, ServerResponseError)
        assert "list" in response.error.message

    def test_error_status_uses_operation_outcome(self):
        outcome = {
            "resourceType": "OperationOutcome",
            "issue": [
                {"severity": "error", "code": "invalid", "diagnostics": "Bad date"},
                {"severity": "error", "code": "invalid", "details": {"text": "Missing subject"}},
            ],
        }
        response = ServerJSONResponse.from_response(httpx.Response(422, json=outcome))

        assert isinstance(response.error, ServerResponseError)
        assert response.error.status == 422
        assert response.error.message == "Bad date; Missing subject"
        assert response.error.outcome == outcome

    def test_error_status_without_body(self):
        response = ServerJSONResponse.from_response(httpx.Response(503))
        assert isinstance(response.error, ServerResponseError)
        assert response.error.message == "Server responded with status 503"

    def test_not_sent_carries_error(self):
        error = TransportError("offline")
        response = ServerJSONResponse.not_sent(error)
        assert response.error is error
        assert response.status == 0
