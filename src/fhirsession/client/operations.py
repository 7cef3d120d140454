"""Invocation of server-defined operations (``$everything``, ``$validate``, ...)."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from fhirsession.client.requests import JSONRequestHandler
from fhirsession.client.responses import ServerJSONResponse
from fhirsession.shared.exceptions import OperationValidationError
from fhirsession.types import OperationDefinition, OperationDefinitionParameter

if TYPE_CHECKING:
    from fhirsession.client.server import FHIRServer

_STRING_TYPES = (
    "string code id uri url canonical oid uuid markdown base64Binary date dateTime instant time xhtml"
).split()
_INTEGER_TYPES = ("integer", "positiveInt", "unsignedInt", "integer64")

PRIMITIVE_TYPES: dict[str, tuple[type, ...]] = {
    "boolean": (bool,),
    "decimal": (int, float, Decimal),
    **{name: (int,) for name in _INTEGER_TYPES},
    **{name: (str,) for name in _STRING_TYPES},
}


def _is_primitive_value(value: Any) -> bool:
    return isinstance(value, (str, bool, int, float, Decimal))


def _check_value(param: OperationDefinitionParameter, value: Any) -> None:
    if param.type is None:
        return
    expected = PRIMITIVE_TYPES.get(param.type)
    if expected is not None:
        # bool is an int subclass but never a valid FHIR integer or decimal
        if isinstance(value, bool) and bool not in expected:
            raise OperationValidationError(f"Parameter {param.name} must be of type {param.type}, got a boolean")
        if not isinstance(value, expected):
            raise OperationValidationError(
                f"Parameter {param.name} must be of type {param.type}, got {type(value).__name__}"
            )
    elif not isinstance(value, (dict, BaseModel)):
        raise OperationValidationError(
            f"Parameter {param.name} must be a {param.type} structure, got {type(value).__name__}"
        )


def _parameter_entry(name: str, value: Any, param: OperationDefinitionParameter | None) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, dict):
        if "resourceType" in value:
            return {"name": name, "resource": value}
        type_name = param.type if param and param.type else "Element"
        return {"name": name, f"value{type_name[0].upper()}{type_name[1:]}": value}

    if param is not None and param.type in PRIMITIVE_TYPES:
        type_name = param.type
    elif isinstance(value, bool):
        type_name = "boolean"
    elif isinstance(value, int):
        type_name = "integer"
    elif isinstance(value, (float, Decimal)):
        type_name = "decimal"
    else:
        type_name = "string"
    if isinstance(value, Decimal):
        value = float(value)
    return {"name": name, f"value{type_name[0].upper()}{type_name[1:]}": value}


@dataclass
class FHIROperation:
    """A call of the named operation at system, type or instance level.

    Attributes:
        name: Operation name, with or without the leading ``$``
        resource_type: Resource type for type and instance level calls
        resource_id: Resource id for instance level calls
        parameters: Input parameter values; a list stands for repeated values
    """

    name: str
    resource_type: str | None = None
    resource_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.name = self.name.lstrip("$")

    @property
    def level(self) -> str:
        if self.resource_id is not None:
            return "instance"
        if self.resource_type is not None:
            return "type"
        return "system"

    @property
    def path(self) -> str:
        parts = [p for p in (self.resource_type, self.resource_id) if p]
        parts.append(f"${self.name}")
        return "/".join(parts)

    def _values(self, name: str) -> list[Any]:
        value = self.parameters[name]
        return list(value) if isinstance(value, (list, tuple)) else [value]

    def validate_with(self, definition: OperationDefinition) -> None:
        """Check this call against `definition`.

        Raises:
            OperationValidationError: The call does not match the definition.
        """
        if self.resource_id is not None and self.resource_type is None:
            raise OperationValidationError("An instance level operation needs a resource type")
        if not getattr(definition, self.level):
            raise OperationValidationError(f"Operation ${self.name} cannot be invoked at {self.level} level")
        if self.resource_type and definition.resource and self.resource_type not in definition.resource:
            raise OperationValidationError(f"Operation ${self.name} is not defined on {self.resource_type}")

        inputs = definition.input_parameters()
        for name in self.parameters:
            if name not in inputs:
                raise OperationValidationError(f"Operation ${self.name} has no input parameter {name}")

        for name, param in inputs.items():
            values = self._values(name) if name in self.parameters else []
            if len(values) < param.min:
                raise OperationValidationError(
                    f"Parameter {name} of ${self.name} needs at least {param.min} value(s), got {len(values)}"
                )
            max_count = param.max_count
            if max_count is not None and len(values) > max_count:
                raise OperationValidationError(
                    f"Parameter {name} of ${self.name} takes at most {max_count} value(s), got {len(values)}"
                )
            for value in values:
                _check_value(param, value)

    def parameters_resource(self, definition: OperationDefinition | None = None) -> dict[str, Any]:
        inputs = definition.input_parameters() if definition else {}
        entries = [
            _parameter_entry(name, value, inputs.get(name)) for name in self.parameters for value in self._values(name)
        ]
        return {"resourceType": "Parameters", "parameter": entries}

    def request_handler(self, definition: OperationDefinition | None = None) -> JSONRequestHandler:
        """GET with query parameters when the call is safe and flat, otherwise POST a Parameters resource."""
        affects_state = definition is None or definition.affectsState is not False
        flat = all(_is_primitive_value(v) for name in self.parameters for v in self._values(name))
        if not affects_state and flat:
            params = {
                name: [str(v) if isinstance(v, Decimal) else v for v in self._values(name)] for name in self.parameters
            }
            return JSONRequestHandler("GET", params=params or None)
        return JSONRequestHandler("POST", resource=self.parameters_resource(definition))

    async def perform(self, server: FHIRServer, definition: OperationDefinition | None = None) -> ServerJSONResponse:
        return await server.perform_request(self.path, self.request_handler(definition))
