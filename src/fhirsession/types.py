"""FHIR data types used by the session engine.

Only the fields the engine reads are modelled; every other element of a
resource is preserved as an extra field so that resources round-trip intact.
Field names follow the FHIR JSON wire format.
"""

from __future__ import annotations

from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator

SMART_OAUTH_URIS_EXTENSION = "http://fhir-registry.smarthealthit.org/StructureDefinition/oauth-uris"
"""Extension on ``rest.security`` carrying the SMART authorize/token/register endpoints."""

SMART_SECURITY_CODES = frozenset({"oauth2", "smart-on-fhir"})


class FHIRModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class Coding(FHIRModel):
    system: str | None = None
    code: str | None = None
    display: str | None = None


class CodeableConcept(FHIRModel):
    coding: list[Coding] | None = None
    text: str | None = None


class Extension(FHIRModel):
    url: str
    valueUri: str | None = None
    valueUrl: str | None = None
    valueString: str | None = None
    extension: list[Extension] | None = None

    @property
    def value(self) -> str | None:
        return self.valueUri or self.valueUrl or self.valueString


class Reference(FHIRModel):
    reference: str | None = None
    display: str | None = None


class Resource(FHIRModel):
    resourceType: str
    id: str | None = None


ResourceT = TypeVar("ResourceT", bound=Resource)


class Patient(Resource):
    resourceType: Literal["Patient"] = "Patient"


class CapabilityRestSecurity(FHIRModel):
    cors: bool | None = None
    service: list[CodeableConcept] | None = None
    description: str | None = None
    extension: list[Extension] | None = None

    def service_codes(self) -> set[str]:
        """Lower-cased codes of all security services, e.g. ``{"smart-on-fhir"}``."""
        codes: set[str] = set()
        for concept in self.service or []:
            for coding in concept.coding or []:
                if coding.code:
                    codes.add(coding.code.lower())
        return codes

    def oauth_uris(self) -> dict[str, str]:
        """Endpoints declared in the SMART ``oauth-uris`` extension, keyed by ``authorize``/``token``/``register``."""
        uris: dict[str, str] = {}
        for ext in self.extension or []:
            if ext.url != SMART_OAUTH_URIS_EXTENSION:
                continue
            for sub in ext.extension or []:
                if sub.value:
                    uris[sub.url] = sub.value
        return uris


class CapabilityRestOperation(FHIRModel):
    name: str
    definition: Reference | None = None

    @field_validator("definition", mode="before")
    @classmethod
    def canonical_to_reference(cls, v: Any) -> Any:
        # R4 declares the definition as a canonical URL, DSTU2 as a Reference
        if isinstance(v, str):
            return {"reference": v}
        return v


class CapabilityRest(FHIRModel):
    mode: str | None = None
    security: CapabilityRestSecurity | None = None
    operation: list[CapabilityRestOperation] | None = None


class CapabilityStatement(Resource):
    resourceType: Literal["CapabilityStatement", "Conformance"] = "CapabilityStatement"
    name: str | None = None
    fhirVersion: str | None = None
    rest: list[CapabilityRest] | None = None


class OperationDefinitionParameter(FHIRModel):
    name: str
    use: Literal["in", "out"]
    min: int = 0
    max: str = "1"
    type: str | None = None
    part: list[OperationDefinitionParameter] | None = None

    @property
    def max_count(self) -> int | None:
        """Upper cardinality bound, None when unbounded (``*``)."""
        if self.max == "*":
            return None
        return int(self.max)


class OperationDefinition(Resource):
    resourceType: Literal["OperationDefinition"] = "OperationDefinition"
    name: str
    code: str
    system: bool = False
    type: bool = False
    instance: bool = False
    resource: list[str] | None = None
    affectsState: bool | None = None
    parameter: list[OperationDefinitionParameter] | None = None

    def input_parameters(self) -> dict[str, OperationDefinitionParameter]:
        return {p.name: p for p in self.parameter or [] if p.use == "in"}
