from __future__ import annotations

import json
import re
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..types import (
    ChemicalProperties,
    Element,
    Failure,
    FailureReason,
    Formation,
    IdentificationResult,
    PhysicalProperties,
    Uses,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class IdentifyRequest(_WireModel):
    request_id: str = Field(..., description="Correlation id shared by all attempts")
    attempt: int = Field(..., ge=1)
    mime_type: str = "image/jpeg"
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    image_base64: str = Field(..., min_length=1, description="Base64 encoded image")


class PhysicalPropertiesModel(_WireModel):
    color: str
    hardness: str
    luster: str
    streak: str | None = None
    transparency: str | None = None
    crystal_system: str | None = Field(None, alias="crystalSystem")
    cleavage: str | None = None
    fracture: str | None = None
    specific_gravity: str | None = Field(None, alias="specificGravity")
    additional_properties: Dict[str, str] | None = Field(None, alias="additionalProperties")

    def to_domain(self) -> PhysicalProperties:
        return PhysicalProperties(**self.model_dump())


class ElementModel(_WireModel):
    name: str
    symbol: str
    percentage: float | None = None


class ChemicalPropertiesModel(_WireModel):
    composition: str
    formula: str | None = None
    elements: List[ElementModel] | None = None
    minerals_present: List[str] | None = Field(None, alias="mineralsPresent")
    reactivity: str | None = None
    additional_properties: Dict[str, str] | None = Field(None, alias="additionalProperties")

    def to_domain(self) -> ChemicalProperties:
        elements = None
        if self.elements is not None:
            elements = [Element(**element.model_dump()) for element in self.elements]
        return ChemicalProperties(
            composition=self.composition,
            formula=self.formula,
            elements=elements,
            minerals_present=self.minerals_present,
            reactivity=self.reactivity,
            additional_properties=self.additional_properties,
        )


class FormationModel(_WireModel):
    formation_type: str = Field(..., alias="formationType")
    environment: str
    formation_process: str = Field(..., alias="formationProcess")
    geological_age: str | None = Field(None, alias="geologicalAge")
    common_locations: List[str] | None = Field(None, alias="commonLocations")
    associated_minerals: List[str] | None = Field(None, alias="associatedMinerals")
    additional_info: Dict[str, str] | None = Field(None, alias="additionalInfo")

    def to_domain(self) -> Formation:
        return Formation(**self.model_dump())


class UsesModel(_WireModel):
    fun_facts: List[str] = Field(..., alias="funFacts")
    industrial: List[str] | None = None
    historical: List[str] | None = None
    modern: List[str] | None = None
    metaphysical: List[str] | None = None
    additional_uses: Dict[str, str] | None = Field(None, alias="additionalUses")

    def to_domain(self) -> Uses:
        return Uses(**self.model_dump())


class IdentificationResponse(_WireModel):
    name: str = Field(..., min_length=1)
    category: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    physical_properties: PhysicalPropertiesModel = Field(..., alias="physicalProperties")
    chemical_properties: ChemicalPropertiesModel = Field(..., alias="chemicalProperties")
    formation: FormationModel
    uses: UsesModel

    def to_result(self, image_ref: str | None = None) -> IdentificationResult:
        return IdentificationResult(
            name=self.name,
            category=self.category,
            confidence=self.confidence,
            physical_properties=self.physical_properties.to_domain(),
            chemical_properties=self.chemical_properties.to_domain(),
            formation=self.formation.to_domain(),
            uses=self.uses.to_domain(),
            image_ref=image_ref,
        )


class ErrorEnvelope(_WireModel):
    error: str
    category: str | None = None
    suggestions: List[str] = Field(default_factory=list)
    retry_after: float | None = Field(None, alias="retryAfter")


_ENVELOPE_CATEGORIES = {
    "network": FailureReason.NETWORK,
    "unavailable": FailureReason.NETWORK,
    "timeout": FailureReason.NETWORK,
    "rate_limited": FailureReason.RATE_LIMITED,
    "rate_limit": FailureReason.RATE_LIMITED,
    "server_rejected": FailureReason.SERVER_REJECTED,
    "rejected": FailureReason.SERVER_REJECTED,
    "malformed_response": FailureReason.MALFORMED_RESPONSE,
}

_HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_CODE_FENCE = re.compile(r"```[^\n]*\n(.*?)\n?```", re.DOTALL)


def envelope_reason(category: str | None) -> FailureReason | None:
    if not category:
        return None
    return _ENVELOPE_CATEGORIES.get(category.strip().lower())


def extract_json_object(text: str) -> Dict[str, Any]:
    """Pull the JSON object out of a response body.

    The recognition service relays model output, which sometimes arrives
    wrapped in Markdown code fences or preceded by HTML comments.
    """
    cleaned = _HTML_COMMENT.sub("", text).strip()
    fenced = _CODE_FENCE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end < start:
        raise ValueError("Response body does not contain a JSON object")
    payload = json.loads(cleaned[start : end + 1])
    if not isinstance(payload, dict):
        raise ValueError("Response body is not a JSON object")
    return payload


def decode_body(text: str) -> IdentificationResponse | ErrorEnvelope:
    """Decode a response body into a result or an error envelope.

    Raises ``ValueError`` when the body matches neither schema.
    """
    try:
        payload = extract_json_object(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Response body is not valid JSON: {exc}") from exc
    if "error" in payload and payload.get("error"):
        try:
            return ErrorEnvelope.model_validate(payload)
        except ValidationError as exc:
            raise ValueError(f"Invalid error envelope: {exc}") from exc
    try:
        return IdentificationResponse.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Response did not match the identification schema: {exc}") from exc


def failure_from_envelope(
    envelope: ErrorEnvelope,
    default: FailureReason,
    status_code: int | None = None,
    retry_after: float | None = None,
) -> Failure:
    reason = envelope_reason(envelope.category) or default
    return Failure(
        reason=reason,
        message=envelope.error,
        suggestions=tuple(envelope.suggestions),
        retry_after=envelope.retry_after if envelope.retry_after is not None else retry_after,
        status_code=status_code,
    )


__all__ = [
    "ChemicalPropertiesModel",
    "ElementModel",
    "ErrorEnvelope",
    "FormationModel",
    "IdentificationResponse",
    "IdentifyRequest",
    "PhysicalPropertiesModel",
    "UsesModel",
    "decode_body",
    "envelope_reason",
    "extract_json_object",
    "failure_from_envelope",
]
