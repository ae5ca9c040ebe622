from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class FailureReason(str, Enum):
    """Why an identification attempt did not produce a result."""

    NETWORK = "network"
    SERVER_REJECTED = "server_rejected"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    CANCELLED = "cancelled"
    INVALID_IMAGE = "invalid_image"


@dataclass(frozen=True)
class Failure:
    reason: FailureReason
    message: str
    attempts: int = 1
    suggestions: tuple[str, ...] = ()
    retry_after: float | None = None
    status_code: int | None = None


class RecognitionError(RuntimeError):
    """Raised by recognition clients; carries a classified :class:`Failure`."""

    def __init__(
        self,
        reason: FailureReason,
        message: str,
        *,
        suggestions: tuple[str, ...] | list[str] = (),
        retry_after: float | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.failure = Failure(
            reason=reason,
            message=message,
            suggestions=tuple(suggestions),
            retry_after=retry_after,
            status_code=status_code,
        )

    @classmethod
    def from_failure(cls, failure: Failure) -> "RecognitionError":
        return cls(
            failure.reason,
            failure.message,
            suggestions=failure.suggestions,
            retry_after=failure.retry_after,
            status_code=failure.status_code,
        )


@dataclass(frozen=True)
class PhysicalProperties:
    color: str
    hardness: str
    luster: str
    streak: str | None = None
    transparency: str | None = None
    crystal_system: str | None = None
    cleavage: str | None = None
    fracture: str | None = None
    specific_gravity: str | None = None
    additional_properties: dict[str, str] | None = None


@dataclass(frozen=True)
class Element:
    name: str
    symbol: str
    percentage: float | None = None


@dataclass(frozen=True)
class ChemicalProperties:
    composition: str
    formula: str | None = None
    elements: list[Element] | None = None
    minerals_present: list[str] | None = None
    reactivity: str | None = None
    additional_properties: dict[str, str] | None = None


@dataclass(frozen=True)
class Formation:
    formation_type: str
    environment: str
    formation_process: str
    geological_age: str | None = None
    common_locations: list[str] | None = None
    associated_minerals: list[str] | None = None
    additional_info: dict[str, str] | None = None


@dataclass(frozen=True)
class Uses:
    fun_facts: list[str]
    industrial: list[str] | None = None
    historical: list[str] | None = None
    modern: list[str] | None = None
    metaphysical: list[str] | None = None
    additional_uses: dict[str, str] | None = None


@dataclass
class IdentificationResult:
    """A successful identification.

    The pipeline creates one per successful attempt and hands it off; only the
    annotation fields (``is_favorite``, ``notes``, ``location``) are meant to be
    changed afterwards, by whoever keeps the collection.
    """

    name: str
    category: str
    confidence: float
    physical_properties: PhysicalProperties
    chemical_properties: ChemicalProperties
    formation: Formation
    uses: Uses
    image_ref: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    identified_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_favorite: bool = False
    notes: str | None = None
    location: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence!r}")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["identified_at"] = self.identified_at.isoformat()
        return data


__all__ = [
    "ChemicalProperties",
    "Element",
    "Failure",
    "FailureReason",
    "Formation",
    "IdentificationResult",
    "PhysicalProperties",
    "RecognitionError",
    "Uses",
]
