from __future__ import annotations

import copy
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Union

from ..request import IdentificationRequest
from ..types import Failure, FailureReason, IdentificationResult, RecognitionError
from .schemas import IdentificationResponse


SAMPLE_SPECIMEN: Dict[str, Any] = {
    "name": "Amethyst",
    "category": "Mineral (Quartz variety)",
    "confidence": 0.93,
    "physicalProperties": {
        "color": "Purple to violet",
        "hardness": "7",
        "luster": "Vitreous",
        "streak": "White",
        "transparency": "Transparent to translucent",
        "crystalSystem": "Trigonal",
        "cleavage": "None",
        "fracture": "Conchoidal",
        "specificGravity": "2.65",
    },
    "chemicalProperties": {
        "formula": "SiO2",
        "composition": "Silicon dioxide with iron impurities",
        "elements": [
            {"name": "Silicon", "symbol": "Si", "percentage": 46.7},
            {"name": "Oxygen", "symbol": "O", "percentage": 53.3},
        ],
    },
    "formation": {
        "formationType": "Igneous / hydrothermal",
        "environment": "Geodes and cavities in volcanic rock",
        "geologicalAge": "Various",
        "commonLocations": ["Brazil", "Uruguay", "Zambia"],
        "formationProcess": "Crystallises from silica-rich fluids filling cavities",
    },
    "uses": {
        "industrial": ["Abrasives"],
        "historical": ["Worn by ancient Greeks to ward off intoxication"],
        "modern": ["Jewelry", "Decorative specimens"],
        "metaphysical": ["Calm and clarity"],
        "funFacts": ["Its colour fades with prolonged exposure to sunlight."],
    },
}

DEFAULT_FAILURE_MESSAGES: Dict[FailureReason, str] = {
    FailureReason.NETWORK: "Connection timed out",
    FailureReason.RATE_LIMITED: "The recognition service is busy. Please try again shortly.",
    FailureReason.SERVER_REJECTED: "The photo could not be identified as a rock or mineral.",
    FailureReason.MALFORMED_RESPONSE: "The recognition service returned a response that could not be read.",
    FailureReason.CANCELLED: "Identification cancelled",
}

Outcome = Union[IdentificationResult, Failure, FailureReason, Exception]


def sample_response_body() -> Dict[str, Any]:
    return copy.deepcopy(SAMPLE_SPECIMEN)


def sample_result(image_ref: str | None = None) -> IdentificationResult:
    return IdentificationResponse.model_validate(SAMPLE_SPECIMEN).to_result(image_ref=image_ref)


@dataclass
class MockRecognitionClient:
    """Recognition client that replays scripted outcomes in order.

    Once the script is exhausted every call succeeds with the sample specimen.
    Every request that reaches the "service" is kept in ``records``.
    """

    outcomes: Iterable[Outcome] = ()
    records: List[IdentificationRequest] = field(default_factory=list)
    _pending: Deque[Outcome] = field(init=False, default_factory=deque)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self._pending.extend(self.outcomes)

    @property
    def calls(self) -> int:
        with self._lock:
            return len(self.records)

    def send(
        self, request: IdentificationRequest, timeout: float | None = None
    ) -> IdentificationResult:
        if request.cancelled:
            raise RecognitionError(FailureReason.CANCELLED, "Identification cancelled")
        with self._lock:
            self.records.append(request)
            outcome = self._pending.popleft() if self._pending else None

        if outcome is None:
            return sample_result(image_ref=request.payload.image_ref)
        if isinstance(outcome, IdentificationResult):
            return outcome
        if isinstance(outcome, FailureReason):
            outcome = Failure(reason=outcome, message=DEFAULT_FAILURE_MESSAGES.get(outcome, outcome.value))
        if isinstance(outcome, Failure):
            raise RecognitionError.from_failure(outcome)
        raise outcome


__all__ = [
    "DEFAULT_FAILURE_MESSAGES",
    "MockRecognitionClient",
    "SAMPLE_SPECIMEN",
    "sample_response_body",
    "sample_result",
]
