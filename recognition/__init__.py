from __future__ import annotations

from .request import IdentificationRequest, Payload, RecognitionClient
from .types import Failure, FailureReason, IdentificationResult, RecognitionError

__all__ = [
    "Failure",
    "FailureReason",
    "IdentificationRequest",
    "IdentificationResult",
    "Payload",
    "RecognitionClient",
    "RecognitionError",
    "RecognitionHttpClient",
    "MockRecognitionClient",
]


def __getattr__(name: str):
    if name == "RecognitionHttpClient":
        from .api.client import RecognitionHttpClient

        return RecognitionHttpClient
    if name == "MockRecognitionClient":
        from .api.mock import MockRecognitionClient

        return MockRecognitionClient
    raise AttributeError(f"module 'recognition' has no attribute {name!r}")
