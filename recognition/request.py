from __future__ import annotations

import base64
import threading
import uuid
from dataclasses import dataclass, field, replace
from typing import Protocol

from .types import IdentificationResult


@dataclass(frozen=True)
class Payload:
    """Transport-ready image produced by the preprocessor."""

    data: bytes
    width: int
    height: int
    encoding: str = "jpeg"
    image_ref: str | None = None

    @property
    def mime_type(self) -> str:
        return f"image/{self.encoding}"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class IdentificationRequest:
    """One attempt at identifying a payload.

    All attempts of a logical request share ``request_id`` and the
    ``cancel_event`` token; only ``attempt`` changes between them.
    """

    payload: Payload
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempt: int = 1
    cancel_event: threading.Event = field(
        default_factory=threading.Event, compare=False, repr=False
    )

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def next_attempt(self) -> "IdentificationRequest":
        return replace(self, attempt=self.attempt + 1)


class RecognitionClient(Protocol):
    def send(
        self, request: IdentificationRequest, timeout: float | None = None
    ) -> IdentificationResult: ...


__all__ = ["IdentificationRequest", "Payload", "RecognitionClient"]
