from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict

import requests

from ..request import IdentificationRequest
from ..types import Failure, FailureReason, IdentificationResult, RecognitionError
from .schemas import ErrorEnvelope, IdentifyRequest, decode_body, failure_from_envelope


logger = logging.getLogger(__name__)

USER_AGENT = "specimen-identifier/0.1"


@dataclass
class RecognitionHttpClient:
    """Send identification attempts to the recognition service over HTTP."""

    base_url: str
    timeout: float = 30.0
    shared_secret: str | None = None
    session: requests.Session = field(default_factory=requests.Session)

    def send(
        self, request: IdentificationRequest, timeout: float | None = None
    ) -> IdentificationResult:
        self._check_cancelled(request)
        body = self._build_body(request)
        url = f"{self.base_url.rstrip('/')}/v1/identify"
        logger.debug(
            "Posting identification request=%s attempt=%d bytes=%d",
            request.request_id,
            request.attempt,
            len(body),
        )
        try:
            response = self.session.post(
                url,
                data=body,
                headers=self._build_headers(request, body),
                timeout=timeout or self.timeout,
            )
        except requests.Timeout as exc:
            raise RecognitionError(
                FailureReason.NETWORK, "Connection timed out"
            ) from exc
        except requests.ConnectionError as exc:
            raise RecognitionError(
                FailureReason.NETWORK, "Unable to connect to the recognition service"
            ) from exc
        except requests.RequestException as exc:
            raise RecognitionError(
                FailureReason.NETWORK, f"Request to recognition service failed: {exc}"
            ) from exc
        self._check_cancelled(request)
        return self._handle_response(response, request)

    def close(self) -> None:
        self.session.close()

    def _build_body(self, request: IdentificationRequest) -> bytes:
        payload = request.payload
        wire = IdentifyRequest(
            request_id=request.request_id,
            attempt=request.attempt,
            mime_type=payload.mime_type,
            width=payload.width,
            height=payload.height,
            image_base64=payload.to_base64(),
        )
        return wire.model_dump_json().encode("utf-8")

    def _build_headers(self, request: IdentificationRequest, body: bytes) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "Cache-Control": "no-cache",
            "X-Request-Id": request.request_id,
        }
        if self.shared_secret:
            digest = hmac.new(self.shared_secret.encode("utf-8"), body, hashlib.sha256)
            headers["X-Signature"] = digest.hexdigest()
        return headers

    def _handle_response(
        self, response: requests.Response, request: IdentificationRequest
    ) -> IdentificationResult:
        status = response.status_code
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        try:
            decoded = decode_body(response.text)
        except ValueError as exc:
            if 200 <= status < 300:
                logger.warning(
                    "Malformed response request=%s status=%d error=%s",
                    request.request_id,
                    status,
                    exc,
                )
                raise RecognitionError(
                    FailureReason.MALFORMED_RESPONSE,
                    "The recognition service returned a response that could not be read.",
                    status_code=status,
                ) from exc
            decoded = None

        if 200 <= status < 300:
            if isinstance(decoded, ErrorEnvelope):
                failure = failure_from_envelope(
                    decoded, FailureReason.SERVER_REJECTED, status, retry_after
                )
                raise RecognitionError.from_failure(failure)
            return decoded.to_result(image_ref=request.payload.image_ref)

        default = reason_for_status(status)
        if isinstance(decoded, ErrorEnvelope):
            failure = failure_from_envelope(decoded, default, status, retry_after)
        else:
            failure = Failure(
                reason=default,
                message=_status_message(status),
                retry_after=retry_after,
                status_code=status,
            )
        logger.info(
            "Recognition service refused request=%s status=%d reason=%s",
            request.request_id,
            status,
            failure.reason.value,
        )
        raise RecognitionError.from_failure(failure)

    def _check_cancelled(self, request: IdentificationRequest) -> None:
        if request.cancelled:
            raise RecognitionError(FailureReason.CANCELLED, "Identification cancelled")


def reason_for_status(status: int) -> FailureReason:
    if status == 429:
        return FailureReason.RATE_LIMITED
    if status == 408 or status >= 500:
        return FailureReason.NETWORK
    return FailureReason.SERVER_REJECTED


def _status_message(status: int) -> str:
    if status == 429:
        return "The recognition service is busy. Please try again shortly."
    if status == 408 or status >= 500:
        return f"Server temporarily unavailable (HTTP {status})"
    return f"There was a problem with your request (HTTP {status})."


def parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


__all__ = ["RecognitionHttpClient", "parse_retry_after", "reason_for_status"]
