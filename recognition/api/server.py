"""Stub recognition service for local end-to-end runs.

Serves a canned specimen for every well-formed request. A failure plan makes
the first requests fail in the same shapes the real service uses, so retry
behaviour can be exercised from the command line::

    python -m recognition.api.server --fail network,rate_limited
    python -m identifier.main --api http sample.jpg
"""

from __future__ import annotations

import argparse
import base64
import binascii
import logging
import threading
from collections import deque
from typing import Any, Dict, Iterable, Sequence

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from ..types import FailureReason
from .mock import DEFAULT_FAILURE_MESSAGES, sample_response_body
from .schemas import IdentifyRequest


logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER_SECONDS = 1


def _failure_response(reason: FailureReason) -> Response:
    message = DEFAULT_FAILURE_MESSAGES.get(reason, reason.value)
    if reason is FailureReason.NETWORK:
        return JSONResponse(
            status_code=503, content={"error": message, "category": "unavailable"}
        )
    if reason is FailureReason.RATE_LIMITED:
        return JSONResponse(
            status_code=429,
            content={"error": message, "category": "rate_limited"},
            headers={"Retry-After": str(RATE_LIMIT_RETRY_AFTER_SECONDS)},
        )
    if reason is FailureReason.MALFORMED_RESPONSE:
        return PlainTextResponse("<b>Warning</b>: upstream model returned no content")
    return JSONResponse(
        status_code=200,
        content={
            "error": message,
            "suggestions": [
                "Photograph the specimen against a plain background",
                "Make sure the specimen fills most of the frame",
            ],
        },
    )


def create_app(
    failure_plan: Iterable[FailureReason | str] = (),
    specimen: Dict[str, Any] | None = None,
) -> FastAPI:
    app = FastAPI(title="Specimen recognition stub")
    plan: deque[FailureReason] = deque(FailureReason(item) for item in failure_plan)
    body = specimen if specimen is not None else sample_response_body()
    lock = threading.Lock()
    app.state.received = []

    @app.get("/health", response_model=dict[str, str])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/v1/identify")
    async def identify(request: IdentifyRequest) -> Response:
        logger.info(
            "Identify request=%s attempt=%d size=%dx%d payload_bytes=%d",
            request.request_id,
            request.attempt,
            request.width,
            request.height,
            len(request.image_base64),
        )
        try:
            base64.b64decode(request.image_base64, validate=True)
        except (binascii.Error, ValueError):
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid base64 image payload", "category": "rejected"},
            )
        with lock:
            app.state.received.append((request.request_id, request.attempt))
            failure = plan.popleft() if plan else None
        if failure is not None:
            logger.info(
                "Failing request=%s attempt=%d reason=%s",
                request.request_id,
                request.attempt,
                failure.value,
            )
            return _failure_response(failure)
        return JSONResponse(content=body)

    return app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the stub recognition service")
    parser.add_argument("--host", default="127.0.0.1", help="interface to bind")
    parser.add_argument("--port", type=int, default=8000, help="port to listen on")
    parser.add_argument(
        "--fail",
        default="",
        help="comma separated failures for the first requests "
        "(network, rate_limited, server_rejected, malformed_response)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s"
        )
    args = build_parser().parse_args(argv)
    plan = [item.strip() for item in args.fail.split(",") if item.strip()]
    app = create_app(failure_plan=plan)
    logger.info("Stub recognition service on %s:%d failure_plan=%s", args.host, args.port, plan or "none")
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
