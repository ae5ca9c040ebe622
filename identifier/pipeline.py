from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import partial
from typing import Callable

from recognition.request import IdentificationRequest, RecognitionClient
from recognition.types import Failure, FailureReason, IdentificationResult, RecognitionError

from .preprocess import ImagePreprocessor, ImageSource, InvalidImageError
from .retry import RetryController
from .scheduler import Scheduler, ThreadingScheduler
from .state import (
    IdentificationState,
    IdentificationStateMachine,
    StateListener,
    Success,
)


logger = logging.getLogger(__name__)

ResultHandler = Callable[[IdentificationResult], None]


class IdentificationPipeline:
    """Coordinates preprocess -> request -> recognition client -> retry -> state.

    ``identify`` and ``cancel`` are the only mutating entry points. Neither
    raises: every outcome, including unusable images, is reported through the
    observable state.
    """

    def __init__(
        self,
        client: RecognitionClient,
        preprocessor: ImagePreprocessor | None = None,
        controller: RetryController | None = None,
        scheduler: Scheduler | None = None,
        executor: Executor | None = None,
        attempt_timeout: float | None = None,
        on_success: ResultHandler | None = None,
    ) -> None:
        self._client = client
        self._preprocessor = preprocessor or ImagePreprocessor()
        self._machine = IdentificationStateMachine(controller or RetryController())
        self._scheduler: Scheduler = scheduler or ThreadingScheduler()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="identify"
        )
        self._attempt_timeout = attempt_timeout
        self._closed = False
        if on_success is not None:
            self._machine.subscribe(partial(_hand_off, on_success))

    @property
    def state(self) -> IdentificationState:
        return self._machine.state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        return self._machine.subscribe(listener)

    def identify(self, image: ImageSource, image_ref: str | None = None) -> str | None:
        """Start identifying ``image``; returns the request id, or None if rejected."""
        if self._closed:
            logger.warning("Ignoring identify() on a closed pipeline")
            return None
        try:
            payload = self._preprocessor.prepare(image, image_ref=image_ref)
        except InvalidImageError as exc:
            logger.warning("Rejecting capture before upload: %s", exc)
            superseded = self._machine.reject(
                Failure(reason=FailureReason.INVALID_IMAGE, message=str(exc), attempts=0)
            )
            self._drop_retries(superseded)
            return None

        request, superseded = self._machine.start(payload)
        self._drop_retries(superseded)
        logger.info(
            "Identification started request=%s payload=%dx%d bytes=%d",
            request.request_id,
            payload.width,
            payload.height,
            len(payload.data),
        )
        self._launch(request)
        return request.request_id

    def cancel(self) -> None:
        cancelled = self._machine.cancel()
        if cancelled is not None:
            self._drop_retries(cancelled)
            logger.info("Identification cancelled request=%s", cancelled)

    def wait(self, timeout: float | None = None) -> IdentificationState:
        return self._machine.wait(timeout)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.cancel()
        self._scheduler.shutdown()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _launch(self, request: IdentificationRequest) -> None:
        try:
            future = self._executor.submit(self._client.send, request, self._attempt_timeout)
        except RuntimeError:
            logger.exception("Unable to submit attempt request=%s", request.request_id)
            self._machine.abort(
                request,
                Failure(
                    reason=FailureReason.NETWORK,
                    message="Identification is unavailable right now. Please try again.",
                ),
            )
            return
        future.add_done_callback(partial(self._on_attempt_done, request))

    def _on_attempt_done(
        self, request: IdentificationRequest, future: Future[IdentificationResult]
    ) -> None:
        if future.cancelled():
            self._machine.on_attempt_failed(
                request, Failure(reason=FailureReason.CANCELLED, message="Attempt cancelled")
            )
            return
        exc = future.exception()
        if exc is None:
            result = future.result()
            if self._machine.on_attempt_succeeded(request, result):
                logger.info(
                    "Identification succeeded request=%s attempt=%d name=%s confidence=%.2f",
                    request.request_id,
                    request.attempt,
                    result.name,
                    result.confidence,
                )
            return

        if isinstance(exc, RecognitionError):
            failure = exc.failure
        else:
            logger.error(
                "Recognition client raised unexpectedly request=%s attempt=%d",
                request.request_id,
                request.attempt,
                exc_info=exc,
            )
            failure = Failure(
                reason=FailureReason.MALFORMED_RESPONSE,
                message="Unexpected error while reading the identification result.",
            )
        pending = self._machine.on_attempt_failed(request, failure)
        if pending is None or not self._machine.begin_attempt(pending.request):
            return
        self._scheduler.schedule_after(
            pending.delay,
            pending.request.request_id,
            partial(self._run_retry, pending.request),
        )
        # cancel() may have run between the check and the schedule.
        if not self._machine.begin_attempt(pending.request):
            self._drop_retries(pending.request.request_id)

    def _run_retry(self, request: IdentificationRequest) -> None:
        if not self._machine.begin_attempt(request):
            logger.debug(
                "Skipping superseded retry request=%s attempt=%d",
                request.request_id,
                request.attempt,
            )
            return
        logger.info("Retrying request=%s attempt=%d", request.request_id, request.attempt)
        self._launch(request)

    def _drop_retries(self, request_id: str | None) -> None:
        if request_id is None:
            return
        dropped = self._scheduler.cancel(request_id)
        if dropped:
            logger.debug("Dropped %d pending retries request=%s", dropped, request_id)


def _hand_off(handler: ResultHandler, state: IdentificationState) -> None:
    if isinstance(state, Success):
        handler(state.result)


__all__ = ["IdentificationPipeline", "ResultHandler"]
