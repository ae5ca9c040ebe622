from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Callable, Deque, List, Union

from recognition.request import IdentificationRequest, Payload
from recognition.types import Failure, FailureReason, IdentificationResult

from .retry import RetryAfter, RetryController


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Processing:
    pass


@dataclass(frozen=True)
class Retrying:
    attempt: int
    max_attempts: int
    delay: float = field(default=0.0, compare=False)


@dataclass(frozen=True)
class Success:
    result: IdentificationResult

    def __hash__(self) -> int:
        # The result is mutable; its id is assigned once and never changes.
        return hash(self.result.id)


@dataclass(frozen=True)
class Error:
    failure: Failure


IdentificationState = Union[Idle, Processing, Retrying, Success, Error]
StateListener = Callable[[IdentificationState], None]

IDLE = Idle()
PROCESSING = Processing()


def is_in_flight(state: IdentificationState) -> bool:
    return isinstance(state, (Processing, Retrying))


def describe_state(state: IdentificationState) -> str:
    """User-facing copy for a state."""
    if isinstance(state, Processing):
        return "Identifying specimen..."
    if isinstance(state, Retrying):
        return f"Connection issue, retrying (attempt {state.attempt} of {state.max_attempts})..."
    if isinstance(state, Success):
        result = state.result
        return f"Identified {result.name} ({result.confidence:.0%} confidence)"
    if isinstance(state, Error):
        failure = state.failure
        if not failure.suggestions:
            return failure.message
        lines = [failure.message, "", "Suggestions:"]
        lines.extend(f"- {suggestion}" for suggestion in failure.suggestions)
        return "\n".join(lines)
    return "Ready"


@dataclass(frozen=True)
class PendingRetry:
    request: IdentificationRequest
    delay: float


class IdentificationStateMachine:
    """Single owner of the current request and the observable state.

    Every mutation happens under one lock and listeners are notified while it
    is held. Transitions made from inside a listener are queued behind the one
    being delivered, so each transition reaches every listener exactly once
    and in order. Results are matched against the current request id and
    attempt; anything else is stale and dropped.
    """

    def __init__(self, controller: RetryController | None = None) -> None:
        self._controller = controller or RetryController()
        self._condition = threading.Condition(threading.RLock())
        self._state: IdentificationState = IDLE
        self._request: IdentificationRequest | None = None
        self._listeners: List[StateListener] = []
        self._outbox: Deque[IdentificationState] = deque()
        self._delivering = False

    @property
    def state(self) -> IdentificationState:
        with self._condition:
            return self._state

    @property
    def current_request(self) -> IdentificationRequest | None:
        with self._condition:
            return self._request

    @property
    def max_attempts(self) -> int:
        return self._controller.max_attempts

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        with self._condition:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._condition:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def start(self, payload: Payload) -> tuple[IdentificationRequest, str | None]:
        """Begin a new request, superseding any in flight.

        Returns the new request and the id of the superseded one, if any.
        """
        with self._condition:
            superseded = self._supersede()
            request = IdentificationRequest(payload=payload)
            self._request = request
            self._transition(PROCESSING)
            return request, superseded

    def reject(self, failure: Failure) -> str | None:
        """Go straight to ``Error`` without an attempt (e.g. unusable image)."""
        with self._condition:
            superseded = self._supersede()
            self._transition(Error(failure))
            return superseded

    def cancel(self) -> str | None:
        with self._condition:
            if not is_in_flight(self._state):
                return None
            cancelled = self._supersede()
            self._transition(IDLE)
            return cancelled

    def begin_attempt(self, request: IdentificationRequest) -> bool:
        with self._condition:
            return self._is_current(request)

    def on_attempt_succeeded(
        self, request: IdentificationRequest, result: IdentificationResult
    ) -> bool:
        with self._condition:
            if not self._is_current(request):
                self._log_stale(request)
                return False
            self._request = None
            self._transition(Success(result))
            return True

    def on_attempt_failed(
        self, request: IdentificationRequest, failure: Failure
    ) -> PendingRetry | None:
        with self._condition:
            if not self._is_current(request):
                self._log_stale(request)
                return None
            if failure.reason is FailureReason.CANCELLED:
                self._request = None
                self._transition(IDLE)
                return None

            decision = self._controller.should_retry(
                failure.reason, request.attempt, failure.retry_after
            )
            if isinstance(decision, RetryAfter):
                next_request = request.next_attempt()
                self._request = next_request
                logger.info(
                    "Attempt failed request=%s attempt=%d reason=%s; retrying in %.1fs",
                    request.request_id,
                    request.attempt,
                    failure.reason.value,
                    decision.delay,
                )
                self._transition(
                    Retrying(next_request.attempt, self.max_attempts, decision.delay)
                )
                return PendingRetry(next_request, decision.delay)

            self._finish(request, failure)
            return None

    def abort(self, request: IdentificationRequest, failure: Failure) -> bool:
        """End the current request with ``failure``, skipping the retry policy."""
        with self._condition:
            if not self._is_current(request):
                return False
            self._finish(request, failure)
            return True

    def wait(self, timeout: float | None = None) -> IdentificationState:
        """Block until nothing is in flight (or ``timeout``) and return the state."""
        with self._condition:
            self._condition.wait_for(lambda: not is_in_flight(self._state), timeout)
            return self._state

    def _finish(self, request: IdentificationRequest, failure: Failure) -> None:
        self._request = None
        logger.warning(
            "Identification failed request=%s attempts=%d reason=%s message=%s",
            request.request_id,
            request.attempt,
            failure.reason.value,
            failure.message,
        )
        self._transition(Error(replace(failure, attempts=request.attempt)))

    def _supersede(self) -> str | None:
        request = self._request
        if request is None:
            return None
        request.cancel()
        self._request = None
        logger.info("Superseded request=%s attempt=%d", request.request_id, request.attempt)
        return request.request_id

    def _is_current(self, request: IdentificationRequest) -> bool:
        current = self._request
        return (
            current is not None
            and current.request_id == request.request_id
            and current.attempt == request.attempt
            and not request.cancelled
        )

    def _log_stale(self, request: IdentificationRequest) -> None:
        logger.debug(
            "Discarding stale outcome request=%s attempt=%d", request.request_id, request.attempt
        )

    def _transition(self, state: IdentificationState) -> None:
        previous = self._state
        self._state = state
        logger.debug(
            "State %s -> %s", type(previous).__name__, type(state).__name__
        )
        self._outbox.append(state)
        self._condition.notify_all()
        # A listener that calls back in only queues; the outer loop delivers.
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._outbox:
                pending = self._outbox.popleft()
                for listener in list(self._listeners):
                    try:
                        listener(pending)
                    except Exception:
                        logger.exception(
                            "State listener failed state=%s", type(pending).__name__
                        )
        finally:
            self._delivering = False


__all__ = [
    "Error",
    "IDLE",
    "IdentificationState",
    "IdentificationStateMachine",
    "Idle",
    "PROCESSING",
    "PendingRetry",
    "Processing",
    "Retrying",
    "StateListener",
    "Success",
    "describe_state",
    "is_in_flight",
]
