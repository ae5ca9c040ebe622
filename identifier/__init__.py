from __future__ import annotations

from .pipeline import IdentificationPipeline
from .preprocess import ImagePreprocessor, InvalidImageError
from .retry import RetryAfter, RetryController, RetryPolicy, Stop
from .scheduler import ManualScheduler, Scheduler, ThreadingScheduler
from .state import (
    Error,
    IdentificationState,
    IdentificationStateMachine,
    Idle,
    Processing,
    Retrying,
    Success,
    describe_state,
)

__all__ = [
    "Error",
    "IdentificationPipeline",
    "IdentificationState",
    "IdentificationStateMachine",
    "Idle",
    "ImagePreprocessor",
    "InvalidImageError",
    "ManualScheduler",
    "Processing",
    "RetryAfter",
    "RetryController",
    "RetryPolicy",
    "Retrying",
    "Scheduler",
    "Stop",
    "Success",
    "ThreadingScheduler",
    "describe_state",
]
