from __future__ import annotations

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Protocol


logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    def schedule_after(self, delay: float, request_id: str, callback: Callable[[], None]) -> None:
        ...

    def cancel(self, request_id: str) -> int:
        ...

    def shutdown(self) -> None:
        ...


class ThreadingScheduler:
    """Run deferred callbacks on ``threading.Timer`` threads, keyed by request id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timers: Dict[str, List[threading.Timer]] = {}
        self._closed = False

    def schedule_after(self, delay: float, request_id: str, callback: Callable[[], None]) -> None:
        timer: threading.Timer

        def fire() -> None:
            with self._lock:
                timers = self._timers.get(request_id, [])
                if timer not in timers:
                    return
                timers.remove(timer)
                if not timers:
                    self._timers.pop(request_id, None)
            try:
                callback()
            except Exception:
                logger.exception("Scheduled callback failed request=%s", request_id)

        timer = threading.Timer(max(0.0, delay), fire)
        timer.daemon = True
        with self._lock:
            if self._closed:
                logger.debug("Scheduler closed; dropping callback request=%s", request_id)
                return
            self._timers.setdefault(request_id, []).append(timer)
        timer.start()

    def cancel(self, request_id: str) -> int:
        with self._lock:
            timers = self._timers.pop(request_id, [])
        for timer in timers:
            timer.cancel()
        return len(timers)

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            timers = [timer for group in self._timers.values() for timer in group]
            self._timers.clear()
        for timer in timers:
            timer.cancel()


@dataclass(order=True)
class _Pending:
    due: float
    seq: int
    request_id: str = field(compare=False)
    callback: Callable[[], None] = field(compare=False)


class ManualScheduler:
    """Scheduler driven by a virtual clock; nothing runs until ``advance``.

    ``delays`` records every requested delay so callers can check the backoff
    without waiting for it.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self.delays: List[float] = []
        self._queue: List[_Pending] = []
        self._counter = itertools.count()
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def schedule_after(self, delay: float, request_id: str, callback: Callable[[], None]) -> None:
        with self._lock:
            self.delays.append(delay)
            heapq.heappush(
                self._queue,
                _Pending(self.now + max(0.0, delay), next(self._counter), request_id, callback),
            )

    def cancel(self, request_id: str) -> int:
        with self._lock:
            kept = [item for item in self._queue if item.request_id != request_id]
            removed = len(self._queue) - len(kept)
            heapq.heapify(kept)
            self._queue = kept
        return removed

    def advance(self, seconds: float) -> int:
        """Move the clock forward and run whatever became due, in order."""
        target = self.now + seconds
        ran = 0
        while True:
            with self._lock:
                if not self._queue or self._queue[0].due > target:
                    break
                item = heapq.heappop(self._queue)
                self.now = max(self.now, item.due)
            item.callback()
            ran += 1
        self.now = target
        return ran

    def run_next(self) -> bool:
        with self._lock:
            if not self._queue:
                return False
            item = heapq.heappop(self._queue)
            self.now = max(self.now, item.due)
        item.callback()
        return True

    def shutdown(self) -> None:
        with self._lock:
            self._queue.clear()


__all__ = ["ManualScheduler", "Scheduler", "ThreadingScheduler"]
