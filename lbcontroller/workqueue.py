"""A bounded, deduplicating work queue with per-key retry backoff."""

import collections
import threading
from typing import Deque, Dict, Optional, Set, Tuple

from .logging_config import get_logger

logger = get_logger(__name__)


class WorkQueue:
    """Trigger keys for a single consumer.

    A key is queued at most once. A key added while it is being processed is
    queued again when processing is done, so no event is lost and the same
    key never runs twice concurrently. When full, new keys are dropped: every
    queued key already causes a full rebuild.
    """

    def __init__(self, maxsize: int = 128, base_delay: float = 0.5, max_delay: float = 60.0):
        self.maxsize = maxsize
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: Deque[str] = collections.deque()
        self._queued: Set[str] = set()
        self._processing: Set[str] = set()
        self._dirty: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._timers: Set[threading.Timer] = set()
        self._shutting_down = False
        self._cond = threading.Condition()

    def add(self, key: str) -> bool:
        """Queue a key; returns False if it was deduplicated or dropped."""
        with self._cond:
            if self._shutting_down:
                return False
            if key in self._processing:
                self._dirty.add(key)
                return False
            if key in self._queued:
                return False
            if len(self._queue) >= self.maxsize:
                logger.debug("Work queue full, dropping key", key=key, size=len(self._queue))
                return False
            self._queue.append(key)
            self._queued.add(key)
            self._cond.notify()
            return True

    def add_rate_limited(self, key: str) -> float:
        """Queue a key after its backoff delay; returns the delay used."""
        with self._cond:
            if self._shutting_down:
                return 0.0
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
            delay = min(self.base_delay * (2 ** failures), self.max_delay)
            timer = threading.Timer(delay, self._fire, args=(key,))
            timer.daemon = True
            self._timers.add(timer)
        timer.start()
        logger.debug("Requeued key with backoff", key=key, delay=delay, failures=failures + 1)
        return delay

    def _fire(self, key: str) -> None:
        with self._cond:
            self._timers = {t for t in self._timers if t.is_alive() and t is not threading.current_thread()}
        self.add(key)

    def forget(self, key: str) -> None:
        """Reset the failure count of a key."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def get(self, timeout: Optional[float] = None) -> Tuple[Optional[str], bool]:
        """Block for the next key.

        Returns:
            (key, shutdown). key is None when shutting down with nothing left,
            or when the timeout expired.
        """
        with self._cond:
            if not self._queue and not self._shutting_down:
                self._cond.wait_for(lambda: self._queue or self._shutting_down, timeout=timeout)
            if not self._queue:
                return None, self._shutting_down
            key = self._queue.popleft()
            self._queued.discard(key)
            self._processing.add(key)
            return key, False

    def done(self, key: str) -> None:
        """Mark a key processed, requeueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            requeue = key in self._dirty
            self._dirty.discard(key)
        if requeue:
            self.add(key)

    def shut_down(self) -> None:
        """Stop accepting keys and wake the consumer; queued keys are discarded."""
        with self._cond:
            self._shutting_down = True
            self._queue.clear()
            self._queued.clear()
            self._dirty.clear()
            timers, self._timers = self._timers, set()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)
