"""Fail-fast guard in front of the record store.

After ``failure_threshold`` consecutive store failures every call is refused
with :class:`CircuitBreakerOpen` for ``timeout`` seconds. The first call after
that window is let through as a trial: success closes the circuit, failure
opens it for another window.

Board loads run store calls on worker threads, so state changes hold a lock.
"""
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional, Tuple, Type

from medbook.logging_config import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """The store is being skipped until the open window ends."""


class CircuitBreaker:
    """
    Counts consecutive failures of wrapped calls.

    Exceptions listed in ``ignored_exceptions`` still propagate but prove the
    store answered, so they count as successes (a 404 is a healthy store).
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        ignored_exceptions: Tuple[Type[BaseException], ...] = (),
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.ignored_exceptions = ignored_exceptions
        self.failure_count = 0
        self._opened_at: Optional[float] = None
        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        return self._state.value

    @property
    def retry_after(self) -> float:
        """Seconds left in the open window; 0 unless open."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.timeout - (time.monotonic() - self._opened_at))

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Run ``func`` unless the circuit is open; re-raises what it raises."""
        self._admit()
        try:
            result = func(*args, **kwargs)
        except self.ignored_exceptions:
            self._record(ok=True)
            raise
        except Exception:
            self._record(ok=False)
            raise
        self._record(ok=True)
        return result

    def reset(self):
        """Close the circuit and forget past failures."""
        with self._lock:
            self._close()

    def _admit(self):
        with self._lock:
            if self._state != CircuitState.OPEN:
                return
            wait = self.retry_after
            if wait > 0:
                raise CircuitBreakerOpen(
                    f"Circuit breaker is OPEN. Retry after {wait:.1f}s"
                )
            self._state = CircuitState.HALF_OPEN
        logger.info("circuit_half_open")

    def _record(self, ok: bool):
        with self._lock:
            previous = self._state
            if ok:
                self._close()
            else:
                self.failure_count += 1
                if previous == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                    self._state = CircuitState.OPEN
                    self._opened_at = time.monotonic()

        if previous == self._state:
            return
        if self._state == CircuitState.CLOSED:
            logger.info("circuit_closed")
        elif previous == CircuitState.HALF_OPEN:
            logger.warning("circuit_reopened")
        else:
            logger.error("circuit_opened", failures=self.failure_count, timeout=self.timeout)

    def _close(self):
        self.failure_count = 0
        self._opened_at = None
        self._state = CircuitState.CLOSED
