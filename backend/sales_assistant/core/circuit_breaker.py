"""
Circuit breaker guarding the LLM endpoint.

The decision layer treats the LLM as an optional collaborator: when the endpoint
keeps failing, the breaker opens and calls are rejected immediately so the
classifier drops to its safe default without waiting for another timeout.

States:
- CLOSED: calls pass through; outcomes are tracked over a sliding window
- OPEN: calls are rejected with CircuitBreakerOpenError for open_duration_seconds
- HALF_OPEN: one in every ``probe_interval`` calls is let through as a probe
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple

from .logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call is rejected."""


class CircuitBreaker:
    """
    Sliding-window circuit breaker.

    The circuit opens when at least ``min_requests`` outcomes were seen in the
    last ``window_seconds`` and the failure ratio reaches ``failure_threshold``.
    While half-open, ``probes_to_close`` consecutive successful probes close the
    circuit again; any failed probe reopens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        window_seconds: float = 60.0,
        open_duration_seconds: float = 30.0,
        min_requests: int = 10,
        probe_interval: int = 5,
        probes_to_close: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.min_requests = min_requests
        self.probe_interval = max(1, probe_interval)
        self.probes_to_close = probes_to_close
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._outcomes: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0
        self._probe_successes = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    def _refresh(self) -> None:
        """Expire old outcomes and move OPEN -> HALF_OPEN once the cool-down passed."""
        now = self._clock()
        cutoff = now - self.window_seconds
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                self._probe_successes = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

    def _open(self, now: float, **fields: Any) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        logger.warning("circuit_breaker_opened", circuit_breaker=self.name, **fields)

    def _admit(self) -> None:
        with self._lock:
            self._refresh()
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker {self.name} is OPEN. Service unavailable."
                )
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls += 1
                if (self._half_open_calls - 1) % self.probe_interval != 0:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is HALF_OPEN. Skipping request."
                    )

    def _record(self, success: bool) -> None:
        now = self._clock()
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                if not success:
                    self._open(now, reason="probe_failed")
                    return
                self._probe_successes += 1
                if self._probe_successes >= self.probes_to_close:
                    self._state = CircuitState.CLOSED
                    self._opened_at = None
                    self._outcomes.clear()
                    logger.info("circuit_breaker_closed", circuit_breaker=self.name)
                return

            self._outcomes.append((now, success))
            self._refresh()
            total = len(self._outcomes)
            if self._state == CircuitState.CLOSED and total >= self.min_requests:
                failures = sum(1 for _, ok in self._outcomes if not ok)
                error_rate = failures / total
                if error_rate >= self.failure_threshold:
                    self._open(now, error_rate=error_rate, failures=failures, total=total)

    async def call(
        self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Any:
        """Await an async callable under breaker protection."""
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(False)
            raise
        self._record(True)
        return result

    def snapshot(self) -> Dict[str, Any]:
        """Current state for health reporting."""
        with self._lock:
            self._refresh()
            total = len(self._outcomes)
            failures = sum(1 for _, ok in self._outcomes if not ok)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
            }
