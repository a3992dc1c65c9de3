"""Circuit breaker guarding the database gateway."""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any, Callable, TypeVar

from access_vision.core.exceptions import CircuitOpenError
from access_vision.core.logger import get_logger

logger = get_logger("circuit_breaker")

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stops calling a failing dependency until it has had time to recover.

    After ``failure_threshold`` consecutive failures the circuit opens and
    calls fail fast with :class:`CircuitOpenError`. Once ``recovery_timeout``
    seconds have passed, calls are let through again (half-open);
    ``success_threshold`` successes close the circuit, one failure reopens it.

    The roster is read on every detection tick, so while the database is down
    an open circuit turns each tick's roster read into an immediate failure
    instead of a connection timeout.
    """

    def __init__(
        self,
        name: str = "dependency",
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exception: type[Exception] | tuple[type[Exception], ...] = Exception,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the breaker.

        Args:
            name: Label used in log messages and snapshots.
            failure_threshold: Consecutive failures before opening.
            recovery_timeout: Seconds to stay open before probing.
            expected_exception: Exception types that count as failures;
                anything else passes through untouched.
            success_threshold: Half-open successes needed to close.
            clock: Monotonic time source in seconds.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.success_threshold = success_threshold
        self._clock = clock
        self._lock = threading.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at: float | None = None

    def _transition(self, state: CircuitState, reason: str) -> None:
        # Caller holds the lock.
        self.state = state
        self.success_count = 0
        if state is CircuitState.OPEN:
            self.opened_at = self._clock()
            logger.warning(f"Circuit '{self.name}' opened: {reason}")
        elif state is CircuitState.CLOSED:
            self.failure_count = 0
            self.opened_at = None
            logger.info(f"Circuit '{self.name}' closed: {reason}")
        else:
            logger.info(f"Circuit '{self.name}' half-open: {reason}")

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``func`` unless the circuit is open.

        Raises:
            CircuitOpenError: If the circuit is open and not yet due for a probe.
        """
        with self._lock:
            if self.state is CircuitState.OPEN:
                elapsed = self._clock() - (self.opened_at or 0.0)
                if elapsed < self.recovery_timeout:
                    raise CircuitOpenError(
                        f"{self.name} unavailable; retrying in "
                        f"{self.recovery_timeout - elapsed:.0f}s"
                    )
                self._transition(CircuitState.HALF_OPEN, "probing for recovery")

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._record_failure()
            raise
        self._record_success()
        return result

    def _record_success(self) -> None:
        with self._lock:
            if self.state is not CircuitState.HALF_OPEN:
                self.failure_count = 0
                return
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._transition(CircuitState.CLOSED, f"{self.success_count} probes succeeded")

    def _record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            if self.state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, "probe failed")
            elif self.failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN, f"{self.failure_count} consecutive failures")

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready view for health checks."""
        with self._lock:
            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
            }

    def reset(self) -> None:
        """Force the circuit closed."""
        with self._lock:
            self._transition(CircuitState.CLOSED, "manual reset")
