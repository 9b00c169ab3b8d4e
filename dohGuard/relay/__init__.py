"""
Upstream relay for dohGuard.

The upstream resolver sits behind a CircuitBreaker so that a dead
upstream turns into an immediate 503 instead of every client waiting
out the full relay timeout.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from dohGuard.logging_config import get_logger

logger = get_logger("relay")


class CircuitState(Enum):
    CLOSED = "closed"        # relaying normally
    OPEN = "open"            # refusing to relay
    HALF_OPEN = "half_open"  # letting trial requests through


@dataclass
class CircuitBreaker:
    """
    Consecutive-failure breaker for one upstream.

    failure_threshold failures in a row open the circuit. Once
    recovery_time seconds have passed since the last failure,
    half_open_max_calls trial requests are let through; a success closes
    the circuit again, a failure reopens it.

        if not breaker.allow_request():
            raise UpstreamUnavailable(...)
        ...
        breaker.record_success()  # or record_failure()
    """
    name: str
    failure_threshold: int = 5
    recovery_time: float = 30.0
    half_open_max_calls: int = 1

    _failures: int = field(default=0, init=False)
    _last_failure_time: float = field(default=0.0, init=False)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _trial_calls: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        return self._state

    def allow_request(self) -> bool:
        """Decide whether the next request may reach the upstream."""
        if self._state == CircuitState.OPEN:
            if time.time() - self._last_failure_time < self.recovery_time:
                return False
            self._set_state(CircuitState.HALF_OPEN)
            logger.info(
                f"Circuit '{self.name}' half-open, sending trial request",
                extra={"circuit": self.name, "state": "half_open"}
            )

        if self._state == CircuitState.HALF_OPEN:
            if self._trial_calls >= self.half_open_max_calls:
                return False
            self._trial_calls += 1
        return True

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info(
                f"Circuit '{self.name}' closed, upstream recovered",
                extra={"circuit": self.name, "state": "closed", "outcome": "recovered"}
            )
        self._failures = 0
        self._set_state(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self._failures += 1
        self._last_failure_time = time.time()

        if self._state == CircuitState.HALF_OPEN:
            self._set_state(CircuitState.OPEN)
            logger.warning(
                f"Circuit '{self.name}' reopened, trial request failed",
                extra={"circuit": self.name, "state": "open", "outcome": "recovery_failed"}
            )
        elif self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold:
            self._set_state(CircuitState.OPEN)
            logger.warning(
                f"Circuit '{self.name}' opened after {self._failures} consecutive failures",
                extra={"circuit": self.name, "state": "open", "failures": self._failures, "outcome": "tripped"}
            )

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        self._trial_calls = 0

    def get_stats(self) -> dict:
        since_failure = time.time() - self._last_failure_time if self._last_failure_time else None
        return {
            "name": self.name,
            "state": self._state.value,
            "failures": self._failures,
            "failure_threshold": self.failure_threshold,
            "recovery_time": self.recovery_time,
            "time_since_last_failure": since_failure,
        }
