"""Circuit breaker for optional external services.

Shared by the lead extractor and the ElevenLabs voice so that a provider
outage costs one timeout per cooldown instead of one per call turn.  While
open, callers take their fallback path (raw transcript, built-in voice).
"""

import logging
import time
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class BreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Trip after ``failure_threshold`` failures in a row, retry once per cooldown.

    In HALF_OPEN a single trial request is allowed; its success closes the
    breaker and its failure re-opens it for another full cooldown.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 60.0,
        label: str = "service",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.label = label
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at = 0.0

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is not BreakerState.CLOSED

    def should_try(self) -> bool:
        if self._state is BreakerState.CLOSED:
            return True
        if self._state is BreakerState.HALF_OPEN:
            # trial already in flight
            return False
        if self._clock() - self._opened_at < self.cooldown_seconds:
            return False
        logger.info("Circuit breaker HALF-OPEN for %s, trying one request", self.label)
        self._state = BreakerState.HALF_OPEN
        return True

    def record_success(self) -> None:
        if self._state is not BreakerState.CLOSED:
            logger.info("Circuit breaker CLOSED for %s", self.label)
        self._state = BreakerState.CLOSED
        self._failures = 0

    def record_failure(self) -> None:
        self._failures += 1
        if self._state is BreakerState.HALF_OPEN:
            self._trip("trial request failed")
        elif self._state is BreakerState.CLOSED and self._failures >= self.failure_threshold:
            self._trip(f"{self._failures} consecutive failures")

    def _trip(self, reason: str) -> None:
        self._state = BreakerState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            "Circuit breaker OPENED for %s after %s, skipping for %.0fs",
            self.label,
            reason,
            self.cooldown_seconds,
        )
