"""Circuit breaker shared by the outbound HTTP clients.

Used by StoreClient and CompletionClient so a store or LLM outage fails fast
instead of adding a full timeout to every caller turn.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """closed -> open (after N consecutive failures) -> half-open (one probe after cooldown)."""

    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    label: str = "service"

    _consecutive_failures: int = field(default=0, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return CLOSED
        if (time.monotonic() - self._opened_at) >= self.cooldown_seconds:
            return HALF_OPEN
        return OPEN

    def should_try(self) -> bool:
        return self.state != OPEN

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("Circuit breaker CLOSED for %s", self.label)
        self._consecutive_failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self.state == HALF_OPEN:
            # Failed probe: restart the cooldown
            self._opened_at = time.monotonic()
            return
        if self._consecutive_failures >= self.failure_threshold and self._opened_at is None:
            self._opened_at = time.monotonic()
            logger.warning(
                "Circuit breaker OPENED for %s after %d consecutive failures, "
                "skipping for %.0fs",
                self.label,
                self._consecutive_failures,
                self.cooldown_seconds,
            )
