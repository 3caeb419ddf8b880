"""Circuit breaker guarding calls to the AI service."""

import logging
import threading
import time
from typing import Callable, Dict, Any, Optional

from ..core.models.healing_models import CircuitState


logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Tracks AI service health and gates healing attempts.

    CLOSED lets every call through. After ``failure_threshold`` consecutive
    failures the breaker turns OPEN and rejects calls. Once ``open_timeout``
    has elapsed, the next ``can_execute()`` moves it to HALF_OPEN and grants
    a single probe; the probe's outcome closes or re-opens the breaker.
    The timeout is evaluated lazily on ``can_execute()``, no timer runs.
    Outcomes of calls admitted while CLOSED do not settle a HALF_OPEN breaker.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        open_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.open_timeout = open_timeout
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def can_execute(self) -> bool:
        """Decide whether a call may proceed, claiming the probe slot if needed."""
        return self.acquire() is not None

    def acquire(self) -> Optional[CircuitState]:
        """Admit a call, returning the state it was admitted under or None when rejected.

        Pass the returned state to ``record_success``/``record_failure``/``release_probe``
        so that only the HALF_OPEN probe decides how the breaker leaves HALF_OPEN.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return CircuitState.CLOSED

            if self._state == CircuitState.OPEN:
                if self._clock() - self._opened_at < self.open_timeout:
                    return None
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = True
                logger.info("Circuit breaker half-open, allowing one probe call")
                return CircuitState.HALF_OPEN

            # HALF_OPEN: only the caller holding the probe slot may proceed
            if self._probe_in_flight:
                return None
            self._probe_in_flight = True
            return CircuitState.HALF_OPEN

    def record_success(self, admitted: Optional[CircuitState] = None):
        with self._lock:
            if self._state == CircuitState.OPEN:
                # Late result of a call admitted before the breaker tripped
                return
            if self._state == CircuitState.HALF_OPEN and admitted == CircuitState.CLOSED:
                # Not the probe; the probe's outcome decides
                return
            self._consecutive_failures = 0
            if self._state == CircuitState.HALF_OPEN:
                logger.info("Circuit breaker closed after successful probe")
            self._state = CircuitState.CLOSED
            self._opened_at = None
            self._probe_in_flight = False

    def record_failure(self, admitted: Optional[CircuitState] = None):
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and admitted == CircuitState.CLOSED:
                return
            self._consecutive_failures += 1
            if self._state == CircuitState.HALF_OPEN:
                self._trip("probe call failed")
            elif (self._state == CircuitState.CLOSED
                  and self._consecutive_failures >= self.failure_threshold):
                self._trip(f"{self._consecutive_failures} consecutive failures")

    def release_probe(self, admitted: Optional[CircuitState] = None):
        """Give back a HALF_OPEN probe slot whose call had no health verdict."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and admitted != CircuitState.CLOSED:
                self._probe_in_flight = False

    def is_open(self) -> bool:
        with self._lock:
            return self._state == CircuitState.OPEN

    def reset(self):
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None
            self._probe_in_flight = False

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "failure_threshold": self.failure_threshold,
                "open_timeout": self.open_timeout
            }

    def _trip(self, reason: str):
        # Caller holds the lock
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._probe_in_flight = False
        logger.warning(f"Circuit breaker opened: {reason}")
