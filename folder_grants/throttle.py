from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable

LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 2500
DEFAULT_JITTER_MS = 400


class RateGovernor:
    """Spaces outbound API calls at least ``interval_ms`` apart.

    The timestamp of the last acquisition lives on the instance, so separate
    governors never interfere. Callers are served one at a time under a lock.
    """

    def __init__(
        self,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        *,
        jitter_ms: int = DEFAULT_JITTER_MS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if interval_ms < 0:
            raise ValueError("interval_ms must not be negative")
        self._interval = interval_ms / 1000.0
        self._jitter_ms = max(jitter_ms, 0)
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._last_call_at: float | None = None

    def acquire(self) -> float:
        """Block until the next call is allowed; return the seconds waited."""

        with self._lock:
            waited = 0.0
            if self._last_call_at is not None:
                elapsed = self._clock() - self._last_call_at
                if elapsed < self._interval:
                    jitter = self._rng.randint(0, self._jitter_ms) / 1000.0
                    waited = self._interval - elapsed + jitter
                    LOGGER.debug("Throttling API call for %.3fs", waited)
                    self._sleep(waited)
            self._last_call_at = self._clock()
            return waited
