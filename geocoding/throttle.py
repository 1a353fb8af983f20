"""Fixed-interval throttle for rate-limited providers."""
import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class FixedIntervalThrottle:
    """
    Enforce a minimum delay between consecutive calls.

    The throttle is owned by the client that talks to the provider, so
    the interval holds no matter how many callers share that client.
    """

    def __init__(self, min_interval: float,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            min_interval: Minimum seconds between two calls
            clock: Monotonic clock, injectable for tests
            sleep: Sleep function, injectable for tests
        """
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """
        Block until the next call is allowed, then mark it as taken.

        Returns:
            Seconds slept
        """
        with self._lock:
            slept = 0.0
            if self._last_call is not None:
                remaining = self.min_interval - (self._clock() - self._last_call)
                if remaining > 0:
                    logger.debug(f"Throttling provider call for {remaining:.2f}s")
                    self._sleep(remaining)
                    slept = remaining
            self._last_call = self._clock()
            return slept
