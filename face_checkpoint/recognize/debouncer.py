import logging
import math

logger = logging.getLogger(__name__)

def should_attempt(now: float, last_attempt: float, min_interval_ms: float) -> bool:
    return now - last_attempt >= min_interval_ms

class DetectionDebouncer:
    """
    Minimum spacing between extraction calls plus an in-flight flag so that
    at most one extraction runs at a time.
    """
    def __init__(self, min_interval_ms: float = 1500.0):
        self.min_interval_ms = float(min_interval_ms)
        self.last_attempt = -math.inf
        self.in_flight = False

    def should_attempt(self, now: float) -> bool:
        if self.in_flight:
            logger.debug("Extraction still in flight, skipping tick")
            return False
        return should_attempt(now, self.last_attempt, self.min_interval_ms)

    def begin(self, now: float):
        """Mark an attempt as started. Stamped before the call, not after it settles."""
        if self.in_flight:
            raise RuntimeError("extraction already in flight")
        self.in_flight = True
        self.last_attempt = now

    def settle(self):
        self.in_flight = False
