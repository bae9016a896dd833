import logging
import math
from typing import Optional, Tuple
from .types import HoldWindow

logger = logging.getLogger(__name__)

def remaining_seconds(until: float, now: float) -> int:
    return max(0, math.ceil((until - now) / 1000.0))

class HoldController:
    """
    Freezes the detection loop for a fixed duration after a confirmed match.
    Holds at most one window; `tick` reports the countdown and tears the
    window down once it reaches zero.
    """
    def __init__(self, duration_ms: float = 8000.0):
        self.duration_ms = float(duration_ms)
        self.window: Optional[HoldWindow] = None

    def start_hold(self, now: float, duration_ms: Optional[float] = None) -> HoldWindow:
        duration = self.duration_ms if duration_ms is None else float(duration_ms)
        self.window = HoldWindow(
            until=now + duration,
            remaining_seconds=math.ceil(duration / 1000.0),
        )
        logger.debug("Hold started until %.0f (%ds)", self.window.until, self.window.remaining_seconds)
        return self.window

    def tick(self, now: float) -> Tuple[int, bool]:
        """Returns (remaining_seconds, expired). Expiry clears the window."""
        if self.window is None:
            return 0, True
        remaining = remaining_seconds(self.window.until, now)
        if remaining > 0:
            self.window.remaining_seconds = remaining
            return remaining, False
        logger.debug("Hold expired at %.0f", now)
        self.window = None
        return 0, True

    @property
    def countdown(self) -> Optional[int]:
        return self.window.remaining_seconds if self.window is not None else None
