import logging
from typing import List, Optional, Tuple
from .types import Status, StatusKind

logger = logging.getLogger(__name__)

_LEVELS = {
    StatusKind.DETECTION_ERROR: logging.WARNING,
    StatusKind.DEVICE_ERROR: logging.ERROR,
    StatusKind.LOOKING: logging.DEBUG,
}

class StatusLogger:
    """
    Listener for the detection loop's status and countdown.
    Logs each transition and keeps the most recent ones for the preview.
    """
    def __init__(self, keep: int = 20):
        self.keep = int(keep)
        self.recent: List[Tuple[StatusKind, str]] = []
        self.countdown: Optional[int] = None

    def on_status(self, status: Status):
        logger.log(_LEVELS.get(status.kind, logging.INFO), "%s", status.message)
        self.recent.append((status.kind, status.message))
        if len(self.recent) > self.keep:
            del self.recent[: len(self.recent) - self.keep]

    def on_countdown(self, remaining: Optional[int]):
        self.countdown = remaining
        if remaining is None:
            logger.debug("Hold cleared")
        else:
            logger.debug("Resuming in %ds", remaining)

    @property
    def last_message(self) -> str:
        return self.recent[-1][1] if self.recent else ""

    def attach(self, loop) -> "StatusLogger":
        loop.add_status_listener(self.on_status)
        loop.add_countdown_listener(self.on_countdown)
        return self
