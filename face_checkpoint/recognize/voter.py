from collections import deque
from typing import Deque, Sequence, Tuple

def is_confirmed(prior: Sequence[str], name: str, window: int = 3) -> bool:
    """Vote for `name` against the history as it stood before `name` was recorded."""
    recent = list(prior)[-window:]
    return recent.count(name) >= 1 or len(prior) < 2

class ConsistencyVoter:
    """
    Rolling history of recently matched names.

    A new observation is confirmed when its name appears in the last
    `window` entries recorded before it, or when fewer than two entries
    were recorded before it (bootstrap). Any miss wipes the history.
    """
    def __init__(self, capacity: int = 5, window: int = 3):
        self.capacity = int(capacity)
        self.window = int(window)
        self._history: Deque[str] = deque(maxlen=self.capacity)

    @property
    def history(self) -> Tuple[str, ...]:
        return tuple(self._history)

    def record(self, name: str) -> Tuple[str, ...]:
        self._history.append(name)
        return self.history

    def observe(self, name: str) -> bool:
        """Vote on `name`, then record it."""
        confirmed = is_confirmed(self._history, name, self.window)
        self.record(name)
        return confirmed

    def reset(self):
        self._history.clear()

    def __len__(self) -> int:
        return len(self._history)
