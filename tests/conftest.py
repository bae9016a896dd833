"""Shared fixtures: virtual-time scheduler, scripted extractor, registry helpers."""

from __future__ import annotations

from collections import deque
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pytest

from face_checkpoint.config import CheckpointConfig
from face_checkpoint.recognize.orchestrator import DetectionLoop
from face_checkpoint.recognize.scheduler import VirtualScheduler
from face_checkpoint.recognize.types import RegistryEntry

ALICE = np.array([0.0, 0.0, 0.0, 0.0], dtype=np.float32)
BOB = np.array([1.0, 1.0, 0.0, 0.0], dtype=np.float32)


class Gate:
    """
    Awaitable resolved by hand, for driving coroutines on `VirtualScheduler`.
    `open(value)` resolves it, `fail(exc)` makes the awaiting side raise.
    """

    def __init__(self):
        self.done = False
        self._value: Any = None
        self._error: Optional[BaseException] = None

    def open(self, value: Any = None):
        self.done = True
        self._value = value

    def fail(self, exc: BaseException):
        self.done = True
        self._error = exc

    def __await__(self):
        while not self.done:
            yield self
        if self._error is not None:
            raise self._error
        return self._value


def probe_at(base: np.ndarray, distance: float) -> np.ndarray:
    """Descriptor at a given Euclidean distance from `base` along the last axis."""
    out = base.copy()
    out[-1] += distance
    return out


class ScriptedExtractor:
    """Async extractor replaying a script of outcomes.

    Each item is a descriptor, None (no face), an exception to raise, or a
    Gate to await. When the script runs out, `default` is returned.
    """

    def __init__(self, script=(), default=None, clock: Optional[Callable[[], float]] = None):
        self.script = deque(script)
        self.default = default
        self.clock = clock
        self.loaded = False
        self.load_error: Optional[BaseException] = None
        self.calls: List[float] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def load(self):
        if self.load_error is not None:
            raise self.load_error
        self.loaded = True

    async def detect(self, frame):
        self.calls.append(self.clock() if self.clock else 0.0)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            item = self.script.popleft() if self.script else self.default
            if isinstance(item, Gate):
                item = await item
            if isinstance(item, BaseException):
                raise item
            return item
        finally:
            self.in_flight -= 1

    def close(self):
        self.closed = True

    async def enroll(self, image):
        if isinstance(image, BaseException):
            raise image
        if image.size == 0:
            return None
        return image


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def frame() -> np.ndarray:
    return np.zeros((8, 8, 3), dtype=np.uint8)


@pytest.fixture
def registry_images() -> Dict[str, Any]:
    return {"alice.jpg": ALICE, "bob.jpg": BOB, "noface.jpg": np.zeros(0, dtype=np.float32)}


@pytest.fixture
def entries() -> List[RegistryEntry]:
    return [
        RegistryEntry(id=1, name="Alice", image="alice.jpg"),
        RegistryEntry(id=2, name="Bob", image="bob.jpg"),
    ]


@pytest.fixture
def make_loop(scheduler, frame, entries, registry_images):
    """Build a DetectionLoop on virtual time; hold defaults to 3000 ms."""

    def _make(extractor: ScriptedExtractor, frame_source=None, registry=None, **overrides) -> DetectionLoop:
        if extractor.clock is None:
            extractor.clock = scheduler.now
        overrides.setdefault("hold_duration_ms", 3000.0)
        loop = DetectionLoop(
            extractor=extractor,
            frame_source=frame_source or (lambda: frame),
            scheduler=scheduler,
            config=CheckpointConfig(**overrides),
            entries=entries if registry is None else registry,
            image_reader=registry_images.get,
        )
        return loop

    return _make


@pytest.fixture
def started(scheduler, make_loop):
    """Build a loop and run its startup so it is already probing at t=0."""

    def _start(extractor: ScriptedExtractor, **kwargs) -> DetectionLoop:
        loop = make_loop(extractor, **kwargs)
        loop.start()
        scheduler.run_pending()
        return loop

    return _start
