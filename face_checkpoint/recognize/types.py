from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import numpy as np

# Fixed-length face embedding, (D,) float32
Descriptor = np.ndarray

@dataclass
class FaceDet:
    x1: int
    y1: int
    x2: int
    y2: int
    score: float
    kps: np.ndarray  # (5,2) float32 in FULL-frame coords

    @property
    def area(self) -> int:
        return max(0, self.x2 - self.x1) * max(0, self.y2 - self.y1)

@dataclass
class RegistryEntry:
    id: int
    name: str
    image: str
    descriptor: Optional[Descriptor] = None

    @property
    def matchable(self) -> bool:
        return self.descriptor is not None

@dataclass
class MatchResult:
    entry: Optional[RegistryEntry]
    distance: float
    accepted: bool = False

    @property
    def name(self) -> Optional[str]:
        return self.entry.name if self.entry is not None else None

@dataclass
class HoldWindow:
    until: float  # ms, scheduler clock
    remaining_seconds: int

class CycleState(Enum):
    IDLE = "idle"
    PROBING = "probing"
    CONFIRMED_HOLD = "confirmed_hold"

class StatusKind(Enum):
    LOADING_MODELS = "Loading models"
    LOADING_REGISTRY = "Loading registry"
    READY = "Ready"
    LOOKING = "Looking for faces"
    MATCHED = "Matched"
    NOT_MATCHED = "Not matched"
    DETECTION_ERROR = "Detection error"
    DEVICE_ERROR = "Device error"
    STOPPED = "Stopped"

@dataclass(frozen=True)
class Status:
    kind: StatusKind
    name: Optional[str] = None
    confidence: int = 0
    detail: str = field(default="", compare=False)

    @property
    def message(self) -> str:
        if self.kind is StatusKind.MATCHED:
            return f"Welcome, {self.name}! ({self.confidence}%)"
        if self.kind is StatusKind.NOT_MATCHED:
            return "Face not matched. Access denied."
        if self.kind is StatusKind.READY:
            return f"Ready! {self.detail}"
        if self.detail:
            return f"{self.kind.value}: {self.detail}"
        return f"{self.kind.value}..."
