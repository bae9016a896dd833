"""
Checkpoint configuration.

All timing values are milliseconds on the scheduler clock. Values are fixed
when the detection loop is built.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent

@dataclass
class CheckpointConfig:
     # matching
     match_threshold: float = 0.4  # Euclidean distance, strict <

     # timing
     tick_period_ms: float = 800.0
     debounce_interval_ms: float = 1500.0
     hold_duration_ms: float = 8000.0
     countdown_period_ms: float = 1000.0
     resume_grace_ms: float = 500.0
     extraction_timeout_s: float = 5.0

     # voting
     history_capacity: int = 5
     voting_window: int = 3

     # extraction
     detector_input_size: int = 416
     min_face_size: int = 70
     embedder_path: Path = field(default_factory=lambda: PROJECT_ROOT / "models" / "embedder_arcface.onnx")
     landmarker_path: Path = field(default_factory=lambda: PROJECT_ROOT / "models" / "face_landmarker.task")

     # io
     registry_path: Path = Path("data/registry.json")
     camera_index: int = 0

     def validate(self) -> "CheckpointConfig":
          positive = {
               "match_threshold": self.match_threshold,
               "tick_period_ms": self.tick_period_ms,
               "debounce_interval_ms": self.debounce_interval_ms,
               "hold_duration_ms": self.hold_duration_ms,
               "countdown_period_ms": self.countdown_period_ms,
               "extraction_timeout_s": self.extraction_timeout_s,
               "history_capacity": self.history_capacity,
               "voting_window": self.voting_window,
          }
          for name, value in positive.items():
               if value <= 0:
                    raise ValueError(f"{name} must be positive, got {value}")
          if self.resume_grace_ms < 0:
               raise ValueError(f"resume_grace_ms must not be negative, got {self.resume_grace_ms}")
          if self.voting_window > self.history_capacity:
               raise ValueError(
                    f"voting_window ({self.voting_window}) exceeds history_capacity ({self.history_capacity})"
               )
          return self
