import logging
import math
from typing import List, Sequence
import numpy as np
from .types import Descriptor, MatchResult, RegistryEntry

logger = logging.getLogger(__name__)

def best_match(probe: Descriptor, registry: Sequence[RegistryEntry]) -> MatchResult:
    """
    Nearest registry entry by Euclidean distance.
    Entries without a descriptor are skipped; ties go to the first entry.
    Returns (None, inf) when nothing is matchable.
    """
    entries = [e for e in registry if e.descriptor is not None]
    if not entries:
        return MatchResult(entry=None, distance=math.inf)
    mat = np.stack([e.descriptor.reshape(-1).astype(np.float32) for e in entries], axis=0)  # (K,D)
    p = np.asarray(probe, dtype=np.float32).reshape(1, -1)  # (1,D)

    dists = np.linalg.norm(mat - p, axis=1)  # (K,)
    # argmin returns the first minimum
    best_i = int(np.argmin(dists))
    return MatchResult(entry=entries[best_i], distance=float(dists[best_i]))

class FaceDBMatcher:
    def __init__(self, registry: Sequence[RegistryEntry], dist_thresh: float = 0.4):
        self.dist_thresh = float(dist_thresh)
        self._entries: List[RegistryEntry] = []
        self.reload(registry)

    def reload(self, registry: Sequence[RegistryEntry]):
        # registry order kept for the tie-break
        self._entries = [e for e in registry if e.descriptor is not None]
        logger.debug("Matcher holds %d matchable entries", len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def match(self, probe: Descriptor) -> MatchResult:
        result = best_match(probe, self._entries)
        result.accepted = result.entry is not None and self.is_actionable(result.distance)
        return result

    def is_actionable(self, distance: float) -> bool:
        # strict: a distance equal to the threshold is rejected
        return distance < self.dist_thresh
