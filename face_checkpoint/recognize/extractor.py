"""
Face descriptor extraction: best single face -> aligned 112x112 -> ArcFace.

`FaceExtractor` is the blocking pipeline. `AsyncFaceExtractor` is what the
detection loop consumes: it runs the pipeline in a worker thread and bounds
every call with a timeout so a hung extraction cannot stall the loop.
"""

from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import Optional, Tuple
import numpy as np

from .align import align_face_5pt
from .detector import HaarFaceMesh5pt
from .embedder import ArcFaceEmbedderONNX
from .types import Descriptor

logger = logging.getLogger(__name__)


class ExtractionError(RuntimeError):
    """The extraction call failed or timed out."""


def _log_late_failure(fut: asyncio.Future):
    if fut.cancelled():
        return
    e = fut.exception()
    if e is not None:
        logger.debug("Extraction worker finished with %r", e)


class FaceExtractor:
    def __init__(self, detector: HaarFaceMesh5pt, embedder: ArcFaceEmbedderONNX, out_size: Tuple[int, int] = (112, 112)):
        self.detector = detector
        self.embedder = embedder
        self.out_size = out_size

    @classmethod
    def from_paths(cls, embedder_path: Path, landmarker_path: Path, input_size: int = 416, min_face_size: int = 70) -> "FaceExtractor":
        detector = HaarFaceMesh5pt(
            landmarker_path=landmarker_path,
            min_size=(min_face_size, min_face_size),
            input_size=input_size,
        )
        embedder = ArcFaceEmbedderONNX(model_path=embedder_path)
        return cls(detector, embedder)

    def extract(self, frame_bgr: np.ndarray) -> Optional[Descriptor]:
        """Descriptor of the largest face in the frame, or None when there is no face."""
        if frame_bgr is None or frame_bgr.size == 0:
            return None
        face = self.detector.detect_best(frame_bgr)
        if face is None:
            return None
        aligned = align_face_5pt(frame_bgr, face.kps, out_size=self.out_size)
        return self.embedder.embed(aligned)

    def close(self):
        self.detector.close()


class AsyncFaceExtractor:
    """
    Awaitable facade over `FaceExtractor`.

    `load()` builds the models off the event loop; `detect()` and `enroll()`
    raise `ExtractionError` on any failure, including a timeout. A timed-out
    call keeps running in its worker thread until the models return, and no
    new call is started on the shared models until it does.
    """

    def __init__(
        self,
        embedder_path: Path,
        landmarker_path: Path,
        timeout_s: float = 5.0,
        input_size: int = 416,
        min_face_size: int = 70,
    ):
        self.embedder_path = Path(embedder_path)
        self.landmarker_path = Path(landmarker_path)
        self.timeout_s = float(timeout_s)
        self.input_size = int(input_size)
        self.min_face_size = int(min_face_size)
        self._extractor: Optional[FaceExtractor] = None
        self._pending: Optional[asyncio.Future] = None

    @property
    def loaded(self) -> bool:
        return self._extractor is not None

    async def load(self) -> None:
        if self._extractor is not None:
            return
        logger.info("Loading models: %s, %s", self.embedder_path.name, self.landmarker_path.name)
        self._extractor = await asyncio.to_thread(
            FaceExtractor.from_paths,
            self.embedder_path,
            self.landmarker_path,
            self.input_size,
            self.min_face_size,
        )

    async def detect(self, frame_bgr: np.ndarray) -> Optional[Descriptor]:
        if self._extractor is None:
            raise ExtractionError("models not loaded")
        if self._pending is not None and not self._pending.done():
            raise ExtractionError("previous extraction still running")
        self._pending = asyncio.ensure_future(asyncio.to_thread(self._extractor.extract, frame_bgr))
        self._pending.add_done_callback(_log_late_failure)
        try:
            return await asyncio.wait_for(asyncio.shield(self._pending), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            raise ExtractionError(f"extraction timed out after {self.timeout_s:.1f}s") from e
        except Exception as e:
            raise ExtractionError(str(e)) from e

    async def enroll(self, image_bgr: np.ndarray) -> Optional[Descriptor]:
        # one capability for enrollment and probing keeps descriptors comparable
        return await self.detect(image_bgr)

    def close(self):
        if self._extractor is not None:
            self._extractor.close()
            self._extractor = None
