"""Tests for the extraction pipeline with the models mocked out."""

import asyncio
import threading
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from face_checkpoint.recognize.detector import HaarFaceMesh5pt
from face_checkpoint.recognize.extractor import AsyncFaceExtractor, ExtractionError, FaceExtractor
from face_checkpoint.recognize.types import FaceDet
from face_checkpoint.recognize.utils import _kps_span_ok


def _face(x1, y1, x2, y2):
    return FaceDet(x1=x1, y1=y1, x2=x2, y2=y2, score=1.0, kps=np.zeros((5, 2), dtype=np.float32))


class TestFaceExtractor:
    def test_no_face_returns_none(self):
        detector = MagicMock()
        detector.detect_best.return_value = None
        embedder = MagicMock()
        extractor = FaceExtractor(detector, embedder)

        assert extractor.extract(np.zeros((10, 10, 3), dtype=np.uint8)) is None
        embedder.embed.assert_not_called()

    def test_empty_frame_returns_none(self):
        extractor = FaceExtractor(MagicMock(), MagicMock())
        assert extractor.extract(np.zeros((0, 0, 3), dtype=np.uint8)) is None

    @patch("face_checkpoint.recognize.extractor.align_face_5pt")
    def test_best_face_is_aligned_and_embedded(self, mock_align):
        face = _face(0, 0, 50, 50)
        detector = MagicMock()
        detector.detect_best.return_value = face
        embedder = MagicMock()
        embedder.embed.return_value = np.ones(4, dtype=np.float32)
        aligned = np.zeros((112, 112, 3), dtype=np.uint8)
        mock_align.return_value = aligned

        frame = np.zeros((64, 64, 3), dtype=np.uint8)
        out = FaceExtractor(detector, embedder).extract(frame)

        assert np.array_equal(out, np.ones(4))
        mock_align.assert_called_once_with(frame, face.kps, out_size=(112, 112))
        embedder.embed.assert_called_once_with(aligned)


class TestDetectBest:
    def test_largest_face_wins(self):
        det = HaarFaceMesh5pt.__new__(HaarFaceMesh5pt)
        small, big = _face(0, 0, 10, 10), _face(20, 20, 80, 90)
        det.detect = MagicMock(return_value=[small, big])
        assert det.detect_best(np.zeros((100, 100, 3), dtype=np.uint8)) is big

    def test_no_faces(self):
        det = HaarFaceMesh5pt.__new__(HaarFaceMesh5pt)
        det.detect = MagicMock(return_value=[])
        assert det.detect_best(np.zeros((100, 100, 3), dtype=np.uint8)) is None


class TestKeypointGeometry:
    def test_plausible_face(self):
        kps = np.array([[30, 40], [70, 40], [50, 60], [35, 80], [65, 80]], dtype=np.float32)
        assert _kps_span_ok(kps)

    def test_eyes_too_close(self):
        kps = np.array([[50, 40], [52, 40], [51, 60], [45, 80], [55, 80]], dtype=np.float32)
        assert not _kps_span_ok(kps)

    def test_mouth_above_nose(self):
        kps = np.array([[30, 40], [70, 40], [50, 90], [35, 80], [65, 80]], dtype=np.float32)
        assert not _kps_span_ok(kps)


class TestAsyncFaceExtractor:
    def _make(self, timeout_s=1.0):
        return AsyncFaceExtractor("embedder.onnx", "landmarker.task", timeout_s=timeout_s)

    def test_detect_before_load_fails(self):
        with pytest.raises(ExtractionError):
            asyncio.run(self._make().detect(np.zeros((4, 4, 3), dtype=np.uint8)))

    @patch("face_checkpoint.recognize.extractor.FaceExtractor.from_paths")
    def test_load_then_detect(self, mock_from_paths):
        inner = MagicMock()
        inner.extract.return_value = np.ones(4, dtype=np.float32)
        mock_from_paths.return_value = inner
        extractor = self._make()

        async def scenario():
            await extractor.load()
            await extractor.load()
            return await extractor.detect(np.zeros((4, 4, 3), dtype=np.uint8))

        assert np.array_equal(asyncio.run(scenario()), np.ones(4))
        mock_from_paths.assert_called_once()
        assert extractor.loaded

        extractor.close()
        inner.close.assert_called_once()
        assert not extractor.loaded

    @patch("face_checkpoint.recognize.extractor.FaceExtractor.from_paths")
    def test_failure_is_wrapped(self, mock_from_paths):
        inner = MagicMock()
        inner.extract.side_effect = ValueError("bad frame")
        mock_from_paths.return_value = inner
        extractor = self._make()

        async def scenario():
            await extractor.load()
            await extractor.detect(np.zeros((4, 4, 3), dtype=np.uint8))

        with pytest.raises(ExtractionError, match="bad frame"):
            asyncio.run(scenario())

    @patch("face_checkpoint.recognize.extractor.FaceExtractor.from_paths")
    def test_hung_extraction_times_out(self, mock_from_paths):
        release = threading.Event()
        inner = MagicMock()
        inner.extract.side_effect = lambda frame: release.wait(2.0)
        mock_from_paths.return_value = inner
        extractor = self._make(timeout_s=0.05)
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        errors = []

        async def scenario():
            await extractor.load()
            for _ in range(3):
                try:
                    await extractor.detect(frame)
                except ExtractionError as e:
                    errors.append(str(e))
            release.set()

        asyncio.run(scenario())

        assert "timed out" in errors[0]
        assert errors[1:] == ["previous extraction still running"] * 2
        assert inner.extract.call_count == 1

    @patch("face_checkpoint.recognize.extractor.FaceExtractor.from_paths")
    def test_detect_resumes_once_hung_call_returns(self, mock_from_paths):
        release = threading.Event()
        results = iter([None, np.ones(4, dtype=np.float32)])

        def slow_extract(frame):
            release.wait(2.0)
            return next(results)

        inner = MagicMock()
        inner.extract.side_effect = slow_extract
        mock_from_paths.return_value = inner
        extractor = self._make(timeout_s=0.05)
        frame = np.zeros((4, 4, 3), dtype=np.uint8)

        async def scenario():
            await extractor.load()
            with pytest.raises(ExtractionError, match="timed out"):
                await extractor.detect(frame)
            release.set()
            while not extractor._pending.done():
                await asyncio.sleep(0.01)
            return await extractor.detect(frame)

        assert np.array_equal(asyncio.run(scenario()), np.ones(4))
        assert inner.extract.call_count == 2

    @patch("face_checkpoint.recognize.extractor.FaceExtractor.from_paths")
    def test_enroll_uses_the_same_pipeline(self, mock_from_paths):
        inner = MagicMock()
        inner.extract.return_value = None
        mock_from_paths.return_value = inner
        extractor = self._make()

        async def scenario():
            await extractor.load()
            return await extractor.enroll(np.zeros((4, 4, 3), dtype=np.uint8))

        assert asyncio.run(scenario()) is None
        inner.extract.assert_called_once()
