import logging
import cv2
import numpy as np
from pathlib import Path
from typing import List, Optional, Tuple
try:
    import mediapipe as mp
    from mediapipe.tasks.python import vision
    from mediapipe.tasks.python import BaseOptions
except Exception as e:
    mp = None
    _MP_IMPORT_ERROR = e

from .types import FaceDet
from .utils import _clip_xyxy, _bbox_from_5pt, _kps_span_ok

logger = logging.getLogger(__name__)

# 5pt indices in the FaceMesh topology
IDX_LEFT_EYE = 33
IDX_RIGHT_EYE = 263
IDX_NOSE_TIP = 1
IDX_MOUTH_LEFT = 61
IDX_MOUTH_RIGHT = 291

class HaarFaceMesh5pt:
    """
    Haar cascade proposals confirmed by MediaPipe FaceLandmarker on each ROI.
    Haar false positives without landmarks are dropped.
    """
    def __init__(
        self,
        landmarker_path: Path,
        haar_xml: Optional[str] = None,
        min_size: Tuple[int, int] = (70, 70),
        input_size: int = 416,
    ):
        self.min_size = tuple(map(int, min_size))
        self.input_size = int(input_size)

        if haar_xml is None:
            haar_xml = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"

        self.face_cascade = cv2.CascadeClassifier(haar_xml)
        if self.face_cascade.empty():
            raise RuntimeError(f"Failed to load Haar cascade: {haar_xml}")

        if mp is None:
            raise RuntimeError(f"mediapipe import failed: {_MP_IMPORT_ERROR}\n Install: pip install mediapipe")

        options = vision.FaceLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=str(landmarker_path)),
            num_faces=1,  # one face per ROI
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
        )
        self.landmarker = vision.FaceLandmarker.create_from_options(options)

    def _haar_faces(self, gray: np.ndarray) -> np.ndarray:
        faces = self.face_cascade.detectMultiScale(
            gray,
            scaleFactor=1.1,
            minNeighbors=5,
            flags=cv2.CASCADE_SCALE_IMAGE,
            minSize=self.min_size,
        )
        if faces is None or len(faces) == 0:
            return np.zeros((0, 4), dtype=np.int32)
        return np.asarray(faces, dtype=np.int32)  # (x,y,w,h)

    def _roi_facemesh_5pt(self, roi_bgr: np.ndarray) -> Optional[np.ndarray]:
        H, W = roi_bgr.shape[:2]
        if H < 20 or W < 20:
            return None

        rgb = cv2.cvtColor(roi_bgr, cv2.COLOR_BGR2RGB)
        res = self.landmarker.detect(mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb))
        if not res.face_landmarks:
            return None

        lm = res.face_landmarks[0]
        idxs = [IDX_LEFT_EYE, IDX_RIGHT_EYE, IDX_NOSE_TIP, IDX_MOUTH_LEFT, IDX_MOUTH_RIGHT]
        kps = np.array([[lm[i].x * W, lm[i].y * H] for i in idxs], dtype=np.float32)

        # enforce left/right ordering
        if kps[0, 0] > kps[1, 0]:
            kps[[0, 1]] = kps[[1, 0]]
        if kps[3, 0] > kps[4, 0]:
            kps[[3, 4]] = kps[[4, 3]]
        return kps

    def detect(self, frame_bgr: np.ndarray, max_faces: int = 5) -> List[FaceDet]:
        H, W = frame_bgr.shape[:2]

        # detect on a downscaled copy, longest side = input_size
        scale = min(1.0, self.input_size / float(max(H, W)))
        small = frame_bgr if scale >= 1.0 else cv2.resize(frame_bgr, (int(W * scale), int(H * scale)))
        gray = cv2.cvtColor(small, cv2.COLOR_BGR2GRAY)

        faces = self._haar_faces(gray)
        if faces.shape[0] == 0:
            return []
        faces = (faces.astype(np.float32) / scale).astype(np.int32)

        # largest first
        areas = faces[:, 2] * faces[:, 3]
        faces = faces[np.argsort(areas)[::-1]][:max_faces]

        out: List[FaceDet] = []
        for (x, y, w, h) in faces:
            # expand ROI a bit for FaceMesh stability
            mx, my = 0.25 * w, 0.35 * h
            rx1, ry1, rx2, ry2 = _clip_xyxy(x - mx, y - my, x + w + mx, y + h + my, W, H)
            kps_roi = self._roi_facemesh_5pt(frame_bgr[ry1:ry2, rx1:rx2])
            if kps_roi is None:
                logger.debug("FaceMesh found nothing in ROI, skipping")
                continue

            kps = kps_roi.copy()
            kps[:, 0] += float(rx1)
            kps[:, 1] += float(ry1)

            if not _kps_span_ok(kps, min_eye_dist=max(10.0, 0.18 * float(w))):
                logger.debug("5pt geometry check failed, skipping")
                continue

            bb = _bbox_from_5pt(kps)
            x1, y1, x2, y2 = _clip_xyxy(bb[0], bb[1], bb[2], bb[3], W, H)
            out.append(FaceDet(x1=x1, y1=y1, x2=x2, y2=y2, score=1.0, kps=kps))
        return out

    def detect_best(self, frame_bgr: np.ndarray) -> Optional[FaceDet]:
        faces = self.detect(frame_bgr)
        if not faces:
            return None
        return max(faces, key=lambda f: f.area)

    def close(self):
        self.landmarker.close()
