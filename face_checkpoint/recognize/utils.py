from typing import Tuple
import numpy as np

def _clip_xyxy(x1: float, y1: float, x2: float, y2: float, W: int, H: int) -> Tuple[int, int, int, int]:
    x1 = int(max(0, min(W - 1, round(x1))))
    y1 = int(max(0, min(H - 1, round(y1))))
    x2 = int(max(0, min(W, round(x2))))
    y2 = int(max(0, min(H, round(y2))))
    return x1, y1, x2, y2

def _bbox_from_5pt(kps: np.ndarray, pad_x: float = 0.55, pad_y_top: float = 0.85, pad_y_bot: float = 1.15) -> np.ndarray:
    """
    Face bbox from 5 keypoints, padded more on top (forehead) and bottom (chin).
    """
    k = kps.astype(np.float32)
    x_min, x_max = float(np.min(k[:, 0])), float(np.max(k[:, 0]))
    y_min, y_max = float(np.min(k[:, 1])), float(np.max(k[:, 1]))

    w = max(1.0, x_max - x_min)
    h = max(1.0, y_max - y_min)
    return np.array([
        x_min - pad_x * w,
        y_min - pad_y_top * h,
        x_max + pad_x * w,
        y_max + pad_y_bot * h,
    ], dtype=np.float32)

def _kps_span_ok(kps: np.ndarray, min_eye_dist: float = 12.0) -> bool:
    """
    Sanity filter on 5pt geometry: eyes far enough apart, mouth below nose.
    """
    le, re, no, lm, rm = kps.astype(np.float32)
    if float(np.linalg.norm(re - le)) < min_eye_dist:
        return False
    return bool(lm[1] > no[1] and rm[1] > no[1])
