import logging
import cv2
import numpy as np
import onnxruntime as ort
from pathlib import Path
from typing import Tuple

logger = logging.getLogger(__name__)

class ArcFaceEmbedderONNX:
    """
    ArcFace-style ONNX embedder.
    Input: 112x112 BGR -> internally RGB + (x-127.5)/128, NCHW float32.
    Output: L2-normalized (D,) descriptor.
    """
    def __init__(self, model_path: Path, input_size: Tuple[int, int] = (112, 112)):
        self.model_path = str(model_path)
        self.in_w, self.in_h = int(input_size[0]), int(input_size[1])
        self.sess = ort.InferenceSession(self.model_path, providers=["CPUExecutionProvider"])
        self.in_name = self.sess.get_inputs()[0].name
        self.out_name = self.sess.get_outputs()[0].name
        logger.info(
            "Embedder loaded %s input=%s output=%s",
            self.model_path, self.sess.get_inputs()[0].shape, self.sess.get_outputs()[0].shape,
        )

    def _preprocess(self, aligned_bgr: np.ndarray) -> np.ndarray:
        img = aligned_bgr
        if img.shape[1] != self.in_w or img.shape[0] != self.in_h:
            img = cv2.resize(img, (self.in_w, self.in_h), interpolation=cv2.INTER_LINEAR)

        rgb = cv2.cvtColor(img, cv2.COLOR_BGR2RGB).astype(np.float32)
        rgb = (rgb - 127.5) / 128.0
        return np.transpose(rgb, (2, 0, 1))[None, ...].astype(np.float32)

    @staticmethod
    def _l2_normalize(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
        v = v.astype(np.float32).reshape(-1)
        return (v / float(np.linalg.norm(v) + eps)).astype(np.float32)

    def embed(self, aligned_bgr: np.ndarray) -> np.ndarray:
        y = self.sess.run([self.out_name], {self.in_name: self._preprocess(aligned_bgr)})[0]
        return self._l2_normalize(np.asarray(y, dtype=np.float32))
