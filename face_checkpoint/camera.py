import logging
import threading
from typing import Optional
import cv2
import numpy as np

logger = logging.getLogger(__name__)


class CameraError(RuntimeError):
     """Camera missing, busy or not permitted."""


class CameraSource:
     """
     Readable current frame over cv2.VideoCapture.
     Failures raise CameraError; reopening is left to the caller.
     """
     def __init__(self, index: int = 0, width: int = 640, height: int = 480):
          self.index = int(index)
          self.width = int(width)
          self.height = int(height)
          self.cap: Optional[cv2.VideoCapture] = None
          self.last_frame: Optional[np.ndarray] = None
          # preview thread and frame source may both read
          self._read_lock = threading.Lock()

     @property
     def is_open(self) -> bool:
          return self.cap is not None and self.cap.isOpened()

     def open(self) -> "CameraSource":
          self.release()
          cap = cv2.VideoCapture(self.index)
          if not cap.isOpened():
               cap.release()
               raise CameraError(f"Camera {self.index} not opened. Check the device and its permissions.")
          cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
          cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
          self.cap = cap
          logger.info("Camera %d opened", self.index)
          return self

     def read(self) -> np.ndarray:
          if not self.is_open:
               raise CameraError(f"Camera {self.index} is not open")
          with self._read_lock:
               ok, frame = self.cap.read()
          if not ok or frame is None:
               self.last_frame = None
               raise CameraError(f"Failed to read frame from camera {self.index}")
          self.last_frame = frame
          return frame

     def current_frame(self) -> np.ndarray:
          """Latest frame read by the preview, reading one if there is none yet."""
          if self.last_frame is None:
               return self.read()
          return self.last_frame

     def release(self):
          with self._read_lock:
               if self.cap is not None:
                    self.cap.release()
                    self.cap = None
