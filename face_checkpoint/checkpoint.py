"""
Camera checkpoint: live preview + background detection loop.

camera -> (every tick, debounced) best face -> ArcFace descriptor
-> nearest registry entry -> consistency vote -> hold + countdown -> resume

Run:
python -m face_checkpoint.checkpoint --registry data/registry.json

Keys:
q : quit
space : start/stop detection
r : retry the camera after a device error
"""

from __future__ import annotations
import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence
import cv2
import numpy as np

from .camera import CameraError, CameraSource
from .config import CheckpointConfig
from .enroll import load_registry_file
from .recognize.extractor import AsyncFaceExtractor
from .recognize.logger import StatusLogger
from .recognize.orchestrator import DetectionLoop
from .recognize.scheduler import AsyncioScheduler
from .recognize.types import CycleState, StatusKind

logger = logging.getLogger("Checkpoint")

WINDOW = "checkpoint"
PREVIEW_FPS = 30.0


def draw_overlay(frame: np.ndarray, loop: DetectionLoop, status_log: StatusLogger) -> np.ndarray:
     vis = frame.copy()
     h = vis.shape[0]
     held = loop.state is CycleState.CONFIRMED_HOLD and loop.matched_frame is not None
     if held:
          vis = loop.matched_frame.copy()

     kind = loop.status.kind if loop.status is not None else None
     if kind is StatusKind.MATCHED:
          color = (0, 200, 0)
     elif kind in (StatusKind.NOT_MATCHED, StatusKind.DETECTION_ERROR, StatusKind.DEVICE_ERROR):
          color = (0, 0, 255)
     else:
          color = (255, 255, 255)

     cv2.putText(vis, status_log.last_message, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2)
     if held and loop.countdown is not None:
          cv2.putText(vis, f"Access Granted - Resuming in {loop.countdown}s", (10, 60),
                      cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 200, 0), 2)

     mode = "Auto-Detection Active" if loop.enabled else "Auto-Detection Stopped"
     cv2.putText(vis, mode, (10, h - 20), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 255, 255), 2)
     return vis


async def run(cfg: CheckpointConfig, headless: bool = False):
     scheduler = AsyncioScheduler()
     camera = CameraSource(index=cfg.camera_index)
     extractor = AsyncFaceExtractor(
          embedder_path=cfg.embedder_path,
          landmarker_path=cfg.landmarker_path,
          timeout_s=cfg.extraction_timeout_s,
          input_size=cfg.detector_input_size,
          min_face_size=cfg.min_face_size,
     )
     loop = DetectionLoop(
          extractor=extractor,
          frame_source=camera.current_frame,
          scheduler=scheduler,
          config=cfg,
          entries=load_registry_file(cfg.registry_path),
     )
     status_log = StatusLogger().attach(loop)

     try:
          camera.open()
     except CameraError as e:
          loop.report_device_error(e)

     loop.start()
     logger.info("Checkpoint started - q=quit, space=start/stop detection, r=retry camera")

     blank = np.zeros((camera.height, camera.width, 3), dtype=np.uint8)
     try:
          while True:
               frame: Optional[np.ndarray] = None
               if camera.is_open:
                    try:
                         frame = await asyncio.to_thread(camera.read)
                    except CameraError as e:
                         camera.release()
                         loop.report_device_error(e)

               if not headless:
                    cv2.imshow(WINDOW, draw_overlay(frame if frame is not None else blank, loop, status_log))
                    key = cv2.waitKey(1) & 0xFF
                    if key == ord('q'):
                         break
                    elif key == ord(' '):
                         loop.toggle()
                    elif key == ord('r') and loop.device_error is not None:
                         loop.retry_device(camera.open)

               await asyncio.sleep(1.0 / PREVIEW_FPS)
     finally:
          loop.dispose()
          scheduler.cancel_tasks()
          camera.release()
          extractor.close()
          if not headless:
               cv2.destroyAllWindows()
          logger.info("Checkpoint stopped: %d granted, %d denied", loop.granted, loop.denied)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
     defaults = CheckpointConfig()
     parser = argparse.ArgumentParser(description="Camera access checkpoint.")
     parser.add_argument("--registry", type=Path, default=defaults.registry_path)
     parser.add_argument("--camera", type=int, default=defaults.camera_index)
     parser.add_argument("--hold-ms", type=float, default=defaults.hold_duration_ms)
     parser.add_argument("--headless", action="store_true", help="no preview window, log only")
     parser.add_argument("--debug", action="store_true")
     return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None):
     args = parse_args(argv)
     logging.basicConfig(
          level=logging.DEBUG if args.debug else logging.INFO,
          format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
          handlers=[logging.StreamHandler()],
     )
     cfg = CheckpointConfig(
          registry_path=args.registry,
          camera_index=args.camera,
          hold_duration_ms=args.hold_ms,
     )
     try:
          asyncio.run(run(cfg, headless=args.headless))
     except KeyboardInterrupt:
          logger.info("Interrupted")


if __name__ == "__main__":
     main()
