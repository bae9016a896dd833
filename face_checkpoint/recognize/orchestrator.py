"""
Detection loop: the single owner of the checkpoint's control state.

States:
  IDLE            models not loaded, or detection switched off
  PROBING         tick armed, sampling frames through the debouncer
  CONFIRMED_HOLD  match locked in, sampling suspended until the hold ends

Per tick: hold check -> debounce -> frame -> async extraction. When the
extraction settles, matching, voting and hold bookkeeping run synchronously
in one step, so the history and hold window only ever change atomically.
"""

from __future__ import annotations
import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple
import numpy as np

from ..camera import CameraError
from ..config import CheckpointConfig
from ..enroll import ImageReader, enroll_registry, read_image, registry_summary
from .debouncer import DetectionDebouncer
from .hold_controller import HoldController
from .matcher import FaceDBMatcher
from .scheduler import Handle, Scheduler
from .types import CycleState, Descriptor, HoldWindow, MatchResult, RegistryEntry, Status, StatusKind
from .voter import ConsistencyVoter

logger = logging.getLogger(__name__)

FrameSource = Callable[[], np.ndarray]
StatusListener = Callable[[Status], Any]
CountdownListener = Callable[[Optional[int]], Any]


def confidence_percent(distance: float) -> int:
    return int(max(0, min(100, round((1.0 - distance) * 100))))


class DetectionLoop:
    def __init__(
        self,
        extractor,
        frame_source: FrameSource,
        scheduler: Scheduler,
        config: Optional[CheckpointConfig] = None,
        entries: Sequence[RegistryEntry] = (),
        image_reader: ImageReader = read_image,
    ):
        self.config = (config or CheckpointConfig()).validate()
        self.extractor = extractor
        self.frame_source = frame_source
        self.scheduler = scheduler
        self.image_reader = image_reader

        self.registry: List[RegistryEntry] = list(entries)
        self.matcher = FaceDBMatcher([], dist_thresh=self.config.match_threshold)
        self.debouncer = DetectionDebouncer(self.config.debounce_interval_ms)
        self.voter = ConsistencyVoter(self.config.history_capacity, self.config.voting_window)
        self.hold = HoldController(self.config.hold_duration_ms)

        self.ready = False
        self.enabled = False
        # PROBING or CONFIRMED_HOLD; survives disable/enable
        self._mode = CycleState.PROBING
        self._disposed = False

        self.status: Optional[Status] = None
        self.recognized: Optional[RegistryEntry] = None
        self.confidence = 0
        self.granted = 0
        self.denied = 0
        self.matched_frame: Optional[np.ndarray] = None
        self.device_error: Optional[str] = None

        self._tick_handle: Optional[Handle] = None
        self._countdown_handle: Optional[Handle] = None
        self._resume_handle: Optional[Handle] = None

        self._status_listeners: List[StatusListener] = []
        self._countdown_listeners: List[CountdownListener] = []

    # -------------------------
    # Read-only views
    # -------------------------

    @property
    def state(self) -> CycleState:
        if self._disposed or not self.ready or not self.enabled:
            return CycleState.IDLE
        return self._mode

    @property
    def history(self) -> Tuple[str, ...]:
        return self.voter.history

    @property
    def hold_window(self) -> Optional[HoldWindow]:
        return self.hold.window

    @property
    def countdown(self) -> Optional[int]:
        return self.hold.countdown

    def registry_summary(self) -> List[Tuple[str, bool]]:
        return registry_summary(self.registry)

    def add_status_listener(self, listener: StatusListener):
        self._status_listeners.append(listener)

    def add_countdown_listener(self, listener: CountdownListener):
        self._countdown_listeners.append(listener)

    # -------------------------
    # Lifecycle
    # -------------------------

    def start(self):
        """Load models and enroll the registry in the background, then start probing."""
        self.scheduler.spawn(self.initialize())

    async def initialize(self):
        if self._disposed:
            return
        self._set_status(Status(StatusKind.LOADING_MODELS))
        try:
            await self.extractor.load()
        except Exception as e:
            logger.error("Model loading failed: %s", e)
            self._set_status(Status(StatusKind.DETECTION_ERROR, detail=f"model loading failed: {e}"))
            raise

        self._set_status(Status(StatusKind.LOADING_REGISTRY))
        self.registry = await enroll_registry(self.registry, self.extractor, self.image_reader)
        self.matcher.reload(self.registry)
        if self._disposed:
            return

        self.ready = True
        self._set_status(Status(StatusKind.READY, detail=f"{len(self.matcher)} of {len(self.registry)} entries loaded."))
        self.enable()

    def enable(self):
        self.enabled = True
        if not self.ready or self._disposed or self._tick_handle is not None:
            return
        self._arm()
        if self._mode is CycleState.PROBING or self.device_error is not None:
            self._set_status(self._probing_status())
        elif self.recognized is not None:
            self._set_status(Status(StatusKind.MATCHED, name=self.recognized.name, confidence=self.confidence))
        logger.info("Detection enabled (%s)", self._mode.value)

    def disable(self):
        """Suspend all timers; history and hold window are left untouched."""
        was_armed = self._tick_handle is not None
        self.enabled = False
        self._cancel_timers()
        if was_armed:
            self._set_status(Status(StatusKind.STOPPED))
            logger.info("Detection disabled (%s)", self._mode.value)

    def toggle(self) -> bool:
        if self.enabled:
            self.disable()
        else:
            self.enable()
        return self.enabled

    def dispose(self):
        if self._disposed:
            return
        self._disposed = True
        self.enabled = False
        self._cancel_timers()
        logger.debug("Detection loop disposed")

    def retry_device(self, reopen: Optional[Callable[[], Any]] = None) -> bool:
        """User-initiated camera retry. Returns True if the device is usable again."""
        if reopen is not None:
            try:
                reopen()
            except CameraError as e:
                self.report_device_error(e)
                return False
        self.device_error = None
        if self.state is CycleState.PROBING:
            self._set_status(Status(StatusKind.LOOKING))
        return True

    # -------------------------
    # Timers
    # -------------------------

    def _arm(self):
        self._tick_handle = self.scheduler.schedule(self.config.tick_period_ms, self._on_tick)
        if self._mode is CycleState.CONFIRMED_HOLD:
            if self.hold.window is not None:
                self._countdown_handle = self.scheduler.schedule(self.config.countdown_period_ms, self._on_countdown)
            else:
                # disabled during the grace delay
                self._resume_handle = self.scheduler.call_later(self.config.resume_grace_ms, self._resume)

    def _cancel_timers(self):
        for handle in (self._tick_handle, self._countdown_handle, self._resume_handle):
            if handle is not None:
                handle.cancel()
        self._tick_handle = None
        self._countdown_handle = None
        self._resume_handle = None

    def _on_tick(self):
        if self.state is not CycleState.PROBING:
            logger.debug("Tick skipped in state %s", self.state.value)
            return
        if self.device_error is not None:
            return
        now = self.scheduler.now()
        if not self.debouncer.should_attempt(now):
            return

        try:
            frame = self.frame_source()
        except CameraError as e:
            self.report_device_error(e)
            return

        self.debouncer.begin(now)
        self.scheduler.spawn(self._attempt(frame))

    async def _attempt(self, frame: np.ndarray):
        try:
            descriptor = await self.extractor.detect(frame)
        except Exception as e:
            self.debouncer.settle()
            logger.warning("Detection error: %s", e)
            if not self._disposed:
                self._set_status(Status(StatusKind.DETECTION_ERROR, detail=str(e)))
            return
        self.debouncer.settle()

        if self.state is not CycleState.PROBING:
            logger.debug("Discarding extraction result, loop is %s", self.state.value)
            return
        self.process(descriptor, frame)

    def _on_countdown(self):
        remaining, expired = self.hold.tick(self.scheduler.now())
        if not expired:
            self._emit_countdown(remaining)
            return

        if self._countdown_handle is not None:
            self._countdown_handle.cancel()
            self._countdown_handle = None
        self.matched_frame = None
        self._emit_countdown(None)
        self._resume_handle = self.scheduler.call_later(self.config.resume_grace_ms, self._resume)

    def _resume(self):
        self._resume_handle = None
        self.voter.reset()
        self.recognized = None
        self.confidence = 0
        self._mode = CycleState.PROBING
        logger.info("Hold over, resuming detection")
        self._set_status(self._probing_status())

    # -------------------------
    # Decision step
    # -------------------------

    def process(self, descriptor: Optional[Descriptor], frame: Optional[np.ndarray] = None) -> Optional[MatchResult]:
        """Match, vote and possibly confirm one extraction outcome."""
        if descriptor is None:
            self._clear_match()
            self._set_status(self._probing_status())
            return None

        result = self.matcher.match(descriptor)
        if result.entry is None or not result.accepted:
            logger.debug("Rejected: best %s at %.3f", result.name, result.distance)
            self.denied += 1
            self._clear_match()
            self._set_status(Status(StatusKind.NOT_MATCHED))
            return result

        if self.voter.observe(result.entry.name):
            self._confirm(result, frame)
        else:
            self.confidence = 0
            self._set_status(self._probing_status())
        return result

    def _clear_match(self):
        self.voter.reset()
        self.recognized = None
        self.confidence = 0
        self.matched_frame = None

    def _confirm(self, result: MatchResult, frame: Optional[np.ndarray]):
        now = self.scheduler.now()
        self.recognized = result.entry
        self.confidence = confidence_percent(result.distance)
        self.matched_frame = frame.copy() if frame is not None else None
        window = self.hold.start_hold(now)
        self.granted += 1
        self._mode = CycleState.CONFIRMED_HOLD

        logger.info("Access granted: %s (distance %.3f)", result.entry.name, result.distance)
        self._set_status(Status(StatusKind.MATCHED, name=result.entry.name, confidence=self.confidence))
        self._emit_countdown(window.remaining_seconds)
        self._countdown_handle = self.scheduler.schedule(self.config.countdown_period_ms, self._on_countdown)

    def _probing_status(self) -> Status:
        if self.device_error is not None:
            return Status(StatusKind.DEVICE_ERROR, detail=self.device_error)
        return Status(StatusKind.LOOKING)

    def report_device_error(self, e: Exception):
        self.device_error = str(e)
        logger.error("Video source failed: %s", e)
        self._set_status(Status(StatusKind.DEVICE_ERROR, detail=str(e)))

    # -------------------------
    # Emission
    # -------------------------

    def _set_status(self, status: Status):
        if status == self.status and status.detail == self.status.detail:
            return
        self.status = status
        for listener in list(self._status_listeners):
            listener(status)

    def _emit_countdown(self, remaining: Optional[int]):
        for listener in list(self._countdown_listeners):
            listener(remaining)
