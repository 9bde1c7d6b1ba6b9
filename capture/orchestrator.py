"""
Capture session orchestration.

One iteration per frame: pose inference, surface resync, gate checks, dwell
accumulation, one-shot capture hand-off, prompt update, overlay draw. The
loop is cooperative and strictly sequential; an iteration, including its
inference call, finishes before the next begins.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from capture.camera import CameraSource, CameraUnavailableError
from capture.export import MetricsExporter
from capture.geometry import RenderTarget
from capture.keypoints import PoseSnapshot
from capture.metrics import (
    Calibration,
    CaptureMetrics,
    build_auto_hold_metrics,
    build_calibration_metrics,
    calibrate_from_card,
    calibrate_from_height,
)
from capture.overlay import OverlayRenderer, PreviewWindow
from capture.pose_estimator import PoseEstimator, PoseInferenceUnavailable
from capture.pose_gate import is_centered, is_confident
from capture.stability import (
    HOLD_DURATION_MS,
    DwellStabilityAccumulator,
    StabilityPhase,
    StabilityUpdate,
)

logger = logging.getLogger(__name__)

PROMPT_WELCOME = "Move into the box"
PROMPT_NOT_CONFIDENT = (
    "Step into view & pose so your torso is visible - show shoulders, hips and at least one ankle"
)
PROMPT_NOT_CENTERED = "Move to the center of the box and keep torso facing camera"
PROMPT_NOT_CALIBRATED = "In position - calibrate (card/height) or hold still to auto-capture"
PROMPT_HOLDING = "In position - hold still to capture"
PROMPT_CAPTURED = "Captured - preparing metrics..."
PROMPT_STOPPED = "Stopped"

FRAME_INTERVAL_SEC = 1.0 / 60.0


class SessionStatus(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    CAPTURED = "captured"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class FrameReport:
    pose: PoseSnapshot
    confident: bool
    centered: bool
    stability: StabilityUpdate
    prompt: str
    metrics: Optional[CaptureMetrics] = None

    @property
    def countdown(self) -> Optional[int]:
        return self.stability.remaining_seconds

    def to_dict(self) -> Dict[str, object]:
        return {
            "phase": self.stability.phase.value,
            "prompt": self.prompt,
            "countdown": self.countdown,
            "accumulated_ms": round(self.stability.accumulated_ms, 1),
            "confident": self.confident,
            "centered": self.centered,
            "frame_width": self.pose.frame_width,
            "frame_height": self.pose.frame_height,
            "keypoints": self.pose.to_dict()["keypoints"],
            "metrics": self.metrics.to_dict() if self.metrics is not None else None,
        }


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class CaptureOrchestrator:
    def __init__(
        self,
        estimator: PoseEstimator,
        target: RenderTarget,
        exporter: Optional[MetricsExporter] = None,
        renderer: Optional[OverlayRenderer] = None,
        hold_ms: float = HOLD_DURATION_MS,
        known_height_cm: Optional[float] = None,
        on_capture: Optional[Callable[[CaptureMetrics], None]] = None,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self.estimator = estimator
        self.target = target
        self.exporter = exporter
        self.renderer = renderer
        self.known_height_cm = known_height_cm
        self.on_capture = on_capture
        self.accumulator = DwellStabilityAccumulator(hold_ms)
        self.calibration: Optional[Calibration] = None
        self.status = SessionStatus.IDLE
        self.prompt = PROMPT_WELCOME
        self.latest_pose: Optional[PoseSnapshot] = None
        self.latest_metrics: Optional[CaptureMetrics] = None
        self._clock = clock
        self._camera: Optional[CameraSource] = None
        self._running = False

    # ------------------------------------------------------------------
    # Per-frame work
    # ------------------------------------------------------------------

    def process_frame(
        self,
        frame: Optional[np.ndarray],
        now_ms: Optional[float] = None,
        container_size: Optional[Tuple[float, float]] = None,
    ) -> Optional[FrameReport]:
        """Run one full iteration on a frame. Returns None when the iteration is skipped."""
        if frame is None:
            return None
        try:
            pose = self.estimator.estimate_pose(frame)
        except PoseInferenceUnavailable as error:
            logger.debug("Skipping frame: %s", error)
            return None
        return self.process_pose(pose, frame, now_ms, container_size)

    def process_pose(
        self,
        pose: Optional[PoseSnapshot],
        frame: Optional[np.ndarray] = None,
        now_ms: Optional[float] = None,
        container_size: Optional[Tuple[float, float]] = None,
    ) -> FrameReport:
        now_ms = self._clock() if now_ms is None else now_ms
        if pose is None:
            frame_h, frame_w = frame.shape[:2] if frame is not None else (0, 0)
            pose = PoseSnapshot.empty(frame_w, frame_h)

        if container_size is not None:
            self.target.sync(*container_size)
        transform = self.target.transform_for(pose.frame_width, pose.frame_height)
        box = self.target.guidance_box()

        confident = is_confident(pose)
        centered = confident and is_centered(pose, transform, box)

        # The accumulator compares against the previous pose before storing this one.
        stability = self.accumulator.update(pose, confident and centered, now_ms)
        self.latest_pose = pose

        metrics = None
        if stability.triggered_now:
            metrics = build_auto_hold_metrics(pose, self.calibration)
            self._hand_off(metrics)
            # on_capture may have ended the session; keep its final prompt.
            if self.status == SessionStatus.STOPPED:
                return FrameReport(pose, confident, centered, stability, self.prompt, metrics)

        self.prompt = self._prompt_for(confident, centered)

        if self.renderer is not None:
            self.renderer.render(
                self.target,
                frame,
                pose,
                transform,
                box,
                self.prompt,
                stability.remaining_seconds,
            )

        return FrameReport(pose, confident, centered, stability, self.prompt, metrics)

    def _prompt_for(self, confident: bool, centered: bool) -> str:
        if self.accumulator.phase == StabilityPhase.TRIGGERED:
            return PROMPT_CAPTURED
        if not confident:
            return PROMPT_NOT_CONFIDENT
        if not centered:
            return PROMPT_NOT_CENTERED
        if self.calibration is None:
            return PROMPT_NOT_CALIBRATED
        return PROMPT_HOLDING

    def _hand_off(self, metrics: CaptureMetrics) -> None:
        self.latest_metrics = metrics
        self.status = SessionStatus.CAPTURED
        logger.info("Capture triggered (%s)", metrics.method.value)

        if self.exporter is not None:
            self.exporter.dispatch(metrics)

        # Continue without waiting on the export.
        if self.on_capture is not None:
            try:
                self.on_capture(metrics)
            except Exception:
                logger.exception("on_capture callback failed")

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def calibrate_card(self) -> Calibration:
        calibration = calibrate_from_card(self.target.css_width, self.known_height_cm)
        self._apply_calibration(calibration, None)
        self.prompt = "Calibrated using card (approx)."
        return calibration

    def calibrate_height(self, known_height_cm: Optional[float] = None) -> Calibration:
        """Raises CalibrationError when nose and ankle are not both visible."""
        height = known_height_cm if known_height_cm is not None else self.known_height_cm
        if height is None:
            raise ValueError("Known height is required for height calibration")
        calibration = calibrate_from_height(self.latest_pose, height)
        self._apply_calibration(calibration, self.latest_pose)
        self.prompt = "Calibrated by height"
        return calibration

    def _apply_calibration(self, calibration: Calibration, pose: Optional[PoseSnapshot]) -> None:
        self.calibration = calibration
        if self.exporter is not None:
            self.exporter.dispatch(build_calibration_metrics(calibration, pose))

    # ------------------------------------------------------------------
    # Loop lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def run(
        self,
        camera: CameraSource,
        preview: Optional[PreviewWindow] = None,
        frame_interval_sec: float = FRAME_INTERVAL_SEC,
    ) -> None:
        self.status = SessionStatus.STARTING
        self.prompt = "Starting camera"
        try:
            camera.open()
        except CameraUnavailableError as error:
            logger.error("Camera error: %s", error)
            self.status = SessionStatus.ERROR
            self.prompt = f"Camera error: {error}"
            return

        self._camera = camera
        self._running = True
        self.accumulator.reset()
        self.status = SessionStatus.RUNNING
        self.prompt = PROMPT_WELCOME
        loop = asyncio.get_running_loop()

        try:
            while self._running:
                frame = camera.read()
                if frame is not None:
                    try:
                        pose = await loop.run_in_executor(None, self.estimator.estimate_pose, frame)
                        self.process_pose(pose, frame)
                        if preview is not None and self._running and not preview.show(self.target):
                            self.stop()
                    except PoseInferenceUnavailable as error:
                        logger.debug("Skipping frame: %s", error)
                    except Exception:
                        logger.exception("Capture loop error")
                await asyncio.sleep(frame_interval_sec)
        finally:
            self._release_camera()

    def stop(self) -> None:
        """Cancel the next iteration, release the camera and clear capture state."""
        self._running = False
        self._release_camera()
        self.accumulator.reset()
        self.status = SessionStatus.STOPPED
        self.prompt = PROMPT_STOPPED

    def rearm(self) -> None:
        """Allow another capture in the same session."""
        self.accumulator.reset()
        self.latest_metrics = None
        self.status = SessionStatus.RUNNING if self._running else SessionStatus.IDLE
        self.prompt = PROMPT_WELCOME

    def _release_camera(self) -> None:
        if self._camera is not None:
            self._camera.release()
            self._camera = None
