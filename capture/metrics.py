from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

from capture.keypoints import PoseSnapshot
from capture.muscle_scorer import MuscleEngagementEstimate, estimate_muscle_engagement

CREDIT_CARD_WIDTH_CM = 8.56
CARD_FRACTION_OF_CANVAS = 0.34
DEFAULT_CARD_PIXELS = 220.0
HEIGHT_CALIBRATION_MIN_SCORE = 0.2

POSE_SUMMARY_JOINTS: Tuple[str, ...] = (
    "nose",
    "left_ankle",
    "right_ankle",
    "left_shoulder",
    "right_shoulder",
    "left_hip",
    "right_hip",
)


class CaptureMethod(str, Enum):
    AUTO_HOLD = "auto_hold"
    CARD = "card"
    HEIGHT = "height"


class CalibrationError(ValueError):
    pass


@dataclass(frozen=True)
class Calibration:
    method: CaptureMethod
    scale_cm_per_pixel: float
    known_height_cm: Optional[float] = None
    pixel_height_px: Optional[float] = None


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_pose_summary(pose: Optional[PoseSnapshot], joints: Tuple[str, ...] = POSE_SUMMARY_JOINTS) -> Dict[str, Optional[Dict[str, float]]]:
    summary: Dict[str, Optional[Dict[str, float]]] = {}
    for name in joints:
        keypoint = pose.get(name) if pose is not None else None
        summary[name] = (
            None
            if keypoint is None
            else {"x": keypoint.x, "y": keypoint.y, "score": keypoint.score}
        )
    return summary


@dataclass(frozen=True)
class CaptureMetrics:
    """One exported capture event. Built once per trigger and never mutated."""

    method: CaptureMethod
    timestamp: str
    pose_summary: Dict[str, Optional[Dict[str, float]]]
    muscle_estimates: Optional[MuscleEngagementEstimate] = None
    scale_cm_per_pixel: Optional[float] = None
    known_height_cm: Optional[float] = None
    pixel_height_px: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "method": self.method.value,
            "scale_cm_per_pixel": self.scale_cm_per_pixel,
            "known_height_cm": self.known_height_cm,
            "timestamp": self.timestamp,
            "pose_summary": self.pose_summary,
        }
        if self.pixel_height_px is not None:
            payload["pixel_height_px"] = self.pixel_height_px
        if self.muscle_estimates is not None:
            payload["muscle_estimates"] = self.muscle_estimates.to_dict()
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def build_auto_hold_metrics(
    pose: PoseSnapshot,
    calibration: Optional[Calibration] = None,
    timestamp: Optional[str] = None,
) -> CaptureMetrics:
    scale = calibration.scale_cm_per_pixel if calibration is not None else None
    return CaptureMetrics(
        method=CaptureMethod.AUTO_HOLD,
        timestamp=timestamp or utc_timestamp(),
        pose_summary=build_pose_summary(pose),
        muscle_estimates=estimate_muscle_engagement(pose),
        scale_cm_per_pixel=scale,
        known_height_cm=calibration.known_height_cm if scale is not None else None,
    )


def build_calibration_metrics(
    calibration: Calibration,
    pose: Optional[PoseSnapshot] = None,
    timestamp: Optional[str] = None,
) -> CaptureMetrics:
    joints: Tuple[str, ...] = ()
    if calibration.method == CaptureMethod.HEIGHT:
        joints = ("nose", "left_ankle", "right_ankle")
    return CaptureMetrics(
        method=calibration.method,
        timestamp=timestamp or utc_timestamp(),
        pose_summary=build_pose_summary(pose, joints),
        scale_cm_per_pixel=calibration.scale_cm_per_pixel,
        known_height_cm=calibration.known_height_cm,
        pixel_height_px=calibration.pixel_height_px,
    )


def calibrate_from_card(canvas_css_width: Optional[float], known_height_cm: Optional[float] = None) -> Calibration:
    """Approximate scale from a credit card held at a fixed fraction of the view."""
    if canvas_css_width and canvas_css_width > 0:
        assumed_px = canvas_css_width * CARD_FRACTION_OF_CANVAS
    else:
        assumed_px = DEFAULT_CARD_PIXELS
    return Calibration(
        method=CaptureMethod.CARD,
        scale_cm_per_pixel=CREDIT_CARD_WIDTH_CM / assumed_px,
        known_height_cm=known_height_cm,
    )


def calibrate_from_height(pose: Optional[PoseSnapshot], known_height_cm: float) -> Calibration:
    if pose is None or not len(pose):
        raise CalibrationError("No person detected for height calibration")

    nose = pose.get("nose")
    left_ankle = pose.get("left_ankle")
    right_ankle = pose.get("right_ankle")
    ankle = left_ankle if pose.score("left_ankle") > pose.score("right_ankle") else right_ankle
    if (
        nose is None
        or ankle is None
        or nose.score < HEIGHT_CALIBRATION_MIN_SCORE
        or ankle.score < HEIGHT_CALIBRATION_MIN_SCORE
    ):
        raise CalibrationError("Could not detect top/bottom reliably")

    nose_px = pose.source_pixels("nose")
    ankle_px = pose.source_pixels(ankle.name)
    pixel_height = math.hypot(nose_px[0] - ankle_px[0], nose_px[1] - ankle_px[1])
    if pixel_height <= 0:
        raise CalibrationError("Nose and ankle coincide; cannot calibrate")

    return Calibration(
        method=CaptureMethod.HEIGHT,
        scale_cm_per_pixel=known_height_cm / pixel_height,
        known_height_cm=known_height_cm,
        pixel_height_px=pixel_height,
    )
