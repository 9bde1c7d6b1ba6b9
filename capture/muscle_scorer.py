"""
Heuristic muscle-engagement proxies from a single 2D pose.

These are rough visibility and geometry signals for the demo flow, not a
biomechanical or clinical measurement. Missing joints pull the affected
score toward zero instead of raising.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from capture.keypoints import PoseSnapshot

FLEX_FULL_ANGLE = 30.0
FLEX_RANGE_DEG = 150.0
CHEST_RATIO_FLOOR = 0.5
CHEST_RATIO_SPAN = 0.8

Point = Tuple[float, float]


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_score(fraction: float) -> int:
    if not math.isfinite(fraction):
        return 0
    return round_half_up(clamp01(fraction) * 100.0)


def calculate_angle(a: Optional[Point], b: Optional[Point], c: Optional[Point]) -> Optional[float]:
    """Interior angle at `b` in degrees, or None when undefined."""
    if a is None or b is None or c is None:
        return None
    ba = (a[0] - b[0], a[1] - b[1])
    bc = (c[0] - b[0], c[1] - b[1])
    magnitude_ba = math.hypot(*ba)
    magnitude_bc = math.hypot(*bc)
    if magnitude_ba == 0 or magnitude_bc == 0:
        return None
    cos_angle = max(-1.0, min(1.0, (ba[0] * bc[0] + ba[1] * bc[1]) / (magnitude_ba * magnitude_bc)))
    return math.degrees(math.acos(cos_angle))


def flexion_fraction(angle: Optional[float]) -> float:
    if angle is None:
        return 0.0
    return clamp01((180.0 - angle) / FLEX_RANGE_DEG)


def extension_fraction(angle: Optional[float]) -> float:
    if angle is None:
        return 0.0
    return clamp01((angle - FLEX_FULL_ANGLE) / FLEX_RANGE_DEG)


@dataclass(frozen=True)
class MuscleEngagementEstimate:
    shoulders: int = 0
    biceps: int = 0
    triceps: int = 0
    chest: int = 0
    back: int = 0
    legs: int = 0
    debug: Dict[str, Optional[float]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "shoulders": self.shoulders,
            "biceps": self.biceps,
            "triceps": self.triceps,
            "chest": self.chest,
            "back": self.back,
            "legs": self.legs,
            "debug": dict(self.debug),
        }


def _mean_score(pose: PoseSnapshot, *names: str) -> float:
    return sum(pose.score(name) for name in names) / len(names)


def _visibility_weighted(pairs: Tuple[Tuple[float, float], ...]) -> float:
    # Arms with zero visibility are left out of the denominator.
    visible = sum(1 for _fraction, visibility in pairs if visibility > 0)
    if visible == 0:
        return 0.0
    return sum(fraction * visibility for fraction, visibility in pairs) / visible


def _rounded(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 1)


def estimate_muscle_engagement(pose: Optional[PoseSnapshot]) -> MuscleEngagementEstimate:
    if pose is None or not len(pose):
        return MuscleEngagementEstimate(
            debug={
                "left_elbow_angle": None,
                "right_elbow_angle": None,
                "shoulder_distance": None,
                "torso_height": None,
            }
        )

    point = pose.source_pixels
    left_shoulder, right_shoulder = point("left_shoulder"), point("right_shoulder")
    left_hip, right_hip = point("left_hip"), point("right_hip")

    shoulders = to_score(_mean_score(pose, "left_shoulder", "right_shoulder"))

    left_elbow_angle = calculate_angle(left_shoulder, point("left_elbow"), point("left_wrist"))
    right_elbow_angle = calculate_angle(right_shoulder, point("right_elbow"), point("right_wrist"))
    left_arm_visibility = _mean_score(pose, "left_shoulder", "left_elbow", "left_wrist")
    right_arm_visibility = _mean_score(pose, "right_shoulder", "right_elbow", "right_wrist")

    biceps = to_score(
        _visibility_weighted(
            (
                (flexion_fraction(left_elbow_angle), left_arm_visibility),
                (flexion_fraction(right_elbow_angle), right_arm_visibility),
            )
        )
    )
    triceps = to_score(
        _visibility_weighted(
            (
                (extension_fraction(left_elbow_angle), left_arm_visibility),
                (extension_fraction(right_elbow_angle), right_arm_visibility),
            )
        )
    )

    shoulder_distance: Optional[float] = None
    torso_height: Optional[float] = None
    if left_shoulder is not None and right_shoulder is not None:
        shoulder_distance = math.hypot(
            left_shoulder[0] - right_shoulder[0], left_shoulder[1] - right_shoulder[1]
        )
        if left_hip is not None and right_hip is not None:
            shoulder_mid_y = (left_shoulder[1] + right_shoulder[1]) / 2.0
            hip_mid_y = (left_hip[1] + right_hip[1]) / 2.0
            torso_height = abs(hip_mid_y - shoulder_mid_y)

    torso_visibility = _mean_score(pose, "left_shoulder", "right_shoulder", "left_hip", "right_hip")

    chest = 0
    if shoulder_distance and torso_height:
        ratio = shoulder_distance / torso_height
        chest = to_score(clamp01((ratio - CHEST_RATIO_FLOOR) / CHEST_RATIO_SPAN) * torso_visibility)

    back = 0
    if shoulder_distance and left_hip is not None and right_hip is not None:
        shoulder_mid_x = (left_shoulder[0] + right_shoulder[0]) / 2.0
        hip_mid_x = (left_hip[0] + right_hip[0]) / 2.0
        # Shoulder distance is floored at one pixel.
        offset = clamp01(abs(shoulder_mid_x - hip_mid_x) / max(shoulder_distance, 1.0))
        back = to_score((1.0 - offset) * torso_visibility)

    left_leg_visibility = _mean_score(pose, "left_hip", "left_knee", "left_ankle")
    right_leg_visibility = _mean_score(pose, "right_hip", "right_knee", "right_ankle")
    legs = to_score((left_leg_visibility + right_leg_visibility) / 2.0)

    return MuscleEngagementEstimate(
        shoulders=shoulders,
        biceps=biceps,
        triceps=triceps,
        chest=chest,
        back=back,
        legs=legs,
        debug={
            "left_elbow_angle": _rounded(left_elbow_angle),
            "right_elbow_angle": _rounded(right_elbow_angle),
            "shoulder_distance": _rounded(shoulder_distance),
            "torso_height": _rounded(torso_height),
        },
    )
