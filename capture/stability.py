"""
Dwell-stability accumulator for hands-free capture.

Stable time only accumulates while the subject is confident and inside the
guidance box. A frame with too much joint movement adds nothing but does not
reset the countdown; leaving the box or losing confidence does.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from capture.keypoints import PoseSnapshot

HOLD_DURATION_MS = 3000.0
MIN_JITTER_PX = 3.0
JITTER_FRACTION_OF_WIDTH = 0.004
# Used when the frame width is unknown.
FALLBACK_JITTER_PX = 6.0

TRACKED_JOINTS: Tuple[str, ...] = (
    "nose",
    "left_shoulder",
    "right_shoulder",
    "left_hip",
    "right_hip",
    "left_ankle",
    "right_ankle",
)


class StabilityPhase(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    TRIGGERED = "triggered"


def jitter_threshold(frame_width: float) -> float:
    if frame_width <= 0:
        return FALLBACK_JITTER_PX
    return max(MIN_JITTER_PX, frame_width * JITTER_FRACTION_OF_WIDTH)


def max_frame_displacement(
    previous: Optional[PoseSnapshot],
    current: Optional[PoseSnapshot],
) -> float:
    """Largest source-pixel movement of a tracked joint between two frames."""
    if previous is None or current is None:
        return math.inf

    largest = 0.0
    for name in TRACKED_JOINTS:
        before = previous.source_pixels(name)
        after = current.source_pixels(name)
        if before is None or after is None:
            continue
        largest = max(largest, math.hypot(after[0] - before[0], after[1] - before[1]))
    return largest


def remaining_seconds(accumulated_ms: float, hold_ms: float = HOLD_DURATION_MS) -> int:
    return int(math.ceil(max(0.0, hold_ms - accumulated_ms) / 1000.0))


@dataclass(frozen=True)
class StabilityUpdate:
    phase: StabilityPhase
    accumulated_ms: float
    remaining_seconds: Optional[int]
    triggered_now: bool = False
    displacement: float = 0.0
    threshold: float = 0.0


class DwellStabilityAccumulator:
    def __init__(self, hold_ms: float = HOLD_DURATION_MS) -> None:
        self.hold_ms = hold_ms
        self.phase = StabilityPhase.IDLE
        self.accumulated_stable_ms = 0.0
        self.last_frame_timestamp: Optional[float] = None
        self.previous_pose: Optional[PoseSnapshot] = None

    @property
    def triggered(self) -> bool:
        return self.phase == StabilityPhase.TRIGGERED

    def update(self, pose: Optional[PoseSnapshot], eligible: bool, now_ms: float) -> StabilityUpdate:
        """Advance one frame. `eligible` means confident and centered this frame."""
        if self.last_frame_timestamp is None:
            delta_ms = 0.0
        else:
            delta_ms = max(0.0, now_ms - self.last_frame_timestamp)
        self.last_frame_timestamp = now_ms

        previous = self.previous_pose
        self.previous_pose = pose

        if self.phase == StabilityPhase.TRIGGERED:
            return StabilityUpdate(self.phase, self.accumulated_stable_ms, None)

        if not eligible:
            self.phase = StabilityPhase.IDLE
            self.accumulated_stable_ms = 0.0
            return StabilityUpdate(self.phase, 0.0, None)

        self.phase = StabilityPhase.ACCUMULATING
        frame_width = pose.frame_width if pose is not None else 0
        threshold = jitter_threshold(frame_width)
        displacement = max_frame_displacement(previous, pose)
        if displacement <= threshold:
            self.accumulated_stable_ms += delta_ms

        if self.accumulated_stable_ms >= self.hold_ms:
            self.phase = StabilityPhase.TRIGGERED
            return StabilityUpdate(
                self.phase,
                self.accumulated_stable_ms,
                0,
                triggered_now=True,
                displacement=displacement,
                threshold=threshold,
            )

        return StabilityUpdate(
            self.phase,
            self.accumulated_stable_ms,
            remaining_seconds(self.accumulated_stable_ms, self.hold_ms),
            displacement=displacement,
            threshold=threshold,
        )

    def reset(self) -> None:
        """Re-arm after a capture, or clear state when the camera stops."""
        self.phase = StabilityPhase.IDLE
        self.accumulated_stable_ms = 0.0
        self.last_frame_timestamp = None
        self.previous_pose = None
