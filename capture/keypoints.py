from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

KEYPOINT_NAMES: Tuple[str, ...] = (
    "nose",
    "left_eye",
    "right_eye",
    "left_ear",
    "right_ear",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
)

# MediaPipe Pose (33 landmarks) index for each of the 17 named keypoints.
MEDIAPIPE_INDEX_BY_KEYPOINT: Dict[str, int] = {
    "nose": 0,
    "left_eye": 2,
    "right_eye": 5,
    "left_ear": 7,
    "right_ear": 8,
    "left_shoulder": 11,
    "right_shoulder": 12,
    "left_elbow": 13,
    "right_elbow": 14,
    "left_wrist": 15,
    "right_wrist": 16,
    "left_hip": 23,
    "right_hip": 24,
    "left_knee": 25,
    "right_knee": 26,
    "left_ankle": 27,
    "right_ankle": 28,
}

# Values at or below this are read as fractions of the frame when the space is AUTO.
NORMALIZED_COORD_LIMIT = 1.01


class CoordinateSpace(str, Enum):
    """Unit convention of keypoint coordinates produced by a pose estimator."""

    NORMALIZED = "normalized"
    PIXEL = "pixel"
    AUTO = "auto"


@dataclass(frozen=True)
class Keypoint:
    name: str
    x: float
    y: float
    score: float


def to_source_pixels(
    x: float,
    y: float,
    frame_width: float,
    frame_height: float,
    space: CoordinateSpace = CoordinateSpace.AUTO,
) -> Tuple[float, float]:
    if space == CoordinateSpace.NORMALIZED:
        return x * frame_width, y * frame_height
    if space == CoordinateSpace.PIXEL:
        return x, y
    if x <= NORMALIZED_COORD_LIMIT or y <= NORMALIZED_COORD_LIMIT:
        return x * frame_width, y * frame_height
    return x, y


@dataclass(frozen=True)
class PoseSnapshot:
    """All keypoints of the single subject detected in one frame."""

    keypoints: Mapping[str, Keypoint] = field(default_factory=dict)
    frame_width: int = 0
    frame_height: int = 0
    space: CoordinateSpace = CoordinateSpace.AUTO

    @classmethod
    def empty(cls, frame_width: int = 0, frame_height: int = 0) -> "PoseSnapshot":
        return cls({}, frame_width, frame_height)

    @classmethod
    def from_keypoints(
        cls,
        keypoints: Iterable[Keypoint],
        frame_width: int,
        frame_height: int,
        space: CoordinateSpace = CoordinateSpace.AUTO,
    ) -> "PoseSnapshot":
        return cls({kp.name: kp for kp in keypoints}, frame_width, frame_height, space)

    @classmethod
    def from_keypoint_list(
        cls,
        raw_keypoints: Sequence[Mapping[str, object]],
        frame_width: int,
        frame_height: int,
        space: CoordinateSpace = CoordinateSpace.AUTO,
    ) -> "PoseSnapshot":
        """Build a snapshot from the estimator's fixed-order `{x, y, score}` array."""
        keypoints: Dict[str, Keypoint] = {}
        for index, (name, raw) in enumerate(zip(KEYPOINT_NAMES, raw_keypoints)):
            if not isinstance(raw, Mapping):
                raise ValueError(f"Keypoint {index} must be an object")
            values = []
            for key in ("x", "y", "score"):
                value = raw.get(key)
                if not isinstance(value, (int, float)):
                    raise ValueError(f"Keypoint '{name}' field '{key}' must be numeric")
                values.append(float(value))
            keypoints[name] = Keypoint(name, values[0], values[1], values[2])
        return cls(keypoints, frame_width, frame_height, space)

    def __len__(self) -> int:
        return len(self.keypoints)

    def get(self, name: str) -> Optional[Keypoint]:
        return self.keypoints.get(name)

    def score(self, name: str) -> float:
        keypoint = self.keypoints.get(name)
        return keypoint.score if keypoint is not None else 0.0

    def source_pixels(self, name: str) -> Optional[Tuple[float, float]]:
        keypoint = self.keypoints.get(name)
        if keypoint is None:
            return None
        return to_source_pixels(
            keypoint.x, keypoint.y, self.frame_width, self.frame_height, self.space
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "frame_width": self.frame_width,
            "frame_height": self.frame_height,
            "space": self.space.value,
            "keypoints": [
                {"name": kp.name, "x": kp.x, "y": kp.y, "score": kp.score}
                for name in KEYPOINT_NAMES
                if (kp := self.keypoints.get(name)) is not None
            ],
        }


def adapt_mediapipe_landmarks(
    landmarks: Sequence[object],
    frame_width: int,
    frame_height: int,
) -> PoseSnapshot:
    """Reduce a 33-landmark MediaPipe pose to the 17 named keypoints."""
    keypoints = []
    for name, mp_index in MEDIAPIPE_INDEX_BY_KEYPOINT.items():
        if mp_index >= len(landmarks):
            continue
        landmark = landmarks[mp_index]
        visibility = getattr(landmark, "visibility", None)
        score = float(visibility) if visibility is not None else 1.0
        keypoints.append(
            Keypoint(name, float(landmark.x), float(landmark.y), max(0.0, min(1.0, score)))
        )
    return PoseSnapshot.from_keypoints(
        keypoints, frame_width, frame_height, CoordinateSpace.NORMALIZED
    )
