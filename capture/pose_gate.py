from __future__ import annotations

from typing import Optional, Tuple

from capture.geometry import FrameTransform, GuidanceBox, map_point
from capture.keypoints import PoseSnapshot

REQUIRED_JOINTS: Tuple[str, ...] = (
    "nose",
    "left_shoulder",
    "right_shoulder",
    "left_hip",
    "right_hip",
)
ANKLE_JOINTS: Tuple[str, ...] = ("left_ankle", "right_ankle")
TORSO_JOINTS: Tuple[str, ...] = ("left_shoulder", "right_shoulder", "left_hip", "right_hip")

CORE_MIN_SCORE = 0.35
ANKLE_MIN_SCORE = 0.25


def is_confident(pose: Optional[PoseSnapshot]) -> bool:
    """Torso joints and at least one ankle are detected well enough to measure."""
    if pose is None or not len(pose):
        return False

    for name in REQUIRED_JOINTS:
        keypoint = pose.get(name)
        if keypoint is None or keypoint.score <= CORE_MIN_SCORE:
            return False

    return any(
        keypoint is not None and keypoint.score > ANKLE_MIN_SCORE
        for keypoint in (pose.get(name) for name in ANKLE_JOINTS)
    )


def torso_centroid(
    pose: Optional[PoseSnapshot],
    transform: Optional[FrameTransform],
) -> Optional[Tuple[float, float]]:
    """Mean canvas position of both shoulders and both hips."""
    if pose is None or transform is None:
        return None

    mapped = []
    for name in TORSO_JOINTS:
        keypoint = pose.get(name)
        if keypoint is None:
            return None
        mapped.append(map_point(keypoint.x, keypoint.y, transform, pose.space))

    return (
        sum(point[0] for point in mapped) / len(mapped),
        sum(point[1] for point in mapped) / len(mapped),
    )


def is_centered(
    pose: Optional[PoseSnapshot],
    transform: Optional[FrameTransform],
    box: GuidanceBox,
) -> bool:
    centroid = torso_centroid(pose, transform)
    if centroid is None:
        return False
    return box.contains(*centroid)
