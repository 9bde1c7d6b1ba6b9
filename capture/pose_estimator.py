from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol, Union

import cv2
import mediapipe as mp
import numpy as np
from mediapipe.tasks.python import BaseOptions
from mediapipe.tasks.python.vision import (
    PoseLandmarker,
    PoseLandmarkerOptions,
    RunningMode,
)

from capture.keypoints import PoseSnapshot, adapt_mediapipe_landmarks

logger = logging.getLogger(__name__)


class PoseInferenceUnavailable(RuntimeError):
    """The model is not loaded or the frame cannot be used yet."""


class PoseEstimator(Protocol):
    def estimate_pose(self, frame: np.ndarray) -> Optional[PoseSnapshot]:
        ...

    def close(self) -> None:
        ...


class MediaPipePoseEstimator:
    """Single-subject pose estimation with the MediaPipe Tasks PoseLandmarker.

    Frames are BGR images as produced by OpenCV. Output keypoints are in
    normalized coordinates.
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        min_detection_confidence: float = 0.5,
    ) -> None:
        model_path = Path(model_path)
        if not model_path.exists():
            raise PoseInferenceUnavailable(f"Pose model not found: {model_path}")

        self._landmarker: Optional[PoseLandmarker] = PoseLandmarker.create_from_options(
            PoseLandmarkerOptions(
                base_options=BaseOptions(model_asset_path=str(model_path)),
                running_mode=RunningMode.VIDEO,
                num_poses=1,
                min_pose_detection_confidence=min_detection_confidence,
                min_pose_presence_confidence=min_detection_confidence,
            )
        )
        self._timestamp_ms = 0

    def estimate_pose(self, frame: np.ndarray) -> Optional[PoseSnapshot]:
        if self._landmarker is None:
            raise PoseInferenceUnavailable("Pose landmarker is closed")
        if frame is None or frame.size == 0:
            raise PoseInferenceUnavailable("Empty frame")

        height, width = frame.shape[:2]
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

        # VIDEO mode needs strictly increasing timestamps.
        self._timestamp_ms += 33
        result = self._landmarker.detect_for_video(mp_image, self._timestamp_ms)
        if not result.pose_landmarks:
            return None
        return adapt_mediapipe_landmarks(result.pose_landmarks[0], width, height)

    def close(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
