from __future__ import annotations

import logging
from typing import Optional, Tuple, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class CameraUnavailableError(IOError):
    pass


class CameraSource:
    """OpenCV capture device used as the video source of a capture session."""

    def __init__(self, source: Union[int, str] = 0, width: int = 640, height: int = 480) -> None:
        self.source = source
        self.width = width
        self.height = height
        self._cap: Optional[cv2.VideoCapture] = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def open(self) -> None:
        if self._cap is not None:
            return
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            cap.release()
            raise CameraUnavailableError(f"Cannot open camera source: {self.source}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap = cap
        logger.info("Camera %s opened", self.source)

    def read(self) -> Optional[np.ndarray]:
        """Latest frame, or None while the source is not ready."""
        if self._cap is None:
            return None
        ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return frame

    def frame_size(self) -> Tuple[int, int]:
        if self._cap is None:
            return self.width, self.height
        return (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)) or self.width,
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)) or self.height,
        )

    def release(self) -> None:
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        logger.info("Camera %s released", self.source)

    def __enter__(self) -> "CameraSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
