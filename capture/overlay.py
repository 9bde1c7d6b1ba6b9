from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from capture.geometry import FrameTransform, GuidanceBox, RenderTarget, map_point
from capture.keypoints import PoseSnapshot

logger = logging.getLogger(__name__)

SKELETON_CONNECTIONS: Tuple[Tuple[str, str], ...] = (
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
    ("left_hip", "left_knee"),
    ("right_hip", "right_knee"),
    ("left_knee", "left_ankle"),
    ("right_knee", "right_ankle"),
)

DRAW_MIN_SCORE = 0.15
GUIDANCE_COLOR = (0, 215, 255)
BONE_COLOR = (0, 215, 255)
JOINT_COLOR = (255, 255, 0)
TEXT_COLOR = (245, 245, 245)
DASH_PX = 8
GAP_PX = 6


class OverlayRenderer:
    """Draws the capture overlay onto a RenderTarget. Never mutates capture state."""

    def __init__(self, show_frame: bool = True) -> None:
        self.show_frame = show_frame

    def render(
        self,
        target: RenderTarget,
        frame: Optional[np.ndarray],
        pose: Optional[PoseSnapshot],
        transform: Optional[FrameTransform],
        box: GuidanceBox,
        prompt: str,
        countdown: Optional[int],
    ) -> None:
        target.clear()
        if self.show_frame and frame is not None and transform is not None:
            self._draw_frame(target, frame, transform)

        self._draw_guidance_box(target, box)
        if pose is not None and len(pose) and transform is not None:
            self._draw_skeleton(target, pose, transform)

        self._draw_text(target, prompt, target.css_height - 24, 0.6)
        if countdown is not None:
            self._draw_text(target, f"Hold still: {countdown}s", 40, 1.0)

    @staticmethod
    def _draw_frame(target: RenderTarget, frame: np.ndarray, transform: FrameTransform) -> None:
        dpr = target.device_pixel_ratio
        scaled_w = max(1, int(round(transform.frame_width * transform.scale * dpr)))
        scaled_h = max(1, int(round(transform.frame_height * transform.scale * dpr)))
        resized = cv2.resize(frame, (scaled_w, scaled_h))

        buf_h, buf_w = target.buffer.shape[:2]
        crop_x = max(0, int(round(-transform.offset_x * dpr)))
        crop_y = max(0, int(round(-transform.offset_y * dpr)))
        visible = resized[crop_y : crop_y + buf_h, crop_x : crop_x + buf_w]
        target.buffer[: visible.shape[0], : visible.shape[1]] = visible

    @staticmethod
    def _draw_guidance_box(target: RenderTarget, box: GuidanceBox) -> None:
        corners = [
            target.to_buffer(box.x, box.y),
            target.to_buffer(box.x + box.width, box.y),
            target.to_buffer(box.x + box.width, box.y + box.height),
            target.to_buffer(box.x, box.y + box.height),
        ]
        for start, end in zip(corners, corners[1:] + corners[:1]):
            _dashed_line(target.buffer, start, end, GUIDANCE_COLOR, 3)

    @staticmethod
    def _draw_skeleton(target: RenderTarget, pose: PoseSnapshot, transform: FrameTransform) -> None:
        points: Dict[str, Tuple[int, int]] = {}
        for name, keypoint in pose.keypoints.items():
            if keypoint.score <= DRAW_MIN_SCORE:
                continue
            css_x, css_y = map_point(keypoint.x, keypoint.y, transform, pose.space)
            points[name] = target.to_buffer(css_x, css_y)

        for start_joint, end_joint in SKELETON_CONNECTIONS:
            if start_joint in points and end_joint in points:
                cv2.line(target.buffer, points[start_joint], points[end_joint], BONE_COLOR, 3)

        for point in points.values():
            cv2.circle(target.buffer, point, 6, JOINT_COLOR, -1)

    @staticmethod
    def _draw_text(target: RenderTarget, text: str, css_y: float, font_scale: float) -> None:
        if not text:
            return
        dpr = target.device_pixel_ratio
        scale = font_scale * dpr
        thickness = max(1, int(round(2 * dpr)))
        (text_w, _text_h), _baseline = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, scale, thickness)
        buf_w = target.buffer.shape[1]
        origin = (max(4, (buf_w - text_w) // 2), int(round(css_y * dpr)))
        cv2.putText(target.buffer, text, origin, cv2.FONT_HERSHEY_SIMPLEX, scale, TEXT_COLOR, thickness)


def _dashed_line(
    image: np.ndarray,
    start: Tuple[int, int],
    end: Tuple[int, int],
    color: Tuple[int, int, int],
    thickness: int,
) -> None:
    length = float(np.hypot(end[0] - start[0], end[1] - start[1]))
    if length == 0:
        return
    step = DASH_PX + GAP_PX
    for offset in np.arange(0.0, length, step):
        t0 = offset / length
        t1 = min(offset + DASH_PX, length) / length
        p0 = (int(start[0] + (end[0] - start[0]) * t0), int(start[1] + (end[1] - start[1]) * t0))
        p1 = (int(start[0] + (end[0] - start[0]) * t1), int(start[1] + (end[1] - start[1]) * t1))
        cv2.line(image, p0, p1, color, thickness)


class PreviewWindow:
    """OpenCV window showing the render target; closed with 'q'."""

    def __init__(self, window_name: str = "FitAI - Body Scan") -> None:
        self.window_name = window_name
        self.enabled = True
        self.quit_requested = False

    def show(self, target: RenderTarget) -> bool:
        """Returns False only when the user asked to quit.

        A window that cannot be opened (headless host) is disabled and the
        session keeps running without it.
        """
        if self.quit_requested:
            return False
        if not self.enabled:
            return True
        try:
            cv2.imshow(self.window_name, target.buffer)
            key = cv2.waitKey(1) & 0xFF
        except cv2.error as error:
            logger.warning("Preview disabled: %s", error)
            self.close()
            return True
        if key == ord("q"):
            self.quit_requested = True
            self.close()
            return False
        return True

    def close(self) -> None:
        if not self.enabled:
            return
        self.enabled = False
        try:
            cv2.destroyWindow(self.window_name)
        except cv2.error:
            pass
