"""
Frame-to-canvas geometry for the capture overlay.

The camera frame is shown "cover" fitted inside the drawing surface: scaled
uniformly until both dimensions are filled, centered, and the overflow
cropped. Keypoints come out of the pose estimator in source-frame units and
have to go through the same transform before they can be drawn or tested
against the guidance box.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from capture.keypoints import CoordinateSpace, to_source_pixels

GUIDANCE_WIDTH_FRACTION = 0.5
GUIDANCE_HEIGHT_FRACTION = 0.7


@dataclass(frozen=True)
class FrameTransform:
    scale: float
    offset_x: float
    offset_y: float
    canvas_width: float
    canvas_height: float
    frame_width: float
    frame_height: float


def compute_cover_transform(
    frame_width: float,
    frame_height: float,
    canvas_width: float,
    canvas_height: float,
) -> Optional[FrameTransform]:
    if min(frame_width, frame_height, canvas_width, canvas_height) <= 0:
        return None

    scale = max(canvas_width / frame_width, canvas_height / frame_height)
    displayed_width = frame_width * scale
    displayed_height = frame_height * scale
    return FrameTransform(
        scale=scale,
        offset_x=(canvas_width - displayed_width) / 2.0,
        offset_y=(canvas_height - displayed_height) / 2.0,
        canvas_width=float(canvas_width),
        canvas_height=float(canvas_height),
        frame_width=float(frame_width),
        frame_height=float(frame_height),
    )


def map_point(
    x: float,
    y: float,
    transform: FrameTransform,
    space: CoordinateSpace = CoordinateSpace.AUTO,
) -> Tuple[float, float]:
    px, py = to_source_pixels(x, y, transform.frame_width, transform.frame_height, space)
    return (
        px * transform.scale + transform.offset_x,
        py * transform.scale + transform.offset_y,
    )


@dataclass(frozen=True)
class GuidanceBox:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def centered(
        cls,
        canvas_width: float,
        canvas_height: float,
        width_fraction: float = GUIDANCE_WIDTH_FRACTION,
        height_fraction: float = GUIDANCE_HEIGHT_FRACTION,
    ) -> "GuidanceBox":
        width = canvas_width * width_fraction
        height = canvas_height * height_fraction
        return cls(
            x=(canvas_width - width) / 2.0,
            y=(canvas_height - height) / 2.0,
            width=width,
            height=height,
        )

    def contains(self, px: float, py: float) -> bool:
        # Edges are outside.
        return (
            self.x < px < self.x + self.width
            and self.y < py < self.y + self.height
        )


class RenderTarget:
    """Drawing surface with a CSS-pixel size and a device-pixel buffer.

    Everything the pipeline computes (transforms, guidance box) is in CSS
    pixels; only the buffer is scaled by the device pixel ratio.
    """

    def __init__(self, css_width: int, css_height: int, device_pixel_ratio: float = 1.0) -> None:
        self.device_pixel_ratio = device_pixel_ratio if device_pixel_ratio > 0 else 1.0
        self.css_width = 0
        self.css_height = 0
        self.buffer = np.zeros((1, 1, 3), dtype=np.uint8)
        self.sync(css_width, css_height)

    def sync(self, css_width: float, css_height: float) -> bool:
        """Resize to the container; returns True only when the size changed."""
        css_w = max(1, int(round(css_width)))
        css_h = max(1, int(round(css_height)))
        if css_w == self.css_width and css_h == self.css_height:
            return False

        self.css_width = css_w
        self.css_height = css_h
        buffer_w = int(round(css_w * self.device_pixel_ratio))
        buffer_h = int(round(css_h * self.device_pixel_ratio))
        self.buffer = np.zeros((buffer_h, buffer_w, 3), dtype=np.uint8)
        return True

    def clear(self) -> None:
        self.buffer.fill(0)

    def to_buffer(self, css_x: float, css_y: float) -> Tuple[int, int]:
        return (
            int(round(css_x * self.device_pixel_ratio)),
            int(round(css_y * self.device_pixel_ratio)),
        )

    def transform_for(self, frame_width: float, frame_height: float) -> Optional[FrameTransform]:
        return compute_cover_transform(frame_width, frame_height, self.css_width, self.css_height)

    def guidance_box(self) -> GuidanceBox:
        return GuidanceBox.centered(self.css_width, self.css_height)
