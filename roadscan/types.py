from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Tuple, Union

import numpy as np


class DefectLabel(str, Enum):
    POTHOLE = "pothole"
    CRACK = "crack"


class FrameLayout(str, Enum):
    # Planar 4:2:0, Y then U then V.
    YUV420 = "yuv420"
    # Semi-planar 4:2:0, Y then interleaved V/U (Android camera default).
    NV21 = "nv21"
    # Semi-planar 4:2:0, Y then interleaved U/V.
    NV12 = "nv12"
    RGB = "rgb"
    BGR = "bgr"

    @property
    def is_luma_chroma(self) -> bool:
        return self in (FrameLayout.YUV420, FrameLayout.NV21, FrameLayout.NV12)


class PipelineState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    MODEL_LOADING = "MODEL_LOADING"
    READY = "READY"
    PROCESSING = "PROCESSING"
    ERROR = "ERROR"
    DISPOSED = "DISPOSED"


def _round_half_away(value: float) -> int:
    return int(math.floor(abs(value) + 0.5)) * (1 if value >= 0 else -1)


@dataclass(frozen=True)
class PixelBox:
    x: int
    y: int
    width: int
    height: int
    left: int
    top: int
    right: int
    bottom: int


@dataclass(frozen=True)
class BoundingBox:
    """
    Centre-form box, every field normalized to [0, 1] of the model input.
    """

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        for name in ("x", "y", "width", "height"):
            value = getattr(self, name)
            if not math.isfinite(value) or not (0.0 <= value <= 1.0):
                raise ValueError(f"BoundingBox.{name} must be within [0, 1] (got {value!r})")

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        if self.height <= 0.0:
            return math.inf
        return self.width / self.height

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        half_w = self.width / 2
        half_h = self.height / 2
        return self.x - half_w, self.y - half_h, self.x + half_w, self.y + half_h

    def to_pixels(self, image_width: int, image_height: int) -> PixelBox:
        """
        Project onto an image of the given size.

        Centre and size are rounded first, corners are derived from the rounded
        values and clamped to the image bounds.
        """

        if image_width <= 0 or image_height <= 0:
            raise ValueError(f"Invalid image size: {image_width}x{image_height}")

        cx = _round_half_away(self.x * image_width)
        cy = _round_half_away(self.y * image_height)
        bw = _round_half_away(self.width * image_width)
        bh = _round_half_away(self.height * image_height)

        left = _round_half_away(cx - bw / 2)
        top = _round_half_away(cy - bh / 2)
        right = _round_half_away(cx + bw / 2)
        bottom = _round_half_away(cy + bh / 2)

        return PixelBox(
            x=cx,
            y=cy,
            width=bw,
            height=bh,
            left=min(max(left, 0), image_width),
            top=min(max(top, 0), image_height),
            right=min(max(right, 0), image_width),
            bottom=min(max(bottom, 0), image_height),
        )


@dataclass(frozen=True)
class Detection:
    """
    A single road-surface defect found in one frame.

    Instances are never mutated; use `replace()` to derive a corrected copy.
    """

    label: DefectLabel
    confidence: float
    box: BoundingBox
    observed_at: datetime

    def __post_init__(self) -> None:
        if not isinstance(self.label, DefectLabel):
            raise ValueError(f"Unknown defect label: {self.label!r}")
        if not math.isfinite(self.confidence) or not (0.0 <= self.confidence <= 1.0):
            raise ValueError(f"confidence must be within [0, 1] (got {self.confidence!r})")

    def replace(self, **changes: Any) -> "Detection":
        return dataclasses.replace(self, **changes)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label.value,
            "confidence": self.confidence,
            "box": {"x": self.box.x, "y": self.box.y, "width": self.box.width, "height": self.box.height},
            "observed_at": self.observed_at.isoformat(),
        }


FrameData = Union[bytes, bytearray, memoryview, np.ndarray]


@dataclass(frozen=True)
class FrameBuffer:
    """
    One raw camera frame. Owned by a single processing cycle.
    """

    data: FrameData
    width: int
    height: int
    layout: FrameLayout = FrameLayout.YUV420

    @classmethod
    def from_image(cls, image: np.ndarray, layout: FrameLayout = FrameLayout.BGR) -> "FrameBuffer":
        if image is None or not hasattr(image, "shape"):
            raise TypeError("image must be a NumPy array.")
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image, 'shape', None)}")
        if layout.is_luma_chroma:
            raise ValueError(f"from_image expects an interleaved layout, got {layout.value}")
        h, w = image.shape[:2]
        return cls(data=np.ascontiguousarray(image, dtype=np.uint8), width=int(w), height=int(h), layout=layout)
