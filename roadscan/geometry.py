from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from .types import BoundingBox, Detection


@dataclass(frozen=True)
class GeometryLimits:
    """
    Plausible size range for a road defect, in normalized image units.
    """

    min_dimension: float = 0.03
    max_dimension: float = 0.6
    min_area: float = 0.01
    max_area: float = 0.12
    min_aspect_ratio: float = 0.25
    max_aspect_ratio: float = 4.0

    def __post_init__(self) -> None:
        if not (0.0 <= self.min_dimension <= self.max_dimension <= 1.0):
            raise ValueError("dimension limits must satisfy 0 <= min_dimension <= max_dimension <= 1")
        if not (0.0 <= self.min_area <= self.max_area <= 1.0):
            raise ValueError("area limits must satisfy 0 <= min_area <= max_area <= 1")
        if not (0.0 < self.min_aspect_ratio <= self.max_aspect_ratio):
            raise ValueError("aspect ratio limits must satisfy 0 < min_aspect_ratio <= max_aspect_ratio")


def is_plausible(box: BoundingBox, limits: GeometryLimits) -> bool:
    width = box.width
    height = box.height

    if width < limits.min_dimension or height < limits.min_dimension:
        return False
    if width > limits.max_dimension or height > limits.max_dimension:
        return False

    area = width * height
    if area < limits.min_area or area > limits.max_area:
        return False

    if height <= 0.0:
        return False
    aspect_ratio = width / height
    if aspect_ratio < limits.min_aspect_ratio or aspect_ratio > limits.max_aspect_ratio:
        return False

    return True


def filter_plausible(detections: Iterable[Detection], limits: GeometryLimits) -> List[Detection]:
    return [det for det in detections if is_plausible(det.box, limits)]
