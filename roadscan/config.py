from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Tuple

from .geometry import GeometryLimits
from .nms import NMSConfig
from .types import DefectLabel, FrameLayout


@dataclass(frozen=True)
class DetectorConfig:
    """
    Fixed model and post-processing constants for one deployed detector.
    """

    input_size: int = 640
    labels: Tuple[str, ...] = (DefectLabel.POTHOLE.value, DefectLabel.CRACK.value)
    num_candidates: int = 8400
    confidence_threshold: float = 0.55
    iou_threshold: float = 0.45
    per_class_iou_threshold: float = 0.25
    class_aware_nms: bool = True
    max_detections: int = 3
    min_area: float = 0.01
    max_area: float = 0.12
    min_dimension: float = 0.03
    max_dimension: float = 0.6
    min_aspect_ratio: float = 0.25
    max_aspect_ratio: float = 4.0
    # Raw box fields above this are taken as model-input pixels.
    pixel_scale_cutoff: float = 1.5
    min_frame_interval_s: float = 0.2
    frame_layout: str = FrameLayout.YUV420.value

    def __post_init__(self) -> None:
        if self.input_size < 32:
            raise ValueError("input_size must be >= 32")
        if not self.labels:
            raise ValueError("labels must not be empty")
        known = {label.value for label in DefectLabel}
        unknown = [name for name in self.labels if name not in known]
        if unknown:
            raise ValueError(f"Unknown labels: {unknown} (expected a subset of {sorted(known)})")
        if self.num_candidates < 1:
            raise ValueError("num_candidates must be >= 1")
        if not (0.0 <= self.confidence_threshold <= 1.0):
            raise ValueError("confidence_threshold must be within [0, 1]")
        if self.pixel_scale_cutoff <= 0:
            raise ValueError("pixel_scale_cutoff must be > 0")
        if self.min_frame_interval_s < 0:
            raise ValueError("min_frame_interval_s must be >= 0")
        if self.frame_layout not in {layout.value for layout in FrameLayout}:
            raise ValueError(f"Unknown frame_layout: {self.frame_layout!r}")
        # Threshold errors surface at construction time.
        _ = (self.geometry, self.nms)

    @property
    def num_classes(self) -> int:
        return len(self.labels)

    @property
    def values_per_candidate(self) -> int:
        return 4 + self.num_classes

    @property
    def label_table(self) -> Tuple[DefectLabel, ...]:
        return tuple(DefectLabel(name) for name in self.labels)

    @property
    def layout(self) -> FrameLayout:
        return FrameLayout(self.frame_layout)

    @property
    def geometry(self) -> GeometryLimits:
        return GeometryLimits(
            min_dimension=self.min_dimension,
            max_dimension=self.max_dimension,
            min_area=self.min_area,
            max_area=self.max_area,
            min_aspect_ratio=self.min_aspect_ratio,
            max_aspect_ratio=self.max_aspect_ratio,
        )

    @property
    def nms(self) -> NMSConfig:
        return NMSConfig(
            iou_threshold=self.iou_threshold,
            per_class_iou_threshold=self.per_class_iou_threshold,
            max_detections=self.max_detections,
            class_aware=self.class_aware_nms,
        )


_INT_KEYS = {"input_size", "num_candidates", "max_detections"}
_BOOL_KEYS = {"class_aware_nms"}
_STR_KEYS = {"frame_layout"}


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def load_detector_config(path: Path) -> DetectorConfig:
    """
    Load a JSON detector config. Keys that are left out keep their defaults.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detector config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detector config must be a JSON object")

    allowed = {f.name for f in fields(DetectorConfig)}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown detector config keys: {unknown}")

    values: Dict[str, Any] = {}
    for key in payload:
        if key == "labels":
            labels = payload[key]
            if not isinstance(labels, list) or not all(isinstance(item, str) for item in labels):
                raise ValueError("labels must be a list of strings")
            values[key] = tuple(labels)
        elif key in _INT_KEYS:
            values[key] = _require_int(payload, key)
        elif key in _BOOL_KEYS:
            if not isinstance(payload[key], bool):
                raise ValueError(f"{key} must be a boolean")
            values[key] = payload[key]
        elif key in _STR_KEYS:
            if not isinstance(payload[key], str):
                raise ValueError(f"{key} must be a string")
            values[key] = payload[key]
        else:
            values[key] = _require_number(payload, key)

    return DetectorConfig(**values)
