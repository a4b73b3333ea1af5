from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .types import BoundingBox, Detection, DefectLabel


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    per_class_iou_threshold: float = 0.25
    max_detections: int = 3
    # If False, all labels share one partition and `iou_threshold` applies.
    class_aware: bool = True

    def __post_init__(self) -> None:
        if not (0.0 <= self.iou_threshold <= 1.0):
            raise ValueError("iou_threshold must be within [0, 1]")
        if not (0.0 <= self.per_class_iou_threshold <= 1.0):
            raise ValueError("per_class_iou_threshold must be within [0, 1]")
        if self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")


def iou(a: BoundingBox, b: BoundingBox) -> float:
    ax1, ay1, ax2, ay2 = a.as_xyxy()
    bx1, by1, bx2, by2 = b.as_xyxy()

    inter_w = max(0.0, min(ax2, bx2) - max(ax1, bx1))
    inter_h = max(0.0, min(ay2, by2) - max(ay1, by1))
    inter = inter_w * inter_h

    union = (ax2 - ax1) * (ay2 - ay1) + (bx2 - bx1) * (by2 - by1) - inter
    if union <= 0.0:
        return 0.0
    return inter / union


def nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    iou_threshold: float,
    max_detections: Optional[int] = None,
) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of boxes to keep, highest score first.

    Equal scores are visited in ascending index order, so the result only
    depends on the input order.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]
    areas = (x2 - x1) * (y2 - y1)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    while order.size > 0:
        if max_detections is not None and len(keep) >= max_detections:
            break
        i = order[0]
        keep.append(int(i))

        rest = order[1:]
        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[rest] - inter
        safe_union = np.where(union > 0.0, union, 1.0)
        overlap = np.where(union > 0.0, inter / safe_union, 0.0)

        order = rest[overlap <= iou_threshold]

    return np.array(keep, dtype=np.int64)


def _as_arrays(detections: Sequence[Detection]):
    boxes = np.array([det.box.as_xyxy() for det in detections], dtype=np.float64).reshape(-1, 4)
    scores = np.array([det.confidence for det in detections], dtype=np.float64)
    return boxes, scores


def non_max_suppression(detections: Sequence[Detection], cfg: NMSConfig) -> List[Detection]:
    """
    Remove overlapping duplicates, keeping at most `cfg.max_detections`.

    Class-aware mode sweeps each label separately with the per-class
    threshold; otherwise one sweep covers every label with the global one.
    """

    if not detections:
        return []

    dets = list(detections)
    boxes, scores = _as_arrays(dets)

    if cfg.class_aware:
        by_label: Dict[DefectLabel, List[int]] = {}
        for idx, det in enumerate(dets):
            by_label.setdefault(det.label, []).append(idx)
        partitions = list(by_label.values())
        threshold = cfg.per_class_iou_threshold
    else:
        partitions = [list(range(len(dets)))]
        threshold = cfg.iou_threshold

    kept: List[int] = []
    for idx in partitions:
        members = np.array(idx, dtype=np.int64)
        keep_local = nms(boxes[members], scores[members], threshold)
        kept.extend(members[keep_local].tolist())

    kept.sort(key=lambda i: (-scores[i], i))
    return [dets[i] for i in kept[: cfg.max_detections]]
