from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import DetectorConfig
from .errors import TensorShapeError
from .types import BoundingBox, DefectLabel, Detection

logger = logging.getLogger(__name__)


def sigmoid(x: Any) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    out = np.empty_like(x)
    pos = x >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-x[pos]))
    ex = np.exp(x[~pos])
    out[~pos] = ex / (1.0 + ex)
    return out


def _as_matrix(data: Any) -> Optional[np.ndarray]:
    try:
        arr = np.asarray(data, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if arr.ndim != 2:
        return None
    return arr


@dataclass(frozen=True)
class ChannelMajor:
    """
    [V, N] layout: one row per value channel, one column per candidate.
    """

    data: Any
    values_per_candidate: int
    candidate_count: int

    def rows(self) -> np.ndarray:
        v, n = self.values_per_candidate, self.candidate_count
        arr = _as_matrix(self.data)
        if arr is not None:
            return np.ascontiguousarray(arr[:v, :n].T)

        # Irregular nested data: gather candidate by candidate.
        out = np.full((n, v), np.nan, dtype=np.float64)
        channels = [self.data[c] for c in range(v)]
        for i in range(n):
            try:
                out[i] = [float(channel[i]) for channel in channels]
            except (IndexError, TypeError, ValueError):
                continue
        return out


@dataclass(frozen=True)
class CandidateMajor:
    """
    [N, V] layout: one row per candidate.
    """

    data: Any
    values_per_candidate: int
    candidate_count: int

    def rows(self) -> np.ndarray:
        v, n = self.values_per_candidate, self.candidate_count
        arr = _as_matrix(self.data)
        if arr is not None:
            return np.ascontiguousarray(arr[:n, :v])

        out = np.full((n, v), np.nan, dtype=np.float64)
        for i in range(n):
            try:
                row = self.data[i]
                if len(row) < v:
                    continue
                out[i] = [float(row[c]) for c in range(v)]
            except (IndexError, TypeError, ValueError):
                continue
        return out


TensorLayout = Union[ChannelMajor, CandidateMajor]


def _outer_dims(obj: Any) -> Optional[Tuple[int, Optional[int]]]:
    if isinstance(obj, np.ndarray):
        if obj.ndim == 0:
            return None
        if obj.ndim == 1:
            return obj.shape[0], None
        return obj.shape[0], obj.shape[1]

    if isinstance(obj, (str, bytes)):
        return None
    try:
        rows = len(obj)
    except TypeError:
        return None
    if rows == 0:
        return 0, None

    # One malformed slice must not decide the width of the whole level.
    widths: Counter = Counter()
    for item in obj:
        if isinstance(item, (str, bytes)):
            continue
        try:
            widths[len(item)] += 1
        except TypeError:
            continue
    if not widths:
        return rows, None
    return rows, widths.most_common(1)[0][0]


def _describe_shape(raw: Any) -> str:
    try:
        return str(tuple(np.shape(raw)))
    except (TypeError, ValueError):
        return "<irregular>"


def resolve_layout(raw: Any, values_per_candidate: int, num_candidates: int) -> TensorLayout:
    """
    Peel length-1 outer dimensions until the tensor is either [V, >=N]
    (channel-major) or [>=N, V] (candidate-major).
    """

    v, n = values_per_candidate, num_candidates
    current = raw
    while True:
        dims = _outer_dims(current)
        if dims is None:
            break
        rows, cols = dims
        if cols is not None:
            if rows == v and cols >= n:
                return ChannelMajor(current, v, cols)
            if rows >= n and cols == v:
                return CandidateMajor(current, v, rows)
        if rows != 1:
            break
        current = current[0]

    raise TensorShapeError(
        f"Unsupported output tensor shape {_describe_shape(raw)}; expected [{v}, >={n}] or [>={n}, {v}]"
    )


@dataclass(frozen=True)
class CandidateBatch:
    """
    Decoded candidates as parallel arrays: centre-form normalized boxes (K, 4),
    activated confidences (K,) and class indices (K,).
    """

    boxes: np.ndarray
    scores: np.ndarray
    class_ids: np.ndarray
    skipped: int = 0

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def select(self, mask: np.ndarray) -> "CandidateBatch":
        return CandidateBatch(self.boxes[mask], self.scores[mask], self.class_ids[mask], self.skipped)

    def above(self, threshold: float) -> "CandidateBatch":
        return self.select(self.scores >= threshold)

    def to_detections(self, label_table: Sequence[DefectLabel], observed_at: datetime) -> List[Detection]:
        return [
            Detection(
                label=label_table[int(cls_id)],
                confidence=float(score),
                box=BoundingBox(x=float(cx), y=float(cy), width=float(w), height=float(h)),
                observed_at=observed_at,
            )
            for (cx, cy, w, h), score, cls_id in zip(self.boxes, self.scores, self.class_ids)
        ]


class TensorDecoder:
    """
    Turns one raw model output into candidates, before any filtering.

    Each candidate carries 4 box fields (cx, cy, w, h) followed by one score per
    class. Boxes may come in model-input pixels or already normalized; class
    scores always go through a sigmoid because exports differ on whether they
    emit logits or probabilities.
    """

    def __init__(self, cfg: DetectorConfig):
        self.cfg = cfg
        self.label_table = cfg.label_table

    def decode_batch(self, raw: Any) -> CandidateBatch:
        cfg = self.cfg
        layout = resolve_layout(raw, cfg.values_per_candidate, cfg.num_candidates)
        rows = layout.rows()

        valid = np.isfinite(rows).all(axis=1)
        skipped = int(rows.shape[0] - np.count_nonzero(valid))
        if skipped:
            logger.debug("Skipped %d malformed candidates", skipped)
        rows = rows[valid]

        boxes = rows[:, :4]
        pixel_scale = boxes.max(axis=1, initial=-np.inf) > cfg.pixel_scale_cutoff
        boxes = np.where(pixel_scale[:, None], boxes / float(cfg.input_size), boxes)
        boxes = np.clip(boxes, 0.0, 1.0)

        class_scores = sigmoid(rows[:, 4:])
        class_ids = np.argmax(class_scores, axis=1)
        scores = class_scores[np.arange(class_scores.shape[0]), class_ids]

        logger.debug(
            "Decoded %s layout: candidates=%d max_score=%.3f skipped=%d",
            type(layout).__name__,
            scores.shape[0],
            float(scores.max()) if scores.size else 0.0,
            skipped,
        )
        return CandidateBatch(boxes=boxes, scores=scores, class_ids=class_ids, skipped=skipped)

    def decode(self, raw: Any, observed_at: datetime) -> List[Detection]:
        return self.decode_batch(raw).to_detections(self.label_table, observed_at)


def filter_by_confidence(detections: Iterable[Detection], threshold: float) -> List[Detection]:
    return [det for det in detections if det.confidence >= threshold]
