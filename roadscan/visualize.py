from __future__ import annotations

from typing import Dict, Iterable, Tuple

import numpy as np

from .types import DefectLabel, Detection

# BGR, OpenCV order.
_LABEL_COLORS: Dict[DefectLabel, Tuple[int, int, int]] = {
    DefectLabel.POTHOLE: (56, 56, 255),
    DefectLabel.CRACK: (31, 178, 255),
}


def color_for_label(label: DefectLabel) -> Tuple[int, int, int]:
    return _LABEL_COLORS.get(label, (0, 255, 255))


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    show_score: bool = True,
    box_thickness: int = 2,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw boxes + labels on an OpenCV BGR image and return a copy.

    Boxes are normalized to the whole frame (the preprocessor stretches
    without padding), so they project directly onto the image size.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]

    for det in detections:
        px = det.box.to_pixels(w, h)
        x1, y1 = min(px.left, w - 1), min(px.top, h - 1)
        x2, y2 = min(px.right, w - 1), min(px.bottom, h - 1)

        color = color_for_label(det.label)
        cv2.rectangle(out, (x1, y1), (x2, y2), color, thickness=box_thickness)

        label = det.label.value
        if show_score:
            label = f"{label} {det.confidence:.2f}"

        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        # Place label above the box if possible, else inside.
        y_text_top = y1 - th - baseline
        if y_text_top < 0:
            y_text_top = y1

        x_text_right = min(x1 + tw, w - 1)
        y_text_bottom = min(y_text_top + th + baseline, h - 1)

        cv2.rectangle(out, (x1, y_text_top), (x_text_right, y_text_bottom), color, thickness=-1)
        cv2.putText(
            out,
            label,
            (x1, min(y_text_top + th, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (255, 255, 255),
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return out
