import math
import unittest
from datetime import datetime, timezone

import numpy as np

from roadscan.types import BoundingBox, DefectLabel, Detection, FrameBuffer, FrameLayout

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestBoundingBox(unittest.TestCase):
    def test_rejects_out_of_range_fields(self) -> None:
        with self.assertRaises(ValueError):
            BoundingBox(1.2, 0.5, 0.1, 0.1)
        with self.assertRaises(ValueError):
            BoundingBox(0.5, 0.5, float("nan"), 0.1)

    def test_zero_height_has_infinite_aspect_ratio(self) -> None:
        self.assertEqual(BoundingBox(0.5, 0.5, 0.2, 0.0).aspect_ratio, math.inf)

    def test_to_pixels_rounds_then_derives_corners(self) -> None:
        px = BoundingBox(0.5, 0.375, 0.2, 0.1).to_pixels(640, 480)
        self.assertEqual((px.x, px.y, px.width, px.height), (320, 180, 128, 48))
        self.assertEqual((px.left, px.top, px.right, px.bottom), (256, 156, 384, 204))

    def test_to_pixels_clamps_to_image(self) -> None:
        px = BoundingBox(0.02, 0.98, 0.1, 0.1).to_pixels(100, 100)
        self.assertEqual(px.left, 0)
        self.assertEqual(px.bottom, 100)
        self.assertEqual(px.right, 7)

    def test_to_pixels_rounds_half_away_from_zero(self) -> None:
        self.assertEqual(BoundingBox(0.5, 0.5, 0.2, 0.2).to_pixels(101, 101).x, 51)

    def test_to_pixels_rejects_empty_image(self) -> None:
        with self.assertRaises(ValueError):
            BoundingBox(0.5, 0.5, 0.2, 0.2).to_pixels(0, 480)


class TestDetection(unittest.TestCase):
    def setUp(self) -> None:
        self.det = Detection(DefectLabel.POTHOLE, 0.8, BoundingBox(0.5, 0.5, 0.2, 0.2), T0)

    def test_rejects_bad_confidence(self) -> None:
        with self.assertRaises(ValueError):
            self.det.replace(confidence=1.5)

    def test_rejects_unknown_label(self) -> None:
        with self.assertRaises(ValueError):
            Detection("manhole", 0.5, BoundingBox(0.5, 0.5, 0.2, 0.2), T0)  # type: ignore[arg-type]

    def test_replace_leaves_original_untouched(self) -> None:
        corrected = self.det.replace(label=DefectLabel.CRACK)
        self.assertEqual(corrected.label, DefectLabel.CRACK)
        self.assertEqual(self.det.label, DefectLabel.POTHOLE)

    def test_as_dict(self) -> None:
        d = self.det.as_dict()
        self.assertEqual(d["label"], "pothole")
        self.assertEqual(d["box"]["width"], 0.2)
        self.assertEqual(d["observed_at"], "2026-03-01T12:00:00+00:00")


class TestFrameBuffer(unittest.TestCase):
    def test_from_image(self) -> None:
        frame = FrameBuffer.from_image(np.zeros((4, 6, 3), dtype=np.uint8))
        self.assertEqual((frame.width, frame.height, frame.layout), (6, 4, FrameLayout.BGR))

    def test_from_image_rejects_planar_layout(self) -> None:
        with self.assertRaises(ValueError):
            FrameBuffer.from_image(np.zeros((4, 6, 3), dtype=np.uint8), FrameLayout.NV21)

    def test_from_image_rejects_grayscale(self) -> None:
        with self.assertRaises(ValueError):
            FrameBuffer.from_image(np.zeros((4, 6), dtype=np.uint8))


if __name__ == "__main__":
    unittest.main()
