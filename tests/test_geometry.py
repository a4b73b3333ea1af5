import unittest
from datetime import datetime, timezone

from roadscan.geometry import GeometryLimits, filter_plausible, is_plausible
from roadscan.types import BoundingBox, DefectLabel, Detection


class TestGeometryFilter(unittest.TestCase):
    def setUp(self) -> None:
        self.limits = GeometryLimits()

    def test_accepts_typical_defect(self) -> None:
        self.assertTrue(is_plausible(BoundingBox(0.5, 0.5, 0.2, 0.2), self.limits))

    def test_rejects_tiny_box(self) -> None:
        self.assertFalse(is_plausible(BoundingBox(0.5, 0.5, 0.005, 0.005), self.limits))

    def test_rejects_oversized_dimension(self) -> None:
        self.assertFalse(is_plausible(BoundingBox(0.5, 0.5, 0.7, 0.1), self.limits))

    def test_rejects_area_out_of_range(self) -> None:
        # Each side fits but the box covers a quarter of the frame.
        self.assertFalse(is_plausible(BoundingBox(0.5, 0.5, 0.5, 0.5), self.limits))
        self.assertFalse(is_plausible(BoundingBox(0.5, 0.5, 0.05, 0.05), self.limits))

    def test_rejects_extreme_aspect_ratio(self) -> None:
        self.assertFalse(is_plausible(BoundingBox(0.5, 0.5, 0.05, 0.3), self.limits))
        self.assertFalse(is_plausible(BoundingBox(0.5, 0.5, 0.3, 0.05), self.limits))

    def test_zero_height_is_rejected(self) -> None:
        limits = GeometryLimits(min_dimension=0.0, min_area=0.0)
        self.assertFalse(is_plausible(BoundingBox(0.5, 0.5, 0.2, 0.0), limits))

    def test_bounds_are_inclusive(self) -> None:
        limits = GeometryLimits(min_dimension=0.1, max_dimension=0.4, min_area=0.02, max_area=0.04)
        self.assertTrue(is_plausible(BoundingBox(0.5, 0.5, 0.2, 0.1), limits))

    def test_filter_keeps_order(self) -> None:
        t0 = datetime(2026, 3, 1, tzinfo=timezone.utc)
        dets = [
            Detection(DefectLabel.CRACK, 0.9, BoundingBox(0.3, 0.3, 0.2, 0.2), t0),
            Detection(DefectLabel.CRACK, 0.8, BoundingBox(0.3, 0.3, 0.9, 0.9), t0),
            Detection(DefectLabel.POTHOLE, 0.7, BoundingBox(0.7, 0.7, 0.15, 0.2), t0),
        ]
        kept = filter_plausible(dets, self.limits)
        self.assertEqual([d.confidence for d in kept], [0.9, 0.7])

    def test_invalid_limits(self) -> None:
        with self.assertRaises(ValueError):
            GeometryLimits(min_area=0.2, max_area=0.1)
        with self.assertRaises(ValueError):
            GeometryLimits(min_aspect_ratio=0.0)


if __name__ == "__main__":
    unittest.main()
