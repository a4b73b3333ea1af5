import json
import tempfile
import unittest
from pathlib import Path

from roadscan.config import DetectorConfig, load_detector_config
from roadscan.types import DefectLabel, FrameLayout


class TestDetectorConfig(unittest.TestCase):
    def _write_config(self, payload) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "detector.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_defaults(self) -> None:
        cfg = DetectorConfig()
        self.assertEqual(cfg.values_per_candidate, 6)
        self.assertEqual(cfg.label_table, (DefectLabel.POTHOLE, DefectLabel.CRACK))
        self.assertEqual(cfg.layout, FrameLayout.YUV420)
        self.assertEqual(cfg.nms.max_detections, 3)
        self.assertEqual(cfg.geometry.max_area, 0.12)

    def test_load_ok(self) -> None:
        path = self._write_config(
            {
                "confidence_threshold": 0.4,
                "labels": ["crack", "pothole"],
                "num_candidates": 2100,
                "input_size": 320,
                "class_aware_nms": False,
                "frame_layout": "nv21",
            }
        )
        cfg = load_detector_config(path)
        self.assertEqual(cfg.confidence_threshold, 0.4)
        self.assertEqual(cfg.label_table, (DefectLabel.CRACK, DefectLabel.POTHOLE))
        self.assertEqual(cfg.num_candidates, 2100)
        self.assertFalse(cfg.nms.class_aware)
        self.assertEqual(cfg.layout, FrameLayout.NV21)
        # Untouched keys keep their defaults.
        self.assertEqual(cfg.max_detections, 3)

    def test_unknown_keys_rejected(self) -> None:
        path = self._write_config({"confidence_threshold": 0.5, "anchors": [1, 2]})
        with self.assertRaisesRegex(ValueError, "Unknown detector config keys"):
            load_detector_config(path)

    def test_type_errors_rejected(self) -> None:
        for payload in (
            {"num_candidates": 8400.5},
            {"confidence_threshold": "high"},
            {"confidence_threshold": True},
            {"class_aware_nms": 1},
            {"labels": "pothole"},
            {"frame_layout": 3},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(ValueError):
                    load_detector_config(self._write_config(payload))

    def test_invalid_values_rejected(self) -> None:
        for payload in (
            {"confidence_threshold": 1.5},
            {"labels": ["pothole", "manhole"]},
            {"labels": []},
            {"min_area": 0.5},
            {"max_detections": 0},
            {"frame_layout": "rgba"},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(ValueError):
                    load_detector_config(self._write_config(payload))

    def test_non_object_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_detector_config(self._write_config([1, 2, 3]))

    def test_bad_json_rejected(self) -> None:
        path = self._write_config({})
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_detector_config(path)

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_detector_config(Path(tempfile.gettempdir()) / "no-such-detector-config.json")


if __name__ == "__main__":
    unittest.main()
