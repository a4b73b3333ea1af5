import math
import unittest
from datetime import datetime, timezone

import numpy as np

from roadscan.config import DetectorConfig
from roadscan.errors import TensorShapeError
from roadscan.postprocess import (
    CandidateMajor,
    ChannelMajor,
    TensorDecoder,
    filter_by_confidence,
    resolve_layout,
    sigmoid,
)
from roadscan.types import DefectLabel

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _synthetic_channel_major(index: int = 1234) -> np.ndarray:
    p = np.zeros((6, 8400), dtype=np.float32)
    p[4:, :] = -8.0
    # Pixel-scale box on a 640 input: (0.5, 0.375, 0.2, 0.1) normalized.
    p[0:4, index] = [320.0, 240.0, 128.0, 64.0]
    p[4:, index] = [-4.0, 3.0]
    return p


class TestResolveLayout(unittest.TestCase):
    def test_channel_major_with_batch_dim(self) -> None:
        layout = resolve_layout(np.zeros((1, 6, 8400), dtype=np.float32), 6, 8400)
        self.assertIsInstance(layout, ChannelMajor)
        self.assertEqual(layout.candidate_count, 8400)

    def test_candidate_major_with_extra_wrapping(self) -> None:
        layout = resolve_layout(np.zeros((1, 1, 8400, 6), dtype=np.float32), 6, 8400)
        self.assertIsInstance(layout, CandidateMajor)
        self.assertEqual(layout.candidate_count, 8400)

    def test_nested_lists(self) -> None:
        nested = [[[0.0] * 4 for _ in range(6)]]
        layout = resolve_layout(nested, 6, 4)
        self.assertIsInstance(layout, ChannelMajor)
        self.assertEqual(layout.rows().shape, (4, 6))

    def test_more_candidates_than_expected_are_kept(self) -> None:
        layout = resolve_layout(np.zeros((9000, 6)), 6, 8400)
        self.assertIsInstance(layout, CandidateMajor)
        self.assertEqual(layout.candidate_count, 9000)

    def test_batch_of_two_is_rejected(self) -> None:
        with self.assertRaises(TensorShapeError):
            resolve_layout(np.zeros((2, 6, 8400)), 6, 8400)

    def test_wrong_value_count_is_rejected(self) -> None:
        with self.assertRaises(TensorShapeError):
            resolve_layout(np.zeros((1, 5, 8400)), 6, 8400)

    def test_too_few_candidates_is_rejected(self) -> None:
        with self.assertRaises(TensorShapeError):
            resolve_layout(np.zeros((6, 100)), 6, 8400)

    def test_scalar_and_empty_are_rejected(self) -> None:
        with self.assertRaises(TensorShapeError):
            resolve_layout(np.float32(1.0), 6, 8400)
        with self.assertRaises(TensorShapeError):
            resolve_layout([], 6, 8400)


class TestTensorDecoder(unittest.TestCase):
    def setUp(self) -> None:
        self.decoder = TensorDecoder(DetectorConfig())

    def test_recovers_manufactured_candidate(self) -> None:
        detections = self.decoder.decode(_synthetic_channel_major(), T0)
        self.assertEqual(len(detections), 8400)

        best = max(detections, key=lambda d: d.confidence)
        self.assertEqual(best.label, DefectLabel.CRACK)
        self.assertAlmostEqual(best.confidence, 1.0 / (1.0 + math.exp(-3.0)), delta=1e-4)
        self.assertAlmostEqual(best.box.x, 0.5, delta=1e-4)
        self.assertAlmostEqual(best.box.y, 0.375, delta=1e-4)
        self.assertAlmostEqual(best.box.width, 0.2, delta=1e-4)
        self.assertAlmostEqual(best.box.height, 0.1, delta=1e-4)
        self.assertEqual(best.observed_at, T0)

    def test_candidate_major_matches_channel_major(self) -> None:
        channel_major = _synthetic_channel_major()
        candidate_major = np.ascontiguousarray(channel_major.T)[None, ...]  # (1, 8400, 6)

        a = self.decoder.decode(channel_major[None, ...], T0)
        b = self.decoder.decode(candidate_major, T0)
        self.assertEqual(a, b)

    def test_normalized_boxes_are_not_rescaled(self) -> None:
        p = _synthetic_channel_major()
        p[0:4, 7] = [0.25, 0.75, 0.1, 0.3]
        batch = self.decoder.decode_batch(p)
        self.assertTrue(np.allclose(batch.boxes[7], [0.25, 0.75, 0.1, 0.3]))

    def test_pixel_boxes_are_clamped(self) -> None:
        p = _synthetic_channel_major()
        p[0:4, 3] = [700.0, 320.0, 64.0, 64.0]
        batch = self.decoder.decode_batch(p)
        self.assertEqual(float(batch.boxes[3, 0]), 1.0)
        self.assertAlmostEqual(float(batch.boxes[3, 2]), 0.1)

    def test_scores_are_always_activated(self) -> None:
        # An export that already emits probabilities is activated a second time.
        p = _synthetic_channel_major()
        p[4:, 5] = [0.9, 0.1]
        batch = self.decoder.decode_batch(p)
        self.assertAlmostEqual(float(batch.scores[5]), 1.0 / (1.0 + math.exp(-0.9)), places=6)
        self.assertEqual(int(batch.class_ids[5]), 0)

    def test_tied_scores_pick_first_class(self) -> None:
        p = _synthetic_channel_major()
        p[4:, 9] = [2.0, 2.0]
        batch = self.decoder.decode_batch(p)
        self.assertEqual(int(batch.class_ids[9]), 0)

    def test_non_finite_candidate_is_skipped(self) -> None:
        p = _synthetic_channel_major()
        p[1, 10] = np.nan
        batch = self.decoder.decode_batch(p)
        self.assertEqual(len(batch), 8399)
        self.assertEqual(batch.skipped, 1)

    def test_malformed_nested_candidate_is_skipped(self) -> None:
        decoder = TensorDecoder(DetectorConfig(num_candidates=3))
        raw = [
            [
                [320.0, 320.0, 128.0, 128.0, 4.0, -4.0],
                [100.0, 100.0],
                [0.5, 0.5, 0.2, 0.2, -4.0, "bad"],
                [0.1, 0.2, 0.1, 0.1, -3.0, 5.0],
            ]
        ]
        detections = decoder.decode(raw, T0)
        self.assertEqual([d.label for d in detections], [DefectLabel.POTHOLE, DefectLabel.CRACK])
        self.assertAlmostEqual(detections[0].box.width, 0.2)
        self.assertAlmostEqual(detections[1].box.x, 0.1)

    def test_malformed_first_candidate_does_not_drop_frame(self) -> None:
        decoder = TensorDecoder(DetectorConfig(num_candidates=3))
        raw = [
            [
                [100.0, 100.0],
                [320.0, 320.0, 128.0, 128.0, 4.0, -4.0],
                [0.5, 0.5, 0.2, 0.2, -4.0, 1.0],
                [0.1, 0.2, 0.1, 0.1, -3.0, 5.0],
            ]
        ]
        batch = decoder.decode_batch(raw)
        self.assertEqual(len(batch), 3)
        self.assertEqual(batch.skipped, 1)
        self.assertEqual(batch.class_ids.tolist(), [0, 1, 1])

    def test_short_first_channel_skips_only_missing_candidates(self) -> None:
        decoder = TensorDecoder(DetectorConfig(num_candidates=3))
        channels = [
            [0.5, 0.25],
            [0.5, 0.25, 0.75, 0.5],
            [0.2, 0.1, 0.1, 0.1],
            [0.2, 0.1, 0.1, 0.1],
            [3.0, -3.0, 0.0, 0.0],
            [-3.0, 3.0, 0.0, 0.0],
        ]
        layout = resolve_layout([channels], 6, 3)
        self.assertIsInstance(layout, ChannelMajor)

        detections = decoder.decode([channels], T0)
        self.assertEqual([d.label for d in detections], [DefectLabel.POTHOLE, DefectLabel.CRACK])
        self.assertAlmostEqual(detections[1].box.x, 0.25)

    def test_confidence_filter_runs_after_decoding(self) -> None:
        detections = self.decoder.decode(_synthetic_channel_major(), T0)
        kept = filter_by_confidence(detections, 0.55)
        self.assertEqual(len(kept), 1)
        self.assertEqual(len(self.decoder.decode_batch(_synthetic_channel_major()).above(0.55)), 1)


class TestSigmoid(unittest.TestCase):
    def test_extremes_are_stable(self) -> None:
        with np.errstate(over="raise"):
            out = sigmoid([-1000.0, 0.0, 1000.0])
        self.assertTrue(np.allclose(out, [0.0, 0.5, 1.0]))


if __name__ == "__main__":
    unittest.main()
