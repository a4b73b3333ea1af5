from __future__ import annotations

import argparse
import dataclasses
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List

import numpy as np

from roadscan import DetectorConfig, DetectionPipeline, FramePreprocessor, FrameBuffer, FrameLayout


@dataclass(frozen=True)
class TimingSummary:
    n: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float

    @classmethod
    def from_seconds(cls, samples_s: List[float]) -> "TimingSummary":
        if not samples_s:
            return cls(0, 0.0, 0.0, 0.0, 0.0)
        ms = np.asarray(samples_s, dtype=np.float64) * 1000.0
        p50, p90, p95 = np.percentile(ms, [50.0, 90.0, 95.0])
        return cls(int(ms.size), float(ms.mean()), float(p50), float(p90), float(p95))

    def line(self, label: str) -> str:
        return (
            f"{label}: n={self.n} mean={self.mean_ms:.3f}ms p50={self.p50_ms:.3f}ms "
            f"p90={self.p90_ms:.3f}ms p95={self.p95_ms:.3f}ms"
        )


def _synthetic_output(cfg: DetectorConfig, positives: int, rng: np.random.Generator) -> np.ndarray:
    """
    Channel-major [1, 4 + C, N] tensor in model-input pixels with mostly
    low logits and `positives` confident, clustered candidates.
    """

    n = cfg.num_candidates
    out = np.empty((cfg.values_per_candidate, n), dtype=np.float32)
    s = float(cfg.input_size)
    out[0:2, :] = rng.uniform(0.0, s, size=(2, n))
    out[2:4, :] = rng.uniform(5.0, 0.4 * s, size=(2, n))
    out[4:, :] = rng.normal(-6.0, 1.5, size=(cfg.num_classes, n))

    hot = rng.choice(n, size=min(positives, n), replace=False)
    centre = rng.uniform(0.3 * s, 0.7 * s, size=(2,))
    out[0:2, hot] = centre[:, None] + rng.normal(0.0, 6.0, size=(2, hot.size))
    out[2:4, hot] = 0.22 * s + rng.normal(0.0, 4.0, size=(2, hot.size))
    out[4, hot] = rng.uniform(1.0, 5.0, size=hot.size)
    return out[None, ...]


class _NullEngine:
    def load_model(self, model_path) -> None:
        pass

    def run(self, tensor):
        raise RuntimeError("benchmark drives process_output directly")

    def close(self) -> None:
        pass


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Benchmark preprocess and post-process (decode + filter + NMS) on synthetic data."
    )
    parser.add_argument("--frame-size", default="1280x720", help="Synthetic camera frame size WxH.")
    parser.add_argument("--positives", type=int, default=40, help="Confident candidates per synthetic tensor.")
    parser.add_argument("--global-nms", action="store_true", help="Use class-agnostic NMS instead of per-class.")
    parser.add_argument("--warmup", type=int, default=10, help="Warmup iterations to run but not record.")
    parser.add_argument("--repeats", type=int, default=200, help="Recorded iterations.")
    args = parser.parse_args()

    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")
    if args.repeats < 1:
        raise ValueError("--repeats must be >= 1")
    try:
        width, height = (int(v) for v in str(args.frame_size).lower().split("x"))
    except ValueError as exc:
        raise ValueError("--frame-size must look like 1280x720") from exc

    cfg = dataclasses.replace(DetectorConfig(), class_aware_nms=not bool(args.global_nms))
    pipeline = DetectionPipeline(_NullEngine(), cfg)
    preprocessor = FramePreprocessor(cfg.input_size)

    rng = np.random.default_rng(0)
    frame_bytes = rng.integers(0, 256, size=width * height * 3 // 2, dtype=np.uint8).tobytes()
    frame = FrameBuffer(frame_bytes, width, height, FrameLayout.NV21)
    outputs = [_synthetic_output(cfg, int(args.positives), rng) for _ in range(8)]
    observed_at = datetime.now(timezone.utc)

    t_pre: List[float] = []
    t_post: List[float] = []
    kept_total = 0

    for i in range(int(args.warmup) + int(args.repeats)):
        t0 = time.perf_counter()
        preprocessor.process(frame)
        t1 = time.perf_counter()
        kept = pipeline.process_output(outputs[i % len(outputs)], observed_at)
        t2 = time.perf_counter()

        if i < int(args.warmup):
            continue
        t_pre.append(t1 - t0)
        t_post.append(t2 - t1)
        kept_total += len(kept)

    print(TimingSummary.from_seconds(t_pre).line("preprocess_nv21"))
    print(TimingSummary.from_seconds(t_post).line("postprocess_" + ("global" if args.global_nms else "per_class")))
    print(f"samples_recorded={len(t_post)} mean_kept={kept_total / len(t_post):.2f} warmup={args.warmup}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
