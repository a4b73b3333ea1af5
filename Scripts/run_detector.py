import argparse
import dataclasses
import json
import logging
import sys
import time

import cv2
from tqdm import tqdm

from roadscan import (
    DetectorConfig,
    FrameBuffer,
    FrameLayout,
    ModelError,
    draw_detections,
    load_detector_config,
    load_pipeline,
)

logger = logging.getLogger("run_detector")


def _print_detections(frame_idx: int, detections) -> None:
    for det in detections:
        print(json.dumps({"frame": frame_idx, **det.as_dict()}))


def main() -> int:
    parser = argparse.ArgumentParser(description="Detect road-surface defects and visualize boxes + labels.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index (e.g., 0).")
    parser.add_argument("--model", default="models/road_defects.onnx", help="Path to a model (.onnx/.torchscript).")
    parser.add_argument("--metadata", default=None, help="Optional metadata.yaml with the class names mapping.")
    parser.add_argument("--config", default=None, help="Optional detector config JSON.")
    parser.add_argument("--conf", type=float, default=None, help="Override the confidence threshold.")
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--show", action="store_true", help="Show a window with visualized detections.")
    parser.add_argument("--out", default=None, help="Optional output path (image or video) to save the visualization.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N frames read (0 = no limit).")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING...).")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar on stderr for video/webcam input.")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")

    cfg = load_detector_config(args.config) if args.config else DetectorConfig()
    overrides = {"frame_layout": FrameLayout.BGR.value}
    if args.conf is not None:
        overrides["confidence_threshold"] = float(args.conf)
    if args.image is not None:
        # A single still image is never throttled.
        overrides["min_frame_interval_s"] = 0.0
    cfg = dataclasses.replace(cfg, **overrides)

    onnx_providers = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    pipeline = load_pipeline(
        model_path=args.model,
        cfg=cfg,
        backend=args.backend,
        metadata_path=args.metadata,
        onnx_providers=onnx_providers,
    )

    try:
        if args.image is not None:
            img = cv2.imread(args.image)
            if img is None:
                raise FileNotFoundError(f"Could not read image at path: {args.image}")

            detections = pipeline.submit(FrameBuffer.from_image(img, FrameLayout.BGR)) or []
            vis = draw_detections(img, detections, show_score=True)
            if args.out:
                ok = cv2.imwrite(args.out, vis)
                if not ok:
                    raise RuntimeError(f"Failed to write output image: {args.out}")

            if args.show:
                cv2.imshow("detections", vis)
                cv2.waitKey(0)
                cv2.destroyAllWindows()

            _print_detections(0, detections)
            return 0

        return _run_stream(args, pipeline)
    finally:
        pipeline.dispose()


def _run_stream(args: argparse.Namespace, pipeline) -> int:
    if args.video is not None:
        cap = cv2.VideoCapture(args.video)
        if not cap.isOpened():
            raise FileNotFoundError(f"Could not open video: {args.video}")
    else:
        cap = cv2.VideoCapture(int(args.webcam))
        if not cap.isOpened():
            raise RuntimeError(f"Could not open webcam index: {args.webcam}")

    writer = None
    frame_idx = 0
    last_detections = []

    total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0) if args.video is not None else 0
    if args.max_frames:
        total = min(total, args.max_frames) if total > 0 else args.max_frames
    pbar = tqdm(total=total or None, unit="frame", desc="roadscan", disable=not args.progress)

    try:
        while True:
            ok, frame = cap.read()
            if not ok or frame is None:
                break
            frame_idx += 1
            pbar.update(1)

            try:
                detections = pipeline.submit(FrameBuffer.from_image(frame, FrameLayout.BGR))
            except ModelError as exc:
                logger.error("Pipeline entered %s: %s", pipeline.state.value, exc)
                return 1
            if detections is not None:
                last_detections = detections
                _print_detections(frame_idx, detections)
                pbar.set_postfix(kept=len(detections), state=pipeline.state.value, refresh=False)

            # Dropped frames keep showing the latest accepted result.
            vis = draw_detections(frame, last_detections, show_score=True)

            if args.out and writer is None:
                fps = cap.get(cv2.CAP_PROP_FPS)
                if fps is None or fps <= 0:
                    fps = 30.0
                h, w = vis.shape[:2]
                fourcc = cv2.VideoWriter_fourcc(*"mp4v")
                writer = cv2.VideoWriter(args.out, fourcc, fps, (w, h))
                if not writer.isOpened():
                    raise RuntimeError(f"Failed to open video writer: {args.out}")

            if writer is not None:
                writer.write(vis)

            if args.show:
                cv2.imshow("detections", vis)
                key = cv2.waitKey(1) & 0xFF
                if key in (27, ord("q")):
                    break
            elif args.video is not None:
                # Pace file playback so the throttle behaves like a live camera.
                time.sleep(1.0 / 30.0)

            if args.max_frames and frame_idx >= args.max_frames:
                break

    finally:
        pbar.close()
        cap.release()
        if writer is not None:
            writer.release()
        if args.show:
            cv2.destroyAllWindows()

    stats = pipeline.stats
    logger.info(
        "frames=%d processed=%d dropped=%d fps=%.1f last_latency=%.1fms",
        frame_idx,
        stats.processed_frames,
        stats.dropped_frames,
        stats.fps,
        stats.last_latency_ms,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
