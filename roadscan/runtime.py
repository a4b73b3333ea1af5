from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Union

from .backends import InferenceEngine, create_engine
from .config import DetectorConfig
from .errors import ModelError
from .geometry import filter_plausible
from .governor import InferenceGovernor, InferenceResult
from .metadata import label_table_from_names, load_class_names
from .nms import non_max_suppression
from .postprocess import TensorDecoder
from .preprocess import FramePreprocessor
from .types import Detection, FrameBuffer, FrameData, FrameLayout, PipelineState

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


_ROOT_MARKERS = ("pyproject.toml", ".git", "models")


def find_project_root(start: Optional[PathLike] = None, markers: Sequence[str] = _ROOT_MARKERS) -> Path:
    """
    Nearest directory at or above `start` (default: cwd) holding one of `markers`.

    Falls back to `start` itself when no ancestor matches.
    """

    here = Path(start).resolve() if start is not None else Path.cwd().resolve()
    if here.is_file():
        here = here.parent
    return next((d for d in (here, *here.parents) if any((d / m).exists() for m in markers)), here)


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Model and metadata paths: absolute ones pass through, relative ones are
    joined onto `root`, or onto `find_project_root()` for "auto" / None.
    """

    p = Path(path)
    if p.is_absolute():
        return p
    base = find_project_root() if root in ("auto", None) else Path(root).resolve()
    return (base / p).resolve()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PipelineStats:
    processed_frames: int
    dropped_frames: int
    last_latency_ms: float
    fps: float


class DetectionPipeline:
    """
    Frame -> preprocess -> inference -> decode -> confidence filter ->
    geometric filter -> NMS, with admission control around the model.

    `submit_frame` never blocks on an earlier frame: it returns None when the
    frame was dropped (busy, throttled or not ready) and a list otherwise,
    empty for frames that could not be processed.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        cfg: DetectorConfig = DetectorConfig(),
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utc_now,
    ):
        self.cfg = cfg
        self.engine = engine
        self.governor = InferenceGovernor(engine, min_interval_s=cfg.min_frame_interval_s, clock=clock)
        self.preprocessor = FramePreprocessor(cfg.input_size, reuse_buffer=True)
        self.decoder = TensorDecoder(cfg)
        self.geometry = cfg.geometry
        self.nms_cfg = cfg.nms
        self._clock = clock
        self._now = now
        self.last_result: Optional[InferenceResult[List[Detection]]] = None
        self._processed = 0
        self._first_processed_at: Optional[float] = None
        # Guards last_result and the frame counters.
        self._stats_lock = threading.Lock()

    @property
    def state(self) -> PipelineState:
        return self.governor.state

    @property
    def last_error(self) -> Optional[ModelError]:
        return self.governor.last_error

    @property
    def stats(self) -> PipelineStats:
        gov = self.governor
        with self._stats_lock:
            processed = self._processed
            first_at = self._first_processed_at
            last = self.last_result
        fps = 0.0
        if first_at is not None and processed > 1:
            elapsed = self._clock() - first_at
            if elapsed > 0:
                fps = (processed - 1) / elapsed
        if fps == 0.0 and last is not None and last.latency_s > 0:
            fps = 1.0 / last.latency_s
        return PipelineStats(
            processed_frames=processed,
            dropped_frames=gov.dropped_busy + gov.dropped_throttled,
            last_latency_ms=last.latency_ms if last is not None else 0.0,
            fps=fps,
        )

    def load_model(self, model_path: PathLike) -> bool:
        return self.governor.load_model(model_path)

    def submit_frame(
        self,
        data: FrameData,
        width: int,
        height: int,
        layout: Optional[FrameLayout] = None,
    ) -> Optional[List[Detection]]:
        frame = FrameBuffer(data=data, width=width, height=height, layout=layout or self.cfg.layout)
        return self.submit(frame)

    def submit(self, frame: FrameBuffer) -> Optional[List[Detection]]:
        result = self.governor.run(lambda engine: self._process(engine, frame))
        if result is None:
            logger.debug("Frame dropped (state=%s)", self.state.value)
            return None

        with self._stats_lock:
            self.last_result = result
            if self._first_processed_at is None:
                self._first_processed_at = self._clock()
            self._processed += 1
        return list(result.value) if result.value is not None else []

    def _process(self, engine: InferenceEngine, frame: FrameBuffer) -> List[Detection]:
        observed_at = self._now()
        tensor = self.preprocessor.process(frame)
        raw = engine.run(tensor)
        return self.process_output(raw, observed_at)

    def process_output(self, raw: Any, observed_at: datetime) -> List[Detection]:
        cfg = self.cfg
        batch = self.decoder.decode_batch(raw)
        confident = batch.above(cfg.confidence_threshold)
        detections = confident.to_detections(self.decoder.label_table, observed_at)
        plausible = filter_plausible(detections, self.geometry)
        final = non_max_suppression(plausible, self.nms_cfg)
        logger.debug(
            "Post-process: candidates=%d above_threshold=%d plausible=%d kept=%d",
            len(batch),
            len(confident),
            len(plausible),
            len(final),
        )
        return final

    def dispose(self) -> None:
        self.governor.dispose()


def load_pipeline(
    model_path: PathLike,
    *,
    cfg: Optional[DetectorConfig] = None,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    metadata_path: Optional[PathLike] = None,
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: Optional[str] = None,
    onnx_output_name: Optional[str] = None,
    torch_device: str = "cpu",
    torch_half: bool = False,
    torch_output_index: int = 0,
) -> DetectionPipeline:
    """
    Create a pipeline for a model on disk and load it.

    Typical usage:
        pipe = load_pipeline("models/road_defects.onnx")  # resolves from project root by default

    Args:
        model_path: path to the model file; relative paths resolve against project root by default
        backend: "onnxruntime" / "torchscript", or None to infer from extension
        metadata_path: optional `metadata.yaml` whose `names` fix the label order

    Raises:
        ModelError: the model could not be loaded.
    """

    cfg = cfg or DetectorConfig()
    resolved = resolve_path(model_path, root=root)

    if metadata_path is not None:
        names = load_class_names(str(resolve_path(metadata_path, root=root)))
        labels = label_table_from_names(names)
        cfg = dataclasses.replace(cfg, labels=tuple(label.value for label in labels))

    engine = create_engine(
        resolved,
        backend,
        onnx_providers=onnx_providers,
        onnx_input_name=onnx_input_name,
        onnx_output_name=onnx_output_name,
        torch_device=torch_device,
        torch_half=torch_half,
        torch_output_index=torch_output_index,
    )
    pipeline = DetectionPipeline(engine, cfg)
    if not pipeline.load_model(resolved):
        raise pipeline.last_error or ModelError(f"Could not load model: {resolved}")
    return pipeline
