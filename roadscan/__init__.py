"""
On-device road-surface defect detection pipeline.

Raw camera frame -> normalized RGB tensor -> external inference engine ->
tensor decoding -> geometric filter -> NMS, with a governor that keeps at most
one inference in flight. Core stages only need NumPy; OpenCV is used for
overlays and the inference runtimes are loaded on demand.
"""

from .config import DetectorConfig, load_detector_config
from .errors import DecodeError, FrameError, ModelError, RoadscanError, TensorShapeError
from .geometry import GeometryLimits, filter_plausible, is_plausible
from .governor import InferenceGovernor, InferenceResult
from .metadata import label_table_from_names, load_class_names
from .nms import NMSConfig, iou, nms, non_max_suppression
from .postprocess import CandidateBatch, CandidateMajor, ChannelMajor, TensorDecoder, filter_by_confidence, resolve_layout
from .preprocess import FramePreprocessor
from .runtime import DetectionPipeline, PipelineStats, find_project_root, load_pipeline, resolve_path
from .types import BoundingBox, DefectLabel, Detection, FrameBuffer, FrameLayout, PipelineState, PixelBox
from .visualize import draw_detections

__all__ = [
    "DetectorConfig",
    "load_detector_config",
    "DecodeError",
    "FrameError",
    "ModelError",
    "RoadscanError",
    "TensorShapeError",
    "GeometryLimits",
    "filter_plausible",
    "is_plausible",
    "InferenceGovernor",
    "InferenceResult",
    "label_table_from_names",
    "load_class_names",
    "NMSConfig",
    "iou",
    "nms",
    "non_max_suppression",
    "CandidateBatch",
    "CandidateMajor",
    "ChannelMajor",
    "TensorDecoder",
    "filter_by_confidence",
    "resolve_layout",
    "FramePreprocessor",
    "DetectionPipeline",
    "PipelineStats",
    "find_project_root",
    "load_pipeline",
    "resolve_path",
    "BoundingBox",
    "DefectLabel",
    "Detection",
    "FrameBuffer",
    "FrameLayout",
    "PipelineState",
    "PixelBox",
    "draw_detections",
]
