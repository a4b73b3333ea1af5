from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

import numpy as np

from ..errors import ModelError
from . import PathLike

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnnxRuntimeEngineConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name/output_name: override auto-selected I/O names if needed
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None


class OnnxRuntimeEngine:
    """
    ONNX Runtime engine.

    Takes the (S, S, 3) float tensor from the preprocessor and feeds it as a
    batch of one, transposed to NCHW unless the model declares an NHWC input.
    Returns the selected output as a NumPy array.
    """

    def __init__(self, cfg: OnnxRuntimeEngineConfig = OnnxRuntimeEngineConfig()):
        self.cfg = cfg
        self.model_path: Optional[Path] = None
        self.session: Any = None
        self.input_name: Optional[str] = None
        self.output_name: Optional[str] = None
        self.channels_first = True

    def load_model(self, model_path: PathLike) -> None:
        path = Path(model_path)
        if not path.exists():
            raise ModelError(f"Model file not found: {path}")

        try:
            import onnxruntime as ort  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ModelError(
                "onnxruntime is required for the ONNX engine. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        providers = list(self.cfg.providers) if self.cfg.providers is not None else None
        try:
            session = ort.InferenceSession(str(path), sess_options=ort.SessionOptions(), providers=providers)
        except Exception as exc:  # ORT raises its own exception hierarchy
            raise ModelError(f"Could not load ONNX model {path}: {exc}") from exc

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if not inputs or not outputs:
            raise ModelError(f"ONNX model {path} has no inputs or outputs")

        input_meta = inputs[0]
        if self.cfg.input_name is not None:
            matches = [meta for meta in inputs if meta.name == self.cfg.input_name]
            if not matches:
                raise ModelError(f"ONNX model {path} has no input named {self.cfg.input_name!r}")
            input_meta = matches[0]

        output_name = self.cfg.output_name or outputs[0].name
        if output_name not in {meta.name for meta in outputs}:
            raise ModelError(f"ONNX model {path} has no output named {output_name!r}")

        shape = list(input_meta.shape or [])
        # NHWC exports declare 3 channels last.
        self.channels_first = not (len(shape) == 4 and shape[-1] == 3)

        self.session = session
        self.model_path = path
        self.input_name = input_meta.name
        self.output_name = output_name
        logger.info(
            "Loaded ONNX model %s (input=%s %s, providers=%s)",
            path,
            self.input_name,
            "NCHW" if self.channels_first else "NHWC",
            tuple(session.get_providers()),
        )

    @property
    def providers_in_use(self) -> Sequence[str]:
        if self.session is None:
            return ()
        return tuple(self.session.get_providers())

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if self.session is None:
            raise ModelError("Model is not loaded. Call load_model() first.")

        blob = np.asarray(tensor, dtype=np.float32)
        if self.channels_first:
            blob = np.transpose(blob, (2, 0, 1))
        blob = np.ascontiguousarray(blob[None, ...])

        try:
            outputs = self.session.run([self.output_name], {self.input_name: blob})
        except Exception as exc:
            raise ModelError(f"ONNX inference failed: {exc}") from exc
        return outputs[0]

    def close(self) -> None:
        self.session = None
