"""
Inference engines for roadscan.

Engines are kept in a separate module so core functionality (pre/post-processing)
stays lightweight and can be used without installing inference runtimes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, Union


PathLike = Union[str, Path]


class InferenceEngine(Protocol):
    """
    A loaded model is a single exclusive resource: `run` is never called
    concurrently and never after `close`.
    """

    def load_model(self, model_path: PathLike) -> None:
        ...

    def run(self, tensor: Any) -> Any:
        ...

    def close(self) -> None:
        ...


def backend_for_path(model_path: PathLike) -> str:
    suffix = Path(model_path).suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def create_engine(
    model_path: PathLike,
    backend: Optional[str] = None,
    *,
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: Optional[str] = None,
    onnx_output_name: Optional[str] = None,
    torch_device: str = "cpu",
    torch_half: bool = False,
    torch_output_index: int = 0,
) -> InferenceEngine:
    """
    Build an (unloaded) engine for `model_path`, picking the backend from the
    file extension unless `backend` is given.
    """

    chosen = (backend or backend_for_path(model_path)).lower()

    if chosen == "onnxruntime":
        from .onnxruntime_backend import OnnxRuntimeEngine, OnnxRuntimeEngineConfig

        return OnnxRuntimeEngine(
            OnnxRuntimeEngineConfig(
                providers=onnx_providers,
                input_name=onnx_input_name,
                output_name=onnx_output_name,
            )
        )

    if chosen == "torchscript":
        from .torchscript_backend import TorchScriptEngine, TorchScriptEngineConfig

        return TorchScriptEngine(
            TorchScriptEngineConfig(device=torch_device, half=torch_half, output_index=torch_output_index)
        )

    raise ValueError(f"Unsupported backend: {backend!r}")


__all__ = ["InferenceEngine", "PathLike", "backend_for_path", "create_engine"]
