from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import numpy as np

from ..errors import ModelError
from . import PathLike


@dataclass(frozen=True)
class TorchScriptEngineConfig:
    """
    Configuration for TorchScript inference.

    - device: "cpu" or "cuda" (if available)
    - half: cast input to float16 (only if the model expects it)
    - output_index: if the model returns multiple outputs, select this index
    """

    device: str = "cpu"
    half: bool = False
    output_index: int = 0


class TorchScriptEngine:
    """
    TorchScript engine using `torch.jit.load`; feeds (1, 3, S, S) input.
    """

    def __init__(self, cfg: TorchScriptEngineConfig = TorchScriptEngineConfig()):
        self.cfg = cfg
        self.model_path: Optional[Path] = None
        self.model: Any = None
        self._torch: Any = None

    def load_model(self, model_path: PathLike) -> None:
        path = Path(model_path)
        if not path.exists():
            raise ModelError(f"Model file not found: {path}")

        try:
            import torch  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ModelError("torch is required for the TorchScript engine. Install with `pip install torch`.") from e

        try:
            model = torch.jit.load(str(path), map_location=torch.device(self.cfg.device))
        except Exception as exc:
            raise ModelError(f"Could not load TorchScript model {path}: {exc}") from exc
        model.eval()

        self._torch = torch
        self.model = model
        self.model_path = path

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if self.model is None:
            raise ModelError("Model is not loaded. Call load_model() first.")

        torch = self._torch
        blob = np.ascontiguousarray(np.transpose(np.asarray(tensor, dtype=np.float32), (2, 0, 1))[None, ...])
        x = torch.as_tensor(blob, device=torch.device(self.cfg.device))
        x = x.half() if self.cfg.half else x.float()

        try:
            with torch.no_grad():
                y = self.model(x)
        except Exception as exc:
            raise ModelError(f"TorchScript inference failed: {exc}") from exc

        if isinstance(y, (tuple, list)):
            y = y[self.cfg.output_index]
        if hasattr(y, "detach"):
            y = y.detach()
        return y.to("cpu").float().numpy()

    def close(self) -> None:
        self.model = None
