from __future__ import annotations

from functools import lru_cache
from typing import Optional, Tuple

import numpy as np

from .errors import FrameError
from .types import FrameBuffer, FrameLayout

_FIXED_SHIFT = 16

# Integer BT.601 coefficients scaled by 1024.
_R_V = 1436
_G_U = 352
_G_V = 731
_B_U = 1815


@lru_cache(maxsize=16)
def nearest_indices(src: int, dst: int) -> np.ndarray:
    """
    Source index for every destination index, using a 16.16 fixed-point step.
    """

    step = (src << _FIXED_SHIFT) // dst
    idx = (np.arange(dst, dtype=np.int64) * step) >> _FIXED_SHIFT
    idx = np.minimum(idx, src - 1)
    idx.setflags(write=False)
    return idx


def _as_bytes(data) -> np.ndarray:
    if isinstance(data, np.ndarray):
        if data.dtype != np.uint8:
            raise FrameError(f"Frame array must be uint8, got {data.dtype}")
        return data.reshape(-1)
    try:
        return np.frombuffer(data, dtype=np.uint8)
    except (TypeError, ValueError) as exc:
        raise FrameError(f"Frame data is not a byte buffer: {type(data).__name__}") from exc


def chroma_size(width: int, height: int) -> Tuple[int, int]:
    return (width + 1) // 2, (height + 1) // 2


def yuv_to_rgb(y: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """
    Integer luma/chroma to RGB conversion, clamped to [0, 255].

    Inputs are same-shaped integer arrays; returns (..., 3) int32.
    """

    y = y.astype(np.int32)
    du = u.astype(np.int32) - 128
    dv = v.astype(np.int32) - 128

    r = y + ((_R_V * dv) >> 10)
    g = y - ((_G_U * du + _G_V * dv) >> 10)
    b = y + ((_B_U * du) >> 10)

    rgb = np.stack([r, g, b], axis=-1)
    np.clip(rgb, 0, 255, out=rgb)
    return rgb


class FramePreprocessor:
    """
    Raw camera frame -> (S, S, 3) float32 RGB tensor in [0, 1].

    Resizing is nearest-neighbour without averaging. With `reuse_buffer=True`
    the returned array is overwritten by the next call, so callers must hold
    exclusive access to the model while using it.
    """

    def __init__(self, input_size: int = 640, reuse_buffer: bool = True):
        if input_size < 1:
            raise ValueError("input_size must be >= 1")
        self.input_size = input_size
        self.reuse_buffer = reuse_buffer
        self._buffer: Optional[np.ndarray] = None

    def _output(self) -> np.ndarray:
        s = self.input_size
        if not self.reuse_buffer:
            return np.empty((s, s, 3), dtype=np.float32)
        if self._buffer is None:
            self._buffer = np.empty((s, s, 3), dtype=np.float32)
        return self._buffer

    def process(self, frame: FrameBuffer) -> np.ndarray:
        width, height = int(frame.width), int(frame.height)
        if width <= 0 or height <= 0:
            raise FrameError(f"Invalid frame dimensions: {width}x{height}")
        try:
            layout = FrameLayout(frame.layout)
        except ValueError as exc:
            raise FrameError(f"Unknown frame layout: {frame.layout!r}") from exc

        data = _as_bytes(frame.data)
        if data.size == 0:
            raise FrameError("Frame data is empty")

        s = self.input_size
        xs = nearest_indices(width, s)
        ys = nearest_indices(height, s)

        if layout.is_luma_chroma:
            rgb = self._sample_luma_chroma(data, width, height, layout, xs, ys)
        else:
            rgb = self._sample_interleaved(data, width, height, layout, xs, ys)

        out = self._output()
        np.divide(rgb, np.float32(255.0), out=out, casting="unsafe")
        return out

    def _sample_interleaved(
        self,
        data: np.ndarray,
        width: int,
        height: int,
        layout: FrameLayout,
        xs: np.ndarray,
        ys: np.ndarray,
    ) -> np.ndarray:
        expected = width * height * 3
        if data.size < expected:
            raise FrameError(f"Interleaved frame too short: expected {expected} bytes, got {data.size}")

        image = data[:expected].reshape(height, width, 3)
        sampled = image[ys[:, None], xs[None, :]]
        if layout is FrameLayout.BGR:
            sampled = sampled[:, :, ::-1]
        return sampled

    def _sample_luma_chroma(
        self,
        data: np.ndarray,
        width: int,
        height: int,
        layout: FrameLayout,
        xs: np.ndarray,
        ys: np.ndarray,
    ) -> np.ndarray:
        luma_size = width * height
        if data.size < luma_size:
            raise FrameError(f"Luma plane too short: expected {luma_size} bytes, got {data.size}")

        luma = data[:luma_size].reshape(height, width)
        y = luma[ys[:, None], xs[None, :]]

        cw, ch = chroma_size(width, height)
        chroma_len = cw * ch
        if data.size < luma_size + 2 * chroma_len:
            # Luma plane only: grayscale.
            return np.repeat(y[:, :, None], 3, axis=2)

        cx = (xs >> 1)[None, :]
        cy = (ys >> 1)[:, None]
        chroma = data[luma_size : luma_size + 2 * chroma_len]

        if layout is FrameLayout.YUV420:
            u_plane = chroma[:chroma_len].reshape(ch, cw)
            v_plane = chroma[chroma_len:].reshape(ch, cw)
            u = u_plane[cy, cx]
            v = v_plane[cy, cx]
        else:
            pairs = chroma.reshape(ch, cw, 2)
            first = pairs[cy, cx, 0]
            second = pairs[cy, cx, 1]
            if layout is FrameLayout.NV21:
                v, u = first, second
            else:
                u, v = first, second

        return yuv_to_rgb(y, u, v)
