"""
Admission control around the loaded model.

The model is one mutable, exclusive resource. The governor lets at most one
unit of work use it at a time and drops, rather than queues, any frame that
arrives while a unit is in flight or before the minimum inter-frame interval
has elapsed. A stale frame has no value, so the caller is never blocked.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from .backends import InferenceEngine, PathLike
from .errors import DecodeError, FrameError, ModelError
from .types import PipelineState

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class InferenceResult(Generic[T]):
    value: Optional[T]
    latency_s: float
    # Non-fatal error that ended this unit early, if any.
    error: Optional[Exception] = None

    @property
    def latency_ms(self) -> float:
        return self.latency_s * 1000.0


class InferenceGovernor:
    def __init__(
        self,
        engine: InferenceEngine,
        min_interval_s: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_interval_s < 0:
            raise ValueError("min_interval_s must be >= 0")
        self.engine = engine
        self.min_interval_s = min_interval_s
        self._clock = clock
        self._lock = threading.Lock()
        self._state = PipelineState.UNINITIALIZED
        self._last_accepted: Optional[float] = None
        self._release_pending = False
        self.last_error: Optional[ModelError] = None
        self.accepted = 0
        self.dropped_busy = 0
        self.dropped_throttled = 0

    @property
    def state(self) -> PipelineState:
        return self._state

    def _set_state(self, state: PipelineState) -> None:
        if state is not self._state:
            logger.debug("Governor %s -> %s", self._state.value, state.value)
            self._state = state

    def load_model(self, model_path: PathLike) -> bool:
        with self._lock:
            if self._state is PipelineState.READY:
                return True
            if self._state not in (PipelineState.UNINITIALIZED, PipelineState.ERROR):
                logger.warning("load_model ignored in state %s", self._state.value)
                return False
            self._set_state(PipelineState.MODEL_LOADING)

        try:
            self.engine.load_model(model_path)
        except ModelError as exc:
            error = exc
        except Exception as exc:
            error = ModelError(f"Could not load model {model_path}: {exc}")
            error.__cause__ = exc
        else:
            with self._lock:
                if self._state is PipelineState.DISPOSED:
                    if self._release_pending:
                        self._close_engine()
                    return False
                self.last_error = None
                self._last_accepted = None
                self._set_state(PipelineState.READY)
            logger.info("Model ready: %s", model_path)
            return True

        logger.error("Model load failed: %s", error)
        with self._lock:
            self.last_error = error
            if self._state is PipelineState.DISPOSED:
                if self._release_pending:
                    self._close_engine()
            else:
                self._set_state(PipelineState.ERROR)
        return False

    def try_begin(self) -> bool:
        """
        Hot-path guard. Claims the model for one unit of work or reports a drop.
        """

        with self._lock:
            if self._state is not PipelineState.READY:
                if self._state is PipelineState.PROCESSING:
                    self.dropped_busy += 1
                return False
            now = self._clock()
            if self._last_accepted is not None and now - self._last_accepted < self.min_interval_s:
                self.dropped_throttled += 1
                return False
            self._last_accepted = now
            self.accepted += 1
            self._set_state(PipelineState.PROCESSING)
            return True

    def finish(self, error: Optional[Exception] = None) -> None:
        with self._lock:
            if self._state is PipelineState.DISPOSED:
                if self._release_pending:
                    self._close_engine()
                return
            if self._state is not PipelineState.PROCESSING:
                return
            if isinstance(error, ModelError):
                self.last_error = error
                self._set_state(PipelineState.ERROR)
            else:
                self._set_state(PipelineState.READY)

    def run(self, work: Callable[[InferenceEngine], T]) -> Optional[InferenceResult[T]]:
        """
        Run `work` against the engine if admitted; None means the frame was dropped.

        ModelError moves the governor to ERROR and is re-raised. Any other
        exception ends the unit with an empty result and the error attached.
        """

        if not self.try_begin():
            return None

        start = self._clock()
        try:
            value = work(self.engine)
        except ModelError as exc:
            self.finish(exc)
            raise
        except (FrameError, DecodeError) as exc:
            latency = self._clock() - start
            self.finish()
            logger.warning("Frame dropped after admission: %s", exc)
            return InferenceResult(value=None, latency_s=latency, error=exc)
        except Exception as exc:
            latency = self._clock() - start
            self.finish()
            logger.exception("Unexpected failure while processing frame")
            return InferenceResult(value=None, latency_s=latency, error=exc)
        except BaseException:
            self.finish()
            raise

        latency = self._clock() - start
        self.finish()
        return InferenceResult(value=value, latency_s=latency)

    def dispose(self) -> None:
        with self._lock:
            if self._state is PipelineState.DISPOSED:
                return
            in_flight = self._state in (PipelineState.PROCESSING, PipelineState.MODEL_LOADING)
            self._set_state(PipelineState.DISPOSED)
            if in_flight:
                # Released by finish() or load_model() once the running call returns.
                self._release_pending = True
            else:
                self._close_engine()

    def _close_engine(self) -> None:
        self._release_pending = False
        try:
            self.engine.close()
        except Exception:
            logger.exception("Error while releasing inference engine")
