"""
Error taxonomy for the detection pipeline.

Only `ModelError` leaves a frame's unit of work; everything else is handled
locally and turns into an empty detection list.
"""

from __future__ import annotations


class RoadscanError(Exception):
    pass


class ModelError(RoadscanError):
    """Missing, corrupt or incompatible model, or a failure inside the engine."""


class FrameError(RoadscanError):
    """Frame bytes or dimensions unusable for this frame."""


class DecodeError(RoadscanError):
    """The model output could not be decoded."""


class TensorShapeError(DecodeError):
    """No outer-dimension reduction reached a recognized tensor layout."""
