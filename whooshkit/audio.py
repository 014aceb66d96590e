from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, TypeAlias

import numpy as np
from numpy.typing import NDArray

from .errors import InvalidParameterError

FloatArray: TypeAlias = NDArray[np.float64]
AudioNumbers: TypeAlias = NDArray[np.floating[Any]] | Sequence[float] | Sequence[Sequence[float]]

LIVE_SAMPLE_RATE = 44_100
ENCODING_SAMPLE_RATE = 48_000
CHANNELS = 2


def sample_count(sample_rate: int, duration: float) -> int:
    """Number of samples a source of ``duration`` seconds occupies."""
    _check_rate_and_duration(sample_rate, duration)
    return int(round(sample_rate * duration))


def frame_count(sample_rate: int, duration: float) -> int:
    """Number of output frames a render of ``duration`` seconds produces."""
    _check_rate_and_duration(sample_rate, duration)
    return int(math.ceil(sample_rate * duration))


def _check_rate_and_duration(sample_rate: int, duration: float) -> None:
    if sample_rate <= 0:
        raise InvalidParameterError(f"Sample rate must be positive, got {sample_rate}")
    if not math.isfinite(duration) or duration <= 0:
        raise InvalidParameterError(f"Duration must be positive, got {duration}")


def ensure_buffer_contract(buffer: AudioNumbers) -> FloatArray:
    """Normalize a sample buffer to a float64 ``(frames, channels)`` array."""

    array: FloatArray = np.asarray(buffer, dtype=np.float64)
    match array.ndim:
        case 1:
            return array.reshape(-1, 1)
        case 2:
            if array.shape[1] == 0:
                raise InvalidParameterError("Buffer must have at least one channel")
            return array
        case _:
            raise InvalidParameterError(
                f"Buffer must be 1-D mono or 2-D (frames, channels), got shape {array.shape}"
            )
