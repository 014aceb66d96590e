from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Literal

import numpy as np
from numpy.typing import NDArray
from scipy.signal import butter, lfilter  # type: ignore[import]

from .audio import FloatArray
from .errors import InvalidParameterError

_LOGGER = logging.getLogger("whooshkit.filters")

FilterKind = Literal["low", "high"]

FILTER_ORDER = 2
_MAX_NORMALIZED = 0.99


@lru_cache(maxsize=512)
def _butter_cached(
    kind: FilterKind, normalized_cutoff: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    coeffs = butter(FILTER_ORDER, normalized_cutoff, btype=kind, output="ba")
    assert isinstance(coeffs, tuple)
    assert len(coeffs) == 2
    b_raw, a_raw = coeffs
    assert isinstance(b_raw, np.ndarray)
    assert isinstance(a_raw, np.ndarray)
    return b_raw, a_raw


def design_filter(
    kind: FilterKind, cutoff: float, sample_rate: int
) -> tuple[NDArray[np.float64], NDArray[np.float64]] | None:
    """Butterworth coefficients with -3 dB at ``cutoff``; None means pass-through."""

    if not math.isfinite(cutoff) or cutoff <= 0:
        raise InvalidParameterError(f"Filter cutoff must be positive, got {cutoff}")
    normalized = cutoff / (sample_rate / 2)
    if normalized >= 1.0:
        if kind == "low":
            return None
        _LOGGER.debug("High-pass cutoff %.1f Hz above Nyquist; clamping", cutoff)
    return _butter_cached(kind, min(normalized, _MAX_NORMALIZED))


class StatefulFilter:
    """Causal IIR filter that keeps its state across blocks."""

    def __init__(self, kind: FilterKind, cutoff: float, sample_rate: int, channels: int) -> None:
        self.kind = kind
        self.cutoff = cutoff
        self.coefficients = design_filter(kind, cutoff, sample_rate)
        self._channels = channels
        self._state: FloatArray | None = None
        self.reset()

    @property
    def bypassed(self) -> bool:
        return self.coefficients is None

    def reset(self) -> None:
        if self.coefficients is None:
            self._state = None
            return
        b, a = self.coefficients
        order = max(len(a), len(b)) - 1
        self._state = np.zeros((order, self._channels), dtype=np.float64)

    def process(self, block: FloatArray) -> FloatArray:
        """Filter a ``(frames, channels)`` block, continuing from the previous one."""

        if self.coefficients is None or block.shape[0] == 0:
            return block
        b, a = self.coefficients
        filtered, self._state = lfilter(b, a, block, axis=0, zi=self._state)
        return np.asarray(filtered, dtype=np.float64)
