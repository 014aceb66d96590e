from __future__ import annotations

import math

import numpy as np

from .audio import CHANNELS, FloatArray, sample_count
from .errors import InvalidParameterError


def build_impulse_response(
    sample_rate: int,
    duration: float,
    decay_exponent: float,
    rng: np.random.Generator | None = None,
) -> FloatArray:
    """Synthetic stereo reverb impulse: uniform noise under a ``(1 - n) ** decay`` fade.

    Returns a ``(round(sample_rate * duration), 2)`` array; each channel draws
    its own noise so the tail is decorrelated.
    """

    if not math.isfinite(decay_exponent) or decay_exponent < 0:
        raise InvalidParameterError(f"Reverb decay must be non-negative, got {decay_exponent}")
    total = sample_count(sample_rate, duration)
    generator = rng if rng is not None else np.random.default_rng()
    position = np.arange(total, dtype=np.float64) / max(total, 1)
    fade = np.power(1.0 - position, decay_exponent)
    noise = generator.uniform(-1.0, 1.0, (total, CHANNELS))
    return noise * fade[:, np.newaxis]


# Loudness calibration used by browser convolvers for generated impulses.
_GAIN_CALIBRATION = 0.00125
_GAIN_CALIBRATION_SAMPLE_RATE = 44_100
_MIN_POWER = 0.000125


def impulse_gain(impulse: FloatArray, sample_rate: int) -> float:
    """Scale that keeps convolution with ``impulse`` near unity loudness."""

    if impulse.size == 0:
        return 0.0
    power = math.sqrt(float(np.sum(np.square(impulse))) / impulse.size)
    power = max(power, _MIN_POWER)
    return (1.0 / power) * _GAIN_CALIBRATION * (_GAIN_CALIBRATION_SAMPLE_RATE / sample_rate)
