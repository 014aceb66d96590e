from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Callable, TypeAlias

import numpy as np
from scipy.signal import lfilter  # type: ignore[import]

from .audio import FloatArray, sample_count
from .config import NoiseType
from .errors import InvalidParameterError

NoiseFn: TypeAlias = Callable[[int, np.random.Generator], FloatArray]

# Paul Kellet's refined pink filter: (pole, input weight) per stage.
PINK_STAGES: tuple[tuple[float, float], ...] = (
    (0.99886, 0.0555179),
    (0.99332, 0.0750759),
    (0.96900, 0.1538520),
    (0.86650, 0.3104856),
    (0.55000, 0.5329522),
    (-0.7616, -0.0168980),
)
PINK_WHITE_WEIGHT = 0.5362
PINK_DELAYED_WEIGHT = 0.115926
PINK_GAIN = 0.11

BROWN_STEP = 0.02
BROWN_LEAK = 1.02
BROWN_GAIN = 3.5


def _white(num_samples: int, rng: np.random.Generator) -> FloatArray:
    return rng.uniform(-1.0, 1.0, num_samples)


def _pink(num_samples: int, rng: np.random.Generator) -> FloatArray:
    white = _white(num_samples, rng)
    output = white * PINK_WHITE_WEIGHT
    for pole, weight in PINK_STAGES:
        # b[n] = pole * b[n-1] + weight * white[n], starting from 0
        output += lfilter([weight], [1.0, -pole], white)
    if num_samples > 1:
        output[1:] += white[:-1] * PINK_DELAYED_WEIGHT
    return output * PINK_GAIN


def _brown(num_samples: int, rng: np.random.Generator) -> FloatArray:
    white = _white(num_samples, rng)
    # out[n] = (out[n-1] + step * white[n]) / leak
    integrated = lfilter([BROWN_STEP / BROWN_LEAK], [1.0, -1.0 / BROWN_LEAK], white)
    return np.asarray(integrated, dtype=np.float64) * BROWN_GAIN


NOISE_FUNCTIONS: Mapping[NoiseType, NoiseFn] = MappingProxyType(
    {
        "white": _white,
        "pink": _pink,
        "brown": _brown,
    }
)


def generate_noise(
    kind: NoiseType,
    sample_rate: int,
    duration: float,
    rng: np.random.Generator | None = None,
) -> FloatArray:
    """Generate ``round(sample_rate * duration)`` samples of coloured noise.

    No clipping is applied; pink and brown stay near [-1, 1] but may
    overshoot it slightly.
    """

    try:
        noise_fn = NOISE_FUNCTIONS[kind]
    except KeyError as exc:
        raise InvalidParameterError(f"Unknown noise type: {kind!r}") from exc
    num_samples = sample_count(sample_rate, duration)
    if num_samples == 0:
        return np.zeros(0, dtype=np.float64)
    generator = rng if rng is not None else np.random.default_rng()
    return np.asarray(noise_fn(num_samples, generator), dtype=np.float64)
