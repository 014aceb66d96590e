from __future__ import annotations

import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Callable, TypeAlias

import numpy as np

from .audio import FloatArray, sample_count
from .config import OscillatorType
from .errors import InvalidParameterError

WaveFn: TypeAlias = Callable[[FloatArray], FloatArray]

TWO_PI = 2.0 * np.pi


def _sine(phase: FloatArray) -> FloatArray:
    return np.sin(phase)


def _square(phase: FloatArray) -> FloatArray:
    return np.where(np.sin(phase) >= 0.0, 1.0, -1.0)


def _sawtooth(phase: FloatArray) -> FloatArray:
    cycles = phase / TWO_PI
    return 2.0 * (cycles - np.floor(cycles)) - 1.0


def _triangle(phase: FloatArray) -> FloatArray:
    shifted = phase / TWO_PI - 0.25
    return 1.0 - 4.0 * np.abs(np.round(shifted) - shifted)


WAVEFORMS: Mapping[OscillatorType, WaveFn] = MappingProxyType(
    {
        "sine": _sine,
        "square": _square,
        "sawtooth": _sawtooth,
        "triangle": _triangle,
    }
)


def _check_pitch(name: str, value: float) -> None:
    if not math.isfinite(value) or value <= 0:
        raise InvalidParameterError(f"Pitch {name} must be a positive frequency, got {value}")


def sweep_frequencies(
    pitch_start: float, pitch_end: float, num_samples: int
) -> FloatArray:
    """Exponential glide ``start * (end/start) ** t`` over normalized time."""

    _check_pitch("start", pitch_start)
    _check_pitch("end", pitch_end)
    t = np.arange(num_samples, dtype=np.float64) / max(num_samples, 1)
    return pitch_start * np.power(pitch_end / pitch_start, t)


def accumulate_phase(frequencies: FloatArray, sample_rate: int) -> FloatArray:
    """Running phase; sample 0 starts at 0 and each step adds 2*pi*f/sr."""

    increments = TWO_PI * frequencies / sample_rate
    phase = np.empty_like(increments)
    if phase.size:
        phase[0] = 0.0
        np.cumsum(increments[:-1], out=phase[1:])
    return phase


def generate_oscillator(
    waveform: OscillatorType,
    pitch_start: float,
    pitch_end: float,
    sample_rate: int,
    duration: float,
) -> FloatArray:
    """Generate a swept periodic waveform of ``round(sample_rate * duration)`` samples."""

    try:
        wave_fn = WAVEFORMS[waveform]
    except KeyError as exc:
        raise InvalidParameterError(f"Unknown oscillator waveform: {waveform!r}") from exc
    num_samples = sample_count(sample_rate, duration)
    frequencies = sweep_frequencies(pitch_start, pitch_end, num_samples)
    phase = accumulate_phase(frequencies, sample_rate)
    return np.asarray(wave_fn(phase), dtype=np.float64)
