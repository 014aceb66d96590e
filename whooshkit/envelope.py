"""Attack/hold/decay gain curve shared by live and offline rendering."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike

from .audio import FloatArray
from .config import EnvelopeSettings
from .errors import InvalidParameterError


@dataclass(frozen=True, slots=True)
class EnvelopeTimes:
    """Absolute breakpoint times in seconds."""

    attack_end: float
    hold_end: float
    decay_end: float
    decay_length: float

    @classmethod
    def from_fractions(
        cls, attack: float, hold: float, decay: float, total_duration: float
    ) -> "EnvelopeTimes":
        for name, value in (("attack", attack), ("hold", hold), ("decay", decay)):
            if not math.isfinite(value) or value < 0:
                raise InvalidParameterError(f"Envelope {name} must be non-negative, got {value}")
        if not math.isfinite(total_duration) or total_duration <= 0:
            raise InvalidParameterError(f"Duration must be positive, got {total_duration}")
        attack_end = attack * total_duration
        hold_end = attack_end + hold * total_duration
        decay_length = decay * total_duration
        return cls(attack_end, hold_end, hold_end + decay_length, decay_length)

    @classmethod
    def from_settings(cls, envelope: EnvelopeSettings, total_duration: float) -> "EnvelopeTimes":
        return cls.from_fractions(envelope.attack, envelope.hold, envelope.decay, total_duration)


def envelope_curve(
    times: ArrayLike,
    attack: float,
    hold: float,
    decay: float,
    total_duration: float,
) -> FloatArray:
    """Vectorized envelope gain at ``times`` (seconds), clamped to [0, 1]."""

    points = EnvelopeTimes.from_fractions(attack, hold, decay, total_duration)
    return _evaluate(np.asarray(times, dtype=np.float64), points)


def envelope_value_at(
    time: float,
    attack: float,
    hold: float,
    decay: float,
    total_duration: float,
) -> float:
    return float(envelope_curve(np.array([time]), attack, hold, decay, total_duration)[0])


def envelope_breakpoints(
    attack: float, hold: float, decay: float, total_duration: float
) -> tuple[tuple[float, float], ...]:
    """The four (time, gain) automation points of the curve."""

    points = EnvelopeTimes.from_fractions(attack, hold, decay, total_duration)
    return (
        (0.0, 0.0),
        (points.attack_end, 1.0),
        (points.hold_end, 1.0),
        (points.decay_end, 0.0),
    )


def _evaluate(t: FloatArray, points: EnvelopeTimes) -> FloatArray:
    gain = np.zeros_like(t)

    rising = t <= points.attack_end
    if points.attack_end > 0:
        gain[rising] = t[rising] / points.attack_end
    else:
        gain[rising] = 0.0

    holding = (t > points.attack_end) & (t <= points.hold_end)
    gain[holding] = 1.0

    falling = (t > points.hold_end) & (t <= points.decay_end)
    if points.decay_length > 0:
        gain[falling] = 1.0 - (t[falling] - points.hold_end) / points.decay_length

    return np.clip(gain, 0.0, 1.0)
