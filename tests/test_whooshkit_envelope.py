import numpy as np
import pytest

from whooshkit.envelope import envelope_breakpoints, envelope_curve, envelope_value_at
from whooshkit.errors import InvalidParameterError


def test_breakpoints_match_fractions() -> None:
    points = envelope_breakpoints(0.1, 0.2, 0.7, 2.0)
    times = [time for time, _ in points]
    gains = [gain for _, gain in points]
    assert times == pytest.approx([0.0, 0.2, 0.6, 2.0])
    assert gains == [0.0, 1.0, 1.0, 0.0]


def test_curve_shape() -> None:
    assert envelope_value_at(0.0, 0.1, 0.2, 0.7, 1.0) == 0.0
    assert envelope_value_at(0.05, 0.1, 0.2, 0.7, 1.0) == pytest.approx(0.5)
    assert envelope_value_at(0.2, 0.1, 0.2, 0.7, 1.0) == 1.0
    assert envelope_value_at(0.65, 0.1, 0.2, 0.7, 1.0) == pytest.approx(0.5)
    assert envelope_value_at(1.0, 0.1, 0.2, 0.7, 1.0) == pytest.approx(0.0)
    assert envelope_value_at(1.5, 0.1, 0.2, 0.7, 1.0) == 0.0


def test_curve_is_bounded_and_continuous() -> None:
    times = np.linspace(-0.1, 1.5, 16_001)
    gain = envelope_curve(times, 0.25, 0.25, 0.5, 1.0)
    assert gain.min() >= 0.0
    assert gain.max() <= 1.0
    assert float(np.max(np.abs(np.diff(gain)))) < 0.01


def test_zero_attack_jumps_to_full() -> None:
    assert envelope_value_at(0.0, 0.0, 0.5, 0.5, 1.0) == 0.0
    assert envelope_value_at(1e-6, 0.0, 0.5, 0.5, 1.0) == 1.0


def test_zero_decay_cuts_to_silence() -> None:
    assert envelope_value_at(0.5, 0.1, 0.4, 0.0, 1.0) == 1.0
    assert envelope_value_at(0.5001, 0.1, 0.4, 0.0, 1.0) == 0.0


def test_fractions_may_exceed_the_duration() -> None:
    gain = envelope_curve(np.array([0.6, 1.2]), 1.2, 0.1, 0.8, 1.0)
    assert gain[0] == pytest.approx(0.5)
    assert gain[1] == pytest.approx(1.0)


@pytest.mark.parametrize(
    "attack, hold, decay, total",
    [(-0.1, 0.2, 0.7, 1.0), (0.1, float("nan"), 0.7, 1.0), (0.1, 0.2, 0.7, 0.0)],
)
def test_invalid_inputs_raise(attack: float, hold: float, decay: float, total: float) -> None:
    with pytest.raises(InvalidParameterError):
        envelope_curve(np.zeros(1), attack, hold, decay, total)
