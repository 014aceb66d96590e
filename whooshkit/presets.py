from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

import numpy as np

from .config import (
    NOISE_TYPES,
    OSCILLATOR_TYPES,
    GlobalSettings,
    LayerSettings,
    Preset,
    WhooshSettings,
    parse_settings,
)
from .errors import InvalidParameterError

_LOGGER = logging.getLogger("whooshkit.presets")

NUM_LAYERS = 3


def default_settings() -> WhooshSettings:
    """Three layers with only the first one enabled."""

    layers = tuple(
        LayerSettings(
            id=index + 1,
            enabled=index == 0,
            name=f"Layer {index + 1}",
            source_type="noise" if index == 0 else "sine",
            noise_type=NOISE_TYPES[index % len(NOISE_TYPES)],
            pan={"start": -0.8 + index * 0.8, "end": 0.8 - index * 0.8},
        )
        for index in range(NUM_LAYERS)
    )
    return WhooshSettings(layers=layers, global_settings=GlobalSettings())


def _layer(
    layer_id: int,
    name: str,
    source: str,
    noise: str,
    envelope: tuple[float, float, float],
    pitch: tuple[float, float],
    pan: tuple[float, float],
    volume: float,
    *,
    enabled: bool = True,
) -> dict[str, Any]:
    attack, hold, decay = envelope
    return {
        "id": layer_id,
        "enabled": enabled,
        "name": name,
        "sourceType": source,
        "noiseType": noise,
        "envelope": {"attack": attack, "hold": hold, "decay": decay},
        "pitch": {"start": pitch[0], "end": pitch[1]},
        "pan": {"start": pan[0], "end": pan[1]},
        "volume": volume,
    }


def _globals(duration: float, volume: float, hpf: float, lpf: float, mix: float) -> dict[str, float]:
    return {
        "masterDuration": duration,
        "masterVolume": volume,
        "hpfFreq": hpf,
        "lpfFreq": lpf,
        "reverbMix": mix,
    }


_PRESET_PAYLOADS: Mapping[str, Mapping[str, Any]] = MappingProxyType(
    {
        "Soft Air Whoosh": {
            "layers": [
                _layer(1, "Air", "noise", "white", (0.2, 0.1, 0.7), (1000, 400), (-0.7, 0.7), 0.6),
                _layer(2, "Body", "noise", "pink", (0.1, 0.1, 0.6), (400, 200), (-0.5, 0.5), 0.8),
                _layer(
                    3, "Tone", "sine", "white", (0.05, 0.2, 0.5), (300, 150), (0, 0), 0.4, enabled=False
                ),
            ],
            "global": _globals(1.0, 0.8, 150, 12_000, 0.4),
        },
        "Fast Swish": {
            "layers": [
                _layer(1, "Swoosh", "noise", "white", (0.01, 0.05, 0.14), (12_000, 1000), (-1, 1), 0.7),
                _layer(
                    2, "Layer 2", "noise", "pink", (0.1, 0.2, 0.7), (440, 880), (-0.8, 0.8), 0.7, enabled=False
                ),
                _layer(
                    3, "Layer 3", "sine", "white", (0.1, 0.2, 0.7), (440, 880), (-0.8, 0.8), 0.7, enabled=False
                ),
            ],
            "global": _globals(0.2, 0.9, 800, 18_000, 0.1),
        },
        "Metallic Pass-By": {
            "layers": [
                _layer(1, "Metal", "sawtooth", "white", (0.05, 0.2, 0.4), (1200, 800), (-1, 1), 0.5),
                _layer(2, "Wind", "noise", "brown", (0.1, 0.1, 0.8), (400, 300), (-0.8, 0.8), 0.8),
                _layer(
                    3, "Layer 3", "sine", "white", (0.1, 0.2, 0.7), (440, 880), (-0.8, 0.8), 0.7, enabled=False
                ),
            ],
            "global": _globals(0.6, 0.7, 250, 9000, 0.6),
        },
        "Sci-Fi Sweep": {
            "layers": [
                _layer(1, "Rise", "sine", "white", (0.8, 0.1, 0.5), (100, 2000), (0, 0), 0.6),
                _layer(2, "Sparkle", "noise", "white", (0.2, 0.5, 1.0), (8000, 16_000), (-1, 1), 0.3),
                _layer(3, "Rumble", "square", "white", (1.2, 0.1, 0.8), (50, 80), (-0.2, 0.2), 0.7),
            ],
            "global": _globals(2.0, 0.8, 40, 15_000, 0.7),
        },
    }
)

PRESETS: tuple[Preset, ...] = tuple(
    Preset(name=name, settings=parse_settings(payload)) for name, payload in _PRESET_PAYLOADS.items()
)


def list_presets() -> list[str]:
    return [preset.name for preset in PRESETS]


def get_preset(name: str) -> WhooshSettings:
    """Look up a preset by name (case-insensitive)."""

    wanted = name.strip().casefold()
    for preset in PRESETS:
        if preset.name.casefold() == wanted:
            return preset.settings
    raise InvalidParameterError(f"Unknown preset {name!r}; choose from {', '.join(list_presets())}")


# =============================================================================
# RANDOMIZER
# =============================================================================


def _log_uniform(rng: np.random.Generator, low_exp: float, high_exp: float) -> float:
    return float(10.0 ** rng.uniform(low_exp, high_exp))


def _pick(rng: np.random.Generator, choices: Iterable[str]) -> str:
    options = tuple(choices)
    return options[int(rng.integers(len(options)))]


def randomize_settings(
    base: WhooshSettings | None = None,
    rng: np.random.Generator | None = None,
) -> WhooshSettings:
    """Draw a random whoosh, keeping the layer ids and names of ``base``."""

    base = base if base is not None else default_settings()
    generator = rng if rng is not None else np.random.default_rng()

    global_payload = {
        "masterDuration": float(generator.uniform(0.1, 3.0)),
        "masterVolume": float(generator.uniform(0.5, 0.9)),
        "hpfFreq": _log_uniform(generator, 1.3, 3.3),
        "lpfFreq": _log_uniform(generator, 3.3, 4.3),
        "reverbMix": float(generator.uniform(0.0, 0.8)),
        "reverbTime": float(generator.uniform(0.5, 4.0)),
        "reverbDecay": float(generator.uniform(1.0, 5.0)),
    }

    layer_payloads = []
    for layer in base.layers:
        is_noise = generator.random() < 0.6
        layer_payloads.append(
            {
                "id": layer.id,
                "name": layer.name,
                "enabled": bool(generator.random() < 0.7),
                "sourceType": "noise" if is_noise else _pick(generator, OSCILLATOR_TYPES),
                "noiseType": _pick(generator, NOISE_TYPES),
                "envelope": {
                    "attack": float(generator.uniform(0.01, 0.81)),
                    "hold": float(generator.uniform(0.0, 0.5)),
                    "decay": float(generator.uniform(0.1, 1.0)),
                },
                "pitch": {
                    "start": _log_uniform(generator, 1.3, 4.3),
                    "end": _log_uniform(generator, 1.3, 4.3),
                },
                "pan": {
                    "start": float(generator.uniform(-1.0, 1.0)),
                    "end": float(generator.uniform(-1.0, 1.0)),
                },
                "volume": float(generator.uniform(0.2, 0.8)),
            }
        )

    randomized = parse_settings({"layers": layer_payloads, "global": global_payload})
    _LOGGER.debug("Randomized %d layer(s)", len(randomized.layers))
    return randomized


def suggest_filename(now: datetime | None = None) -> str:
    """Default download name, e.g. ``whoosh_2024-05-01T10-20-30-123Z.wav``."""

    moment = now if now is not None else datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    stamp = moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return f"whoosh_{stamp.replace(':', '-').replace('.', '-')}.wav"
