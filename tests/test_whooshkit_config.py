import json

import pytest

from whooshkit.config import (
    EngineConfig,
    LayerSettings,
    WhooshSettings,
    coerce_settings,
    dump_settings,
    load_settings,
    parse_settings,
)
from whooshkit.errors import InvalidParameterError


def _payload() -> dict:
    return {
        "layers": [
            {
                "id": 1,
                "enabled": True,
                "name": "Air",
                "sourceType": "noise",
                "noiseType": "pink",
                "envelope": {"attack": 0.2, "hold": 0.1, "decay": 0.7},
                "pitch": {"start": 1000, "end": 400},
                "pan": {"start": -0.7, "end": 0.7},
                "volume": 0.6,
            }
        ],
        "global": {
            "masterDuration": 1.0,
            "masterVolume": 0.8,
            "hpfFreq": 150,
            "lpfFreq": 12000,
            "reverbMix": 0.4,
        },
    }


def test_parse_camel_case_payload() -> None:
    settings = parse_settings(_payload())
    layer = settings.layers[0]
    assert layer.noise_type == "pink"
    assert layer.is_noise
    assert settings.global_settings.hpf_freq == 150
    assert settings.global_settings.reverb_time == 2.0
    assert settings.global_settings.reverb_decay == 2.0


def test_settings_are_frozen() -> None:
    settings = parse_settings(_payload())
    with pytest.raises(Exception):
        settings.layers[0].volume = 0.1  # type: ignore[misc]


def test_json_round_trip_uses_wire_names() -> None:
    settings = parse_settings(_payload())
    text = dump_settings(settings)
    assert "masterDuration" in text
    assert "sourceType" in text
    assert load_settings(text) == settings


@pytest.mark.parametrize(
    "path, value",
    [
        (("global", "masterDuration"), 0.0),
        (("global", "masterDuration"), 61.0),
        (("global", "masterVolume"), 1.5),
        (("global", "reverbMix"), -0.1),
        (("global", "hpfFreq"), 0.0),
        (("layers", 0, "volume"), 2.0),
        (("layers", 0, "pan", "start"), -1.5),
        (("layers", 0, "pitch", "end"), 0.0),
        (("layers", 0, "envelope", "attack"), -0.1),
        (("layers", 0, "sourceType"), "organ"),
        (("layers", 0, "noiseType"), "blue"),
    ],
)
def test_invalid_values_raise(path: tuple, value: object) -> None:
    payload = _payload()
    target = payload
    for key in path[:-1]:
        target = target[key]
    target[path[-1]] = value
    with pytest.raises(InvalidParameterError):
        parse_settings(payload)


def test_non_finite_values_rejected() -> None:
    payload = _payload()
    payload["global"]["masterVolume"] = float("nan")
    with pytest.raises(InvalidParameterError):
        parse_settings(payload)


def test_duplicate_layer_ids_rejected() -> None:
    payload = _payload()
    payload["layers"].append(dict(payload["layers"][0]))
    with pytest.raises(InvalidParameterError, match="unique"):
        parse_settings(payload)


def test_unknown_fields_rejected() -> None:
    payload = _payload()
    payload["global"]["tempo"] = 120
    with pytest.raises(InvalidParameterError):
        parse_settings(payload)


def test_envelope_fractions_above_one_are_accepted() -> None:
    payload = _payload()
    payload["layers"][0]["envelope"]["attack"] = 1.2
    assert parse_settings(payload).layers[0].envelope.attack == 1.2


def test_load_settings_rejects_bad_json() -> None:
    with pytest.raises(InvalidParameterError):
        load_settings("{not json")
    with pytest.raises(InvalidParameterError):
        load_settings("[1, 2]")


def test_coerce_settings_accepts_all_inputs() -> None:
    settings = parse_settings(_payload())
    assert coerce_settings(settings) is settings
    assert coerce_settings(_payload()) == settings
    assert coerce_settings(json.dumps(_payload())) == settings
    with pytest.raises(InvalidParameterError):
        coerce_settings(42)  # type: ignore[arg-type]


def test_enabled_layers_skips_disabled() -> None:
    settings = WhooshSettings(
        layers=(LayerSettings(id=1), LayerSettings(id=2, enabled=False)),
    )
    assert [layer.id for layer in settings.enabled_layers] == [1]


def test_engine_config_defaults() -> None:
    config = EngineConfig()
    assert config.live_sample_rate == 44_100
    assert config.encoding_sample_rate == 48_000
    assert config.block_frames == 1024
    assert config.latency == "low"


def test_engine_config_from_env() -> None:
    config = EngineConfig.from_env(
        {
            "WHOOSHKIT_SAMPLE_RATE": "48000",
            "WHOOSHKIT_ENCODING_SAMPLE_RATE": "44100",
            "WHOOSHKIT_BLOCK_FRAMES": "256",
        }
    )
    assert config.live_sample_rate == 48_000
    assert config.encoding_sample_rate == 44_100
    assert config.block_frames == 256


@pytest.mark.parametrize(
    "env",
    [
        {"WHOOSHKIT_BLOCK_FRAMES": "many"},
        {"WHOOSHKIT_BLOCK_FRAMES": "0"},
        {"WHOOSHKIT_ENCODING_SAMPLE_RATE": "22050"},
    ],
)
def test_engine_config_from_env_rejects_invalid(env: dict) -> None:
    with pytest.raises(InvalidParameterError):
        EngineConfig.from_env(env)
