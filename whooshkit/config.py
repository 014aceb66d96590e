from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import InvalidParameterError

_LOGGER = logging.getLogger("whooshkit.config")

NoiseType = Literal["white", "pink", "brown"]
OscillatorType = Literal["sine", "square", "sawtooth", "triangle"]
SourceType = Literal["noise", "sine", "square", "sawtooth", "triangle"]
EncodingSampleRate = Literal[44100, 48000]

NOISE_TYPES: tuple[NoiseType, ...] = get_args(NoiseType)
OSCILLATOR_TYPES: tuple[OscillatorType, ...] = get_args(OscillatorType)

# Upper bound on a single event; the engine renders short effects only.
MAX_DURATION_SECONDS = 60.0
DEFAULT_REVERB_TIME = 2.0
DEFAULT_REVERB_DECAY = 2.0

_SETTINGS_CONFIG = ConfigDict(
    frozen=True,
    extra="forbid",
    populate_by_name=True,
    allow_inf_nan=False,
)


# -----------------------------------------------------------------------------
# Settings snapshot
# -----------------------------------------------------------------------------


class EnvelopeSettings(BaseModel):
    """Attack/hold/decay as fractions of the master duration."""

    attack: float = Field(default=0.1, ge=0.0)
    hold: float = Field(default=0.2, ge=0.0)
    decay: float = Field(default=0.7, ge=0.0)

    model_config = _SETTINGS_CONFIG


class PitchSettings(BaseModel):
    start: float = Field(default=440.0, gt=0.0)
    end: float = Field(default=880.0, gt=0.0)

    model_config = _SETTINGS_CONFIG


class PanSettings(BaseModel):
    start: float = Field(default=0.0, ge=-1.0, le=1.0)
    end: float = Field(default=0.0, ge=-1.0, le=1.0)

    model_config = _SETTINGS_CONFIG


class LayerSettings(BaseModel):
    id: int = Field(ge=0)
    enabled: bool = True
    name: str = "Layer"
    source_type: SourceType = Field(default="noise", alias="sourceType")
    noise_type: NoiseType = Field(default="white", alias="noiseType")
    envelope: EnvelopeSettings = Field(default_factory=EnvelopeSettings)
    pitch: PitchSettings = Field(default_factory=PitchSettings)
    pan: PanSettings = Field(default_factory=PanSettings)
    volume: float = Field(default=0.7, ge=0.0, le=1.0)

    model_config = _SETTINGS_CONFIG

    @property
    def is_noise(self) -> bool:
        return self.source_type == "noise"


class GlobalSettings(BaseModel):
    master_duration: float = Field(
        default=1.0, gt=0.0, le=MAX_DURATION_SECONDS, alias="masterDuration"
    )
    master_volume: float = Field(default=0.8, ge=0.0, le=1.0, alias="masterVolume")
    hpf_freq: float = Field(default=20.0, gt=0.0, alias="hpfFreq")
    lpf_freq: float = Field(default=20_000.0, gt=0.0, alias="lpfFreq")
    reverb_mix: float = Field(default=0.3, ge=0.0, le=1.0, alias="reverbMix")
    reverb_time: float = Field(
        default=DEFAULT_REVERB_TIME, gt=0.0, le=MAX_DURATION_SECONDS, alias="reverbTime"
    )
    reverb_decay: float = Field(default=DEFAULT_REVERB_DECAY, ge=0.0, alias="reverbDecay")

    model_config = _SETTINGS_CONFIG


class WhooshSettings(BaseModel):
    """Complete, immutable description of one whoosh."""

    layers: tuple[LayerSettings, ...] = ()
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings, alias="global")

    model_config = _SETTINGS_CONFIG

    @model_validator(mode="after")
    def _unique_layer_ids(self) -> "WhooshSettings":
        ids = [layer.id for layer in self.layers]
        duplicates = sorted({layer_id for layer_id in ids if ids.count(layer_id) > 1})
        if duplicates:
            raise ValueError(f"Layer ids must be unique, duplicated: {duplicates}")
        return self

    @property
    def enabled_layers(self) -> tuple[LayerSettings, ...]:
        return tuple(layer for layer in self.layers if layer.enabled)

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase wire form."""
        return self.model_dump(by_alias=True, mode="json")


class Preset(BaseModel):
    name: str
    settings: WhooshSettings

    model_config = ConfigDict(frozen=True, extra="forbid")


SettingsInput = Union[WhooshSettings, Mapping[str, Any], str, bytes]


def parse_settings(payload: Mapping[str, Any]) -> WhooshSettings:
    """Parse a settings payload, raising InvalidParameterError on failure."""

    try:
        return WhooshSettings.model_validate(dict(payload))
    except ValidationError as exc:
        _LOGGER.warning("Failed to parse whoosh settings: %s", exc)
        raise InvalidParameterError(str(exc)) from exc


def load_settings(text: str | bytes) -> WhooshSettings:
    """Parse settings from JSON text."""

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidParameterError(f"Settings are not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise InvalidParameterError("Settings JSON must be an object")
    return parse_settings(payload)


def dump_settings(settings: WhooshSettings, *, indent: int | None = 2) -> str:
    return json.dumps(settings.to_dict(), indent=indent)


def coerce_settings(settings: SettingsInput) -> WhooshSettings:
    match settings:
        case WhooshSettings():
            return settings
        case str() | bytes():
            return load_settings(settings)
        case Mapping():
            return parse_settings(settings)
        case _:
            raise InvalidParameterError(f"Unsupported settings type: {type(settings).__name__}")


# -----------------------------------------------------------------------------
# Engine configuration
# -----------------------------------------------------------------------------

_SAMPLE_RATE_ENV = "WHOOSHKIT_SAMPLE_RATE"
_ENCODING_RATE_ENV = "WHOOSHKIT_ENCODING_SAMPLE_RATE"
_BLOCK_FRAMES_ENV = "WHOOSHKIT_BLOCK_FRAMES"


class EngineConfig(BaseModel):
    live_sample_rate: int = Field(default=44_100, ge=8_000, le=192_000)
    encoding_sample_rate: EncodingSampleRate = 48_000
    block_frames: int = Field(default=1024, gt=0, le=65_536)
    latency: str | float = "low"

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("latency")
    @classmethod
    def _check_latency(cls, value: str | float) -> str | float:
        if isinstance(value, str) and value not in ("low", "high"):
            raise ValueError(f"latency must be 'low', 'high' or seconds, got {value!r}")
        if isinstance(value, float) and value <= 0:
            raise ValueError(f"latency must be positive, got {value}")
        return value

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for key, field in (
            (_SAMPLE_RATE_ENV, "live_sample_rate"),
            (_ENCODING_RATE_ENV, "encoding_sample_rate"),
            (_BLOCK_FRAMES_ENV, "block_frames"),
        ):
            raw = env.get(key)
            if raw is None or raw == "":
                continue
            try:
                overrides[field] = int(raw)
            except ValueError as exc:
                raise InvalidParameterError(f"{key} must be an integer, got {raw!r}") from exc
        try:
            return cls(**overrides)
        except ValidationError as exc:
            raise InvalidParameterError(str(exc)) from exc
