from __future__ import annotations

from .audio import CHANNELS, ENCODING_SAMPLE_RATE, LIVE_SAMPLE_RATE
from .config import (
    EngineConfig,
    EnvelopeSettings,
    GlobalSettings,
    LayerSettings,
    NoiseType,
    OscillatorType,
    PanSettings,
    PitchSettings,
    Preset,
    SourceType,
    WhooshSettings,
    dump_settings,
    load_settings,
)
from .engine import WhooshEngine, arender, get_engine, play, render, stop
from .errors import DeviceUnavailableError, InvalidParameterError, RenderFailureError, WhooshError
from .logging_utils import configure_logging as _configure_logging
from .presets import (
    PRESETS,
    default_settings,
    get_preset,
    list_presets,
    randomize_settings,
    suggest_filename,
)
from .wav import encode_wav

__version__ = "0.1.0"

__all__ = [
    "CHANNELS",
    "ENCODING_SAMPLE_RATE",
    "LIVE_SAMPLE_RATE",
    "PRESETS",
    "DeviceUnavailableError",
    "EngineConfig",
    "EnvelopeSettings",
    "GlobalSettings",
    "InvalidParameterError",
    "LayerSettings",
    "NoiseType",
    "OscillatorType",
    "PanSettings",
    "PitchSettings",
    "Preset",
    "RenderFailureError",
    "SourceType",
    "WhooshEngine",
    "WhooshError",
    "WhooshSettings",
    "arender",
    "default_settings",
    "dump_settings",
    "encode_wav",
    "get_engine",
    "get_preset",
    "list_presets",
    "load_settings",
    "play",
    "randomize_settings",
    "render",
    "stop",
    "suggest_filename",
]

_configure_logging()
del _configure_logging
