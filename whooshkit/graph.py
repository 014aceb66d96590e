"""
Per-render signal graph.

Every play/render call builds a fresh ``RenderGraph``: one ``LayerVoice`` per
enabled layer feeding a shared ``MasterBus``. The graph owns all buffers and
filter state for that one render and is dropped afterwards.

    source -> envelope -> pan -> layer volume --+
    source -> envelope -> pan -> layer volume --+--> HPF -> LPF -+-> dry --+--> master volume
                                                                 +-> IR ---+
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from .audio import CHANNELS, FloatArray, frame_count, sample_count
from .config import GlobalSettings, LayerSettings, WhooshSettings
from .convolver import DEFAULT_PARTITION_FRAMES, PartitionedConvolver
from .envelope import EnvelopeTimes, envelope_curve
from .errors import InvalidParameterError
from .filters import StatefulFilter
from .impulse import build_impulse_response, impulse_gain
from .noise import generate_noise
from .oscillators import generate_oscillator

_LOGGER = logging.getLogger("whooshkit.graph")

# Spawn keys separating the random streams of one render.
_REVERB_STREAM = 0
_LAYER_STREAM = 1


# =============================================================================
# RANDOMNESS
# =============================================================================


def resolve_seed(seed: int | None) -> int:
    """Return ``seed`` or fresh entropy when it is None."""

    match seed:
        case None:
            return int(np.random.SeedSequence().entropy)
        case bool():
            raise InvalidParameterError("Seed must be an integer, got a bool")
        case int() if seed >= 0:
            return seed
        case _:
            raise InvalidParameterError(f"Seed must be a non-negative integer, got {seed!r}")


def layer_rng(seed: int, layer_id: int) -> np.random.Generator:
    """Random stream for one layer; depends only on the seed and the layer id."""
    sequence = np.random.SeedSequence(seed, spawn_key=(_LAYER_STREAM, layer_id))
    return np.random.default_rng(sequence)


def reverb_rng(seed: int) -> np.random.Generator:
    return np.random.default_rng(np.random.SeedSequence(seed, spawn_key=(_REVERB_STREAM,)))


# =============================================================================
# LAYER VOICES
# =============================================================================


def pan_gains(pan: FloatArray) -> tuple[FloatArray, FloatArray]:
    """Equal-power stereo gains for pan positions in [-1, 1]."""

    angle = (np.clip(pan, -1.0, 1.0) + 1.0) * (np.pi / 4.0)
    return np.cos(angle), np.sin(angle)


def render_source(
    layer: LayerSettings, sample_rate: int, duration: float, rng: np.random.Generator
) -> FloatArray:
    if layer.source_type == "noise":
        return generate_noise(layer.noise_type, sample_rate, duration, rng)
    return generate_oscillator(
        layer.source_type, layer.pitch.start, layer.pitch.end, sample_rate, duration
    )


@dataclass(slots=True)
class LayerVoice:
    """One enabled layer with its automation resolved per sample."""

    layer_id: int
    name: str
    source: FloatArray
    envelope: FloatArray
    left_gain: FloatArray
    right_gain: FloatArray
    volume: float

    @classmethod
    def build(
        cls,
        layer: LayerSettings,
        *,
        sample_rate: int,
        duration: float,
        total_frames: int,
        rng: np.random.Generator,
    ) -> "LayerVoice":
        raw = render_source(layer, sample_rate, duration, rng)
        # The source stops at the master duration; pad to the frame count.
        source = np.zeros(total_frames, dtype=np.float64)
        length = min(raw.size, total_frames)
        source[:length] = raw[:length]

        times = np.arange(total_frames, dtype=np.float64) / sample_rate
        envelope = envelope_curve(
            times, layer.envelope.attack, layer.envelope.hold, layer.envelope.decay, duration
        )
        progress = np.clip(times / duration, 0.0, 1.0)
        pan = layer.pan.start + (layer.pan.end - layer.pan.start) * progress
        left, right = pan_gains(pan)
        return cls(
            layer_id=layer.id,
            name=layer.name,
            source=source,
            envelope=envelope,
            left_gain=left,
            right_gain=right,
            volume=layer.volume,
        )

    def render(self, start: int, stop: int) -> FloatArray:
        shaped = self.source[start:stop] * self.envelope[start:stop] * self.volume
        left = shaped * self.left_gain[start:stop]
        right = shaped * self.right_gain[start:stop]
        return np.column_stack((left, right))


# =============================================================================
# MASTER BUS
# =============================================================================


class MasterBus:
    """HPF -> LPF -> dry/wet reverb split -> master volume, stateful across blocks."""

    def __init__(
        self,
        settings: GlobalSettings,
        impulse: FloatArray,
        sample_rate: int,
        partition_frames: int = DEFAULT_PARTITION_FRAMES,
    ) -> None:
        self.highpass = StatefulFilter("high", settings.hpf_freq, sample_rate, CHANNELS)
        self.lowpass = StatefulFilter("low", settings.lpf_freq, sample_rate, CHANNELS)
        self.reverb_mix = settings.reverb_mix
        self.master_volume = settings.master_volume
        self.reverb: PartitionedConvolver | None = None
        if self.reverb_mix > 0.0 and impulse.shape[0] > 0:
            scaled = impulse * impulse_gain(impulse, sample_rate)
            self.reverb = PartitionedConvolver(scaled, partition_frames)

    @property
    def has_reverb(self) -> bool:
        return self.reverb is not None

    def process(self, block: FloatArray) -> FloatArray:
        filtered = self.lowpass.process(self.highpass.process(block))
        output = filtered * (1.0 - self.reverb_mix)
        if self.reverb is not None and block.shape[0]:
            output = output + self.reverb.process(filtered * self.reverb_mix)
        return output * self.master_volume

    def release(self) -> None:
        if self.reverb is not None:
            self.reverb.release()
            self.reverb = None


# =============================================================================
# GRAPH
# =============================================================================


@dataclass(slots=True)
class RenderGraph:
    sample_rate: int
    total_frames: int
    seed: int
    voices: tuple[LayerVoice, ...]
    bus: MasterBus
    position: int = 0
    closed: bool = field(default=False)

    @property
    def remaining(self) -> int:
        return max(self.total_frames - self.position, 0)

    @property
    def finished(self) -> bool:
        return self.closed or self.remaining == 0

    def render_block(self, frames: int) -> FloatArray:
        """Render the next ``frames`` frames (fewer at the end) as ``(n, 2)``."""

        if frames <= 0:
            raise InvalidParameterError(f"Block size must be positive, got {frames}")
        if self.closed:
            return np.zeros((0, CHANNELS), dtype=np.float64)
        start = self.position
        stop = min(start + frames, self.total_frames)
        mix = np.zeros((stop - start, CHANNELS), dtype=np.float64)
        for voice in self.voices:
            mix += voice.render(start, stop)
        self.position = stop
        return self.bus.process(mix)

    def close(self) -> None:
        """Drop every buffer owned by this render."""

        if self.closed:
            return
        self.closed = True
        self.voices = ()
        self.bus.release()


def build_graph(
    settings: WhooshSettings,
    *,
    sample_rate: int,
    seed: int | None = None,
    total_frames: int | None = None,
    partition_frames: int = DEFAULT_PARTITION_FRAMES,
) -> RenderGraph:
    """Build a fresh graph for one render; disabled layers are skipped.

    ``partition_frames`` sets the reverb partition size; matching the block
    size used to pull from the graph keeps each block's reverb work constant.
    """

    globals_ = settings.global_settings
    duration = globals_.master_duration
    resolved_seed = resolve_seed(seed)
    frames = total_frames if total_frames is not None else frame_count(sample_rate, duration)
    if frames < 0:
        raise InvalidParameterError(f"Frame count must be non-negative, got {frames}")

    # Validate curve inputs for every layer before allocating any buffer.
    for layer in settings.enabled_layers:
        EnvelopeTimes.from_settings(layer.envelope, duration)
    sample_count(sample_rate, globals_.reverb_time)

    voices = tuple(
        LayerVoice.build(
            layer,
            sample_rate=sample_rate,
            duration=duration,
            total_frames=frames,
            rng=layer_rng(resolved_seed, layer.id),
        )
        for layer in settings.enabled_layers
    )
    if globals_.reverb_mix > 0.0:
        impulse = build_impulse_response(
            sample_rate, globals_.reverb_time, globals_.reverb_decay, reverb_rng(resolved_seed)
        )
    else:
        impulse = np.zeros((0, CHANNELS), dtype=np.float64)
    bus = MasterBus(globals_, impulse, sample_rate, partition_frames)

    _LOGGER.debug(
        "Built graph: %d/%d layers, %d frames @ %d Hz, seed=%d",
        len(voices),
        len(settings.layers),
        frames,
        sample_rate,
        resolved_seed,
    )
    return RenderGraph(
        sample_rate=sample_rate,
        total_frames=frames,
        seed=resolved_seed,
        voices=voices,
        bus=bus,
    )
