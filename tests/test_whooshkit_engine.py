import asyncio
import math

import numpy as np
import pytest

import whooshkit.engine as engine_module
import whooshkit.graph as graph_module
from whooshkit.config import EngineConfig, WhooshSettings, parse_settings
from whooshkit.engine import WhooshEngine, iter_blocks
from whooshkit.errors import DeviceUnavailableError, InvalidParameterError, RenderFailureError
from whooshkit.graph import build_graph
from whooshkit.playback import PlaybackBackend, StreamRequest
from whooshkit.wav import HEADER_SIZE, read_wav_header


class _ManualStream:
    def __init__(self, fail_start: bool = False) -> None:
        self.started = False
        self.aborted = False
        self.closed = False
        self._fail_start = fail_start

    def start(self) -> None:
        if self._fail_start:
            raise RuntimeError("device busy")
        self.started = True

    def abort(self) -> None:
        self.aborted = True

    def close(self) -> None:
        self.closed = True


class _ManualDevice:
    """Records the callbacks the engine hands to the stream; tests pump them."""

    def __init__(self, *, fail_open: bool = False, fail_start: bool = False) -> None:
        self.requests: list[StreamRequest] = []
        self.streams: list[_ManualStream] = []
        self.fill = None
        self.on_finished = None
        self._fail_open = fail_open
        self._fail_start = fail_start

    def open_stream(self, request, fill, on_finished) -> _ManualStream:
        if self._fail_open:
            raise DeviceUnavailableError("no output device")
        self.requests.append(request)
        self.fill = fill
        self.on_finished = on_finished
        stream = _ManualStream(fail_start=self._fail_start)
        self.streams.append(stream)
        return stream

    def backend(self) -> PlaybackBackend:
        return PlaybackBackend(name="manual", open_stream=self.open_stream)

    def pull(self, frames: int) -> tuple[np.ndarray, bool]:
        assert self.fill is not None
        out = np.full((frames, 2), 9.0, dtype=np.float32)
        more = self.fill(out)
        return out, more


def _settings(duration: float = 0.1, enabled: bool = True) -> WhooshSettings:
    return parse_settings(
        {
            "layers": [
                {
                    "id": 1,
                    "enabled": enabled,
                    "name": "Air",
                    "sourceType": "noise",
                    "noiseType": "white",
                    "envelope": {"attack": 0.1, "hold": 0.4, "decay": 0.5},
                    "volume": 0.7,
                }
            ],
            "global": {"masterDuration": duration, "reverbMix": 0.2, "reverbTime": 0.05},
        }
    )


def _engine(device: _ManualDevice, **config: object) -> WhooshEngine:
    values = {"live_sample_rate": 8_000, "block_frames": 256}
    values.update(config)
    return WhooshEngine(EngineConfig(**values), backend=device.backend())


def test_play_streams_until_exhausted() -> None:
    device = _ManualDevice()
    engine = _engine(device)
    engine.play(_settings(), seed=1)

    request = device.requests[0]
    assert request.sample_rate == 8_000
    assert request.channels == 2
    assert request.block_frames == 256
    assert device.streams[0].started
    assert engine.is_playing

    pulls = []
    more = True
    while more:
        out, more = device.pull(256)
        pulls.append(out)
    assert len(pulls) == math.ceil(800 / 256)
    assert engine.progress == pytest.approx(1.0)
    # Frames past the end of the render are silent.
    assert not np.any(pulls[-1][800 - 256 * 3 :])

    device.on_finished()
    assert engine.wait(0)
    assert not engine.is_playing


def test_progress_tracks_delivered_frames() -> None:
    device = _ManualDevice()
    engine = _engine(device)
    assert engine.progress == 0.0
    engine.play(_settings(), seed=1)
    device.pull(200)
    assert engine.progress == pytest.approx(200 / 800)


def test_stop_silences_and_allows_immediate_replay() -> None:
    device = _ManualDevice()
    engine = _engine(device)
    engine.play(_settings(), seed=1)
    first_out, _ = device.pull(256)
    assert np.any(first_out)
    stale_fill = device.fill

    engine.stop()
    first_stream = device.streams[0]
    assert first_stream.aborted
    assert first_stream.closed
    assert not engine.is_playing

    stale = np.full((256, 2), 9.0, dtype=np.float32)
    assert stale_fill(stale) is False
    assert not np.any(stale)

    engine.play(_settings(), seed=2)
    assert len(device.streams) == 2
    assert device.streams[1].started
    out, more = device.pull(256)
    assert more
    assert np.any(out)


def test_stop_when_idle_is_a_no_op() -> None:
    engine = _engine(_ManualDevice())
    engine.stop()
    engine.stop()
    assert engine.wait(0)


def test_play_replaces_active_playback() -> None:
    device = _ManualDevice()
    engine = _engine(device)
    engine.play(_settings(), seed=1)
    engine.play(_settings(), seed=1)
    assert device.streams[0].aborted
    assert not device.streams[1].aborted


def test_invalid_settings_fail_before_opening_device() -> None:
    device = _ManualDevice()
    engine = _engine(device)
    with pytest.raises(InvalidParameterError):
        engine.play({"global": {"masterDuration": -1}})
    assert device.requests == []


def test_device_open_failure_leaves_engine_stopped() -> None:
    engine = _engine(_ManualDevice(fail_open=True))
    with pytest.raises(DeviceUnavailableError):
        engine.play(_settings())
    assert not engine.is_playing


def test_stream_start_failure_is_wrapped_and_cleaned_up() -> None:
    device = _ManualDevice(fail_start=True)
    engine = _engine(device)
    with pytest.raises(DeviceUnavailableError, match="device busy"):
        engine.play(_settings())
    assert device.streams[0].closed
    assert not engine.is_playing


def test_live_blocks_match_offline_render() -> None:
    device = _ManualDevice()
    engine = _engine(device, live_sample_rate=44_100, encoding_sample_rate=44_100)
    engine.play(_settings(0.05), seed=4)
    pulled = []
    more = True
    while more:
        out, more = device.pull(512)
        pulled.append(out)
    live = np.concatenate(pulled)[: math.ceil(44_100 * 0.05)]
    offline = engine.render_buffer(_settings(0.05), seed=4)
    assert np.allclose(live, offline, atol=1e-6)


def test_render_returns_wav_bytes() -> None:
    engine = WhooshEngine()
    data = engine.render(_settings(0.0101), seed=1)
    frames = math.ceil(48_000 * 0.0101)
    header = read_wav_header(data)
    assert header.sample_rate == 48_000
    assert header.channels == 2
    assert len(data) == HEADER_SIZE + frames * 6


def test_render_is_deterministic_per_seed() -> None:
    engine = WhooshEngine()
    assert engine.render(_settings(0.02), seed=5) == engine.render(_settings(0.02), seed=5)


def test_render_all_disabled_is_silent() -> None:
    buffer = WhooshEngine().render_buffer(_settings(0.02, enabled=False))
    assert buffer.shape == (960, 2)
    assert not np.any(buffer)


def test_render_does_not_touch_live_playback() -> None:
    device = _ManualDevice()
    engine = _engine(device)
    engine.play(_settings(), seed=1)
    engine.render(_settings(0.01), seed=1)
    assert engine.is_playing
    assert not device.streams[0].aborted


def test_render_failure_is_wrapped(monkeypatch: pytest.MonkeyPatch) -> None:
    def _explode(graph, block_frames):
        raise MemoryError("out of memory")

    monkeypatch.setattr(engine_module, "render_graph", _explode)
    with pytest.raises(RenderFailureError) as info:
        WhooshEngine().render(_settings(0.01))
    assert isinstance(info.value.__cause__, MemoryError)


def test_non_finite_output_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    def _nan(graph, block_frames):
        return np.full((graph.total_frames, 2), np.nan)

    monkeypatch.setattr(engine_module, "render_graph", _nan)
    with pytest.raises(RenderFailureError, match="non-finite"):
        WhooshEngine().render_buffer(_settings(0.01))


def test_arender_matches_render() -> None:
    engine = WhooshEngine()
    expected = engine.render(_settings(0.01), seed=8)
    assert asyncio.run(engine.arender(_settings(0.01), seed=8)) == expected


def test_module_level_render_uses_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(engine_module, "_DEFAULT_ENGINE", None)
    monkeypatch.setenv("WHOOSHKIT_ENCODING_SAMPLE_RATE", "44100")
    data = engine_module.render(_settings(0.01), seed=1)
    assert read_wav_header(data).sample_rate == 44_100


def test_context_manager_stops_playback() -> None:
    device = _ManualDevice()
    with _engine(device) as engine:
        engine.play(_settings(), seed=1)
    assert device.streams[0].aborted


def test_iter_blocks_respects_limit() -> None:
    graph = build_graph(_settings(), sample_rate=8_000, seed=1)
    blocks = list(iter_blocks(graph, 300, limit=500))
    assert [block.shape[0] for block in blocks] == [300, 200]
    assert graph.remaining == 300
    assert [block.shape[0] for block in iter_blocks(graph, 256)] == [256, 44]
    assert graph.finished


def test_natural_finish_releases_graph_and_stream() -> None:
    device = _ManualDevice()
    engine = _engine(device)
    engine.play(_settings(), seed=1)
    more = True
    while more:
        _, more = device.pull(256)
    session = engine._session
    assert session is not None

    device.on_finished()
    assert session.graph.closed
    assert session.graph.voices == ()
    assert session.graph.bus.reverb is None

    assert not engine.is_playing
    assert device.streams[0].closed
    assert engine.progress == pytest.approx(1.0)


def test_wait_releases_finished_stream() -> None:
    device = _ManualDevice()
    engine = _engine(device)
    engine.play(_settings(), seed=1)
    while device.pull(256)[1]:
        pass
    device.on_finished()
    assert engine.wait(0)
    assert device.streams[0].closed


def test_graph_allocation_failure_is_a_render_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def _exhausted(*args, **kwargs):
        raise MemoryError("cannot allocate")

    monkeypatch.setattr(graph_module, "build_impulse_response", _exhausted)
    with pytest.raises(RenderFailureError) as info:
        WhooshEngine().render(_settings(0.01), seed=1)
    assert isinstance(info.value.__cause__, MemoryError)


def test_play_allocation_failure_never_opens_device(monkeypatch: pytest.MonkeyPatch) -> None:
    def _exhausted(*args, **kwargs):
        raise MemoryError("cannot allocate")

    monkeypatch.setattr(graph_module, "build_impulse_response", _exhausted)
    device = _ManualDevice()
    engine = _engine(device)
    with pytest.raises(RenderFailureError):
        engine.play(_settings(), seed=1)
    assert device.requests == []
    assert not engine.is_playing
