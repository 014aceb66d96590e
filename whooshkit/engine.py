from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterator

import numpy as np
from numpy.typing import NDArray

from .audio import CHANNELS, FloatArray
from .config import EngineConfig, SettingsInput, WhooshSettings, coerce_settings
from .errors import DeviceUnavailableError, RenderFailureError, WhooshError
from .graph import RenderGraph, build_graph
from .playback import OutputStream, PlaybackBackend, StreamRequest, resolve_backend
from .wav import encode_wav

_LOGGER = logging.getLogger("whooshkit.engine")


# =============================================================================
# CORE RENDER LOOP (shared by live and offline)
# =============================================================================


def iter_blocks(
    graph: RenderGraph, block_frames: int, limit: int | None = None
) -> Iterator[FloatArray]:
    """Yield ``(n, 2)`` blocks until the graph is exhausted or closed.

    With ``limit``, stop once that many frames have been produced.
    """

    produced = 0
    while not graph.finished and (limit is None or produced < limit):
        frames = block_frames if limit is None else min(block_frames, limit - produced)
        block = graph.render_block(frames)
        produced += block.shape[0]
        yield block


def render_graph(graph: RenderGraph, block_frames: int) -> FloatArray:
    """Collect every block of ``graph`` into one ``(total_frames, 2)`` buffer."""

    output = np.zeros((graph.total_frames, CHANNELS), dtype=np.float64)
    position = 0
    for block in iter_blocks(graph, block_frames):
        output[position : position + block.shape[0]] = block
        position += block.shape[0]
    return output


# =============================================================================
# LIVE SESSION
# =============================================================================


class LiveSession:
    """One live playback: a graph, its output stream and its progress."""

    def __init__(self, graph: RenderGraph) -> None:
        self.graph = graph
        self.stream: OutputStream | None = None
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._delivered = 0

    @property
    def progress(self) -> float:
        total = self.graph.total_frames
        if total <= 0:
            return 1.0
        return min(max(self._delivered / total, 0.0), 1.0)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def fill(self, outdata: NDArray[np.float32]) -> bool:
        """Write the next frames into ``outdata``; called on the audio thread."""

        frames = outdata.shape[0]
        with self._lock:
            if self._cancelled.is_set():
                outdata.fill(0.0)
                return False
            written = 0
            for block in iter_blocks(self.graph, frames, limit=frames):
                outdata[written : written + block.shape[0]] = block
                written += block.shape[0]
            outdata[written:] = 0.0
            self._delivered += written
            return not self.graph.finished

    def mark_finished(self) -> None:
        """Called once the stream has drained; drops the graph right away."""

        with self._lock:
            self.graph.close()
        self._done.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    def cancel(self) -> None:
        """Silence immediately and release the graph and the stream."""

        self._cancelled.set()
        with self._lock:
            self.graph.close()
        stream, self.stream = self.stream, None
        if stream is not None:
            try:
                stream.abort()
            except Exception as exc:
                _LOGGER.debug("Ignoring error while aborting stream: %s", exc)
            try:
                stream.close()
            except Exception as exc:
                _LOGGER.debug("Ignoring error while closing stream: %s", exc)
        self._done.set()


# =============================================================================
# ENGINE
# =============================================================================


class WhooshEngine:
    """Renders whooshes live or offline; at most one live playback at a time."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        backend: PlaybackBackend | None = None,
    ) -> None:
        self.config = config if config is not None else EngineConfig()
        self._backend = backend
        self._lock = threading.RLock()
        self._session: LiveSession | None = None

    # -- live -----------------------------------------------------------------

    @property
    def progress(self) -> float:
        session = self._session
        return session.progress if session is not None else 0.0

    @property
    def is_playing(self) -> bool:
        session = self._session
        if session is None:
            return False
        if session.done:
            self._reap(session)
            return False
        return True

    def _reap(self, session: LiveSession) -> None:
        # The stream cannot close itself from its finished callback.
        with self._lock:
            if session is self._session and session.stream is not None:
                session.cancel()
                _LOGGER.debug("Released finished playback stream")

    def play(self, settings: SettingsInput, *, seed: int | None = None) -> None:
        """Start live playback and return once the output stream is running."""

        snapshot = coerce_settings(settings)
        with self._lock:
            self._stop_locked()
            backend = self._backend if self._backend is not None else resolve_backend()
            graph = self._build_graph(snapshot, self.config.live_sample_rate, seed)
            layer_count = len(graph.voices)
            session = LiveSession(graph)
            request = StreamRequest(
                sample_rate=self.config.live_sample_rate,
                channels=CHANNELS,
                block_frames=self.config.block_frames,
                latency=self.config.latency,
            )
            try:
                session.stream = backend.open_stream(request, session.fill, session.mark_finished)
                session.stream.start()
            except DeviceUnavailableError:
                session.cancel()
                raise
            except Exception as exc:
                session.cancel()
                _LOGGER.warning("Audio output failed to start: %s", exc, exc_info=True)
                raise DeviceUnavailableError(f"Could not start audio output: {exc}") from exc
            self._session = session
        _LOGGER.info(
            "Playing %d layer(s) for %.3fs via %s (seed=%d)",
            layer_count,
            snapshot.global_settings.master_duration,
            backend.name,
            graph.seed,
        )

    def stop(self) -> None:
        """Silence and release the active playback; no-op when idle."""

        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        interrupted = not session.done
        session.cancel()
        if interrupted:
            _LOGGER.info("Stopped playback at %.0f%%", session.progress * 100)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the current playback ends; True when nothing is playing."""

        session = self._session
        if session is None:
            return True
        if not session.wait(timeout):
            return False
        self._reap(session)
        return True

    def _build_graph(self, snapshot: WhooshSettings, sample_rate: int, seed: int | None) -> RenderGraph:
        try:
            return build_graph(
                snapshot,
                sample_rate=sample_rate,
                seed=seed,
                partition_frames=self.config.block_frames,
            )
        except WhooshError:
            raise
        except Exception as exc:
            _LOGGER.warning("Building the render graph failed: %s", exc, exc_info=True)
            raise RenderFailureError(f"Could not build the render graph: {exc}") from exc

    # -- offline --------------------------------------------------------------

    def render_buffer(self, settings: SettingsInput, *, seed: int | None = None) -> FloatArray:
        """Render the whole event at the encoding rate as a ``(frames, 2)`` buffer."""

        snapshot = coerce_settings(settings)
        sample_rate = self.config.encoding_sample_rate
        graph = self._build_graph(snapshot, sample_rate, seed)
        try:
            buffer = render_graph(graph, self.config.block_frames)
        except WhooshError:
            raise
        except Exception as exc:
            _LOGGER.warning("Offline render failed (seed=%d): %s", graph.seed, exc, exc_info=True)
            raise RenderFailureError(f"Offline render failed: {exc}") from exc
        finally:
            graph.close()
        if not np.all(np.isfinite(buffer)):
            raise RenderFailureError("Offline render produced non-finite samples")
        _LOGGER.debug("Rendered %d frames @ %d Hz (seed=%d)", buffer.shape[0], sample_rate, graph.seed)
        return buffer

    def render(self, settings: SettingsInput, *, seed: int | None = None) -> bytes:
        """Render offline and encode as 24-bit WAV bytes."""

        buffer = self.render_buffer(settings, seed=seed)
        try:
            return encode_wav(buffer, self.config.encoding_sample_rate)
        except WhooshError:
            raise
        except Exception as exc:
            raise RenderFailureError(f"WAV encoding failed: {exc}") from exc

    async def arender(self, settings: SettingsInput, *, seed: int | None = None) -> bytes:
        return await asyncio.to_thread(self.render, settings, seed=seed)

    def close(self) -> None:
        self.stop()

    def __enter__(self) -> "WhooshEngine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


_DEFAULT_ENGINE: WhooshEngine | None = None
_DEFAULT_LOCK = threading.Lock()


def get_engine() -> WhooshEngine:
    """Process-wide engine configured from the environment."""

    global _DEFAULT_ENGINE
    with _DEFAULT_LOCK:
        if _DEFAULT_ENGINE is None:
            _DEFAULT_ENGINE = WhooshEngine(EngineConfig.from_env())
        return _DEFAULT_ENGINE


def play(settings: SettingsInput, *, seed: int | None = None) -> None:
    get_engine().play(settings, seed=seed)


def stop() -> None:
    get_engine().stop()


def render(settings: SettingsInput, *, seed: int | None = None) -> bytes:
    return get_engine().render(settings, seed=seed)


async def arender(settings: SettingsInput, *, seed: int | None = None) -> bytes:
    return await get_engine().arender(settings, seed=seed)
