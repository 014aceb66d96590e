from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .errors import DeviceUnavailableError

_LOGGER = logging.getLogger("whooshkit.playback")

# Fills a (frames, channels) output buffer in place; False once the render is exhausted.
FillCallback = Callable[[NDArray[np.float32]], bool]
FinishedCallback = Callable[[], None]


class OutputStream(Protocol):
    def start(self) -> None: ...

    def abort(self) -> None: ...

    def close(self) -> None: ...


class StreamRequest(BaseModel):
    sample_rate: int
    channels: int
    block_frames: int
    latency: str | float

    model_config = ConfigDict(frozen=True, extra="forbid")


OpenStream = Callable[[StreamRequest, FillCallback, FinishedCallback], OutputStream]


class PlaybackBackend(BaseModel):
    name: str
    open_stream: OpenStream

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _load_backend() -> PlaybackBackend | None:
    return _load_sounddevice()


def resolve_backend() -> PlaybackBackend:
    backend = _load_backend()
    if backend is None:
        raise DeviceUnavailableError(
            "Live playback requires sounddevice with a working PortAudio installation. "
            "Offline render() is still available."
        )
    return backend


def _load_sounddevice() -> PlaybackBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        # OSError: the module imports but PortAudio itself is missing.
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    sd: Any = sd_module

    def _open_stream(
        request: StreamRequest,
        fill: FillCallback,
        on_finished: FinishedCallback,
    ) -> OutputStream:
        def _callback(outdata: NDArray[np.float32], frames: int, time_info: Any, status: Any) -> None:
            _ = frames, time_info
            if status:
                _LOGGER.debug("Output stream status: %s", status)
            if not fill(outdata):
                raise sd.CallbackStop()

        try:
            stream = sd.OutputStream(
                samplerate=request.sample_rate,
                channels=request.channels,
                blocksize=request.block_frames,
                latency=request.latency,
                dtype="float32",
                callback=_callback,
                finished_callback=on_finished,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceUnavailableError(f"Could not open audio output: {exc}") from exc
        return stream

    return PlaybackBackend(name="sounddevice", open_stream=_open_stream)
