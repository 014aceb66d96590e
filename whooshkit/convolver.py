"""
Uniformly partitioned overlap-add convolution for long reverb impulses.

The impulse is cut once into ``P``-frame partitions whose spectra are kept.
Input is collected into ``P``-frame segments aligned to the start of the
render; each completed segment is transformed once and pushed onto a
frequency-domain delay line. The output for segment ``s`` is

    tail of segment s-1  +  (spectra of segments < s) x (partitions >= 1)
                         +  (current segment so far) * (partition 0)

where only the last term depends on the partial segment and is computed
directly, so blocks of any size come out with no added latency.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.signal import fftconvolve  # type: ignore[import]

from .audio import FloatArray
from .errors import InvalidParameterError

ComplexArray = NDArray[np.complex128]

DEFAULT_PARTITION_FRAMES = 1024


class PartitionedConvolver:
    """Streaming multichannel convolution with a fixed impulse response."""

    def __init__(self, impulse: FloatArray, partition_frames: int = DEFAULT_PARTITION_FRAMES) -> None:
        if partition_frames <= 0:
            raise InvalidParameterError(f"Partition size must be positive, got {partition_frames}")
        if impulse.ndim != 2:
            raise InvalidParameterError(f"Impulse must be (frames, channels), got {impulse.shape}")
        size = partition_frames
        frames, channels = impulse.shape
        count = max(-(-frames // size), 1)
        padded = np.zeros((count * size, channels), dtype=np.float64)
        padded[:frames] = impulse

        self.partition_frames = size
        self.channels = channels
        self._fft_size = 2 * size
        self._head: FloatArray = padded[:size].copy()
        # (partitions, bins, channels)
        self._spectra: ComplexArray = np.fft.rfft(
            padded.reshape(count, size, channels), n=self._fft_size, axis=1
        )
        bins = self._spectra.shape[1]
        # Spectra of the last ``count - 1`` completed input segments, newest at ``_newest``.
        self._history: ComplexArray = np.zeros((count - 1, bins, channels), dtype=np.complex128)
        self._newest = -1
        self._pending: ComplexArray = np.zeros((bins, channels), dtype=np.complex128)
        self._pending_time: FloatArray = np.zeros((self._fft_size, channels), dtype=np.float64)
        self._base: FloatArray = np.zeros((size, channels), dtype=np.float64)
        self._segment: FloatArray = np.zeros((size, channels), dtype=np.float64)
        self._filled = 0

    @property
    def partitions(self) -> int:
        return int(self._spectra.shape[0])

    def process(self, block: FloatArray) -> FloatArray:
        """Convolve the next ``(frames, channels)`` block, continuing the stream."""

        frames = block.shape[0]
        output = np.empty((frames, self.channels), dtype=np.float64)
        done = 0
        while done < frames:
            take = min(frames - done, self.partition_frames - self._filled)
            output[done : done + take] = self._process_chunk(block[done : done + take])
            done += take
        return output

    def _process_chunk(self, chunk: FloatArray) -> FloatArray:
        start = self._filled
        stop = start + chunk.shape[0]
        self._segment[start:stop] = chunk
        direct = fftconvolve(self._segment[:stop], self._head[:stop], axes=0)[start:stop]
        output = self._base[start:stop] + direct
        self._filled = stop
        if stop == self.partition_frames:
            self._complete_segment()
        return output

    def _complete_segment(self) -> None:
        size = self.partition_frames
        spectrum = np.fft.rfft(self._segment, n=self._fft_size, axis=0)
        own = np.fft.irfft(spectrum * self._spectra[0], n=self._fft_size, axis=0)
        tail = self._pending_time[size:] + own[size:]

        if self._history.shape[0]:
            self._newest = (self._newest + 1) % self._history.shape[0]
            self._history[self._newest] = spectrum
            self._pending = self._delayed_sum()
            self._pending_time = np.fft.irfft(self._pending, n=self._fft_size, axis=0)
        self._base = tail + self._pending_time[:size]
        self._segment.fill(0.0)
        self._filled = 0

    def _delayed_sum(self) -> ComplexArray:
        """Sum of history[j] x partition[j + 1], j counted back from the newest."""

        newest = self._newest
        recent = self._history[newest::-1]
        older = self._history[:newest:-1]
        total = np.einsum("kfc,kfc->fc", recent, self._spectra[1 : newest + 2])
        if older.shape[0]:
            total += np.einsum("kfc,kfc->fc", older, self._spectra[newest + 2 :])
        return total

    def release(self) -> None:
        empty_spectra = np.zeros((0, 0, self.channels), dtype=np.complex128)
        self._spectra = empty_spectra
        self._history = empty_spectra.copy()
