"""Canonical 24-bit PCM WAV encoding."""

from __future__ import annotations

import struct
from typing import NamedTuple

import numpy as np
from numpy.typing import NDArray

from .audio import AudioNumbers, ensure_buffer_contract
from .errors import InvalidParameterError

BITS_PER_SAMPLE = 24
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8
PCM_FORMAT = 1
HEADER_SIZE = 44
FMT_CHUNK_SIZE = 16

_NEGATIVE_SCALE = float(1 << 23)
_POSITIVE_SCALE = float((1 << 23) - 1)
_MAX_DATA_SIZE = 0xFFFFFFFF - 36


class WavHeader(NamedTuple):
    riff_size: int
    format_tag: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int


def quantize_24bit(buffer: AudioNumbers) -> NDArray[np.int32]:
    """Clamp to [-1, 1] and scale to signed 24-bit integers (truncating)."""

    samples = np.clip(ensure_buffer_contract(buffer), -1.0, 1.0)
    scaled = np.where(samples < 0.0, samples * _NEGATIVE_SCALE, samples * _POSITIVE_SCALE)
    return np.trunc(scaled).astype(np.int32)


def _header(channels: int, sample_rate: int, data_size: int) -> bytes:
    block_align = channels * BYTES_PER_SAMPLE
    return b"".join(
        (
            b"RIFF",
            struct.pack("<I", 36 + data_size),
            b"WAVE",
            b"fmt ",
            struct.pack(
                "<IHHIIHH",
                FMT_CHUNK_SIZE,
                PCM_FORMAT,
                channels,
                sample_rate,
                sample_rate * block_align,
                block_align,
                BITS_PER_SAMPLE,
            ),
            b"data",
            struct.pack("<I", data_size),
        )
    )


def encode_wav(buffer: AudioNumbers, sample_rate: int) -> bytes:
    """Encode a ``(frames, channels)`` float buffer (or 1-D mono) as WAV bytes.

    Samples are interleaved per frame, little-endian, 3 bytes each.
    """

    if sample_rate <= 0:
        raise InvalidParameterError(f"Sample rate must be positive, got {sample_rate}")
    quantized = quantize_24bit(buffer)
    frames, channels = quantized.shape
    if channels > 0xFFFF:
        raise InvalidParameterError(f"Too many channels for WAV: {channels}")
    data_size = frames * channels * BYTES_PER_SAMPLE
    if data_size > _MAX_DATA_SIZE:
        raise InvalidParameterError("Buffer too large for a RIFF container")

    # Row-major (frames, channels) already interleaves channels within each frame.
    little_endian = np.ascontiguousarray(quantized, dtype="<i4")
    payload = little_endian.view(np.uint8).reshape(-1, 4)[:, :BYTES_PER_SAMPLE]
    return _header(channels, sample_rate, data_size) + payload.tobytes()


def read_wav_header(data: bytes) -> WavHeader:
    """Parse the 44-byte canonical header written by ``encode_wav``."""

    if len(data) < HEADER_SIZE or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise InvalidParameterError("Not a canonical RIFF/WAVE byte stream")
    if data[12:16] != b"fmt " or data[36:40] != b"data":
        raise InvalidParameterError("Unexpected chunk layout")
    (riff_size,) = struct.unpack_from("<I", data, 4)
    fmt_size, format_tag, channels, sample_rate, byte_rate, block_align, bits = struct.unpack_from(
        "<IHHIIHH", data, 16
    )
    if fmt_size != FMT_CHUNK_SIZE:
        raise InvalidParameterError(f"Unexpected fmt chunk size {fmt_size}")
    (data_size,) = struct.unpack_from("<I", data, 40)
    return WavHeader(
        riff_size=riff_size,
        format_tag=format_tag,
        channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits,
        data_size=data_size,
    )
