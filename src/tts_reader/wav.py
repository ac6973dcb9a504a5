"""Temp WAV files for synthesized chunks.

Samples from the synthesizer are floats in roughly [-1, 1].  They are
written as 16-bit mono PCM with a fixed 44-byte RIFF header so the same
samples always produce the same bytes.
"""

from __future__ import annotations

import os
import struct
import tempfile
from typing import Iterable, Sequence

from .logging import get_logger

_log = get_logger("tts-reader.wav")

WAV_HEADER_SIZE = 44
DEFAULT_SAMPLE_RATE = 24000
TEMP_PREFIX = "tts-reader-"


def _to_int16(sample: float) -> int:
    s = max(-1.0, min(1.0, float(sample)))
    return int(s * 0x8000) if s < 0 else int(s * 0x7FFF)


def _wav_header(data_size: int, sample_rate: int) -> bytes:
    channels = 1
    bits_per_sample = 16
    block_align = channels * (bits_per_sample // 8)
    byte_rate = sample_rate * block_align
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,  # PCM fmt chunk size
        1,   # PCM format
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )


def encode_wav(samples: Sequence[float], sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Encode float samples as a mono 16-bit PCM WAV file (little-endian)."""
    pcm = struct.pack(f"<{len(samples)}h", *(_to_int16(s) for s in samples))
    return _wav_header(len(pcm), sample_rate) + pcm


def wrap_pcm16(pcm: bytes, sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Prefix raw mono 16-bit little-endian PCM with a WAV header."""
    if len(pcm) % 2:
        pcm = pcm[:-1]
    return _wav_header(len(pcm), sample_rate) + pcm


def _write_temp(data: bytes, index: int, ext: str) -> str:
    fd, path = tempfile.mkstemp(prefix=f"{TEMP_PREFIX}{index}-", suffix=f".{ext}")
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    return path


def write_temp_wav(samples: Sequence[float], sample_rate: int = DEFAULT_SAMPLE_RATE,
                   index: int = 0) -> str:
    """Write *samples* to a new temp WAV file and return its path."""
    path = _write_temp(encode_wav(samples, sample_rate), index, "wav")
    _log.debug("wrote %s (%d samples @ %d Hz)", path, len(samples), sample_rate)
    return path


def write_temp_audio(data: bytes, ext: str = "wav", index: int = 0) -> str:
    """Write already-encoded audio bytes (e.g. from the HTTP backend)."""
    return _write_temp(data, index, ext)


def remove_file(path: str) -> None:
    """Delete *path*, ignoring a missing file or any other OS error."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        _log.debug("could not delete %s: %s", path, e)


def cleanup_files(paths: Iterable[str]) -> None:
    """Best-effort delete of every path. Never raises."""
    for path in paths:
        remove_file(path)
