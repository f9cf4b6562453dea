"""Read recorded WAV files as a sequence of AudioChunks."""

import wave
import logging
from dataclasses import dataclass
from typing import Iterator

import numpy as np

from ..models.audio import AudioChunk

logger = logging.getLogger(__name__)

# Integer full scale per sample width in bytes
_FULL_SCALE = {1: 128.0, 2: 32768.0, 3: 8388608.0, 4: 2147483648.0}


@dataclass(frozen=True)
class WavInfo:
    """Header of a PCM WAV file."""
    path: str
    sample_rate: int
    channels: int
    sample_width: int
    frame_count: int

    @property
    def duration_seconds(self) -> float:
        return self.frame_count / self.sample_rate if self.sample_rate else 0.0


def _to_float32(raw: bytes, sample_width: int, channels: int) -> np.ndarray:
    """Integer PCM frames to float32 in [-1, 1), shaped (n,) or (n, channels)."""
    if sample_width == 1:
        # 8-bit WAV is unsigned
        ints = np.frombuffer(raw, dtype=np.uint8).astype(np.int32) - 128
    elif sample_width == 2:
        ints = np.frombuffer(raw, dtype="<i2").astype(np.int32)
    elif sample_width == 3:
        triplets = np.frombuffer(raw, dtype=np.uint8).reshape(-1, 3).astype(np.int32)
        ints = triplets[:, 0] | (triplets[:, 1] << 8) | (triplets[:, 2] << 16)
        ints = np.where(ints & 0x800000, ints - 0x1000000, ints)
    elif sample_width == 4:
        ints = np.frombuffer(raw, dtype="<i4").astype(np.int64)
    else:
        raise ValueError(f"Unsupported WAV sample width: {sample_width} bytes")

    samples = (ints / _FULL_SCALE[sample_width]).astype(np.float32)
    if channels > 1:
        samples = samples.reshape(-1, channels)
    return samples


def read_wav_info(path: str) -> WavInfo:
    """Read the header of a WAV file.

    Raises:
        ValueError: not a readable PCM WAV file
    """
    try:
        with wave.open(path, 'rb') as wf:
            return WavInfo(
                path=path,
                sample_rate=wf.getframerate(),
                channels=wf.getnchannels(),
                sample_width=wf.getsampwidth(),
                frame_count=wf.getnframes(),
            )
    except (wave.Error, EOFError) as e:
        raise ValueError(f"Not a PCM WAV file: {path}: {e}") from e


def iter_wav_chunks(path: str, chunk_seconds: float = 3.0) -> Iterator[AudioChunk]:
    """Yield the file as consecutive chunks of chunk_seconds; the last one may be shorter.

    started_at and ended_at are offsets in seconds from the start of the file.

    Args:
        path: WAV file to read
        chunk_seconds: Audio length of each chunk

    Raises:
        ValueError: unreadable file, unsupported sample width or non-positive chunk length
    """
    if chunk_seconds <= 0:
        raise ValueError("chunk_seconds must be positive")

    info = read_wav_info(path)
    if info.sample_width not in _FULL_SCALE:
        raise ValueError(f"Unsupported WAV sample width: {info.sample_width} bytes")
    frames_per_chunk = max(1, int(round(chunk_seconds * info.sample_rate)))
    logger.info(f"Reading {path}: {info.sample_rate}Hz, {info.channels} channel(s), "
                f"{info.sample_width * 8}-bit, {info.duration_seconds:.1f}s")

    with wave.open(path, 'rb') as wf:
        sequence_number = 0
        position = 0
        while True:
            raw = wf.readframes(frames_per_chunk)
            if not raw:
                break
            samples = _to_float32(raw, info.sample_width, info.channels)
            count = samples.shape[0]
            sequence_number += 1
            started_at = position / info.sample_rate
            position += count
            yield AudioChunk(
                samples=samples,
                sample_rate=info.sample_rate,
                channels=info.channels,
                sequence_number=sequence_number,
                started_at=started_at,
                ended_at=position / info.sample_rate,
                is_final=position >= info.frame_count,
            )
