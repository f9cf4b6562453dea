"""Float32 <-> little-endian PCM16 conversion with diagnostic statistics."""

import logging
from typing import Callable, Optional, Tuple

import numpy as np

from ..models.audio import SampleStats

logger = logging.getLogger(__name__)

PCM16_DTYPE = np.dtype("<i2")
BYTES_PER_SAMPLE = 2

_NEGATIVE_SCALE = 32768.0
_POSITIVE_SCALE = 32767.0


def _sanitize(samples) -> np.ndarray:
    """Return a clamped float64 copy with NaN mapped to 0 and infinities to +/-1."""
    data = np.asarray(samples, dtype=np.float64).reshape(-1)
    data = np.nan_to_num(data, nan=0.0, posinf=1.0, neginf=-1.0)
    return np.clip(data, -1.0, 1.0)


def compute_stats(samples) -> SampleStats:
    """Compute peak, RMS and zero count of a sample buffer."""
    data = _sanitize(samples)
    if data.size == 0:
        return SampleStats(peak=0.0, rms=0.0, zero_count=0, length=0)
    return SampleStats(
        peak=float(np.max(np.abs(data))),
        rms=float(np.sqrt(np.mean(np.square(data)))),
        zero_count=int(np.count_nonzero(data == 0.0)),
        length=int(data.size),
    )


def encode(samples) -> bytes:
    """Encode float samples in [-1, 1] as little-endian signed 16-bit PCM.

    Negative samples scale by 32768 and non-negative ones by 32767, so both
    ends of the int16 range are reachable. Values are rounded half-up.
    """
    data = _sanitize(samples)
    scaled = np.where(data < 0.0, data * _NEGATIVE_SCALE, data * _POSITIVE_SCALE)
    return np.floor(scaled + 0.5).astype(PCM16_DTYPE).tobytes()


def encode_with_stats(samples) -> Tuple[bytes, SampleStats]:
    """Encode samples and return the diagnostics alongside the bytes."""
    return encode(samples), compute_stats(samples)


def decode(data: bytes) -> np.ndarray:
    """Decode little-endian PCM16 into float32 samples, inverting encode()."""
    if len(data) % BYTES_PER_SAMPLE:
        raise ValueError(f"PCM16 buffer length must be even, got {len(data)} bytes")
    ints = np.frombuffer(data, dtype=PCM16_DTYPE).astype(np.float64)
    floats = np.where(ints < 0, ints / _NEGATIVE_SCALE, ints / _POSITIVE_SCALE)
    return floats.astype(np.float32)


class SampleFormatConverter:
    """Encodes float chunks to PCM16 and reports diagnostics for each one."""

    def __init__(self, stats_callback: Optional[Callable[[SampleStats], None]] = None):
        self.stats_callback = stats_callback
        self.last_stats: Optional[SampleStats] = None

    def encode(self, samples) -> bytes:
        pcm, stats = encode_with_stats(samples)
        self.last_stats = stats
        logger.debug(f"Encoded {stats.length} samples to {len(pcm)} bytes "
                     f"(peak={stats.peak:.4f}, rms={stats.rms:.4f}, zeros={stats.zero_count})")
        if stats.is_silent:
            logger.debug("Encoded chunk is silent")
        if self.stats_callback:
            try:
                self.stats_callback(stats)
            except Exception as e:
                logger.warning(f"Stats callback failed: {e}")
        return pcm

    def decode(self, data: bytes) -> np.ndarray:
        return decode(data)
