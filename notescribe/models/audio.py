"""Audio-related data models."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

# Peak amplitude below which a chunk is reported as silent
SILENCE_PEAK_THRESHOLD = 0.002


class CaptureMode(Enum):
    """Capture source; the value is what goes on the wire as `mode`."""
    MICROPHONE = "microphone"
    VIRTUAL_AUDIO = "virtualaudio"
    UPLOAD = "upload"


@dataclass(frozen=True)
class AudioFrame:
    """Samples delivered by one device callback."""
    samples: np.ndarray  # float32, shape (n,) or (n, channels)
    timestamp: float  # Time when this frame was captured
    frame_number: int

    @property
    def sample_count(self) -> int:
        return int(self.samples.shape[0])


@dataclass
class AudioChunk:
    """All frames accumulated between two flush boundaries."""
    samples: np.ndarray
    sample_rate: int
    channels: int
    sequence_number: int
    started_at: Optional[float]
    ended_at: Optional[float]
    is_final: bool = False

    @property
    def sample_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_seconds(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self.sample_count / self.sample_rate


@dataclass
class SampleStats:
    """Diagnostic statistics for one encoded buffer."""
    peak: float
    rms: float
    zero_count: int
    length: int

    @property
    def is_silent(self) -> bool:
        return self.peak < SILENCE_PEAK_THRESHOLD

    def as_dict(self) -> dict:
        return {
            "peak": self.peak,
            "rms": self.rms,
            "zeros": self.zero_count,
            "length": self.length,
        }
