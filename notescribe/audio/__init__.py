"""Audio capture and processing module."""

from .buffer import ChunkAccumulator
from .devices import DeviceManager, DeviceLease, PyAudioInputDevice
from .pcm import SampleFormatConverter
from .resampler import Resampler

__all__ = [
    'ChunkAccumulator',
    'DeviceManager',
    'DeviceLease',
    'PyAudioInputDevice',
    'SampleFormatConverter',
    'Resampler',
]
