"""Offline sample-rate conversion to mono at a fixed target rate."""

import logging
from math import gcd

import numpy as np
from scipy import signal

from ..exceptions import ResampleError

logger = logging.getLogger(__name__)

DEFAULT_TARGET_RATE = 24000


def downmix(samples) -> np.ndarray:
    """Average channels of a (frames, channels) buffer into mono.

    Mono input is returned as-is.
    """
    data = np.asarray(samples)
    if data.ndim == 1:
        return data
    if data.ndim != 2:
        raise ResampleError(f"Expected 1-D or 2-D samples, got shape {data.shape}")
    return data.mean(axis=1, dtype=np.float64).astype(np.float32)


def expected_length(input_length: int, input_rate: int, output_rate: int) -> int:
    """ceil(input_length * output_rate / input_rate) in integer arithmetic."""
    return -(-input_length * output_rate // input_rate)


def resample(samples, input_rate: int, output_rate: int = DEFAULT_TARGET_RATE) -> np.ndarray:
    """Resample samples to mono at output_rate.

    Multi-channel input is downmixed before resampling. When the rates
    match the (mono) input is returned unchanged. The input buffer is never
    modified.

    Raises:
        ResampleError: invalid rates or a failure in the resampling primitive
    """
    if input_rate <= 0 or output_rate <= 0:
        raise ResampleError(f"Sample rates must be positive (input={input_rate}, output={output_rate})")

    mono = downmix(samples)
    if input_rate == output_rate:
        return mono

    if mono.shape[0] == 0:
        return np.zeros(0, dtype=np.float32)

    divisor = gcd(input_rate, output_rate)
    up = output_rate // divisor
    down = input_rate // divisor
    try:
        resampled = signal.resample_poly(mono.astype(np.float64), up, down)
    except Exception as e:
        raise ResampleError(f"Resampling {input_rate}Hz -> {output_rate}Hz failed: {e}") from e

    target = expected_length(mono.shape[0], input_rate, output_rate)
    # resample_poly yields ceil(n*up/down) frames; pin it so callers can rely on it
    if resampled.shape[0] > target:
        resampled = resampled[:target]
    elif resampled.shape[0] < target:
        resampled = np.pad(resampled, (0, target - resampled.shape[0]))

    logger.debug(f"Resampled {mono.shape[0]} samples {input_rate}Hz -> {target} samples {output_rate}Hz")
    return resampled.astype(np.float32)


class Resampler:
    """Resampler bound to a fixed target rate."""

    def __init__(self, output_rate: int = DEFAULT_TARGET_RATE):
        self.output_rate = output_rate

    def resample(self, samples, input_rate: int) -> np.ndarray:
        return resample(samples, input_rate, self.output_rate)
