"""Chunk accumulator that collects device frames between flush boundaries."""

import time
import logging
import threading
from typing import List, Optional

import numpy as np

from ..models.audio import AudioFrame, AudioChunk

logger = logging.getLogger(__name__)


class ChunkAccumulator:
    """Collects frames from the device callback and hands them out chunk by chunk.

    add_frame() is called from the device callback thread and flush() from the
    flush timer. Both go through a single swap under the lock, so every frame
    ends up in exactly one chunk.
    """

    def __init__(self, channels: int = 1):
        """Initialize chunk accumulator.

        Args:
            channels: Number of channels per frame (1 for mono)
        """
        self.channels = channels

        # Thread-safe frame list
        self.frames: List[AudioFrame] = []
        self.lock = threading.Lock()
        self.frame_counter = 0
        self.chunk_counter = 0
        self.total_samples = 0

        logger.info(f"ChunkAccumulator initialized: {channels} channel(s)")

    def add_frame(self, samples) -> Optional[AudioFrame]:
        """Append one callback's samples. Silent frames are kept."""
        data = np.asarray(samples, dtype=np.float32)
        if data.shape[0] == 0:
            return None

        with self.lock:
            frame = AudioFrame(
                samples=data,
                timestamp=time.time(),
                frame_number=self.frame_counter
            )
            self.frame_counter += 1
            self.frames.append(frame)
            self.total_samples += frame.sample_count

        return frame

    def _swap(self) -> List[AudioFrame]:
        with self.lock:
            frames = self.frames
            self.frames = []
            self.total_samples = 0
        return frames

    def _empty(self) -> np.ndarray:
        if self.channels > 1:
            return np.zeros((0, self.channels), dtype=np.float32)
        return np.zeros(0, dtype=np.float32)

    def flush(self) -> np.ndarray:
        """Concatenate and clear all frames accumulated since the last flush.

        Returns:
            Contiguous float32 buffer in arrival order; zero-length if nothing
            was added since the last flush
        """
        frames = self._swap()
        if not frames:
            return self._empty()
        combined = np.concatenate([frame.samples for frame in frames], axis=0)
        logger.debug(f"Flushed {len(frames)} frames ({combined.shape[0]} samples)")
        return combined

    def flush_chunk(self, sample_rate: int, is_final: bool = False) -> Optional[AudioChunk]:
        """Flush into an AudioChunk, or None when nothing was accumulated."""
        frames = self._swap()
        if not frames:
            return None

        self.chunk_counter += 1
        chunk = AudioChunk(
            samples=np.concatenate([frame.samples for frame in frames], axis=0),
            sample_rate=sample_rate,
            channels=self.channels,
            sequence_number=self.chunk_counter,
            started_at=frames[0].timestamp,
            ended_at=frames[-1].timestamp,
            is_final=is_final,
        )
        logger.debug(f"Flushed chunk #{chunk.sequence_number}: {len(frames)} frames, "
                     f"{chunk.sample_count} samples ({chunk.duration_seconds:.2f}s)")
        return chunk

    @property
    def frame_count(self) -> int:
        with self.lock:
            return len(self.frames)

    def get_buffer_stats(self) -> dict:
        """Get buffer statistics."""
        with self.lock:
            oldest_timestamp = self.frames[0].timestamp if self.frames else None
            newest_timestamp = self.frames[-1].timestamp if self.frames else None

            return {
                "frame_count": len(self.frames),
                "total_samples": self.total_samples,
                "frames_received": self.frame_counter,
                "chunks_flushed": self.chunk_counter,
                "oldest_timestamp": oldest_timestamp,
                "newest_timestamp": newest_timestamp,
            }

    def clear(self) -> None:
        """Drop pending frames and reset counters."""
        with self.lock:
            self.frames = []
            self.total_samples = 0
            self.frame_counter = 0
            self.chunk_counter = 0
            logger.debug("Chunk accumulator cleared")
