"""Data models for the notescribe pipeline."""

from .audio import AudioFrame, AudioChunk, SampleStats, CaptureMode
from .events import SessionEvent
from .session import SessionState, SessionMeta, CaptureState
from .transcription import (
    TranscriptSegment,
    TranscriptionResponse,
    ChunkResult,
    TranscriptEntry,
)

__all__ = [
    "AudioFrame",
    "AudioChunk",
    "SampleStats",
    "CaptureMode",
    "SessionEvent",
    "SessionState",
    "SessionMeta",
    "CaptureState",
    "TranscriptSegment",
    "TranscriptionResponse",
    "ChunkResult",
    "TranscriptEntry",
]
