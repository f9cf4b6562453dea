"""Transcription upload and transcript merging."""

from .upload_client import UploadClient
from .aggregator import TranscriptAccumulator
from ..models.transcription import ChunkResult, TranscriptSegment

__all__ = [
    "UploadClient",
    "TranscriptAccumulator",
    "ChunkResult",
    "TranscriptSegment",
]
