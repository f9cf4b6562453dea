"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TranscriptSegment(BaseModel):
    """One speaker-attributed span of speech. Speaker labels are chunk-local."""
    model_config = ConfigDict(extra="ignore")

    speaker: str = "unknown"
    text: str = ""
    confidence: float = 0.0

    @field_validator("speaker", mode="before")
    @classmethod
    def _speaker_as_str(cls, value: Any) -> str:
        if value is None:
            return "unknown"
        return str(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        if value is None:
            return 0.0
        return min(1.0, max(0.0, float(value)))


class TranscriptionResponse(BaseModel):
    """JSON body returned by the transcription endpoint."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    transcript: Optional[str] = None
    words: Optional[List[Any]] = None
    speaker_segments: Optional[List[TranscriptSegment]] = Field(default=None, alias="speakerSegments")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    error: Optional[str] = None


@dataclass
class ChunkResult:
    """Outcome of one successful chunk upload."""
    session_id: Optional[str] = None
    transcript: Optional[str] = None
    speaker_segments: List[TranscriptSegment] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.speaker_segments and not (self.transcript and self.transcript.strip())


@dataclass
class TranscriptEntry:
    """One item of the merged transcript, in arrival order."""
    position: int
    text: str
    speaker: Optional[str] = None
    confidence: Optional[float] = None
    received_at: datetime = field(default_factory=datetime.now)

    def render(self) -> str:
        if self.speaker is not None:
            return f"[{self.speaker}]: {self.text}"
        return self.text
