"""Append-only transcript built from chunk results in arrival order."""

import logging
import threading
from typing import Iterable, List, Optional

from pubsub import pub

from ..models.transcription import ChunkResult, TranscriptEntry, TranscriptSegment

logger = logging.getLogger(__name__)


class TranscriptAccumulator:
    """Merges chunk results into one ordered transcript.

    Entries are ordered by when their response arrived, not by when the
    audio was captured: the wire contract carries no chunk sequence number.
    """

    def __init__(self, topic: Optional[str] = "transcript.updated"):
        """Initialize transcript accumulator.

        Args:
            topic: Pub/sub topic that receives newly appended entries, None to disable
        """
        self.topic = topic
        self._entries: List[TranscriptEntry] = []
        self._next_position = 0
        self.lock = threading.RLock()

    def _append(self, new_entries: List[TranscriptEntry]) -> List[TranscriptEntry]:
        if not new_entries:
            return []
        if self.topic:
            pub.sendMessage(self.topic, entries=list(new_entries))
        return new_entries

    def append_text(self, text: Optional[str]) -> List[TranscriptEntry]:
        """Append a plain transcript. Blank text is ignored."""
        if not text or not text.strip():
            return []
        with self.lock:
            entry = TranscriptEntry(position=self._next_position, text=text.strip())
            self._next_position += 1
            self._entries.append(entry)
        logger.debug(f"Appended transcript #{entry.position}: {entry.text[:50]}")
        return self._append([entry])

    def append_segments(self, segments: Iterable[TranscriptSegment]) -> List[TranscriptEntry]:
        """Append speaker segments in the order the server returned them."""
        appended = []
        with self.lock:
            for segment in segments:
                if not segment.text or not segment.text.strip():
                    continue
                entry = TranscriptEntry(
                    position=self._next_position,
                    text=segment.text.strip(),
                    speaker=segment.speaker,
                    confidence=segment.confidence,
                )
                self._next_position += 1
                self._entries.append(entry)
                appended.append(entry)
        if appended:
            logger.debug(f"Appended {len(appended)} speaker segment(s)")
        return self._append(appended)

    def append_result(self, result: ChunkResult) -> List[TranscriptEntry]:
        """Append whichever shape the chunk result carries; segments win over text."""
        if result.speaker_segments:
            return self.append_segments(result.speaker_segments)
        return self.append_text(result.transcript)

    def entries(self) -> List[TranscriptEntry]:
        with self.lock:
            return list(self._entries)

    def segments(self) -> List[TranscriptSegment]:
        """Entries that carry a speaker label, as segments."""
        with self.lock:
            return [
                TranscriptSegment(speaker=e.speaker, text=e.text, confidence=e.confidence or 0.0)
                for e in self._entries if e.speaker is not None
            ]

    def full_text(self) -> str:
        """Flattened transcript for export, one entry per line."""
        with self.lock:
            return "\n".join(entry.render() for entry in self._entries)

    def clear(self) -> None:
        with self.lock:
            self._entries = []
            self._next_position = 0
        logger.debug("Transcript cleared")

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)
