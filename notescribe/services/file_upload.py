"""Upload mode: transcribe a recorded WAV file through the chunk upload path."""

import os
import time
import uuid
import logging
from typing import Any, Dict, Optional

from pubsub import pub

from ..audio.pcm import SampleFormatConverter
from ..audio.resampler import DEFAULT_TARGET_RATE, Resampler
from ..audio.wav_file import iter_wav_chunks, read_wav_info
from ..exceptions import MalformedResponseError, ResampleError, UploadAuthError, UploadChunkError
from ..models.audio import CaptureMode
from ..models.events import (
    CHUNK_FAILED,
    SESSION_EXPIRED,
    SESSION_STARTED,
    SESSION_STOPPED,
    SessionEvent,
)
from ..models.session import SessionMeta
from ..transcription.aggregator import TranscriptAccumulator
from ..transcription.upload_client import UploadClient
from .capture_session import SESSION_EXPIRED_MESSAGE

logger = logging.getLogger(__name__)


class FileUploadSession:
    """Sends a WAV file chunk by chunk, in order, as one transcription session.

    Chunks go through the same resample and PCM16 path as live capture and
    are posted with mode "upload". Failures are classified like live capture:
    an auth failure ends the upload, other chunk failures are skipped.
    """

    def __init__(
        self,
        upload_client: UploadClient,
        transcript: Optional[TranscriptAccumulator] = None,
        chunk_seconds: float = 3.0,
        target_sample_rate: int = DEFAULT_TARGET_RATE,
        event_topic: Optional[str] = "session.events",
        converter: Optional[SampleFormatConverter] = None,
    ):
        """Initialize file upload session.

        Args:
            upload_client: Client for the transcription endpoint
            transcript: Accumulator receiving chunk results
            chunk_seconds: Audio length of each uploaded chunk
            target_sample_rate: Rate of the PCM sent to the endpoint
            event_topic: Pub/sub topic for SessionEvents, None to disable
            converter: PCM16 encoder for outgoing chunks
        """
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be positive")
        self.upload_client = upload_client
        self.transcript = transcript if transcript is not None else TranscriptAccumulator()
        self.chunk_seconds = chunk_seconds
        self.event_topic = event_topic
        self.resampler = Resampler(target_sample_rate)
        self.converter = converter or SampleFormatConverter()

        self.chunks_sent = 0
        self.chunks_failed = 0
        self.last_error: Optional[str] = None

    def _publish(self, event_type: str, **metadata: Any) -> None:
        if not self.event_topic:
            return
        event = SessionEvent(event_id=str(uuid.uuid4()), event_type=event_type, metadata=metadata)
        try:
            pub.sendMessage(self.event_topic, event=event)
        except Exception as e:
            logger.warning(f"Error publishing {event_type} event: {e}")

    def _record_chunk_failure(self, sequence_number: int, error: Exception) -> None:
        self.chunks_failed += 1
        logger.warning(f"Chunk #{sequence_number} dropped: {error}")
        self._publish(CHUNK_FAILED, sequence_number=sequence_number, message=str(error))

    def upload(self, path: str, clear_transcript: bool = True) -> Dict[str, Any]:
        """Transcribe a WAV file, blocking until every chunk has been answered.

        Args:
            path: WAV file to upload
            clear_transcript: Start from an empty transcript

        Returns:
            Summary with session_id, duration_seconds, chunks_sent, chunks_failed and last_error

        Raises:
            ValueError: the file is not a readable PCM WAV file
        """
        info = read_wav_info(path)
        label = os.path.basename(path)
        meta = SessionMeta(mode=CaptureMode.UPLOAD, device_label=label)

        self.chunks_sent = 0
        self.chunks_failed = 0
        self.last_error = None
        self.upload_client.reset_session()
        if clear_transcript:
            self.transcript.clear()

        started = time.time()
        logger.info(f"Uploading {label} ({info.duration_seconds:.1f}s) in {self.chunk_seconds}s chunks")
        self._publish(SESSION_STARTED, device_label=label, mode=meta.mode.value)

        for chunk in iter_wav_chunks(path, self.chunk_seconds):
            try:
                samples = self.resampler.resample(chunk.samples, chunk.sample_rate)
            except ResampleError as e:
                self._record_chunk_failure(chunk.sequence_number, e)
                continue

            pcm = self.converter.encode(samples)
            logger.info(f"Uploading chunk #{chunk.sequence_number}{' (final)' if chunk.is_final else ''}: "
                        f"{len(pcm)} bytes")
            try:
                result = self.upload_client.post_chunk_sync(pcm, meta)
            except UploadAuthError as e:
                logger.error(f"Authentication failed uploading chunk #{chunk.sequence_number}: {e}")
                self.last_error = SESSION_EXPIRED_MESSAGE
                self._publish(SESSION_EXPIRED, message=SESSION_EXPIRED_MESSAGE)
                break
            except MalformedResponseError as e:
                logger.info(f"Ignoring malformed response for chunk #{chunk.sequence_number}: {e}")
                continue
            except UploadChunkError as e:
                self._record_chunk_failure(chunk.sequence_number, e)
                continue

            self.chunks_sent += 1
            self.transcript.append_result(result)

        summary = {
            "session_id": self.upload_client.session_id,
            "duration_seconds": int(round(info.duration_seconds)),
            "chunks_sent": self.chunks_sent,
            "chunks_failed": self.chunks_failed,
            "last_error": self.last_error,
        }
        logger.info(f"Upload of {label} finished in {time.time() - started:.1f}s: "
                    f"{self.chunks_sent} chunks sent, {self.chunks_failed} failed")
        self._publish(SESSION_STOPPED, **summary)
        return summary
