"""Unit tests for FileUploadSession."""

import numpy as np
import pytest
from pubsub import pub

from notescribe.exceptions import MalformedResponseError, UploadAuthError, UploadChunkError
from notescribe.models.audio import CaptureMode
from notescribe.models.events import CHUNK_FAILED, SESSION_EXPIRED, SESSION_STARTED, SESSION_STOPPED
from notescribe.models.transcription import ChunkResult
from notescribe.services.capture_session import SESSION_EXPIRED_MESSAGE
from notescribe.services.file_upload import FileUploadSession

EVENT_TOPIC = "session.test_file_events"


@pytest.fixture
def events():
    received = []

    def listener(event):
        received.append(event)

    pub.subscribe(listener, EVENT_TOPIC)
    yield received
    pub.unsubscribe(listener, EVENT_TOPIC)


@pytest.fixture
def meeting_wav(write_wav):
    """Seven seconds of silence at 48 kHz."""
    return write_wav("meeting.wav", np.zeros(48000 * 7, dtype="<i2"))


@pytest.mark.unit
class TestFileUploadSession:
    """Test cases for uploading a recorded file chunk by chunk."""

    def test_uploads_every_chunk_in_order(self, scripted_client, meeting_wav, events):
        """Test each 3 s slice is resampled to 24 kHz PCM16 and posted with mode upload."""
        client = scripted_client(
            ChunkResult(session_id="file-1", transcript="one"),
            ChunkResult(transcript="two"),
            ChunkResult(transcript="three"),
        )
        uploader = FileUploadSession(client, chunk_seconds=3.0, event_topic=EVENT_TOPIC)

        summary = uploader.upload(meeting_wav)

        assert [len(c["pcm"]) for c in client.calls] == [144000, 144000, 48000]
        assert all(c["meta"].mode == CaptureMode.UPLOAD for c in client.calls)
        assert client.calls[0]["meta"].device_label == "meeting.wav"
        assert [c["session_id"] for c in client.calls] == [None, "file-1", "file-1"]
        assert uploader.transcript.full_text() == "one\ntwo\nthree"
        assert summary == {
            "session_id": "file-1",
            "duration_seconds": 7,
            "chunks_sent": 3,
            "chunks_failed": 0,
            "last_error": None,
        }
        assert [e.event_type for e in events] == [SESSION_STARTED, SESSION_STOPPED]

    def test_starts_a_new_server_session(self, scripted_client, meeting_wav):
        """Test a leftover session id is not sent with the first chunk of a file."""
        client = scripted_client()
        client.remember_session("earlier", client.session_snapshot()[1])
        uploader = FileUploadSession(client, chunk_seconds=10.0, event_topic=None)

        uploader.upload(meeting_wav)

        assert client.calls[0]["session_id"] is None

    def test_chunk_failure_is_skipped(self, scripted_client, meeting_wav, events):
        """Test a failed or malformed chunk does not end the upload."""
        client = scripted_client(
            UploadChunkError("Transcription failed: 500 boom", 500),
            MalformedResponseError("bad json", 200),
            ChunkResult(transcript="tail"),
        )
        uploader = FileUploadSession(client, chunk_seconds=3.0, event_topic=EVENT_TOPIC)

        summary = uploader.upload(meeting_wav)

        assert len(client.calls) == 3
        assert summary["chunks_failed"] == 1
        assert summary["chunks_sent"] == 1
        assert uploader.transcript.full_text() == "tail"
        assert CHUNK_FAILED in [e.event_type for e in events]

    def test_auth_failure_stops_upload(self, scripted_client, meeting_wav, events):
        """Test a 401 ends the upload without sending the remaining chunks."""
        client = scripted_client(ChunkResult(transcript="one"), UploadAuthError("expired", 401))
        uploader = FileUploadSession(client, chunk_seconds=3.0, event_topic=EVENT_TOPIC)

        summary = uploader.upload(meeting_wav)

        assert len(client.calls) == 2
        assert summary["last_error"] == SESSION_EXPIRED_MESSAGE
        assert uploader.transcript.full_text() == "one"
        assert SESSION_EXPIRED in [e.event_type for e in events]

    def test_unreadable_file(self, scripted_client, temp_data_dir):
        """Test a missing file raises before anything is posted."""
        client = scripted_client()
        uploader = FileUploadSession(client, event_topic=None)

        with pytest.raises(OSError):
            uploader.upload(f"{temp_data_dir}/missing.wav")
        assert client.calls == []

    def test_invalid_chunk_length(self, scripted_client):
        """Test a non-positive chunk length is rejected."""
        with pytest.raises(ValueError):
            FileUploadSession(scripted_client(), chunk_seconds=0)
