"""Pytest configuration and fixtures for notescribe tests."""

import asyncio
import logging
import os
import tempfile
import threading
import wave
from unittest.mock import Mock

import numpy as np
import pytest
from aiohttp import web

from notescribe.audio.devices import DeviceManager
from notescribe.models.transcription import ChunkResult
from notescribe.transcription.upload_client import UploadClient


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without hardware or network")
    config.addinivalue_line("markers", "integration: tests spanning several components")
    config.addinivalue_line("markers", "slow: tests that wait on real timers")
    config.addinivalue_line("markers", "hardware: tests that need a real input device")


DEVICE_TABLE = [
    {"index": 0, "name": "Built-in Output", "maxInputChannels": 0, "defaultSampleRate": 48000.0},
    {"index": 1, "name": "MacBook Pro Microphone", "maxInputChannels": 1, "defaultSampleRate": 48000.0},
    {"index": 2, "name": "BlackHole 2ch", "maxInputChannels": 2, "defaultSampleRate": 48000.0},
]


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio factory for testing without actual audio hardware."""
    mock_pyaudio_instance = Mock()
    mock_stream = Mock()

    # Configure mock stream
    mock_stream.is_active.return_value = True
    mock_stream.stop_stream.return_value = None
    mock_stream.close.return_value = None

    # Configure mock PyAudio instance
    mock_pyaudio_instance.open.return_value = mock_stream
    mock_pyaudio_instance.terminate.return_value = None
    mock_pyaudio_instance.get_device_count.return_value = len(DEVICE_TABLE)
    mock_pyaudio_instance.get_device_info_by_index.side_effect = lambda i: dict(DEVICE_TABLE[i])
    mock_pyaudio_instance.get_default_input_device_info.return_value = dict(DEVICE_TABLE[1])

    factory = Mock(return_value=mock_pyaudio_instance)

    yield {
        'factory': factory,
        'instance': mock_pyaudio_instance,
        'stream': mock_stream,
    }


@pytest.fixture
def device_manager(mock_pyaudio):
    return DeviceManager(pyaudio_factory=mock_pyaudio['factory'])


@pytest.fixture
def push_frames(mock_pyaudio):
    """Deliver float32 frames through the callback of the last opened mock stream."""
    def push(count: int, frame_size: int = 4096, value: float = 0.0, channels: int = 1):
        callback = mock_pyaudio['instance'].open.call_args.kwargs['stream_callback']
        frame = np.full(frame_size * channels, value, dtype=np.float32).tobytes()
        for _ in range(count):
            callback(frame, frame_size, {}, 0)

    return push


@pytest.fixture
def write_wav(temp_data_dir):
    """Write integer PCM frames to a WAV file in the temp directory."""
    def write(name: str, frames, sample_rate: int = 48000, channels: int = 1, sample_width: int = 2) -> str:
        path = os.path.join(temp_data_dir, name)
        with wave.open(path, 'wb') as wf:
            wf.setnchannels(channels)
            wf.setsampwidth(sample_width)
            wf.setframerate(sample_rate)
            wf.writeframes(frames if isinstance(frames, bytes) else np.asarray(frames, dtype="<i2").tobytes())
        return path

    return write


@pytest.fixture
def sine_wave():
    """Generate float32 sine wave samples."""
    def generate(duration_seconds: float = 1.0, sample_rate: int = 48000, freq: float = 440.0,
                 amplitude: float = 0.5) -> np.ndarray:
        t = np.arange(int(duration_seconds * sample_rate)) / sample_rate
        return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)

    return generate


class ScriptedUploadClient(UploadClient):
    """Upload client that returns (or raises) pre-set outcomes instead of posting.

    When hold_first is given, the first post waits for that event before replying.
    """

    def __init__(self, outcomes=None, hold_first=None):
        super().__init__("http://transcribe.test/chunks")
        self.outcomes = list(outcomes or [])
        self.calls = []
        self.hold_first = hold_first
        self.in_flight = threading.Event()

    async def post_chunk(self, pcm_bytes, meta):
        session_id, epoch = self.session_snapshot()
        self.calls.append({"pcm": pcm_bytes, "meta": meta, "session_id": session_id})
        outcome = self.outcomes.pop(0) if self.outcomes else ChunkResult()
        if self.hold_first is not None and len(self.calls) == 1:
            self.in_flight.set()
            await asyncio.get_running_loop().run_in_executor(None, self.hold_first.wait, 5)
        if isinstance(outcome, Exception):
            raise outcome
        self.remember_session(outcome.session_id, epoch)
        return outcome


@pytest.fixture
def scripted_client():
    def make(*outcomes, hold_first=None):
        return ScriptedUploadClient(outcomes, hold_first=hold_first)
    return make


class TranscriptionServer:
    """In-process transcription endpoint running on its own event loop thread."""

    def __init__(self):
        self.requests = []
        self.responses = []
        # Called on the server loop after a request is recorded, before the reply
        self.on_request = None
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.loop.run_forever, daemon=True)
        self.runner = None
        self.url = None

    def queue_response(self, status: int = 200, body=None):
        self.responses.append((status, body if body is not None else {}))

    async def _handler(self, request: web.Request) -> web.Response:
        form = await request.post()
        audio = form.get("audio")
        self.requests.append({
            "headers": dict(request.headers),
            "audio": audio.file.read() if audio is not None else None,
            "mode": form.get("mode"),
            "sessionId": form.get("sessionId"),
            "deviceLabel": form.get("deviceLabel"),
        })
        if self.on_request is not None:
            self.on_request()
        status, body = self.responses.pop(0) if self.responses else (200, {})
        if isinstance(body, str):
            return web.Response(status=status, text=body)
        return web.json_response(body, status=status)

    async def _start(self):
        app = web.Application()
        app.router.add_post("/transcribe", self._handler)
        self.runner = web.AppRunner(app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "127.0.0.1", 0)
        await site.start()
        port = self.runner.addresses[0][1]
        self.url = f"http://127.0.0.1:{port}/transcribe"

    def start(self):
        self.thread.start()
        asyncio.run_coroutine_threadsafe(self._start(), self.loop).result(timeout=5)

    def close(self):
        asyncio.run_coroutine_threadsafe(self.runner.cleanup(), self.loop).result(timeout=5)
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=2)
        self.loop.close()


@pytest.fixture
def transcription_server():
    server = TranscriptionServer()
    server.start()
    yield server
    server.close()
