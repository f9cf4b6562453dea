"""Capture session: device lifecycle, interval flushing and sequential chunk upload."""

import time
import uuid
import queue
import asyncio
import logging
import threading
from typing import Any, Dict, NamedTuple, Optional, Union

from pubsub import pub

from ..audio.buffer import ChunkAccumulator
from ..audio.devices import DEFAULT_FRAMES_PER_BUFFER, DeviceLease, DeviceManager
from ..audio.pcm import SampleFormatConverter
from ..audio.resampler import DEFAULT_TARGET_RATE, Resampler
from ..audio.timers import RepeatingTimer
from ..exceptions import (
    DeviceAcquisitionError,
    MalformedResponseError,
    ResampleError,
    UploadAuthError,
    UploadChunkError,
)
from ..models.audio import AudioChunk, CaptureMode
from ..models.events import (
    CHUNK_FAILED,
    SESSION_ERROR,
    SESSION_EXPIRED,
    SESSION_STARTED,
    SESSION_STOPPED,
    SessionEvent,
)
from ..models.session import CaptureState, SessionMeta, SessionState
from ..transcription.aggregator import TranscriptAccumulator
from ..transcription.upload_client import UploadClient

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "session expired"


class ChunkTask(NamedTuple):
    """A flushed chunk waiting for the upload worker."""
    chunk: AudioChunk
    generation: int


class CaptureSession:
    """Owns one recording: device lease, flush/elapsed timers and the upload worker.

    States: idle -> starting -> active -> stopping -> idle, plus
    active -> error -> idle. Chunks are uploaded strictly one at a time so
    every request carries the latest confirmed session id.
    """

    def __init__(
        self,
        device_manager: DeviceManager,
        upload_client: UploadClient,
        transcript: Optional[TranscriptAccumulator] = None,
        device: Union[None, int, str] = None,
        mode: CaptureMode = CaptureMode.MICROPHONE,
        device_label: Optional[str] = None,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        frames_per_buffer: int = DEFAULT_FRAMES_PER_BUFFER,
        flush_interval_seconds: float = 3.0,
        target_sample_rate: int = DEFAULT_TARGET_RATE,
        event_topic: Optional[str] = "session.events",
        drain_timeout_seconds: float = 30.0,
        converter: Optional[SampleFormatConverter] = None,
    ):
        """Initialize capture session.

        Args:
            device_manager: Source of exclusive device leases
            upload_client: Client for the transcription endpoint
            transcript: Accumulator receiving chunk results
            device: Device index, '#index', name or name fragment; None for default input
            mode: Capture mode sent with every chunk
            device_label: Label sent as deviceLabel; defaults to the device name
            sample_rate: Capture rate; None uses the device default
            channels: Channels to capture (downmixed before upload)
            frames_per_buffer: Samples per device callback
            flush_interval_seconds: Wall-clock length of one chunk
            target_sample_rate: Rate of the PCM sent to the endpoint
            event_topic: Pub/sub topic for SessionEvents, None to disable
            drain_timeout_seconds: How long stop() waits for queued uploads
            converter: PCM16 encoder for outgoing chunks; defaults to SampleFormatConverter()
        """
        if flush_interval_seconds <= 0:
            raise ValueError("flush_interval_seconds must be positive")

        self.device_manager = device_manager
        self.upload_client = upload_client
        self.transcript = transcript if transcript is not None else TranscriptAccumulator()
        self.device = device
        self.mode = mode
        self.device_label = device_label
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_buffer = frames_per_buffer
        self.flush_interval_seconds = flush_interval_seconds
        self.event_topic = event_topic
        self.drain_timeout_seconds = drain_timeout_seconds

        self.resampler = Resampler(target_sample_rate)
        self.converter = converter or SampleFormatConverter()

        self.state = SessionState.IDLE
        self.lock = threading.RLock()
        self.generation = 0

        # Per-recording resources
        self.lease: Optional[DeviceLease] = None
        self.accumulator: Optional[ChunkAccumulator] = None
        self.flush_timer: Optional[RepeatingTimer] = None
        self.elapsed_timer: Optional[RepeatingTimer] = None
        self.task_queue: Optional[queue.Queue] = None
        self.worker_thread: Optional[threading.Thread] = None
        self.halt_event = threading.Event()
        self.meta = SessionMeta(mode=mode, device_label=device_label)

        # Client-local state
        self.last_error: Optional[str] = None
        self.elapsed_seconds = 0
        self.is_uploading = False
        self.chunks_sent = 0
        self.chunks_failed = 0
        self.start_time: Optional[float] = None

    # ------------------------------------------------------------------ state

    @property
    def is_recording(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def session_id(self) -> Optional[str]:
        return self.upload_client.session_id

    def get_capture_state(self) -> CaptureState:
        with self.lock:
            return CaptureState(
                state=self.state,
                is_recording=self.is_recording,
                is_uploading=self.is_uploading,
                last_error=self.last_error,
                elapsed_seconds=self.elapsed_seconds,
                session_id=self.session_id,
                chunks_sent=self.chunks_sent,
                chunks_failed=self.chunks_failed,
            )

    def _publish(self, event_type: str, **metadata: Any) -> None:
        if not self.event_topic:
            return
        event = SessionEvent(event_id=str(uuid.uuid4()), event_type=event_type, metadata=metadata)
        try:
            pub.sendMessage(self.event_topic, event=event)
        except Exception as e:
            logger.warning(f"Error publishing {event_type} event: {e}")

    # -------------------------------------------------------------- lifecycle

    def start(self, clear_transcript: bool = True) -> None:
        """Acquire the device and begin chunked capture.

        Raises:
            DeviceAcquisitionError: the device could not be opened; state returns to idle
        """
        self._await_previous_worker()

        with self.lock:
            if self.state in (SessionState.STARTING, SessionState.ACTIVE, SessionState.STOPPING):
                logger.warning(f"Cannot start capture session in state {self.state.value}")
                return

            self.state = SessionState.STARTING
            self.generation += 1
            generation = self.generation
            self.last_error = None
            self.elapsed_seconds = 0
            self.chunks_sent = 0
            self.chunks_failed = 0
            self.upload_client.reset_session()
            if clear_transcript:
                self.transcript.clear()

            logger.info(f"Starting capture session (mode={self.mode.value}, "
                        f"flush every {self.flush_interval_seconds}s)")
            lease = None
            try:
                lease = self.device_manager.acquire(
                    self.device,
                    sample_rate=self.sample_rate,
                    channels=self.channels,
                    frames_per_buffer=self.frames_per_buffer,
                )
                accumulator = ChunkAccumulator(channels=lease.device.channels)
                lease.device.open(accumulator.add_frame, self._on_device_error)
            except Exception as e:
                if lease is not None:
                    try:
                        lease.release()
                    except Exception as release_error:
                        logger.warning(f"Error releasing device after failed start: {release_error}")
                self.state = SessionState.IDLE
                self.last_error = str(e)
                logger.error(f"Could not start capture: {e}")
                if isinstance(e, DeviceAcquisitionError):
                    raise
                raise DeviceAcquisitionError(str(e)) from e

            self.lease = lease
            self.accumulator = accumulator
            self.meta = SessionMeta(mode=self.mode, device_label=self.device_label or lease.device.label)

            self.halt_event = threading.Event()
            self.task_queue = queue.Queue()
            self.worker_thread = threading.Thread(
                target=self._worker_loop,
                args=(self.task_queue, self.halt_event),
                daemon=True,
            )
            self.worker_thread.name = f"upload_worker_{generation}"
            self.worker_thread.start()

            self.flush_timer = RepeatingTimer(self.flush_interval_seconds, self._on_flush_tick, "FlushTimer")
            self.elapsed_timer = RepeatingTimer(1.0, self._on_elapsed_tick, "ElapsedTimer")
            self.flush_timer.start()
            self.elapsed_timer.start()

            self.start_time = time.time()
            self.state = SessionState.ACTIVE

        logger.info(f"Capture session active on '{self.meta.device_label}' "
                    f"({lease.device.sample_rate}Hz -> {self.resampler.output_rate}Hz)")
        self._publish(SESSION_STARTED, device_label=self.meta.device_label, mode=self.mode.value)

    def retry(self) -> None:
        """Start again after an error, keeping the transcript gathered so far."""
        with self.lock:
            if self.state != SessionState.ERROR:
                logger.warning(f"Retry requested in state {self.state.value}, ignoring")
                return
            self.state = SessionState.IDLE
        self.start(clear_transcript=False)

    def stop(self) -> Dict[str, Any]:
        """Stop capture, upload the last partial chunk and release everything.

        Idempotent and safe in any state.

        Returns:
            Summary of the session that just ended
        """
        with self.lock:
            previous_state = self.state
            if previous_state == SessionState.IDLE:
                return self._summary()
            if previous_state == SessionState.STOPPING:
                logger.warning("Stop already in progress")
                return self._summary()

            self.state = SessionState.STOPPING
            logger.info("Stopping capture session")
            lease, timers = self.lease, (self.flush_timer, self.elapsed_timer)
            accumulator, worker, task_queue = self.accumulator, self.worker_thread, self.task_queue
            generation = self.generation

        # Outside the lock: timer ticks and the worker take it too
        self._release_resources(lease, timers)

        # Best-effort final chunk
        if previous_state == SessionState.ACTIVE and accumulator is not None and task_queue is not None:
            try:
                chunk = accumulator.flush_chunk(lease.device.sample_rate, is_final=True)
                if chunk is not None:
                    task_queue.put(ChunkTask(chunk, generation))
            except Exception as e:
                logger.error(f"Error flushing final chunk: {e}")

        self._drain_worker(worker, task_queue)

        with self.lock:
            summary = self._summary()
            self.lease = None
            self.accumulator = None
            self.flush_timer = None
            self.elapsed_timer = None
            self.worker_thread = None
            self.task_queue = None
            self.is_uploading = False
            self.state = SessionState.IDLE

        logger.info(f"Capture session stopped: {summary['chunks_sent']} chunks sent, "
                    f"{summary['chunks_failed']} failed")
        self._publish(SESSION_STOPPED, **summary)
        return summary

    def close(self) -> None:
        self.stop()

    def __enter__(self) -> "CaptureSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def __del__(self):
        """Ensure the device is released on deletion."""
        try:
            if self.state != SessionState.IDLE:
                self.stop()
        except Exception as e:
            logger.warning(f"Error stopping capture session during cleanup: {e}")

    def _summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "duration_seconds": self.elapsed_seconds,
            "chunks_sent": self.chunks_sent,
            "chunks_failed": self.chunks_failed,
            "last_error": self.last_error,
        }

    @staticmethod
    def _release_resources(lease: Optional[DeviceLease], timers) -> None:
        """Disconnect the stream, release the device and cancel timers, in that order.

        Every step runs even if an earlier one raises.
        """
        if lease is not None:
            try:
                lease.device.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting audio stream: {e}")
            try:
                lease.release()
            except Exception as e:
                logger.error(f"Error releasing audio device: {e}")
        for timer in timers:
            if timer is None:
                continue
            try:
                timer.cancel()
            except Exception as e:
                logger.error(f"Error cancelling timer {timer.name}: {e}")

    def _await_previous_worker(self) -> None:
        """Let the worker of an errored recording finish its in-flight upload.

        Keeps a retry from posting while the old recording still has a request open.
        """
        with self.lock:
            if self.state not in (SessionState.IDLE, SessionState.ERROR):
                return
            previous = self.worker_thread
        if previous is None or previous is threading.current_thread() or not previous.is_alive():
            return
        logger.info(f"Waiting for {previous.name} to finish before starting")
        previous.join(self.drain_timeout_seconds)
        if previous.is_alive():
            logger.warning(f"Upload worker {previous.name} still busy after "
                           f"{self.drain_timeout_seconds}s, starting anyway")

    def _drain_worker(self, worker: Optional[threading.Thread], task_queue: Optional[queue.Queue]) -> None:
        if worker is None or task_queue is None:
            return
        task_queue.put(None)
        if worker is threading.current_thread():
            return
        worker.join(self.drain_timeout_seconds)
        if worker.is_alive():
            logger.warning(f"Upload worker {worker.name} did not finish within "
                           f"{self.drain_timeout_seconds}s")

    def _fail(self, message: str, event_type: str, generation: int) -> None:
        """Move an active session to error and release its resources."""
        with self.lock:
            if generation != self.generation:
                return
            self.halt_event.set()
            if self.state == SessionState.STOPPING:
                self.last_error = message
                return
            if self.state != SessionState.ACTIVE:
                return

            logger.error(f"Capture session failed: {message}")
            lease, timers = self.lease, (self.flush_timer, self.elapsed_timer)
            worker, task_queue = self.worker_thread, self.task_queue
            self._drop_pending(task_queue)
            self.last_error = message
            self.is_uploading = False
            self.state = SessionState.ERROR

        self._release_resources(lease, timers)
        self._drain_worker(worker, task_queue)
        self._publish(event_type, message=message)

    @staticmethod
    def _drop_pending(task_queue: Optional[queue.Queue]) -> None:
        if task_queue is None:
            return
        dropped = 0
        while True:
            try:
                task = task_queue.get_nowait()
            except queue.Empty:
                break
            task_queue.task_done()
            if task is not None:
                dropped += 1
        if dropped:
            logger.info(f"Dropped {dropped} pending chunk(s)")

    # ---------------------------------------------------------------- ticks

    def _on_flush_tick(self) -> None:
        """Flush the accumulator and queue the chunk; never blocks on upload."""
        with self.lock:
            if self.state != SessionState.ACTIVE or self.accumulator is None:
                return
            chunk = self.accumulator.flush_chunk(self.lease.device.sample_rate)
            if chunk is None:
                logger.debug("Flush tick with no audio, skipping")
                return
            self.task_queue.put(ChunkTask(chunk, self.generation))
        logger.debug(f"Queued chunk #{chunk.sequence_number} ({chunk.duration_seconds:.2f}s)")

    def _on_elapsed_tick(self) -> None:
        with self.lock:
            if self.state != SessionState.ACTIVE:
                return
            self.elapsed_seconds += 1
            device_alive = self.lease is not None and self.lease.device.is_active()
            generation = self.generation
        if not device_alive:
            self._fail("Audio device stopped unexpectedly", SESSION_ERROR, generation)

    def _on_device_error(self, error: Exception) -> None:
        """Called from the audio thread; tear down elsewhere so the callback can return."""
        generation = self.generation
        threading.Thread(
            target=self._fail,
            args=(str(error), SESSION_ERROR, generation),
            name="DeviceErrorHandler",
            daemon=True,
        ).start()

    # --------------------------------------------------------------- upload

    def _worker_loop(self, task_queue: queue.Queue, halt_event: threading.Event) -> None:
        """Upload chunks one at a time until the sentinel arrives."""
        thread_name = threading.current_thread().name
        logger.debug(f"Worker thread {thread_name} starting")

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            while True:
                task = task_queue.get()
                if task is None:
                    logger.debug(f"Worker {thread_name} received sentinel, exiting.")
                    task_queue.task_done()
                    break
                try:
                    if halt_event.is_set():
                        logger.debug(f"Skipping chunk #{task.chunk.sequence_number}: session halted")
                    else:
                        loop.run_until_complete(self._process_chunk(task))
                except Exception as e:
                    logger.error(f"Unhandled exception processing chunk in {thread_name}: {e}", exc_info=True)
                finally:
                    task_queue.task_done()
        finally:
            loop.close()
            logger.debug(f"Worker thread {thread_name} exiting and closing its event loop.")

    def _record_chunk_failure(self, chunk: AudioChunk, error: Exception) -> None:
        with self.lock:
            self.chunks_failed += 1
        logger.warning(f"Chunk #{chunk.sequence_number} dropped: {error}")
        self._publish(CHUNK_FAILED, sequence_number=chunk.sequence_number, message=str(error))

    async def _process_chunk(self, task: ChunkTask) -> None:
        """Resample, encode and upload one chunk, classifying every failure."""
        chunk = task.chunk
        if self._is_stale(task):
            logger.info(f"Skipping chunk #{chunk.sequence_number} from a previous recording")
            return
        try:
            samples = self.resampler.resample(chunk.samples, chunk.sample_rate)
        except ResampleError as e:
            self._record_chunk_failure(chunk, e)
            return

        pcm = self.converter.encode(samples)
        logger.info(f"Uploading chunk #{chunk.sequence_number}{' (final)' if chunk.is_final else ''}: "
                    f"{len(pcm)} bytes")

        self._set_uploading(task, True)
        try:
            result = await self.upload_client.post_chunk(pcm, self.meta)
        except UploadAuthError as e:
            logger.error(f"Authentication failed uploading chunk #{chunk.sequence_number}: {e}")
            self._fail(SESSION_EXPIRED_MESSAGE, SESSION_EXPIRED, task.generation)
            return
        except MalformedResponseError as e:
            logger.info(f"Ignoring malformed response for chunk #{chunk.sequence_number}: {e}")
            return
        except UploadChunkError as e:
            self._record_chunk_failure(chunk, e)
            return
        finally:
            self._set_uploading(task, False)

        with self.lock:
            if task.generation != self.generation:
                logger.info(f"Discarding result for chunk #{chunk.sequence_number} from a previous recording")
                return
            self.chunks_sent += 1
        self.transcript.append_result(result)

    def _is_stale(self, task: ChunkTask) -> bool:
        with self.lock:
            return task.generation != self.generation

    def _set_uploading(self, task: ChunkTask, uploading: bool) -> None:
        # A leftover worker must not overwrite the flag of the current recording
        with self.lock:
            if task.generation == self.generation:
                self.is_uploading = uploading
