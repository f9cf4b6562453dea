"""Main application entry point for notescribe."""

import sys
import time
import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pubsub import pub
from rich.console import Console
from rich.table import Table

from notescribe.audio.devices import DeviceManager
from notescribe.exceptions import DeviceAcquisitionError
from notescribe.models.audio import CaptureMode
from notescribe.models.events import CHUNK_FAILED, SESSION_ERROR, SESSION_EXPIRED, SessionEvent
from notescribe.models.session import SessionState
from notescribe.models.transcription import TranscriptEntry
from notescribe.services.capture_session import CaptureSession
from notescribe.services.file_upload import FileUploadSession
from notescribe.transcription.aggregator import TranscriptAccumulator
from notescribe.transcription.upload_client import UploadClient

from .config import TranscriberConfig

logger = logging.getLogger(__name__)

TRANSCRIPT_TOPIC = "transcript.updated"
SESSION_TOPIC = "session.events"


class Recorder:
    """Wires device, upload client and transcript together for one CLI run."""

    def __init__(self, config: TranscriberConfig, console: Optional[Console] = None,
                 output_path: Optional[str] = None):
        self.config = config
        self.console = console or Console()
        self.output_path = output_path
        self.should_exit = False
        self.cleaned_up = False
        self.session: Optional[CaptureSession] = None
        self.upload_client: Optional[UploadClient] = None
        self.transcript: Optional[TranscriptAccumulator] = None

    def init(self, device: Optional[str] = None, mode: Optional[str] = None) -> None:
        logger.info("Initializing services...")

        flush_interval = float(self.config.get('capture.flush_interval_seconds', 3.0))
        target_rate = int(self.config.get('upload.target_sample_rate', 24000))
        capture_mode = CaptureMode(mode) if mode else self.config.get_capture_mode()

        logger.info(f"Capture settings: mode={capture_mode.value}, flush every {flush_interval}s, "
                    f"upload at {target_rate}Hz")

        self.upload_client = UploadClient(
            endpoint_url=self.config.get_endpoint_url(),
            token_provider=self.config.get_token_provider(),
            timeout_seconds=float(self.config.get('endpoint.timeout_seconds', 30.0)),
            require_token=bool(self.config.get('auth.require_token', False)),
        )
        self.transcript = TranscriptAccumulator(TRANSCRIPT_TOPIC)
        self.session = CaptureSession(
            device_manager=DeviceManager(),
            upload_client=self.upload_client,
            transcript=self.transcript,
            device=device if device is not None else self.config.get('audio.device'),
            mode=capture_mode,
            sample_rate=self.config.get('audio.sample_rate'),
            channels=int(self.config.get('audio.channels', 1)),
            frames_per_buffer=int(self.config.get('audio.frames_per_buffer', 4096)),
            flush_interval_seconds=flush_interval,
            target_sample_rate=target_rate,
            event_topic=SESSION_TOPIC,
        )

        pub.subscribe(self._on_transcript, TRANSCRIPT_TOPIC)
        pub.subscribe(self._on_session_event, SESSION_TOPIC)

    def _on_transcript(self, entries: List[TranscriptEntry]) -> None:
        for entry in entries:
            if entry.speaker is not None:
                self.console.print(f"[bold cyan]{entry.speaker}[/]: {entry.text}")
            else:
                self.console.print(entry.text)

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.event_type == SESSION_EXPIRED:
            self.console.print("🔒 Session expired, sign in again to continue recording", style="bold red")
        elif event.event_type == SESSION_ERROR:
            self.console.print(f"❌ Recording stopped: {event.metadata.get('message')}", style="bold red")
        elif event.event_type == CHUNK_FAILED:
            self.console.print(f"⚠️  Chunk skipped: {event.metadata.get('message')}", style="yellow")

    def run(self, duration: Optional[int]) -> None:
        try:
            self.session.start()
            self.console.print("🎤 Recording... press Ctrl+C to stop", style="green")
            started = time.time()
            while not self.should_exit:
                if self.session.state != SessionState.ACTIVE:
                    break
                if duration and time.time() - started >= duration:
                    break
                time.sleep(0.2)
        except DeviceAcquisitionError as e:
            self.console.print(f"❌ Could not open audio device: {e}", style="bold red")
            logger.error(f"Device acquisition failed: {e}")
        finally:
            self.cleanup()

    def transcribe_file(self, path: str) -> Optional[str]:
        """Upload a recorded WAV file instead of capturing; returns the transcript path."""
        uploader = FileUploadSession(
            upload_client=self.upload_client,
            transcript=self.transcript,
            chunk_seconds=float(self.config.get('capture.flush_interval_seconds', 3.0)),
            target_sample_rate=int(self.config.get('upload.target_sample_rate', 24000)),
            event_topic=SESSION_TOPIC,
        )
        try:
            self.console.print(f"📤 Uploading {path}...", style="green")
            summary = uploader.upload(path)
            logger.info(f"File upload summary: {summary}")
        except (OSError, ValueError) as e:
            self.console.print(f"❌ Could not read {path}: {e}", style="bold red")
            logger.error(f"File upload failed: {e}")
        return self.cleanup()

    def cleanup(self) -> Optional[str]:
        """Stop the session and write the transcript; returns the output path."""
        if self.session is None or self.cleaned_up:
            return None
        self.cleaned_up = True
        summary = self.session.stop()
        try:
            pub.unsubscribe(self._on_transcript, TRANSCRIPT_TOPIC)
            pub.unsubscribe(self._on_session_event, SESSION_TOPIC)
        except Exception as e:
            logger.warning(f"Error during unsubscribe: {e}")
        logger.info(f"Session summary: {summary}")
        return self.save_transcript()

    def save_transcript(self, output_path: Optional[str] = None) -> Optional[str]:
        text = self.transcript.full_text() if self.transcript else ""
        if not text:
            self.console.print("No transcript to save", style="dim")
            return None
        output_path = output_path or self.output_path
        if not output_path:
            out_dir = Path(self.config.get_output_directory())
            output_path = str(out_dir / f"transcript_{datetime.now().strftime('%Y%m%d_%H%M%S')}.txt")
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_text(text + "\n", encoding='utf-8')
        self.console.print(f"📝 Transcript saved to {output_path}", style="green")
        return output_path


def list_devices(console: Console) -> None:
    manager = DeviceManager()
    table = Table(title="Audio input devices")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Channels", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Virtual")
    for device in manager.list_input_devices():
        table.add_row(str(device.index), device.name, str(device.max_input_channels),
                      str(device.default_sample_rate), "yes" if device.is_virtual else "")
    console.print(table)
    drivers = manager.detect_virtual_drivers()
    if drivers:
        console.print(f"Virtual drivers detected: {', '.join(drivers)}")


def setup_logging(config, level: str = "INFO") -> None:

    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/notescribe.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("="*50)
    logger.info("notescribe starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("="*50)


def main() -> None:
    """Main entry point for notescribe."""
    parser = argparse.ArgumentParser(
        description="notescribe - chunked meeting transcription",
        epilog="Records until Ctrl+C (or --duration), then saves the transcript"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: notescribe.yaml if present)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (overrides config)"
    )

    parser.add_argument(
        "--duration",
        type=int,
        help="Stop recording after this many seconds"
    )

    parser.add_argument(
        "--device",
        type=str,
        help="Input device: index, '#index', name or part of a name"
    )

    parser.add_argument(
        "--mode",
        type=str,
        choices=[m.value for m in CaptureMode],
        help="Capture mode sent to the server (overrides config)"
    )

    parser.add_argument(
        "--file",
        type=str,
        help="Transcribe a WAV file instead of recording"
    )

    parser.add_argument(
        "--output",
        type=str,
        help="Write the final transcript to this file"
    )

    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List audio input devices and exit"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="notescribe v0.1.0"
    )

    args = parser.parse_args()
    console = Console()

    if args.list_devices:
        list_devices(console)
        return

    recorder = None
    try:
        config = TranscriberConfig(args.config)
        setup_logging(config, args.log_level or config.get('logging.level', 'INFO'))
        recorder = Recorder(config, console, output_path=args.output)
        recorder.init(device=args.device, mode=args.mode)
        if args.file:
            recorder.transcribe_file(args.file)
        else:
            recorder.run(args.duration)
    except KeyboardInterrupt:
        if recorder:
            recorder.cleanup()
        console.print("\n👋 Goodbye!")
    except Exception as e:
        console.print(f"❌ Error: {e}", style="bold red")
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
