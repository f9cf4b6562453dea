"""Capture session state models."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .audio import CaptureMode


class SessionState(Enum):
    """Lifecycle states of a CaptureSession."""
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class SessionMeta:
    """Metadata sent alongside every chunk."""
    mode: CaptureMode = CaptureMode.MICROPHONE
    device_label: Optional[str] = None


@dataclass
class CaptureState:
    """Snapshot of client-local state for one recording."""
    state: SessionState = SessionState.IDLE
    is_recording: bool = False
    is_uploading: bool = False
    last_error: Optional[str] = None
    elapsed_seconds: int = 0
    session_id: Optional[str] = None
    chunks_sent: int = 0
    chunks_failed: int = 0
