"""Event models published over pub/sub."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

SESSION_STARTED = "started"
SESSION_STOPPED = "stopped"
SESSION_ERROR = "error"
SESSION_EXPIRED = "session_expired"
CHUNK_FAILED = "chunk_failed"


@dataclass
class SessionEvent:
    """Capture session lifecycle event."""
    event_id: str
    event_type: str  # one of the SESSION_* / CHUNK_FAILED constants
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)
