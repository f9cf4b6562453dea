"""Exceptions raised by the capture and upload pipeline."""

from typing import Optional


class NotescribeError(Exception):
    """Base exception for notescribe errors."""

    pass


class DeviceAcquisitionError(NotescribeError):
    """Raised when an audio device cannot be opened (missing, busy, permission denied)."""

    pass


class DeviceError(NotescribeError):
    """Raised when an open device fails while recording."""

    pass


class ResampleError(NotescribeError):
    """Raised when a chunk cannot be resampled. Chunk-level, never fatal to a session."""

    pass


class UploadError(NotescribeError):
    """Base exception for transcription upload failures."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class UploadAuthError(UploadError):
    """Raised on 401/403, or when no credential is available and one is required."""

    pass


class UploadChunkError(UploadError):
    """Raised for any other non-2xx response or a network failure."""

    pass


class MalformedResponseError(UploadError):
    """Raised when a 2xx response body cannot be parsed."""

    pass
