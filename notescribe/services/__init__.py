"""Services layer for notescribe."""

from .capture_session import CaptureSession
from .file_upload import FileUploadSession

__all__ = [
    "CaptureSession",
    "FileUploadSession",
]
