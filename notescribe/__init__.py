"""Notescribe: chunked audio capture and streaming upload for meeting transcription."""

__version__ = "0.1.0"
