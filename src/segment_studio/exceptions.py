"""Exception types for Segment Studio."""

from __future__ import annotations

__all__ = [
    "CHUNK_TOO_LARGE",
    "JobCancelledError",
    "JobConflictError",
    "NotFoundError",
    "OversizedInputError",
    "PathEscapeError",
    "PermissionDeniedError",
    "ProcessingError",
    "SegmentStudioError",
    "TranscriptionNotConfiguredError",
    "ValidationError",
]

CHUNK_TOO_LARGE = "CHUNK_TOO_LARGE"


class SegmentStudioError(RuntimeError):
    """Base class for errors raised by the segment editing subsystem."""


class ValidationError(SegmentStudioError):
    """Raised when input is rejected before any side effect happens."""


class PathEscapeError(ValidationError):
    """Raised when a path resolves outside its allowed base directory."""


class TranscriptionNotConfiguredError(ValidationError):
    """Raised when no transcription provider is configured."""


class NotFoundError(SegmentStudioError):
    """Raised when a segment, episode, asset or file does not exist."""


class PermissionDeniedError(SegmentStudioError):
    """Raised when the caller is not allowed to perform the operation."""


class JobConflictError(SegmentStudioError):
    """Raised when work for the same key is already running."""


class OversizedInputError(SegmentStudioError):
    """Raised when audio exceeds the transcription provider's upload limit.

    ``token`` is always :data:`CHUNK_TOO_LARGE` so callers can map it to a
    dedicated status without parsing the message.
    """

    token = CHUNK_TOO_LARGE

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Audio file is too large for the transcription service. "
            "Try a shorter recording or increase the upload limit."
        )


class ProcessingError(SegmentStudioError):
    """Raised when an external tool fails or produces no usable output."""


class JobCancelledError(SegmentStudioError):
    """Raised at a cooperative checkpoint after a job was cancelled."""
