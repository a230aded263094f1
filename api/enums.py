"""
Centralized enums for status values used by the pool transcoding pipeline.
Using str-based enums for database compatibility.
"""

from enum import Enum


class UnknownJobStatusError(ValueError):
    """Raised when the transcode service reports a status outside the known set."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown transcode job status: {value!r}")


class PoolVideoStatus(str, Enum):
    """Status values for a video_pool row."""

    READY = "ready"
    PROCESSING = "processing"
    ERROR = "error"


class RemoteJobStatus(str, Enum):
    """Job status as reported by the MediaConvert GetJob call."""

    SUBMITTED = "SUBMITTED"
    PROGRESSING = "PROGRESSING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"
    CANCELED = "CANCELED"

    @classmethod
    def parse(cls, value) -> "RemoteJobStatus":
        """Parse a raw status string, raising UnknownJobStatusError for anything new."""
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            raise UnknownJobStatusError(value) from None

    @property
    def is_terminal(self) -> bool:
        return self in (RemoteJobStatus.COMPLETE, RemoteJobStatus.ERROR, RemoteJobStatus.CANCELED)


class LocalJobStatus(str, Enum):
    """In-memory view of a job during one batch run."""

    STARTED = "started"
    SUCCESS = "success"
    FAILED = "failed"
