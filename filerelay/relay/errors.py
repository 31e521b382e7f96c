"""Exception hierarchy for the file relay pipeline.

Per-file errors (source and sink) are captured by the orchestrator into
FAILED transfer results. Listing and tracker errors propagate to the caller.
"""


class RelayError(Exception):
    """Base class for all relay errors."""


class InvalidConfiguration(RelayError, ValueError):
    """Raised when a feed, descriptor, or record fails validation."""


# --- Source side ---


class SourceError(RelayError):
    """Base class for source provider errors."""


class SourceUnavailable(SourceError):
    """The configured source location cannot be enumerated."""


class ListingFailed(SourceUnavailable):
    """Raised by the orchestrator when listing aborts a run."""

    def __init__(self, feed_id: str, message: str) -> None:
        super().__init__(f"Listing failed for feed {feed_id}: {message}")
        self.feed_id = feed_id


class SourceGone(SourceError):
    """The file disappeared between listing and open."""


class RangeUnavailable(SourceError):
    """The requested offset lies outside the file."""


class UnsupportedScheme(SourceError):
    """No source provider is registered for a URI scheme."""


# --- Sink side ---


class SinkError(RelayError):
    """Base class for sink errors."""


class SinkUnavailable(SinkError):
    """The destination store cannot be reached."""


class QuotaExceeded(SinkError):
    """The destination store is out of space or quota."""


class IOFailure(SinkError):
    """Any other failure while writing to the destination."""


class ResumeUnsupported(SinkError):
    """The sink cannot write at a non-zero offset."""


# --- Tracker ---


class TrackerError(RelayError):
    """Tracker invariant violation."""


class RecordNotFound(TrackerError, KeyError):
    """No record exists for the given file id."""

    def __init__(self, file_id: str) -> None:
        super().__init__(f"File record not found: {file_id}")
        self.file_id = file_id

    def __str__(self) -> str:
        return self.args[0]
