"""Append-only JSONL audit trail of per-file relay outcomes.

One line per processed file: what was copied, skipped or failed, for which
feed, and when. The tracker holds current state; this log holds history.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path

from filerelay.schemas.relay import RelayEvent, ResultStatus

logger = logging.getLogger(__name__)


class RelayAuditLog:
    """Append-only JSONL audit log for relay file events.

    Usage::

        audit = RelayAuditLog("/path/to/relay_audit.jsonl")
        audit.log(event)
        entries = audit.read_entries(feed_id="feed-a", since=some_datetime)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def log(self, event: RelayEvent) -> None:
        """Append a single event to the log file."""
        with self._lock, self._path.open("a") as f:
            f.write(event.model_dump_json() + "\n")
        logger.debug(
            "Relay audit: feed=%s %s status=%s",
            event.feed_id,
            event.source_path,
            event.status,
        )

    def read_entries(
        self,
        *,
        feed_id: str | None = None,
        since: datetime | None = None,
        status: ResultStatus | None = None,
        limit: int | None = None,
    ) -> list[RelayEvent]:
        """Read audit entries with optional filtering.

        Args:
            feed_id: Only return entries for this feed.
            since: Only return entries after this timestamp.
            status: Only return entries with this result status.
            limit: Maximum number of entries to return (newest after filtering).

        Returns:
            List of RelayEvent objects, oldest first.
        """
        if not self._path.exists():
            return []

        entries: list[RelayEvent] = []
        with self._path.open() as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                event = RelayEvent.model_validate_json(line)
                if feed_id and event.feed_id != feed_id:
                    continue
                if since and event.timestamp <= since:
                    continue
                if status and event.status != status:
                    continue
                entries.append(event)

        if limit is not None:
            entries = entries[-limit:]

        return entries
