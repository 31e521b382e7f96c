"""Persistent journal of per-file transfer state.

Two implementations share one contract: ``SqliteTracker`` for durable use and
``InMemoryTracker`` for development and tests. Both are safe to share between
threads; every mutation is atomic per file_id.
"""

import logging
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from filerelay.relay.errors import InvalidConfiguration, RecordNotFound, TrackerError
from filerelay.schemas.relay import FileRecord, FileStatus

logger = logging.getLogger(__name__)

Identity = tuple[str, str, int, int]


class Tracker(Protocol):
    def upsert_file(self, record: FileRecord) -> None: ...

    def find_by_identity(
        self, feed_id: str, source_path: str, mtime_epoch_ms: int, size_bytes: int
    ) -> FileRecord | None: ...

    def update_status(
        self, file_id: str, status: FileStatus, dest_uri: str | None = None
    ) -> FileRecord: ...

    def should_skip(
        self, feed_id: str, source_path: str, mtime_epoch_ms: int, size_bytes: int
    ) -> bool: ...

    def get(self, file_id: str) -> FileRecord | None: ...

    def list_records(
        self,
        *,
        feed_id: str | None = None,
        status: FileStatus | None = None,
        limit: int | None = None,
    ) -> list[FileRecord]: ...

    def count_by_status(self, feed_id: str | None = None) -> dict[FileStatus, int]: ...


def _check_transition(existing: FileRecord, status: FileStatus) -> None:
    if existing.status == FileStatus.COPIED and status != FileStatus.COPIED:
        raise TrackerError(
            f"Record {existing.file_id} is already COPIED; refusing transition to {status}"
        )


# ------------------------------------------------------------------
# In-memory
# ------------------------------------------------------------------


class InMemoryTracker:
    """Dict-backed tracker. State is lost when the process exits."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, FileRecord] = {}
        self._by_identity: dict[Identity, str] = {}

    def upsert_file(self, record: FileRecord) -> None:
        with self._lock:
            owner = self._by_identity.get(record.identity)
            if owner is not None and owner != record.file_id:
                raise TrackerError(
                    f"Identity of {record.file_id} already indexed under {owner}"
                )
            existing = self._by_id.get(record.file_id)
            if existing is not None:
                _check_transition(existing, record.status)
                if existing.attempts > record.attempts:
                    record = record.model_copy(update={"attempts": existing.attempts})
            self._by_id[record.file_id] = record
            self._by_identity[record.identity] = record.file_id
        logger.debug("Upserted file %s (status=%s)", record.file_id, record.status)

    def find_by_identity(
        self, feed_id: str, source_path: str, mtime_epoch_ms: int, size_bytes: int
    ) -> FileRecord | None:
        with self._lock:
            file_id = self._by_identity.get((feed_id, source_path, mtime_epoch_ms, size_bytes))
            return self._by_id.get(file_id) if file_id is not None else None

    def update_status(
        self, file_id: str, status: FileStatus, dest_uri: str | None = None
    ) -> FileRecord:
        with self._lock:
            existing = self._by_id.get(file_id)
            if existing is None:
                raise RecordNotFound(file_id)
            _check_transition(existing, status)
            updated = existing.with_status(status, dest_uri, datetime.now(UTC))
            self._by_id[file_id] = updated
        logger.debug("Updated file %s status to %s", file_id, status)
        return updated

    def should_skip(
        self, feed_id: str, source_path: str, mtime_epoch_ms: int, size_bytes: int
    ) -> bool:
        record = self.find_by_identity(feed_id, source_path, mtime_epoch_ms, size_bytes)
        return record is not None and record.status == FileStatus.COPIED

    def get(self, file_id: str) -> FileRecord | None:
        with self._lock:
            return self._by_id.get(file_id)

    def list_records(
        self,
        *,
        feed_id: str | None = None,
        status: FileStatus | None = None,
        limit: int | None = None,
    ) -> list[FileRecord]:
        with self._lock:
            records = [
                r
                for r in self._by_id.values()
                if (feed_id is None or r.feed_id == feed_id)
                and (status is None or r.status == status)
            ]
        records.sort(key=lambda r: (r.feed_id, r.source_path, r.mtime_epoch_ms))
        return records[:limit] if limit is not None else records

    def count_by_status(self, feed_id: str | None = None) -> dict[FileStatus, int]:
        counts = {status: 0 for status in FileStatus}
        for record in self.list_records(feed_id=feed_id):
            counts[record.status] += 1
        return counts


# ------------------------------------------------------------------
# SQLite
# ------------------------------------------------------------------

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS file_records (
    file_id         TEXT PRIMARY KEY,
    feed_id         TEXT NOT NULL,
    source_path     TEXT NOT NULL,
    size_bytes      INTEGER NOT NULL,
    mtime_epoch_ms  INTEGER NOT NULL,
    checksum_md5    TEXT,
    status          TEXT NOT NULL,
    dest_uri        TEXT,
    copied_at       TEXT,
    attempts        INTEGER NOT NULL DEFAULT 0,
    UNIQUE (feed_id, source_path, mtime_epoch_ms, size_bytes)
)
"""

_UPSERT = """
INSERT INTO file_records
    (file_id, feed_id, source_path, size_bytes, mtime_epoch_ms,
     checksum_md5, status, dest_uri, copied_at, attempts)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (file_id) DO UPDATE SET
    checksum_md5 = excluded.checksum_md5,
    status = excluded.status,
    dest_uri = excluded.dest_uri,
    copied_at = excluded.copied_at,
    attempts = MAX(file_records.attempts, excluded.attempts)
"""

_SELECT_BY_ID = "SELECT * FROM file_records WHERE file_id = ?"
_SELECT_BY_IDENTITY = """
SELECT * FROM file_records
WHERE feed_id = ? AND source_path = ? AND mtime_epoch_ms = ? AND size_bytes = ?
"""

_UPDATE_STATUS = """
UPDATE file_records SET status = ?, dest_uri = ?, copied_at = ?, attempts = ? WHERE file_id = ?
"""


def _row_to_record(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        file_id=row["file_id"],
        feed_id=row["feed_id"],
        source_path=row["source_path"],
        size_bytes=row["size_bytes"],
        mtime_epoch_ms=row["mtime_epoch_ms"],
        checksum_md5=row["checksum_md5"],
        status=FileStatus(row["status"]),
        dest_uri=row["dest_uri"],
        copied_at=datetime.fromisoformat(row["copied_at"]) if row["copied_at"] else None,
        attempts=row["attempts"],
    )


class SqliteTracker:
    """SQLite-backed tracker.

    Usage::

        with SqliteTracker("/path/to/tracker.db") as tracker:
            if not tracker.should_skip("feed-a", "/data/in/x.csv", 1700000000000, 42):
                ...
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_CREATE_TABLE)
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SqliteTracker":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def upsert_file(self, record: FileRecord) -> None:
        params = (
            record.file_id,
            record.feed_id,
            record.source_path,
            record.size_bytes,
            record.mtime_epoch_ms,
            record.checksum_md5,
            record.status.value,
            record.dest_uri,
            record.copied_at.isoformat() if record.copied_at else None,
            record.attempts,
        )
        with self._lock:
            try:
                with self._conn:
                    row = self._conn.execute(_SELECT_BY_ID, (record.file_id,)).fetchone()
                    if row is not None:
                        _check_transition(_row_to_record(row), record.status)
                    self._conn.execute(_UPSERT, params)
            except sqlite3.IntegrityError as exc:
                raise TrackerError(f"Cannot upsert {record.file_id}: {exc}") from exc
        logger.debug("Upserted file %s (status=%s)", record.file_id, record.status)

    def find_by_identity(
        self, feed_id: str, source_path: str, mtime_epoch_ms: int, size_bytes: int
    ) -> FileRecord | None:
        with self._lock:
            row = self._conn.execute(
                _SELECT_BY_IDENTITY, (feed_id, source_path, mtime_epoch_ms, size_bytes)
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def update_status(
        self, file_id: str, status: FileStatus, dest_uri: str | None = None
    ) -> FileRecord:
        with self._lock:
            with self._conn:
                row = self._conn.execute(_SELECT_BY_ID, (file_id,)).fetchone()
                if row is None:
                    raise RecordNotFound(file_id)
                existing = _row_to_record(row)
                _check_transition(existing, status)
                updated = existing.with_status(status, dest_uri, datetime.now(UTC))
                self._conn.execute(
                    _UPDATE_STATUS,
                    (
                        updated.status.value,
                        updated.dest_uri,
                        updated.copied_at.isoformat() if updated.copied_at else None,
                        updated.attempts,
                        file_id,
                    ),
                )
        logger.debug("Updated file %s status to %s", file_id, status)
        return updated

    def should_skip(
        self, feed_id: str, source_path: str, mtime_epoch_ms: int, size_bytes: int
    ) -> bool:
        record = self.find_by_identity(feed_id, source_path, mtime_epoch_ms, size_bytes)
        return record is not None and record.status == FileStatus.COPIED

    def get(self, file_id: str) -> FileRecord | None:
        with self._lock:
            row = self._conn.execute(_SELECT_BY_ID, (file_id,)).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_records(
        self,
        *,
        feed_id: str | None = None,
        status: FileStatus | None = None,
        limit: int | None = None,
    ) -> list[FileRecord]:
        clauses: list[str] = []
        params: list[object] = []
        if feed_id is not None:
            clauses.append("feed_id = ?")
            params.append(feed_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)

        query = "SELECT * FROM file_records"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY feed_id, source_path, mtime_epoch_ms"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [_row_to_record(r) for r in rows]

    def count_by_status(self, feed_id: str | None = None) -> dict[FileStatus, int]:
        query = "SELECT status, COUNT(*) FROM file_records"
        params: tuple[str, ...] = ()
        if feed_id is not None:
            query += " WHERE feed_id = ?"
            params = (feed_id,)
        query += " GROUP BY status"

        counts = {status: 0 for status in FileStatus}
        with self._lock:
            for status, n in self._conn.execute(query, params).fetchall():
                counts[FileStatus(status)] = n
        return counts


def build_tracker(backend: str, db_path: str | Path = "") -> Tracker:
    """Select a tracker implementation by backend name (``sqlite`` or ``memory``)."""
    backend = backend.lower()
    if backend == "memory":
        return InMemoryTracker()
    if backend == "sqlite":
        if not db_path:
            raise InvalidConfiguration("sqlite tracker requires a database path")
        return SqliteTracker(db_path)
    raise InvalidConfiguration(f"Unknown tracker backend: {backend}")
