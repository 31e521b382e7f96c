"""Transfer orchestration for one feed: list → filter → dedupe → copy → journal.

Per-file failures are recorded as FAILED results and never abort the run.
Only a failing listing aborts, surfacing as ListingFailed.
"""

import logging
import threading
from collections import Counter
from collections.abc import Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime

from filerelay.relay.audit import RelayAuditLog
from filerelay.relay.errors import ListingFailed, RelayError, TrackerError
from filerelay.relay.identity import file_id_for
from filerelay.relay.sink import Sink
from filerelay.relay.source import SourceProvider, get_source
from filerelay.relay.tracker import Tracker
from filerelay.schemas.relay import (
    Feed,
    FileDescriptor,
    FileRecord,
    FileStatus,
    RelayEvent,
    ResultStatus,
    TransferResult,
)

logger = logging.getLogger(__name__)

SKIP_REASON = "Already copied"


def extract_filename(path: str) -> str:
    """Everything after the last ``/`` or ``\\``."""
    last_sep = max(path.rfind("/"), path.rfind("\\"))
    return path[last_sep + 1:]


def build_dest_path(feed: Feed, descriptor: FileDescriptor) -> str:
    filename = extract_filename(descriptor.source_path)
    prefix = feed.destination_prefix.rstrip("/")
    if prefix.strip():
        return f"{prefix}/{filename}"
    return filename


def summarize(results: Iterable[TransferResult]) -> dict[ResultStatus, int]:
    """Count results per status (every status present, possibly zero)."""
    counts = Counter(r.status for r in results)
    return {status: counts.get(status, 0) for status in ResultStatus}


class TransferOrchestrator:
    """Drives transfer runs for feeds against one sink and one tracker.

    Usage::

        orchestrator = TransferOrchestrator(LocalFsSource(), sink, tracker)
        results = orchestrator.execute_transfer(feed)

    When ``source`` is None the provider is resolved from each feed's
    ``source_uri`` scheme. ``max_workers > 1`` processes descriptors on a
    thread pool; result order is then unspecified.
    """

    def __init__(
        self,
        source: SourceProvider | None,
        sink: Sink,
        tracker: Tracker,
        *,
        audit_log: RelayAuditLog | None = None,
        max_workers: int = 1,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._source = source
        self._sink = sink
        self._tracker = tracker
        self._audit_log = audit_log
        self._max_workers = max_workers

    def execute_transfer(
        self, feed: Feed, *, cancel_event: threading.Event | None = None
    ) -> list[TransferResult]:
        """Run one transfer for ``feed`` and return a result per descriptor processed.

        Setting ``cancel_event`` stops the run before the next descriptor;
        results collected so far are returned.

        Raises:
            ListingFailed: If the source cannot be enumerated.
            TrackerError: If the journal rejects an operation.
        """
        if not feed.active:
            logger.info("Feed %s is inactive, nothing to do", feed.id)
            return []

        logger.info("Starting transfer for feed: %s", feed.id)
        try:
            source = self._source or get_source(feed.source_uri)
            descriptors = iter(source.list(feed))
        except (RelayError, OSError) as exc:
            logger.error("Failed to list files for feed %s: %s", feed.id, exc)
            raise ListingFailed(feed.id, str(exc)) from exc

        results: list[TransferResult] = []
        try:
            guarded = self._guard_listing(feed, descriptors)
            if self._max_workers == 1:
                for descriptor in guarded:
                    if cancel_event is not None and cancel_event.is_set():
                        logger.warning("Transfer for feed %s cancelled", feed.id)
                        break
                    results.append(self.process_file(feed, descriptor, source=source))
            else:
                self._run_parallel(feed, guarded, source, results, cancel_event)
        finally:
            # releases the underlying directory walk
            close = getattr(descriptors, "close", None)
            if close is not None:
                close()

        counts = summarize(results)
        logger.info(
            "Transfer complete for feed %s: %d files processed "
            "(copied=%d skipped=%d failed=%d)",
            feed.id,
            len(results),
            counts[ResultStatus.SUCCESS],
            counts[ResultStatus.SKIPPED],
            counts[ResultStatus.FAILED],
        )
        return results

    def _guard_listing(
        self, feed: Feed, descriptors: Iterator[FileDescriptor]
    ) -> Iterator[FileDescriptor]:
        """Re-raise errors from advancing the listing as ListingFailed."""
        while True:
            try:
                descriptor = next(descriptors)
            except StopIteration:
                return
            except (RelayError, OSError) as exc:
                logger.error("Listing aborted for feed %s: %s", feed.id, exc)
                raise ListingFailed(feed.id, str(exc)) from exc
            yield descriptor

    def _run_parallel(
        self,
        feed: Feed,
        descriptors: Iterator[FileDescriptor],
        source: SourceProvider,
        results: list[TransferResult],
        cancel_event: threading.Event | None,
    ) -> None:
        # At most 2 * max_workers descriptors in flight.
        window = self._max_workers * 2
        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix=f"relay-{feed.id}"
        ) as pool:
            pending: set[Future[TransferResult]] = set()
            for descriptor in descriptors:
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning("Transfer for feed %s cancelled", feed.id)
                    break
                pending.add(pool.submit(self.process_file, feed, descriptor, source=source))
                if len(pending) >= window:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    results.extend(f.result() for f in done)
            done, _ = wait(pending)
            results.extend(f.result() for f in done)

    def process_file(
        self,
        feed: Feed,
        descriptor: FileDescriptor,
        *,
        source: SourceProvider | None = None,
    ) -> TransferResult:
        """Dedupe, journal, and copy a single descriptor."""
        source = source or self._source or get_source(feed.source_uri)
        file_id = file_id_for(feed.id, descriptor)
        logger.debug("Processing file: %s (id: %s)", descriptor.source_path, file_id)

        if self._tracker.should_skip(
            feed.id, descriptor.source_path, descriptor.mtime_epoch_ms, descriptor.size_bytes
        ):
            logger.debug("Skipping already copied file: %s", descriptor.source_path)
            result = TransferResult.skipped(file_id, descriptor.source_path, SKIP_REASON)
            self._record_event(feed, result, attempts=0)
            return result

        self._tracker.upsert_file(
            FileRecord(
                file_id=file_id,
                feed_id=feed.id,
                source_path=descriptor.source_path,
                size_bytes=descriptor.size_bytes,
                mtime_epoch_ms=descriptor.mtime_epoch_ms,
                status=FileStatus.DISCOVERED,
            )
        )

        dest_path = build_dest_path(feed, descriptor)
        try:
            self._tracker.update_status(file_id, FileStatus.COPYING)
            bytes_written = self._copy(source, descriptor, dest_path)
        except TrackerError:
            raise
        except Exception as exc:
            logger.exception("Failed to transfer file: %s", descriptor.source_path)
            record = self._tracker.update_status(file_id, FileStatus.FAILED)
            result = TransferResult.failed(
                file_id, descriptor.source_path, str(exc) or type(exc).__name__
            )
            self._record_event(feed, result, attempts=record.attempts)
            return result

        record = self._tracker.update_status(file_id, FileStatus.COPIED, dest_path)
        logger.info(
            "Copied %s → %s (%d bytes)", descriptor.source_path, dest_path, bytes_written
        )
        result = TransferResult.success(file_id, descriptor.source_path, dest_path, bytes_written)
        self._record_event(feed, result, attempts=record.attempts)
        return result

    def _copy(self, source: SourceProvider, descriptor: FileDescriptor, dest_path: str) -> int:
        with source.open(descriptor, 0) as stream:
            return self._sink.write(
                dest_path,
                stream,
                0,
                descriptor.size_bytes,
                {
                    "source": descriptor.source_path,
                    "size": str(descriptor.size_bytes),
                    "mtime": str(descriptor.mtime_epoch_ms),
                },
            )

    def _record_event(self, feed: Feed, result: TransferResult, *, attempts: int) -> None:
        if self._audit_log is None:
            return
        self._audit_log.log(
            RelayEvent(
                timestamp=datetime.now(UTC),
                feed_id=feed.id,
                file_id=result.file_id,
                source_path=result.source_path,
                dest_path=result.dest_path or "",
                status=result.status,
                bytes_transferred=result.bytes_transferred,
                error_message=result.error_message or "",
                attempts=attempts,
            )
        )
