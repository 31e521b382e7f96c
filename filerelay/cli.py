"""Relay CLI entry point.

Usage:
    relay run                       # every active feed in the feeds file
    relay run --feed trades-eod     # one configured feed
    relay run --source-uri /data/in --include '*.csv' --prefix inbound
    relay status
    relay history --status FAILED
"""

import logging
import sys

import click

from filerelay.config import (
    AUDIT_LOG_PATH,
    FEEDS_PATH,
    MAX_WORKERS,
    S3_BUCKET,
    S3_ENDPOINT_URL,
    S3_PREFIX,
    S3_REGION,
    SINK_BACKEND,
    SINK_BUFFER_SIZE,
    SINK_LOCAL_PATH,
    TRACKER_BACKEND,
    TRACKER_DB_PATH,
)

logger = logging.getLogger("filerelay")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Relay: journaled file transfer from sources to a destination store."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _open_tracker():
    from filerelay.relay.tracker import build_tracker

    return build_tracker(TRACKER_BACKEND, TRACKER_DB_PATH)


def _close_tracker(tracker) -> None:
    close = getattr(tracker, "close", None)
    if close is not None:
        close()


# ------------------------------------------------------------------
# relay run
# ------------------------------------------------------------------


def _select_feeds(
    feed_ids: tuple[str, ...],
    feeds_file: str,
    source_uri: str,
    adhoc_id: str,
    includes: tuple[str, ...],
    excludes: tuple[str, ...],
    prefix: str,
) -> list:
    """Resolve the feeds to run, or exit with an error message."""
    from filerelay.feeds import load_feeds
    from filerelay.relay.errors import InvalidConfiguration
    from filerelay.schemas.relay import Feed

    try:
        if source_uri:
            return [
                Feed(
                    id=adhoc_id,
                    source_uri=source_uri,
                    include_patterns=includes,
                    exclude_patterns=excludes,
                    destination_prefix=prefix,
                )
            ]
        configured = load_feeds(feeds_file)
    except InvalidConfiguration as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if not feed_ids:
        return [f for f in configured.feeds if f.active]

    selected = []
    for feed_id in feed_ids:
        feed = configured.get(feed_id)
        if feed is None:
            click.echo(f"Error: Unknown feed: {feed_id}", err=True)
            sys.exit(1)
        selected.append(feed)
    return selected


@cli.command()
@click.option("--feed", "-f", "feed_ids", multiple=True, help="Feed id to run (repeatable).")
@click.option(
    "--feeds-file",
    default=FEEDS_PATH,
    show_default=True,
    help="JSON file with feed definitions.",
)
@click.option("--source-uri", default="", help="Run an ad-hoc feed from this source instead.")
@click.option("--feed-id", "adhoc_id", default="adhoc", show_default=True, help="Id for the ad-hoc feed.")
@click.option("--include", "includes", multiple=True, help="Include glob for the ad-hoc feed.")
@click.option("--exclude", "excludes", multiple=True, help="Exclude glob for the ad-hoc feed.")
@click.option("--prefix", default="", help="Destination prefix for the ad-hoc feed.")
@click.option(
    "--sink-path",
    default=SINK_LOCAL_PATH,
    show_default=True,
    help="Base directory for the local sink.",
)
@click.option(
    "--workers",
    default=MAX_WORKERS,
    show_default=True,
    type=click.IntRange(min=1),
    help="Files processed in parallel per feed.",
)
def run(
    feed_ids: tuple[str, ...],
    feeds_file: str,
    source_uri: str,
    adhoc_id: str,
    includes: tuple[str, ...],
    excludes: tuple[str, ...],
    prefix: str,
    sink_path: str,
    workers: int,
) -> None:
    """Run one transfer per feed and report the outcome."""
    from filerelay.relay.audit import RelayAuditLog
    from filerelay.relay.errors import InvalidConfiguration, ListingFailed
    from filerelay.relay.orchestrator import TransferOrchestrator, summarize
    from filerelay.relay.sink import build_sink
    from filerelay.schemas.relay import ResultStatus

    feeds = _select_feeds(feed_ids, feeds_file, source_uri, adhoc_id, includes, excludes, prefix)
    if not feeds:
        click.echo("No active feeds to run.")
        return
    logger.debug("Running feeds: %s", ", ".join(f.id for f in feeds))

    try:
        sink = build_sink(
            SINK_BACKEND,
            local_path=sink_path,
            buffer_size=SINK_BUFFER_SIZE,
            s3_bucket=S3_BUCKET,
            s3_prefix=S3_PREFIX,
            s3_region=S3_REGION,
            s3_endpoint_url=S3_ENDPOINT_URL,
        )
    except InvalidConfiguration as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    audit_log = RelayAuditLog(AUDIT_LOG_PATH)
    tracker = _open_tracker()
    had_errors = False
    try:
        orchestrator = TransferOrchestrator(
            None, sink, tracker, audit_log=audit_log, max_workers=workers
        )
        for feed in feeds:
            try:
                results = orchestrator.execute_transfer(feed)
            except ListingFailed as exc:
                click.echo(f"[{feed.id}] Error: {exc}", err=True)
                had_errors = True
                continue

            counts = summarize(results)
            click.echo(
                f"[{feed.id}] Files: {len(results)}, "
                f"Copied: {counts[ResultStatus.SUCCESS]}, "
                f"Skipped: {counts[ResultStatus.SKIPPED]}, "
                f"Failed: {counts[ResultStatus.FAILED]}"
            )
            for r in results:
                if r.status == ResultStatus.FAILED:
                    click.echo(f"  FAILED {r.source_path}: {r.error_message}")
            if counts[ResultStatus.FAILED]:
                had_errors = True
    finally:
        _close_tracker(tracker)

    if had_errors:
        sys.exit(1)


# ------------------------------------------------------------------
# relay status / history / feeds
# ------------------------------------------------------------------


@cli.command()
@click.option("--feed", "feed_id", default=None, help="Restrict to one feed.")
def status(feed_id: str | None) -> None:
    """Show journal record counts per status."""
    tracker = _open_tracker()
    try:
        counts = tracker.count_by_status(feed_id)
    finally:
        _close_tracker(tracker)

    scope = f"feed {feed_id}" if feed_id else "all feeds"
    click.echo(f"Journal ({scope}):")
    for file_status, n in counts.items():
        click.echo(f"  {file_status.value:<11} {n}")
    click.echo(f"  {'TOTAL':<11} {sum(counts.values())}")


@cli.command()
@click.option("--feed", "feed_id", default=None, help="Restrict to one feed.")
@click.option(
    "--status",
    "status_filter",
    type=click.Choice(["SUCCESS", "SKIPPED", "FAILED"], case_sensitive=False),
    default=None,
    help="Only show entries with this outcome.",
)
@click.option("--limit", "-n", default=20, show_default=True, help="Max entries to show (newest).")
def history(feed_id: str | None, status_filter: str | None, limit: int) -> None:
    """Show recent entries from the audit trail."""
    from filerelay.relay.audit import RelayAuditLog
    from filerelay.schemas.relay import ResultStatus

    audit_log = RelayAuditLog(AUDIT_LOG_PATH)
    entries = audit_log.read_entries(
        feed_id=feed_id,
        status=ResultStatus(status_filter.upper()) if status_filter else None,
        limit=limit,
    )
    if not entries:
        click.echo("No audit entries.")
        return

    for e in entries:
        line = f"{e.timestamp:%Y-%m-%d %H:%M:%S} [{e.feed_id}] {e.status.value:<7} {e.source_path}"
        if e.dest_path:
            line += f" → {e.dest_path} ({e.bytes_transferred} B)"
        if e.error_message:
            line += f" ({e.error_message})"
        click.echo(line)


@cli.command()
@click.option(
    "--feeds-file",
    default=FEEDS_PATH,
    show_default=True,
    help="JSON file with feed definitions.",
)
def feeds(feeds_file: str) -> None:
    """List configured feeds."""
    from filerelay.feeds import load_feeds
    from filerelay.relay.errors import InvalidConfiguration

    try:
        configured = load_feeds(feeds_file)
    except InvalidConfiguration as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if not configured.feeds:
        click.echo("No feeds configured.")
        return
    for feed in configured.feeds:
        state = "active" if feed.active else "inactive"
        click.echo(f"{feed.id} ({state}): {feed.source_uri} → {feed.destination_prefix or '/'}")
        if feed.include_patterns:
            click.echo(f"  include: {', '.join(feed.include_patterns)}")
        if feed.exclude_patterns:
            click.echo(f"  exclude: {', '.join(feed.exclude_patterns)}")


if __name__ == "__main__":
    cli()
