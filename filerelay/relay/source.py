"""Source providers: enumerate files for a feed and open them for reading.

A provider is anything with ``list(feed)`` and ``open(descriptor, offset)``.
Providers are looked up by URI scheme; ``file://`` and bare paths map to
the local filesystem.
"""

import logging
import os
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import BinaryIO, Protocol

from filerelay.relay.errors import RangeUnavailable, SourceGone, SourceUnavailable, UnsupportedScheme
from filerelay.relay.patterns import accepts, normalize_path
from filerelay.schemas.relay import Feed, FileDescriptor

logger = logging.getLogger(__name__)

FILE_SCHEME = "file"


class SourceProvider(Protocol):
    def list(self, feed: Feed) -> Iterator[FileDescriptor]:
        """Lazily yield descriptors of regular files accepted by the feed's patterns.

        Raises SourceUnavailable if the location cannot be enumerated. The
        returned iterator is single-pass; callers should close it when done.
        """
        ...

    def open(self, descriptor: FileDescriptor, offset: int = 0) -> BinaryIO:
        """Open a readable stream positioned at ``offset``. Caller closes it."""
        ...


def uri_scheme(uri: str) -> str:
    """Return the lowercased scheme of ``uri``, or ``file`` for bare paths."""
    if "://" in uri:
        return uri.split("://", 1)[0].lower()
    return FILE_SCHEME


def base_path_from_uri(uri: str) -> Path:
    """Strip a ``file://`` prefix; anything else is taken as a path."""
    if uri.lower().startswith("file://"):
        return Path(uri[len("file://"):])
    return Path(uri)


class LocalFsSource:
    """Source provider for the local filesystem.

    Usage::

        source = LocalFsSource()
        for descriptor in source.list(feed):
            with source.open(descriptor) as stream:
                ...
    """

    def list(self, feed: Feed) -> Iterator[FileDescriptor]:
        base = base_path_from_uri(feed.source_uri)
        if not base.is_dir():
            raise SourceUnavailable(f"Source path does not exist or is not a directory: {base}")
        if not os.access(base, os.R_OK | os.X_OK):
            raise SourceUnavailable(f"Source path is not readable: {base}")
        return self._walk(base, feed)

    def _walk(self, base: Path, feed: Feed) -> Iterator[FileDescriptor]:
        def on_error(exc: OSError) -> None:
            if exc.filename is not None and Path(exc.filename) == base:
                raise SourceUnavailable(f"Cannot enumerate {base}: {exc}") from exc
            logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc)

        for dirpath, _dirnames, filenames in os.walk(base, onerror=on_error):
            for name in filenames:
                path = Path(dirpath) / name
                relative = normalize_path(str(path.relative_to(base)))
                if not accepts(relative, feed.include_patterns, feed.exclude_patterns):
                    continue
                try:
                    st = path.stat()
                except FileNotFoundError:
                    logger.debug("File vanished during listing: %s", path)
                    continue
                if not path.is_file():
                    continue
                yield FileDescriptor(
                    source_path=str(path),
                    size_bytes=st.st_size,
                    mtime_epoch_ms=st.st_mtime_ns // 1_000_000,
                )

    def open(self, descriptor: FileDescriptor, offset: int = 0) -> BinaryIO:
        if offset < 0 or offset > descriptor.size_bytes:
            raise RangeUnavailable(
                f"Offset {offset} outside 0..{descriptor.size_bytes} for {descriptor.source_path}"
            )
        path = Path(descriptor.source_path)
        if not path.is_file():
            raise SourceGone(f"Source file no longer exists: {path}")
        try:
            stream = path.open("rb")
        except FileNotFoundError as exc:
            raise SourceGone(f"Source file no longer exists: {path}") from exc

        try:
            if offset > os.fstat(stream.fileno()).st_size:
                raise RangeUnavailable(f"Offset {offset} beyond current end of {path}")
            stream.seek(offset)
        except BaseException:
            stream.close()
            raise
        return stream


SourceFactory = Callable[[], SourceProvider]

_PROVIDERS: dict[str, SourceFactory] = {FILE_SCHEME: LocalFsSource}


def register_source(scheme: str, factory: SourceFactory) -> None:
    """Register a provider factory for a URI scheme (e.g. ``sftp``)."""
    _PROVIDERS[scheme.lower()] = factory


def get_source(uri: str) -> SourceProvider:
    """Return a provider instance for ``uri``'s scheme."""
    scheme = uri_scheme(uri)
    factory = _PROVIDERS.get(scheme)
    if factory is None:
        raise UnsupportedScheme(f"No source provider registered for scheme: {scheme}")
    return factory()
