"""Stable file identities derived from (feed, path, mtime, size).

The pre-image joins the four parts with ``|``. Feed ids and source paths
containing ``|`` still hash fine, but distinct quadruples may then collide.
"""

import hashlib

from filerelay.schemas.relay import FileDescriptor

IDENTITY_SEPARATOR = "|"


def generate_file_id(feed_id: str, source_path: str, mtime_epoch_ms: int, size_bytes: int) -> str:
    """Return the lowercase SHA-256 hex digest of the identity quadruple."""
    identity = IDENTITY_SEPARATOR.join(
        (feed_id, source_path, str(mtime_epoch_ms), str(size_bytes))
    )
    return hashlib.sha256(identity.encode("utf-8")).hexdigest()


def file_id_for(feed_id: str, descriptor: FileDescriptor) -> str:
    return generate_file_id(
        feed_id, descriptor.source_path, descriptor.mtime_epoch_ms, descriptor.size_bytes
    )
