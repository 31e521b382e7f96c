"""Sinks: durably write a byte stream to a named destination.

Every sink stages the content under a temporary name and only then exposes
it at the destination, so readers never observe a partial object.
"""

import errno
import logging
import os
import stat
import tempfile
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any, BinaryIO, Protocol

import boto3
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

from filerelay.relay.errors import (
    InvalidConfiguration,
    IOFailure,
    QuotaExceeded,
    ResumeUnsupported,
    SinkError,
    SinkUnavailable,
)

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 8192


class Sink(Protocol):
    def write(
        self,
        dest_path: str,
        stream: BinaryIO,
        offset: int = 0,
        length: int | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> int:
        """Write ``stream`` to ``dest_path`` and return the number of bytes written."""
        ...


def _reject_offset(offset: int) -> None:
    if offset != 0:
        raise ResumeUnsupported(f"Resumable writes are not supported (offset={offset})")


# ------------------------------------------------------------------
# Local filesystem
# ------------------------------------------------------------------


def _map_os_error(exc: OSError, target: Path) -> SinkError:
    if exc.errno in (errno.ENOSPC, errno.EDQUOT):
        return QuotaExceeded(f"No space left writing {target}: {exc}")
    return IOFailure(f"Failed writing {target}: {exc}")


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove staging file %s: %s", path, exc)


class LocalFsSink:
    """Writes files under a base directory using temp file + rename.

    Usage::

        sink = LocalFsSink("/tmp/relay-sink")
        with open("report.csv", "rb") as f:
            sink.write("daily/report.csv", f, metadata={"source": "report.csv"})
    """

    def __init__(self, base_path: str | Path, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        if buffer_size <= 0:
            raise InvalidConfiguration(f"buffer_size must be positive, got {buffer_size}")
        self._base = Path(os.path.abspath(base_path))
        self._buffer_size = buffer_size
        # mkstemp creates 0600 files; published files follow the umask instead
        self._file_mode = 0o666 & ~_current_umask()

    @property
    def base_path(self) -> Path:
        return self._base

    def resolve(self, dest_path: str) -> Path:
        """Map a destination name to a path under the base directory."""
        target = Path(os.path.abspath(self._base / dest_path))
        if self._base not in target.parents:
            raise IOFailure(f"Destination escapes sink base path: {dest_path}")
        return target

    def write(
        self,
        dest_path: str,
        stream: BinaryIO,
        offset: int = 0,
        length: int | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> int:
        _reject_offset(offset)
        target = self.resolve(dest_path)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
            )
        except OSError as exc:
            raise _map_os_error(exc, target) from exc

        try:
            with os.fdopen(fd, "wb") as out:
                written = 0
                while chunk := stream.read(self._buffer_size):
                    out.write(chunk)
                    written += len(chunk)
                out.flush()
                os.fchmod(out.fileno(), self._publish_mode(target))
                os.fsync(out.fileno())
            if length is not None and written != length:
                raise IOFailure(
                    f"Short read for {dest_path}: expected {length} bytes, got {written}"
                )
            os.replace(tmp_path, target)
        except OSError as exc:
            _discard(tmp_path)
            raise _map_os_error(exc, target) from exc
        except BaseException:
            _discard(tmp_path)
            raise

        logger.debug("Wrote %d bytes to %s", written, target)
        return written

    def _publish_mode(self, target: Path) -> int:
        """Keep the mode of a file being replaced, else use the umask default."""
        try:
            return stat.S_IMODE(target.stat().st_mode)
        except FileNotFoundError:
            return self._file_mode


# ------------------------------------------------------------------
# S3-compatible object store
# ------------------------------------------------------------------

_UNAVAILABLE_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "NoSuchBucket",
    "ServiceUnavailable",
    "SignatureDoesNotMatch",
    "SlowDown",
}
_QUOTA_CODES = {"EntityTooLarge", "QuotaExceeded"}


def _map_client_error(exc: Exception, key: str) -> SinkError:
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        if code in _UNAVAILABLE_CODES:
            return SinkUnavailable(f"Object store unavailable writing {key}: {code}")
        if code in _QUOTA_CODES:
            return QuotaExceeded(f"Object store quota exceeded writing {key}: {code}")
        return IOFailure(f"Object store error writing {key}: {code or exc}")
    if isinstance(exc, BotoCoreError):
        return SinkUnavailable(f"Object store unreachable writing {key}: {exc}")
    return IOFailure(f"Upload failed for {key}: {exc}")


class _CountingReader:
    """File-like wrapper counting the bytes handed to the uploader."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self.count = 0

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        self.count += len(data)
        return data


class S3Sink:
    """Writes objects to an S3-compatible bucket via a staging key.

    The content is uploaded to ``<key>.staging-<uuid>``, copied server-side
    to ``<key>`` with the managed (multipart-capable) copy, and the staging
    key deleted. Metadata is stored as object user metadata on both keys.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise InvalidConfiguration("S3 sink requires a bucket name")
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._region = region
        self._endpoint_url = endpoint_url
        self._client = client

    @property
    def client(self) -> Any:
        """boto3 S3 client, created on first use."""
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self._region:
                kwargs["region_name"] = self._region
            if self._endpoint_url:
                kwargs["endpoint_url"] = self._endpoint_url
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def full_key(self, dest_path: str) -> str:
        key = dest_path.replace("\\", "/").lstrip("/")
        if self._prefix:
            return f"{self._prefix}/{key}"
        return key

    def write(
        self,
        dest_path: str,
        stream: BinaryIO,
        offset: int = 0,
        length: int | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> int:
        _reject_offset(offset)
        key = self.full_key(dest_path)
        staging_key = f"{key}.staging-{uuid.uuid4().hex}"
        reader = _CountingReader(stream)
        user_metadata = {k: str(v) for k, v in (metadata or {}).items()}

        try:
            self.client.upload_fileobj(
                reader, self._bucket, staging_key, ExtraArgs={"Metadata": user_metadata}
            )
            if length is not None and reader.count != length:
                raise IOFailure(
                    f"Short read for {dest_path}: expected {length} bytes, got {reader.count}"
                )
            # managed copy switches to multipart above the single-request limit
            self.client.copy(
                {"Bucket": self._bucket, "Key": staging_key},
                self._bucket,
                key,
                ExtraArgs={"Metadata": user_metadata, "MetadataDirective": "REPLACE"},
            )
        except (BotoCoreError, Boto3Error, ClientError) as exc:
            self._discard(staging_key)
            raise _map_client_error(exc, key) from exc
        except BaseException:
            self._discard(staging_key)
            raise

        self._discard(staging_key)
        logger.debug("Uploaded %d bytes to s3://%s/%s", reader.count, self._bucket, key)
        return reader.count

    def _discard(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Could not delete staging object %s: %s", key, exc)


def build_sink(
    backend: str,
    *,
    local_path: str | Path = "/tmp/relay-sink",
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    s3_bucket: str = "",
    s3_prefix: str = "",
    s3_region: str | None = None,
    s3_endpoint_url: str | None = None,
) -> Sink:
    """Select a sink implementation by backend name (``local`` or ``s3``)."""
    backend = backend.lower()
    if backend == "local":
        return LocalFsSink(local_path, buffer_size)
    if backend == "s3":
        return S3Sink(
            s3_bucket,
            s3_prefix,
            region=s3_region or None,
            endpoint_url=s3_endpoint_url or None,
        )
    raise InvalidConfiguration(f"Unknown sink backend: {backend}")
