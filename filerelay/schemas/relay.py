"""Schemas for the file relay pipeline.

Covers feed configuration, file descriptors observed at a source, the
per-file journal record kept by the tracker, per-file transfer results,
and the audit events written for every outcome.
"""

from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from filerelay.relay.errors import InvalidConfiguration


class FileStatus(StrEnum):
    """Lifecycle state of a journaled file."""

    DISCOVERED = "DISCOVERED"
    COPYING = "COPYING"
    COPIED = "COPIED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ResultStatus(StrEnum):
    """Outcome of processing one descriptor in a run."""

    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class _EagerModel(BaseModel):
    """Raises InvalidConfiguration instead of ValidationError on construction."""

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise InvalidConfiguration(
                f"Invalid {type(self).__name__}: {exc.errors()[0]['msg']}"
            ) from exc


def _require_text(value: str, name: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{name} cannot be blank")
    return value


class Feed(_EagerModel):
    """One logical source → destination relationship."""

    model_config = ConfigDict(frozen=True)

    id: str
    source_uri: str = Field(description="file://<path> or a bare absolute path for local sources")
    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()
    destination_prefix: str = ""
    active: bool = True
    metadata: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, v: str) -> str:
        return _require_text(v, "Feed id")

    @field_validator("source_uri")
    @classmethod
    def _source_uri_not_blank(cls, v: str) -> str:
        return _require_text(v, "Feed source_uri")

    @field_validator("include_patterns", "exclude_patterns", mode="before")
    @classmethod
    def _copy_patterns(cls, v: Any) -> tuple[str, ...]:
        if v is None:
            return ()
        return tuple(v)

    @field_validator("destination_prefix", mode="before")
    @classmethod
    def _prefix_default(cls, v: Any) -> str:
        return v or ""

    @field_validator("metadata", mode="before")
    @classmethod
    def _copy_metadata(cls, v: Any) -> dict[str, Any]:
        return dict(v) if v else {}

    @field_validator("metadata")
    @classmethod
    def _freeze_metadata(cls, v: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(v))

    @field_serializer("metadata")
    def _dump_metadata(self, v: Mapping[str, Any]) -> dict[str, Any]:
        return dict(v)


class FeedsFile(BaseModel):
    """Top-level schema for the feeds.json file."""

    feeds: list[Feed] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> "FeedsFile":
        seen: set[str] = set()
        for feed in self.feeds:
            if feed.id in seen:
                raise ValueError(f"Duplicate feed id: {feed.id}")
            seen.add(feed.id)
        return self

    def get(self, feed_id: str) -> Feed | None:
        for feed in self.feeds:
            if feed.id == feed_id:
                return feed
        return None


class FileDescriptor(_EagerModel):
    """A file as observed at a source during listing. Never persisted."""

    model_config = ConfigDict(frozen=True)

    source_path: str
    size_bytes: int = Field(ge=0)
    mtime_epoch_ms: int

    @field_validator("source_path")
    @classmethod
    def _path_not_blank(cls, v: str) -> str:
        return _require_text(v, "source_path")


class FileRecord(_EagerModel):
    """Journal entry for a discovered file, keyed by file_id."""

    model_config = ConfigDict(frozen=True)

    file_id: str
    feed_id: str
    source_path: str
    size_bytes: int = Field(ge=0)
    mtime_epoch_ms: int
    checksum_md5: str | None = Field(default=None, description="Reserved; not computed yet")
    status: FileStatus = FileStatus.DISCOVERED
    dest_uri: str | None = None
    copied_at: datetime | None = None
    attempts: int = Field(default=0, ge=0)

    @field_validator("file_id", "feed_id")
    @classmethod
    def _key_not_blank(cls, v: str) -> str:
        return _require_text(v, "Record key")

    @property
    def identity(self) -> tuple[str, str, int, int]:
        return (self.feed_id, self.source_path, self.mtime_epoch_ms, self.size_bytes)

    def with_status(
        self, status: FileStatus, dest_uri: str | None, now: datetime
    ) -> "FileRecord":
        """Return a copy transitioned to ``status``.

        COPIED stamps ``copied_at`` with ``now``; FAILED increments ``attempts``.
        Other transitions keep both unchanged.
        """
        update: dict[str, Any] = {"status": status, "dest_uri": dest_uri}
        if status == FileStatus.COPIED:
            update["copied_at"] = now
        if status == FileStatus.FAILED:
            update["attempts"] = self.attempts + 1
        return self.model_copy(update=update)


class TransferResult(BaseModel):
    """Per-file outcome of a run, returned to the caller."""

    file_id: str
    source_path: str
    dest_path: str | None = None
    bytes_transferred: int = Field(default=0, ge=0)
    status: ResultStatus
    error_message: str | None = None

    @classmethod
    def success(
        cls, file_id: str, source_path: str, dest_path: str, bytes_transferred: int
    ) -> "TransferResult":
        return cls(
            file_id=file_id,
            source_path=source_path,
            dest_path=dest_path,
            bytes_transferred=bytes_transferred,
            status=ResultStatus.SUCCESS,
        )

    @classmethod
    def skipped(cls, file_id: str, source_path: str, reason: str) -> "TransferResult":
        return cls(
            file_id=file_id,
            source_path=source_path,
            status=ResultStatus.SKIPPED,
            error_message=reason,
        )

    @classmethod
    def failed(cls, file_id: str, source_path: str, error: str) -> "TransferResult":
        return cls(
            file_id=file_id,
            source_path=source_path,
            status=ResultStatus.FAILED,
            error_message=error,
        )


class RelayEvent(BaseModel):
    """An audit record for a single file outcome."""

    timestamp: datetime
    feed_id: str
    file_id: str
    source_path: str = Field(description="Original path at the source")
    dest_path: str = Field(default="", description="Destination path, set on success")
    status: ResultStatus
    bytes_transferred: int = Field(default=0, ge=0)
    error_message: str = Field(default="", description="Skip reason or failure detail")
    attempts: int = Field(default=0, ge=0)
