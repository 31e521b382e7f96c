"""Tests for relay domain models."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from filerelay.relay.errors import InvalidConfiguration
from filerelay.schemas.relay import (
    Feed,
    FileDescriptor,
    FileRecord,
    FileStatus,
    ResultStatus,
    TransferResult,
)


class TestFeed:
    def test_defaults(self):
        feed = Feed(id="f", source_uri="/data")
        assert feed.include_patterns == ()
        assert feed.exclude_patterns == ()
        assert feed.destination_prefix == ""
        assert feed.active is True
        assert feed.metadata == {}

    @pytest.mark.parametrize("field", ["id", "source_uri"])
    @pytest.mark.parametrize("value", ["", "   "])
    def test_blank_required_fields_rejected(self, field, value):
        fields = {"id": "f", "source_uri": "/data", field: value}
        with pytest.raises(InvalidConfiguration):
            Feed(**fields)

    def test_invalid_configuration_is_value_error(self):
        with pytest.raises(ValueError):
            Feed(id="", source_uri="/data")

    def test_patterns_defensively_copied(self):
        includes = ["*.txt"]
        feed = Feed(id="f", source_uri="/data", include_patterns=includes)
        includes.append("*.csv")
        assert feed.include_patterns == ("*.txt",)

    def test_none_patterns_become_empty(self):
        feed = Feed(id="f", source_uri="/data", include_patterns=None, exclude_patterns=None)
        assert feed.include_patterns == ()
        assert feed.exclude_patterns == ()

    def test_metadata_copied(self):
        meta = {"owner": "ops"}
        feed = Feed(id="f", source_uri="/data", metadata=meta)
        meta["owner"] = "changed"
        assert feed.metadata == {"owner": "ops"}

    def test_frozen(self):
        feed = Feed(id="f", source_uri="/data")
        with pytest.raises(ValidationError):
            feed.active = False

    def test_metadata_read_only(self):
        feed = Feed(id="f", source_uri="/data", metadata={"owner": "ops"})
        with pytest.raises(TypeError):
            feed.metadata["owner"] = "changed"
        with pytest.raises(TypeError):
            del feed.metadata["owner"]
        assert feed.metadata["owner"] == "ops"

    def test_default_metadata_read_only(self):
        feed = Feed(id="f", source_uri="/data")
        with pytest.raises(TypeError):
            feed.metadata["owner"] = "ops"
        assert feed.metadata == {}

    def test_metadata_dumps_as_dict(self):
        feed = Feed(id="f", source_uri="/data", metadata={"owner": "ops"})
        assert feed.model_dump()["metadata"] == {"owner": "ops"}


class TestFileDescriptor:
    def test_valid(self):
        d = FileDescriptor(source_path="/a.txt", size_bytes=0, mtime_epoch_ms=1)
        assert d.size_bytes == 0

    def test_blank_path_rejected(self):
        with pytest.raises(InvalidConfiguration):
            FileDescriptor(source_path=" ", size_bytes=1, mtime_epoch_ms=1)

    def test_negative_size_rejected(self):
        with pytest.raises(InvalidConfiguration):
            FileDescriptor(source_path="/a.txt", size_bytes=-1, mtime_epoch_ms=1)


def _record(**overrides) -> FileRecord:
    fields = {
        "file_id": "id-1",
        "feed_id": "feed",
        "source_path": "/a.txt",
        "size_bytes": 3,
        "mtime_epoch_ms": 10,
    }
    fields.update(overrides)
    return FileRecord(**fields)


class TestFileRecord:
    def test_defaults(self):
        r = _record()
        assert r.status == FileStatus.DISCOVERED
        assert r.attempts == 0
        assert r.dest_uri is None
        assert r.copied_at is None
        assert r.checksum_md5 is None

    def test_identity(self):
        assert _record().identity == ("feed", "/a.txt", 10, 3)

    def test_blank_keys_rejected(self):
        with pytest.raises(InvalidConfiguration):
            _record(file_id="")
        with pytest.raises(InvalidConfiguration):
            _record(feed_id="")

    def test_negative_attempts_rejected(self):
        with pytest.raises(InvalidConfiguration):
            _record(attempts=-1)

    def test_with_status_copied_sets_timestamp_and_dest(self):
        now = datetime(2026, 1, 2, tzinfo=UTC)
        r = _record().with_status(FileStatus.COPIED, "out/a.txt", now)
        assert r.status == FileStatus.COPIED
        assert r.dest_uri == "out/a.txt"
        assert r.copied_at == now
        assert r.attempts == 0

    def test_with_status_failed_increments_attempts(self):
        now = datetime.now(UTC)
        r = _record(attempts=2).with_status(FileStatus.FAILED, None, now)
        assert r.attempts == 3
        assert r.copied_at is None

    def test_with_status_copying_keeps_counters(self):
        r = _record(attempts=1).with_status(FileStatus.COPYING, None, datetime.now(UTC))
        assert r.status == FileStatus.COPYING
        assert r.attempts == 1
        assert r.copied_at is None

    def test_with_status_does_not_mutate_original(self):
        original = _record()
        original.with_status(FileStatus.FAILED, None, datetime.now(UTC))
        assert original.status == FileStatus.DISCOVERED
        assert original.attempts == 0


class TestTransferResult:
    def test_success(self):
        r = TransferResult.success("id", "/a.txt", "out/a.txt", 13)
        assert r.status == ResultStatus.SUCCESS
        assert r.dest_path == "out/a.txt"
        assert r.bytes_transferred == 13
        assert r.error_message is None

    def test_skipped(self):
        r = TransferResult.skipped("id", "/a.txt", "Already copied")
        assert r.status == ResultStatus.SKIPPED
        assert r.dest_path is None
        assert r.bytes_transferred == 0
        assert r.error_message == "Already copied"

    def test_failed(self):
        r = TransferResult.failed("id", "/a.txt", "boom")
        assert r.status == ResultStatus.FAILED
        assert r.dest_path is None
        assert r.bytes_transferred == 0
        assert r.error_message == "boom"
