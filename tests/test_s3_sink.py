"""Tests for the S3-compatible object store sink (boto3 client mocked)."""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from filerelay.relay.errors import IOFailure, QuotaExceeded, ResumeUnsupported, SinkUnavailable
from filerelay.relay.sink import S3Sink


def _client_error(code: str, operation: str = "PutObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def client():
    client = MagicMock()
    uploaded = {}

    def _upload(fileobj, bucket, key, ExtraArgs=None):
        uploaded[key] = (fileobj.read(), ExtraArgs)

    client.upload_fileobj.side_effect = _upload
    client.uploaded = uploaded
    return client


def _staging_key(client) -> str:
    return client.upload_fileobj.call_args.args[2]


class TestWrite:
    def test_stages_copies_and_cleans_up(self, client):
        sink = S3Sink("bucket", "relay", client=client)
        written = sink.write(
            "output/test.txt",
            io.BytesIO(b"Hello, world!"),
            0,
            13,
            {"source": "/in/test.txt", "size": "13", "mtime": "1000"},
        )

        assert written == 13
        staging = _staging_key(client)
        assert staging.startswith("relay/output/test.txt.staging-")
        body, extra = client.uploaded[staging]
        assert body == b"Hello, world!"
        assert extra == {"Metadata": {"source": "/in/test.txt", "size": "13", "mtime": "1000"}}

        client.copy.assert_called_once_with(
            {"Bucket": "bucket", "Key": staging},
            "bucket",
            "relay/output/test.txt",
            ExtraArgs={
                "Metadata": {"source": "/in/test.txt", "size": "13", "mtime": "1000"},
                "MetadataDirective": "REPLACE",
            },
        )
        client.copy_object.assert_not_called()
        client.delete_object.assert_called_once_with(Bucket="bucket", Key=staging)

    def test_no_prefix(self, client):
        sink = S3Sink("bucket", client=client)
        sink.write("test.txt", io.BytesIO(b"x"))
        assert client.copy.call_args.args[2] == "test.txt"

    def test_promotes_with_managed_copy(self, client):
        # single-request CopyObject is capped at 5 GiB; the managed copy is not
        sink = S3Sink("bucket", client=client)
        sink.write("big.bin", io.BytesIO(b"x" * 64))

        client.copy.assert_called_once()
        client.copy_object.assert_not_called()
        copy_source, bucket, key = client.copy.call_args.args
        assert copy_source == {"Bucket": "bucket", "Key": _staging_key(client)}
        assert (bucket, key) == ("bucket", "big.bin")

    def test_without_metadata(self, client):
        S3Sink("bucket", client=client).write("t.txt", io.BytesIO(b"x"))
        assert client.copy.call_args.kwargs["ExtraArgs"] == {
            "Metadata": {},
            "MetadataDirective": "REPLACE",
        }

    def test_full_key_normalizes(self):
        sink = S3Sink("bucket", "/relay/", client=MagicMock())
        assert sink.full_key("/a\\b.txt") == "relay/a/b.txt"

    def test_nonzero_offset_unsupported(self, client):
        sink = S3Sink("bucket", client=client)
        with pytest.raises(ResumeUnsupported):
            sink.write("test.txt", io.BytesIO(b"x"), offset=1)
        client.upload_fileobj.assert_not_called()


class TestFailures:
    def test_upload_failure_deletes_staging(self, client):
        client.upload_fileobj.side_effect = _client_error("InternalError")
        sink = S3Sink("bucket", client=client)

        with pytest.raises(IOFailure):
            sink.write("test.txt", io.BytesIO(b"x"))

        client.copy.assert_not_called()
        staging = _staging_key(client)
        client.delete_object.assert_called_once_with(Bucket="bucket", Key=staging)

    def test_copy_failure_never_exposes_final_key(self, client):
        client.copy.side_effect = _client_error("InternalError", "CopyObject")
        sink = S3Sink("bucket", client=client)

        with pytest.raises(IOFailure):
            sink.write("test.txt", io.BytesIO(b"x"))

        deleted = [c.kwargs["Key"] for c in client.delete_object.call_args_list]
        assert deleted == [_staging_key(client)]

    @pytest.mark.parametrize("code", ["NoSuchBucket", "AccessDenied", "SlowDown"])
    def test_unavailable_codes(self, client, code):
        client.upload_fileobj.side_effect = _client_error(code)
        with pytest.raises(SinkUnavailable):
            S3Sink("bucket", client=client).write("t.txt", io.BytesIO(b"x"))

    def test_quota_code(self, client):
        client.upload_fileobj.side_effect = _client_error("EntityTooLarge")
        with pytest.raises(QuotaExceeded):
            S3Sink("bucket", client=client).write("t.txt", io.BytesIO(b"x"))

    def test_connection_error(self, client):
        client.upload_fileobj.side_effect = EndpointConnectionError(endpoint_url="http://s3")
        with pytest.raises(SinkUnavailable):
            S3Sink("bucket", client=client).write("t.txt", io.BytesIO(b"x"))

    def test_short_stream_rejected(self, client):
        sink = S3Sink("bucket", client=client)
        with pytest.raises(IOFailure, match="expected 5 bytes"):
            sink.write("t.txt", io.BytesIO(b"abc"), length=5)
        client.copy.assert_not_called()
        client.delete_object.assert_called_once()

    def test_staging_cleanup_failure_is_logged_not_raised(self, client, caplog):
        client.delete_object.side_effect = _client_error("AccessDenied", "DeleteObject")
        sink = S3Sink("bucket", client=client)
        assert sink.write("t.txt", io.BytesIO(b"abc")) == 3
        assert "Could not delete staging object" in caplog.text
