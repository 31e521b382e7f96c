"""Tests for file identity derivation."""

import re

from filerelay.relay.identity import file_id_for, generate_file_id
from filerelay.schemas.relay import FileDescriptor


class TestGenerateFileId:
    def test_known_digest(self):
        # SHA-256 of "trades|/data/in/a.csv|1700000000000|42"
        assert generate_file_id("trades", "/data/in/a.csv", 1700000000000, 42) == (
            "8f2beed9019cd43c070d8bb6c1d9790b53f3d0d6c8b25ba91b48be6befb87201"
        )

    def test_deterministic(self):
        a = generate_file_id("feed", "/x/y.txt", 123, 7)
        b = generate_file_id("feed", "/x/y.txt", 123, 7)
        assert a == b

    def test_lowercase_hex_64(self):
        file_id = generate_file_id("feed", "/x/y.txt", 0, 0)
        assert len(file_id) == 64
        assert re.fullmatch(r"[0-9a-f]{64}", file_id)

    def test_each_component_changes_id(self):
        base = generate_file_id("feed", "/x/y.txt", 123, 7)
        assert generate_file_id("other", "/x/y.txt", 123, 7) != base
        assert generate_file_id("feed", "/x/z.txt", 123, 7) != base
        assert generate_file_id("feed", "/x/y.txt", 124, 7) != base
        assert generate_file_id("feed", "/x/y.txt", 123, 8) != base

    def test_non_ascii_path(self):
        file_id = generate_file_id("feed", "/données/relevé.csv", 1, 1)
        assert len(file_id) == 64


class TestFileIdFor:
    def test_matches_quadruple(self):
        d = FileDescriptor(source_path="/x/y.txt", size_bytes=7, mtime_epoch_ms=123)
        assert file_id_for("feed", d) == generate_file_id("feed", "/x/y.txt", 123, 7)
