"""Shared fixtures for relay tests."""

import pytest

from filerelay.schemas.relay import Feed


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("RELAY_USE_SOPS", "false")


@pytest.fixture()
def source_dir(tmp_path):
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture()
def sink_dir(tmp_path):
    path = tmp_path / "sink"
    path.mkdir()
    return path


@pytest.fixture()
def make_feed(source_dir):
    """Build a feed over ``source_dir`` with overridable fields."""

    def _make(**overrides) -> Feed:
        fields = {
            "id": "test-feed",
            "source_uri": str(source_dir),
            "include_patterns": [],
            "exclude_patterns": [],
            "destination_prefix": "",
            "active": True,
            "metadata": {},
        }
        fields.update(overrides)
        return Feed(**fields)

    return _make
