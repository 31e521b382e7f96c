"""Single source of truth for relay configuration.

All modules import from here, never from os.environ directly.

Values come from secrets/relay.env (or secrets/relay.env.enc when
RELAY_USE_SOPS=true); environment variables of the same name win. A missing
plain settings file means defaults throughout.
"""

import logging
import os
from pathlib import Path

from filerelay.secrets import read_env_file

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("RELAY_USE_SOPS", "false").lower() == "true"


def _load() -> dict[str, str | None]:
    if USE_SOPS:
        return read_env_file(PROJECT_ROOT / "secrets/relay.env.enc", encrypted=True)
    try:
        return read_env_file(PROJECT_ROOT / "secrets/relay.env")
    except FileNotFoundError:
        logger.debug("No secrets/relay.env found, using defaults and environment")
        return {}


_settings = _load()


def _get(key: str, default: str) -> str:
    value = os.environ.get(key)
    if value is None:
        value = _settings.get(key)
    return value if value is not None else default


# --- Sink ---
SINK_BACKEND: str = _get("RELAY_SINK_BACKEND", "local")
SINK_LOCAL_PATH: str = _get("RELAY_SINK_LOCAL_PATH", "/tmp/relay-sink")
SINK_BUFFER_SIZE: int = int(_get("RELAY_SINK_BUFFER_SIZE", "8192"))

# --- Object-store sink (S3-compatible) ---
S3_BUCKET: str = _get("RELAY_S3_BUCKET", "")
S3_PREFIX: str = _get("RELAY_S3_PREFIX", "")
S3_REGION: str = _get("RELAY_S3_REGION", "")
S3_ENDPOINT_URL: str = _get("RELAY_S3_ENDPOINT_URL", "")

# --- Tracker & audit ---
TRACKER_BACKEND: str = _get("RELAY_TRACKER_BACKEND", "sqlite")
TRACKER_DB_PATH: str = _get("RELAY_TRACKER_DB_PATH", str(PROJECT_ROOT / "data" / "relay_tracker.db"))
AUDIT_LOG_PATH: str = _get("RELAY_AUDIT_LOG_PATH", str(PROJECT_ROOT / "data" / "relay_audit.jsonl"))

# --- Feeds ---
FEEDS_PATH: str = _get("RELAY_FEEDS_PATH", str(PROJECT_ROOT / "data" / "feeds.json"))
MAX_WORKERS: int = int(_get("RELAY_MAX_WORKERS", "1"))
