"""Feed definitions loaded from a JSON file.

Format::

    {
      "feeds": [
        {
          "id": "trades-eod",
          "source_uri": "file:///data/inbound/trades",
          "include_patterns": ["**/*.csv"],
          "exclude_patterns": ["**/tmp/**"],
          "destination_prefix": "trades",
          "active": true,
          "metadata": {"owner": "surveillance"}
        }
      ]
    }
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from filerelay.relay.errors import InvalidConfiguration
from filerelay.schemas.relay import FeedsFile

logger = logging.getLogger(__name__)


def load_feeds(path: str | Path) -> FeedsFile:
    """Load and validate feeds from ``path``.

    A missing file yields no feeds. Malformed JSON or invalid feed
    definitions raise InvalidConfiguration.
    """
    path = Path(path)
    if not path.exists():
        logger.info("Feeds file not found at %s, no feeds configured", path)
        return FeedsFile()

    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise InvalidConfiguration(f"Feeds file {path} is not valid JSON: {exc}") from exc

    try:
        data = FeedsFile.model_validate(raw)
    except ValidationError as exc:
        raise InvalidConfiguration(f"Invalid feeds file {path}: {exc}") from exc

    logger.info("Loaded %d feed(s) from %s", len(data.feeds), path)
    return data
