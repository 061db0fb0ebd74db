import os
from pathlib import Path

DATA_DIR = Path(os.environ.get("BLAZECLIP_DATA_DIR", Path.home() / ".local" / "share" / "blazeclip"))
DB_PATH = DATA_DIR / "blazeclip.db"
IMAGE_DIR = DATA_DIR / "images"
LOG_PATH = DATA_DIR / "blazeclip.log"

MAX_HISTORY = 100  # unpinned entries retained
MAX_PINS = 3
MAX_TEXT_SIZE = 1_000_000  # 1MB text limit
MAX_IMAGE_SIZE = 10_000_000  # 10MB image limit
PREVIEW_LENGTH = 60  # characters shown in a one-line preview

BASE_INTERVAL_MS = 1000
BACKOFF_FACTOR = 1.5
BACKOFF_THRESHOLD = 5  # unchanged samples before the interval grows


def _parse_max_interval_ms() -> int:
    raw = os.environ.get("BLAZECLIP_MAX_INTERVAL_MS")
    if raw is None:
        return 5000
    try:
        value = int(raw)
    except ValueError:
        return 5000
    return max(BASE_INTERVAL_MS, min(60_000, value))


MAX_INTERVAL_MS = _parse_max_interval_ms()

PINNED_CATEGORY = "Pinned"
HISTORY_CATEGORY = "Clipboard History"
