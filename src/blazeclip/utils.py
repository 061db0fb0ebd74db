import hashlib
import struct
from datetime import datetime

from blazeclip.config import DATA_DIR, IMAGE_DIR


def compute_hash(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def truncate_text(text: str, max_len: int) -> str:
    single_line = " ".join(text.split())
    if len(single_line) <= max_len:
        return single_line
    return single_line[: max_len - 3] + "..."


def ensure_dirs() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    IMAGE_DIR.mkdir(parents=True, exist_ok=True)


def get_image_dimensions(png_bytes: bytes) -> tuple[int, int]:
    if len(png_bytes) < 24 or png_bytes[:8] != b"\x89PNG\r\n\x1a\n":
        return (0, 0)
    width = struct.unpack(">I", png_bytes[16:20])[0]
    height = struct.unpack(">I", png_bytes[20:24])[0]
    return (width, height)


def from_epoch_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000)


def parse_timestamp(value: str | int | float) -> datetime:
    """Accept ISO 8601 strings and epoch milliseconds (older snapshots)."""
    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return from_epoch_ms(value)
    return datetime.fromisoformat(value)


def format_when(moment: datetime, now: datetime | None = None) -> str:
    now = now or datetime.now()
    if moment.date() == now.date():
        return f"Today at {moment:%H:%M:%S}"
    return f"{moment:%Y-%m-%d %H:%M}"
