import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from blazeclip.config import DB_PATH, IMAGE_DIR

logger = logging.getLogger(__name__)

EMPTY_SNAPSHOT = '{"items": []}'

SCHEMA = """
CREATE TABLE IF NOT EXISTS history_snapshot (
    id         INTEGER PRIMARY KEY CHECK(id = 1),
    payload    TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now', 'localtime'))
);
"""


class StorageManager:
    """Durable home for the serialized history snapshot."""

    def __init__(self, db_path: str | Path | None = None):
        self._db_path = str(db_path) if db_path else str(DB_PATH)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self.init_db()

    def init_db(self) -> None:
        self._conn.executescript(SCHEMA)
        self._migrate_schema()
        self._conn.commit()

    def _migrate_schema(self) -> None:
        """Add new columns to existing databases."""
        cursor = self._conn.execute("PRAGMA table_info(history_snapshot)")
        columns = {row[1] for row in cursor.fetchall()}
        if "schema_version" not in columns:
            self._conn.execute("ALTER TABLE history_snapshot ADD COLUMN schema_version INTEGER NOT NULL DEFAULT 1")

    def load_history(self) -> str:
        row = self._conn.execute("SELECT payload FROM history_snapshot WHERE id = 1").fetchone()
        return row["payload"] if row else EMPTY_SNAPSHOT

    def persist_history(self, snapshot: str) -> None:
        self._conn.execute(
            """INSERT INTO history_snapshot (id, payload, updated_at) VALUES (1, ?, ?)
               ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at""",
            (snapshot, datetime.now().isoformat()),
        )
        self._conn.commit()

    def last_saved_at(self) -> datetime | None:
        row = self._conn.execute("SELECT updated_at FROM history_snapshot WHERE id = 1").fetchone()
        return datetime.fromisoformat(row["updated_at"]) if row else None

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class ImageStore:
    """Image bytes on disk, addressed by content hash."""

    def __init__(self, image_dir: str | Path | None = None):
        self._image_dir = Path(image_dir) if image_dir else IMAGE_DIR

    def save(self, img_bytes: bytes, content_hash: str) -> str:
        self._image_dir.mkdir(parents=True, exist_ok=True)
        path = self._image_dir / (content_hash[:16] + ".png")
        if not path.exists():
            path.write_bytes(img_bytes)
        return str(path)

    def read(self, ref: str) -> bytes:
        return Path(ref).read_bytes()

    def release(self, ref: str | None) -> None:
        if not ref:
            return
        p = Path(ref)
        try:
            if p.exists():
                p.unlink()
        except OSError:
            logger.warning("Could not remove image file %s", ref, exc_info=True)
