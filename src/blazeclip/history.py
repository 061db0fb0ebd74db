import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Protocol

from blazeclip.config import HISTORY_CATEGORY, MAX_HISTORY, MAX_PINS, PINNED_CATEGORY
from blazeclip.fingerprint import Fingerprint, entry_fingerprint, fingerprint
from blazeclip.models import (
    AppendResult,
    AppendStatus,
    ClipboardEntry,
    ContentType,
    DeleteResult,
    ImagePayload,
    Payload,
    PinResult,
)
from blazeclip.utils import parse_timestamp

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """The history snapshot could not be read from or written to storage."""


class HistoryStorage(Protocol):
    def load_history(self) -> str: ...

    def persist_history(self, snapshot: str) -> None: ...


class SystemClipboard(Protocol):
    async def clear(self) -> None: ...


class HistoryStore:
    """Bounded, deduplicated clipboard history with a small pinned set.

    Unpinned entries are kept newest first and trimmed to ``max_history`` on append;
    pinned entries sit in a separate list in pin order and are never evicted
    by the cap. Every mutation updates memory first, then saves a snapshot
    through ``storage``. A failed save is logged and kept in
    ``last_persist_error`` without undoing the mutation.
    """

    def __init__(
        self,
        storage: HistoryStorage | None = None,
        *,
        release_image: Callable[[str], None] | None = None,
        clipboard: SystemClipboard | None = None,
        max_history: int = MAX_HISTORY,
        max_pins: int = MAX_PINS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._storage = storage
        self._release_image = release_image
        self._clipboard = clipboard
        self._max_history = max_history
        self._max_pins = max_pins
        self._clock = clock

        self._unpinned: list[ClipboardEntry] = []
        self._pinned: list[ClipboardEntry] = []
        self._by_id: dict[int, ClipboardEntry] = {}
        self._by_fingerprint: dict[Fingerprint, ClipboardEntry] = {}
        self._active: Fingerprint | None = None
        self._last_id = 0
        self._busy = 0
        self._listeners: list[Callable[["HistoryStore"], None]] = []

        self.mutation_epoch = 0
        self.last_persist_error: PersistenceError | None = None

    # -- reads -------------------------------------------------------------

    def pinned(self) -> list[ClipboardEntry]:
        return list(self._pinned)

    def unpinned(self) -> list[ClipboardEntry]:
        return list(self._unpinned)

    def entries(self) -> list[ClipboardEntry]:
        return self._pinned + self._unpinned

    def get(self, entry_id: int) -> ClipboardEntry | None:
        return self._by_id.get(entry_id)

    def find(self, payload: Payload) -> ClipboardEntry | None:
        return self._by_fingerprint.get(fingerprint(payload))

    def pinned_count(self) -> int:
        return len(self._pinned)

    def unpinned_count(self) -> int:
        return len(self._unpinned)

    def __len__(self) -> int:
        return len(self._by_id)

    def active_entry(self) -> ClipboardEntry | None:
        """The entry whose content was last seen on, or written to, the system clipboard."""
        if self._active is None:
            return None
        return self._by_fingerprint.get(self._active)

    def filter(self, query: str) -> list[ClipboardEntry]:
        needle = query.lower()
        if not needle:
            return self.entries()
        return [
            e for e in self.entries()
            if e.kind == ContentType.TEXT and needle in e.text.lower()
        ]

    def grouped(self, query: str = "") -> dict[str, list[ClipboardEntry]]:
        matches = self.filter(query)
        groups: dict[str, list[ClipboardEntry]] = {}
        pinned = [e for e in matches if e.pinned]
        recent = [e for e in matches if not e.pinned]
        if pinned:
            groups[PINNED_CATEGORY] = pinned
        if recent:
            groups[HISTORY_CATEGORY] = recent
        return groups

    @property
    def operation_in_progress(self) -> bool:
        return self._busy > 0

    @contextmanager
    def suppressed(self) -> Iterator[None]:
        """Mark a delete/clear as in flight so the poller skips its samples."""
        self._busy += 1
        try:
            yield
        finally:
            self._busy -= 1

    def subscribe(self, callback: Callable[["HistoryStore"], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    # -- mutations ---------------------------------------------------------

    def append(self, payload: Payload) -> AppendResult:
        fp = fingerprint(payload)
        self._active = fp
        existing = self._by_fingerprint.get(fp)
        if existing is not None:
            logger.debug("Duplicate clipboard content for entry %d", existing.id)
            return AppendResult(AppendStatus.DUPLICATE, existing)

        now = self._clock()
        entry = ClipboardEntry(
            id=self._next_id(now),
            kind=fp.kind,
            text=payload if fp.kind == ContentType.TEXT else None,
            image=payload if fp.kind == ContentType.IMAGE else None,
            created_at=now,
            last_used_at=now,
        )
        self._unpinned.insert(0, entry)
        self._index(entry)
        evicted = self._enforce_cap()
        self._changed()
        return AppendResult(AppendStatus.CREATED, entry, evicted)

    def pin(self, entry_id: int) -> PinResult:
        entry = self._by_id.get(entry_id)
        if entry is None:
            return PinResult.NOT_FOUND
        if entry.pinned:
            return PinResult.ALREADY_PINNED
        if len(self._pinned) >= self._max_pins:
            logger.info("Pin refused for entry %d, %d pins already in use", entry_id, len(self._pinned))
            return PinResult.QUOTA_EXCEEDED

        self._unpinned.remove(entry)
        entry.pinned = True
        self._pinned.append(entry)
        self._changed()
        return PinResult.PINNED

    def unpin(self, entry_id: int) -> bool:
        entry = self._by_id.get(entry_id)
        if entry is None or not entry.pinned:
            return False

        # the unpinned list may sit over the cap until the next append trims it
        self._pinned.remove(entry)
        entry.pinned = False
        self._insert_unpinned(entry)
        self._changed()
        return True

    def record_copy(self, entry_id: int) -> bool:
        entry = self._by_id.get(entry_id)
        if entry is None:
            # a copy can race with a delete
            logger.debug("Copy recorded for unknown entry %d", entry_id)
            return False
        entry.last_used_at = self._clock()
        entry.use_count += 1
        self._active = entry_fingerprint(entry)
        self._changed()
        return True

    def delete(self, entry_id: int) -> DeleteResult:
        entry = self._by_id.get(entry_id)
        if entry is None:
            return DeleteResult(deleted=False)

        with self.suppressed():
            fp = entry_fingerprint(entry)
            was_active = fp == self._active
            if was_active:
                self._active = None
            self._drop(entry)
            self.mutation_epoch += 1
            self._changed()
        return DeleteResult(deleted=True, was_active=was_active, entry=entry)

    async def clear(self) -> int:
        with self.suppressed():
            removed = self.entries()
            self._unpinned.clear()
            self._pinned.clear()
            self._by_id.clear()
            self._by_fingerprint.clear()
            self._active = None
            for entry in removed:
                self._release(entry)
            self.mutation_epoch += 1
            self._changed()

            if self._clipboard is not None:
                try:
                    await self._clipboard.clear()
                except Exception:
                    logger.exception("Failed to clear the system clipboard")
        logger.info("Cleared %d clipboard entries", len(removed))
        return len(removed)

    # -- persistence -------------------------------------------------------

    def load(self) -> None:
        if self._storage is None:
            return
        try:
            raw = self._storage.load_history()
        except Exception as exc:
            raise PersistenceError("could not read clipboard history") from exc
        try:
            items = json.loads(raw).get("items", [])
        except (ValueError, AttributeError) as exc:
            raise PersistenceError("clipboard history snapshot is not valid JSON") from exc
        if not isinstance(items, list):
            raise PersistenceError("clipboard history snapshot has no item list")

        self._restore(items)
        self._notify()

    def persist(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.persist_history(self.to_snapshot())
        except Exception as exc:
            raise PersistenceError("could not save clipboard history") from exc

    def to_snapshot(self) -> str:
        return json.dumps({"items": [_entry_to_dict(e) for e in self.entries()]})

    # -- internals ---------------------------------------------------------

    def _next_id(self, now: datetime) -> int:
        self._last_id = max(int(now.timestamp() * 1000), self._last_id + 1)
        return self._last_id

    def _index(self, entry: ClipboardEntry) -> None:
        self._by_id[entry.id] = entry
        self._by_fingerprint[entry_fingerprint(entry)] = entry

    def _insert_unpinned(self, entry: ClipboardEntry) -> None:
        for pos, other in enumerate(self._unpinned):
            if other.id < entry.id:
                self._unpinned.insert(pos, entry)
                return
        self._unpinned.append(entry)

    def _drop(self, entry: ClipboardEntry) -> None:
        if entry.pinned:
            self._pinned.remove(entry)
        else:
            self._unpinned.remove(entry)
        del self._by_id[entry.id]
        del self._by_fingerprint[entry_fingerprint(entry)]
        self._release(entry)

    def _enforce_cap(self) -> list[ClipboardEntry]:
        evicted = []
        while len(self._unpinned) > self._max_history:
            oldest = self._unpinned[-1]
            self._drop(oldest)
            evicted.append(oldest)
        if evicted:
            logger.debug("Evicted %d entries over the history cap", len(evicted))
        return evicted

    def _release(self, entry: ClipboardEntry) -> None:
        if entry.kind != ContentType.IMAGE or self._release_image is None:
            return
        try:
            self._release_image(entry.image.storage_ref)
        except Exception:
            logger.exception("Failed to release image storage %s", entry.image.storage_ref)

    def _changed(self) -> None:
        self._autosave()
        self._notify()

    def _autosave(self) -> None:
        try:
            self.persist()
        except PersistenceError as exc:
            logger.error("%s: %s", exc, exc.__cause__)
            self.last_persist_error = exc
        else:
            self.last_persist_error = None

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                logger.exception("History listener failed")

    def _restore(self, items: list[Any]) -> None:
        self._unpinned.clear()
        self._pinned.clear()
        self._by_id.clear()
        self._by_fingerprint.clear()
        self._active = None

        for raw in items:
            try:
                entry = _entry_from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.warning("Skipping malformed history item: %r", raw)
                continue
            if entry.id in self._by_id or entry_fingerprint(entry) in self._by_fingerprint:
                continue
            if entry.pinned and len(self._pinned) >= self._max_pins:
                logger.warning("Unpinning entry %d, more than %d pins stored", entry.id, self._max_pins)
                entry.pinned = False
            if entry.pinned:
                self._pinned.append(entry)
            else:
                self._unpinned.append(entry)
            self._index(entry)

        self._unpinned.sort(key=lambda e: e.id, reverse=True)
        self._last_id = max(self._by_id, default=0)


def _entry_to_dict(entry: ClipboardEntry) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": entry.id,
        "kind": entry.kind.value,
        "created_at": entry.created_at.isoformat(),
        "last_used_at": entry.last_used_at.isoformat(),
        "use_count": entry.use_count,
        "pinned": entry.pinned,
    }
    if entry.kind == ContentType.IMAGE:
        data["image"] = {
            "width": entry.image.width,
            "height": entry.image.height,
            "content_hash": entry.image.content_hash,
            "storage_ref": entry.image.storage_ref,
        }
    else:
        data["text"] = entry.text
    return data


def _entry_from_dict(data: dict[str, Any]) -> ClipboardEntry:
    kind = ContentType(data.get("kind", ContentType.TEXT.value))
    created_at = parse_timestamp(data["created_at"] if "created_at" in data else data["timestamp"])

    last_used_raw = data.get("last_used_at", data.get("last_copied"))
    last_used_at = parse_timestamp(last_used_raw) if last_used_raw else created_at

    text = None
    image = None
    if kind == ContentType.IMAGE:
        img = data["image"]
        image = ImagePayload(
            width=int(img.get("width", 0)),
            height=int(img.get("height", 0)),
            content_hash=str(img["content_hash"]),
            storage_ref=str(img["storage_ref"]),
        )
    else:
        text = data["text"]
        if not isinstance(text, str):
            raise TypeError("text entry without a string payload")

    return ClipboardEntry(
        id=int(data["id"]),
        kind=kind,
        text=text,
        image=image,
        created_at=created_at,
        last_used_at=last_used_at,
        use_count=max(1, int(data.get("use_count", data.get("copy_count", 1)))),
        pinned=bool(data.get("pinned", False)),
    )
