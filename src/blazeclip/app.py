import asyncio
import logging

from blazeclip.clipboard import ClipboardAccessor
from blazeclip.controller import NavigationController
from blazeclip.entities import ClipboardItem
from blazeclip.history import HistoryStore, PersistenceError
from blazeclip.models import ClipboardEntry, ContentType
from blazeclip.poller import ClipboardPoller
from blazeclip.storage import ImageStore, StorageManager

logger = logging.getLogger(__name__)


class ClipboardSession:
    """Wires the history store, the poller and keyboard navigation together."""

    def __init__(
        self,
        storage: StorageManager,
        clipboard: ClipboardAccessor,
        image_store: ImageStore | None = None,
        *,
        poller_options: dict | None = None,
    ):
        self._storage = storage
        self._clipboard = clipboard
        self._image_store = image_store
        self.query = ""
        self.store = HistoryStore(
            storage,
            release_image=image_store.release if image_store else None,
            clipboard=clipboard,
        )
        self.poller = ClipboardPoller(self.store, clipboard, **(poller_options or {}))
        self.navigator: NavigationController[ClipboardItem] = NavigationController(
            self._clipboard_groups,
            store=self.store,
            clipboard=clipboard,
            key=lambda item: item.id,
        )
        self._unsubscribe = self.store.subscribe(lambda _store: self.navigator.refresh())

    def _clipboard_groups(self) -> dict[str, list[ClipboardItem]]:
        return {
            label: [ClipboardItem(entry, self.copy_entry) for entry in entries]
            for label, entries in self.store.grouped(self.query).items()
        }

    def load(self) -> bool:
        try:
            self.store.load()
        except PersistenceError:
            logger.exception("Starting with an empty clipboard history")
            return False
        return True

    def start(self) -> None:
        self.load()
        self.poller.start()
        logger.info("Clipboard capture started with %d entries", len(self.store))

    def stop(self) -> None:
        self.poller.stop()
        self._unsubscribe()

    async def run_forever(self) -> None:
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            self.stop()
            await self.poller.wait_idle()

    def search(self, query: str) -> None:
        self.query = query.strip()
        self.navigator.reset()

    def on_focus_gained(self) -> None:
        self.poller.on_focus_gained()

    async def copy_entry(self, entry: ClipboardEntry) -> bool:
        try:
            if entry.kind == ContentType.IMAGE:
                await self._clipboard.write_image(entry.image.storage_ref)
            else:
                await self._clipboard.write_text(entry.text)
        except Exception:
            logger.exception("Error copying entry %d to clipboard", entry.id)
            return False

        self.store.record_copy(entry.id)
        self.poller.notify_user_copy()
        return True
