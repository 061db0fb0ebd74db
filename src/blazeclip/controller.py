import logging
from collections.abc import Callable, Hashable, Mapping, Sequence
from typing import Generic, TypeVar

from blazeclip import navigation
from blazeclip.clipboard import ClipboardAccessor
from blazeclip.entities import Activatable, ActivationOutcome
from blazeclip.history import HistoryStore
from blazeclip.models import ContentType, DeleteResult, PinResult
from blazeclip.navigation import CursorPosition

logger = logging.getLogger(__name__)


T = TypeVar("T", bound=Activatable)


class NavigationController(Generic[T]):
    """Keyboard intents over a grouped list, plus history actions on the selection.

    ``source`` returns the current grouping. After a refresh the cursor goes
    back to the first item whenever the grouping changed shape; with ``key``
    set, a refresh that yields the same categories holding the same keys keeps
    the cursor where it was. Delete, pin and clear only act when a ``store``
    is bound, in which case the items must carry the history ``entry`` they
    show. Every intent is a no-op when nothing is selected.
    """

    def __init__(
        self,
        source: Callable[[], Mapping[str, Sequence[T]]],
        *,
        store: HistoryStore | None = None,
        clipboard: ClipboardAccessor | None = None,
        key: Callable[[T], Hashable] | None = None,
    ):
        self._source = source
        self._store = store
        self._clipboard = clipboard
        self._key = key
        self.groups: Mapping[str, Sequence[T]] = {}
        self.cursor: CursorPosition = navigation.NONE
        self.refresh()

    @property
    def selected(self) -> T | None:
        return navigation.resolve(self.groups, self.cursor)

    def refresh(self) -> None:
        groups = self._source()
        if self._key is None or self._shape(groups) != self._shape(self.groups):
            self.cursor = navigation.first(groups)
        self.groups = groups

    def reset(self) -> None:
        self.groups = self._source()
        self.cursor = navigation.first(self.groups)

    def on_next(self) -> CursorPosition:
        self.cursor = navigation.advance(self.groups, self.cursor)
        return self.cursor

    def on_prev(self) -> CursorPosition:
        self.cursor = navigation.retreat(self.groups, self.cursor)
        return self.cursor

    async def on_activate(self) -> ActivationOutcome | None:
        entity = self.selected
        if entity is None:
            return None
        return await entity.activate()

    async def on_delete_selected(self) -> DeleteResult | None:
        entity = self.selected
        if entity is None or self._store is None:
            return None

        result = self._store.delete(entity.entry.id)
        if result.was_active:
            await self._replace_system_clipboard()
        self.reset()
        return result

    def on_toggle_pin(self) -> PinResult | None:
        entity = self.selected
        if entity is None or self._store is None:
            return None

        if entity.entry.pinned:
            self._store.unpin(entity.entry.id)
            result = PinResult.UNPINNED
        else:
            result = self._store.pin(entity.entry.id)
        if result == PinResult.QUOTA_EXCEEDED:
            logger.info("Pin limit reached, entry %d left unpinned", entity.entry.id)
            return result
        self.reset()
        return result

    async def on_clear_all(self) -> int:
        if self._store is None:
            return 0
        removed = await self._store.clear()
        self.reset()
        return removed

    async def _replace_system_clipboard(self) -> None:
        """Put the newest remaining text entry on the clipboard, or empty it."""
        if self._clipboard is None:
            return
        replacement = next(
            (e for e in self._store.unpinned() if e.kind == ContentType.TEXT),
            None,
        )
        with self._store.suppressed():
            try:
                if replacement is not None:
                    await self._clipboard.write_text(replacement.text)
                else:
                    await self._clipboard.clear()
            except Exception:
                logger.exception("Failed to update the system clipboard after delete")

    def _shape(self, groups: Mapping[str, Sequence[T]]) -> list[tuple[str, list[Hashable]]]:
        return [(label, [self._key(item) for item in items]) for label, items in groups.items()]
