import asyncio
import logging
import sys
from typing import Protocol

import pyperclip

from blazeclip.config import MAX_TEXT_SIZE
from blazeclip.models import ImagePayload
from blazeclip.storage import ImageStore

logger = logging.getLogger(__name__)


class ClipboardError(Exception):
    """A system clipboard read or write failed."""


class ClipboardAccessor(Protocol):
    async def read_text(self) -> str | None: ...

    async def read_image(self) -> ImagePayload | None: ...

    async def write_text(self, text: str) -> None: ...

    async def write_image(self, ref: str) -> None: ...

    async def clear(self) -> None: ...


class PyperclipClipboard:
    """Text-only clipboard access through pyperclip."""

    async def read_text(self) -> str | None:
        try:
            text = await asyncio.to_thread(pyperclip.paste)
        except pyperclip.PyperclipException as exc:
            raise ClipboardError(str(exc)) from exc
        if not text:
            return None
        if len(text.encode("utf-8")) > MAX_TEXT_SIZE:
            logger.warning("Clipboard text too large (%d chars), skipping", len(text))
            return None
        return text

    async def read_image(self) -> ImagePayload | None:
        return None

    async def write_text(self, text: str) -> None:
        try:
            await asyncio.to_thread(pyperclip.copy, text)
        except pyperclip.PyperclipException as exc:
            raise ClipboardError(str(exc)) from exc

    async def write_image(self, ref: str) -> None:
        raise ClipboardError("image clipboard is not supported on this platform")

    async def clear(self) -> None:
        await self.write_text("")


def default_clipboard(image_store: ImageStore) -> ClipboardAccessor:
    if sys.platform == "darwin":
        from blazeclip.pasteboard import PasteboardClipboard

        return PasteboardClipboard(image_store)
    return PyperclipClipboard()
