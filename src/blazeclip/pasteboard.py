import asyncio
import logging

from AppKit import NSPasteboard, NSPasteboardTypePNG, NSPasteboardTypeString, NSPasteboardTypeTIFF
from Foundation import NSData

from blazeclip.clipboard import ClipboardError
from blazeclip.config import MAX_IMAGE_SIZE, MAX_TEXT_SIZE
from blazeclip.models import ImagePayload
from blazeclip.storage import ImageStore
from blazeclip.utils import compute_hash, get_image_dimensions

logger = logging.getLogger(__name__)


class PasteboardClipboard:
    """macOS general pasteboard, text and images."""

    def __init__(self, image_store: ImageStore):
        self._image_store = image_store
        self._pasteboard = NSPasteboard.generalPasteboard()
        self._image_cache: tuple[int, ImagePayload | None] | None = None

    async def read_text(self) -> str | None:
        return await asyncio.to_thread(self._read_text)

    async def read_image(self) -> ImagePayload | None:
        return await asyncio.to_thread(self._read_image)

    async def write_text(self, text: str) -> None:
        await asyncio.to_thread(self._write_text, text)

    async def write_image(self, ref: str) -> None:
        await asyncio.to_thread(self._write_image, ref)

    async def clear(self) -> None:
        await asyncio.to_thread(self._pasteboard.clearContents)

    def change_count(self) -> int:
        return self._pasteboard.changeCount()

    def _read_text(self) -> str | None:
        types = self._pasteboard.types()
        if types is None or NSPasteboardTypeString not in types:
            return None
        text = self._pasteboard.stringForType_(NSPasteboardTypeString)
        if not text:
            return None
        if len(text.encode("utf-8")) > MAX_TEXT_SIZE:
            logger.warning("Clipboard text too large (%d chars), skipping", len(text))
            return None
        return str(text)

    def _read_image(self) -> ImagePayload | None:
        # image bytes are hashed and saved once per pasteboard change
        count = self._pasteboard.changeCount()
        if self._image_cache is not None and self._image_cache[0] == count:
            return self._image_cache[1]
        payload = self._capture_image()
        self._image_cache = (count, payload)
        return payload

    def _capture_image(self) -> ImagePayload | None:
        types = self._pasteboard.types()
        if types is None:
            return None
        for img_type in (NSPasteboardTypePNG, NSPasteboardTypeTIFF):
            if img_type not in types:
                continue
            data = self._pasteboard.dataForType_(img_type)
            if data is None:
                continue
            img_bytes = bytes(data)
            if len(img_bytes) > MAX_IMAGE_SIZE:
                logger.warning("Image too large (%d bytes), skipping", len(img_bytes))
                return None
            content_hash = compute_hash(img_bytes)
            width, height = get_image_dimensions(img_bytes)
            ref = self._image_store.save(img_bytes, content_hash)
            return ImagePayload(width=width, height=height, content_hash=content_hash, storage_ref=ref)
        return None

    def _write_text(self, text: str) -> None:
        self._pasteboard.clearContents()
        if not self._pasteboard.setString_forType_(text, NSPasteboardTypeString):
            raise ClipboardError("pasteboard refused text")

    def _write_image(self, ref: str) -> None:
        img_data = NSData.dataWithContentsOfFile_(ref)
        if img_data is None:
            raise ClipboardError(f"image file missing: {ref}")
        self._pasteboard.clearContents()
        if not self._pasteboard.setData_forType_(img_data, NSPasteboardTypePNG):
            raise ClipboardError("pasteboard refused image")
