from datetime import datetime, timedelta

import pytest

from blazeclip.clipboard import ClipboardError
from blazeclip.history import HistoryStore
from blazeclip.models import ImagePayload
from blazeclip.storage import StorageManager


class FakeClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FakeClipboard:
    def __init__(self, text: str | None = None, image: ImagePayload | None = None):
        self.text = text
        self.image = image
        self.fail_text = False
        self.fail_image = False
        self.fail_writes = False
        self.writes: list[str] = []
        self.cleared = 0
        self.reads = 0

    async def read_text(self) -> str | None:
        self.reads += 1
        if self.fail_text:
            raise ClipboardError("text channel unavailable")
        return self.text

    async def read_image(self) -> ImagePayload | None:
        if self.fail_image:
            raise ClipboardError("image channel unavailable")
        return self.image

    async def write_text(self, text: str) -> None:
        if self.fail_writes:
            raise ClipboardError("write refused")
        self.writes.append(text)
        self.text = text
        self.image = None

    async def write_image(self, ref: str) -> None:
        if self.fail_writes:
            raise ClipboardError("write refused")
        self.writes.append(ref)

    async def clear(self) -> None:
        self.cleared += 1
        self.text = None
        self.image = None


@pytest.fixture
def storage():
    mgr = StorageManager(db_path=":memory:")
    yield mgr
    mgr.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def clipboard():
    return FakeClipboard()


@pytest.fixture
def released():
    return []


@pytest.fixture
def store(storage, clipboard, clock, released):
    return HistoryStore(storage, release_image=released.append, clipboard=clipboard, clock=clock)


@pytest.fixture
def make_image():
    """Factory fixture for image payload descriptors."""

    def _make_image(content_hash: str = "abc123", width: int = 100, height: int = 50) -> ImagePayload:
        return ImagePayload(
            width=width,
            height=height,
            content_hash=content_hash,
            storage_ref=f"/tmp/images/{content_hash}.png",
        )

    return _make_image
