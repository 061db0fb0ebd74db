from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from blazeclip.config import PREVIEW_LENGTH
from blazeclip.utils import truncate_text


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


@dataclass(frozen=True)
class ImagePayload:
    """Descriptor for image bytes held by the image store; the hash comes from the accessor."""

    width: int
    height: int
    content_hash: str
    storage_ref: str


Payload = str | ImagePayload


@dataclass
class ClipboardEntry:
    id: int
    kind: ContentType
    text: str | None
    image: ImagePayload | None
    created_at: datetime
    last_used_at: datetime
    use_count: int = 1
    pinned: bool = False

    @property
    def payload(self) -> Payload:
        if self.kind == ContentType.IMAGE:
            return self.image
        return self.text

    @property
    def preview(self) -> str:
        if self.kind == ContentType.IMAGE:
            if self.image.width > 0:
                return f"[Image: {self.image.width}x{self.image.height}]"
            return "[Image]"
        return truncate_text(self.text, PREVIEW_LENGTH)


class AppendStatus(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class AppendResult:
    status: AppendStatus
    entry: ClipboardEntry
    evicted: list[ClipboardEntry] = field(default_factory=list)

    @property
    def created(self) -> bool:
        return self.status == AppendStatus.CREATED


class PinResult(str, Enum):
    PINNED = "pinned"
    ALREADY_PINNED = "already_pinned"
    QUOTA_EXCEEDED = "quota_exceeded"
    NOT_FOUND = "not_found"
    UNPINNED = "unpinned"


@dataclass(frozen=True)
class DeleteResult:
    deleted: bool
    was_active: bool = False
    entry: ClipboardEntry | None = None
