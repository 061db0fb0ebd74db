import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from blazeclip.config import HISTORY_CATEGORY, PINNED_CATEGORY
from blazeclip.models import ClipboardEntry

logger = logging.getLogger(__name__)


class ActivationOutcome(str, Enum):
    DONE = "done"
    NEEDS_INPUT = "needs_input"  # host should prompt for an argument
    FAILED = "failed"


class Activatable(Protocol):
    async def activate(self) -> ActivationOutcome: ...


@dataclass
class ClipboardItem:
    """A history entry as a navigable item; activating copies it back to the clipboard."""

    entry: ClipboardEntry
    copy: Callable[[ClipboardEntry], Awaitable[bool]]

    @property
    def id(self) -> int:
        return self.entry.id

    @property
    def title(self) -> str:
        return self.entry.preview

    @property
    def category(self) -> str:
        return PINNED_CATEGORY if self.entry.pinned else HISTORY_CATEGORY

    async def activate(self) -> ActivationOutcome:
        copied = await self.copy(self.entry)
        return ActivationOutcome.DONE if copied else ActivationOutcome.FAILED


@dataclass
class AppSuggestion:
    id: str
    title: str
    category: str
    path: str
    launch: Callable[[str], Awaitable[None]]

    async def activate(self) -> ActivationOutcome:
        try:
            await self.launch(self.id)
        except Exception:
            logger.exception("Failed to launch %s", self.title)
            return ActivationOutcome.FAILED
        return ActivationOutcome.DONE


@dataclass
class QuickLink:
    id: str
    name: str
    command: str
    execute: Callable[[str], Awaitable[None]]
    category: str = "Quick Links"

    @property
    def title(self) -> str:
        return self.name

    @property
    def needs_query(self) -> bool:
        return "{query}" in self.command

    async def activate(self) -> ActivationOutcome:
        if self.needs_query:
            return ActivationOutcome.NEEDS_INPUT
        try:
            await self.execute(self.id)
        except Exception:
            logger.exception("Quick link %s failed", self.name)
            return ActivationOutcome.FAILED
        return ActivationOutcome.DONE
