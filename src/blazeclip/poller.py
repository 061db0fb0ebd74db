import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from blazeclip.clipboard import ClipboardAccessor
from blazeclip.config import BACKOFF_FACTOR, BACKOFF_THRESHOLD, BASE_INTERVAL_MS, MAX_INTERVAL_MS
from blazeclip.fingerprint import Fingerprint, fingerprint
from blazeclip.history import HistoryStore
from blazeclip.models import AppendResult, Payload

logger = logging.getLogger(__name__)

T = TypeVar("T")

# a channel read that raised; distinct from "channel empty"
_FAILED = object()


class PollerState(str, Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    SCHEDULED = "scheduled"


class ClipboardPoller:
    """Samples the system clipboard on a single re-armed timer.

    The interval starts at ``base_interval_ms``. After ``backoff_threshold``
    consecutive samples without new content it grows by ``backoff_factor`` per
    sample up to ``max_interval_ms``, and drops back to the base as soon as
    something changes, the host window regains focus, or the user copies an
    entry. Text and image channels are read independently; a failure on one
    never blocks the other or stops the loop.
    """

    def __init__(
        self,
        store: HistoryStore,
        clipboard: ClipboardAccessor,
        *,
        base_interval_ms: int = BASE_INTERVAL_MS,
        max_interval_ms: int = MAX_INTERVAL_MS,
        backoff_factor: float = BACKOFF_FACTOR,
        backoff_threshold: int = BACKOFF_THRESHOLD,
        on_append: Callable[[AppendResult], None] | None = None,
    ):
        self._store = store
        self._clipboard = clipboard
        self.base_interval_ms = base_interval_ms
        self.max_interval_ms = max_interval_ms
        self.backoff_factor = backoff_factor
        self.backoff_threshold = backoff_threshold
        self._on_append = on_append

        self.current_interval_ms: float = base_interval_ms
        self.no_change_count = 0
        self.state = PollerState.IDLE

        self._last_seen: dict[str, Fingerprint | None] = {"text": None, "image": None}
        self._running = False
        self._generation = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Arm the first sample immediately. Must be called from inside the event loop."""
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._generation += 1
        self._arm(0)

    def stop(self) -> None:
        """Cancel the timer. A sample already in flight finishes and is discarded."""
        self._running = False
        self._generation += 1
        self._cancel_timer()
        if self.state == PollerState.SCHEDULED:
            self.state = PollerState.IDLE

    def reschedule(self, delay_ms: float | None = None) -> None:
        if not self._running or self.state == PollerState.SAMPLING:
            return
        self._cancel_timer()
        self._arm(self.current_interval_ms if delay_ms is None else delay_ms)

    def reset_interval(self) -> None:
        self.current_interval_ms = self.base_interval_ms
        self.no_change_count = 0
        self.reschedule()

    def on_focus_gained(self) -> None:
        logger.debug("Window focus regained, polling at base rate")
        self.reset_interval()

    def notify_user_copy(self) -> None:
        self.reset_interval()

    async def wait_idle(self) -> None:
        """Wait for an in-flight sample, if any, to finish."""
        if self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def sample_once(self) -> bool:
        """Run one sampling cycle. Returns True when new content was observed."""
        generation = self._generation
        if self._store.operation_in_progress:
            logger.debug("History mutation in flight, skipping sample")
            return False

        epoch = self._store.mutation_epoch
        text = await self._read_channel("text", self._clipboard.read_text)
        image = await self._read_channel("image", self._clipboard.read_image)

        if generation != self._generation:
            logger.debug("Poller stopped during sample, discarding result")
            return False
        if self._store.operation_in_progress or epoch != self._store.mutation_epoch:
            logger.debug("History changed during sample, discarding result")
            return False

        if text == "":
            text = None
        if text is None and image is None:
            # nothing on the clipboard: no capture, but re-copies must be noticed later
            self._last_seen = {"text": None, "image": None}
            self._record_unchanged()
            return False

        changed = False
        if text is not _FAILED:
            changed |= self._observe("text", text)
        if image is not _FAILED:
            changed |= self._observe("image", image)

        if changed:
            self.current_interval_ms = self.base_interval_ms
            self.no_change_count = 0
        else:
            self._record_unchanged()
        return changed

    def _observe(self, channel: str, payload: Payload | None) -> bool:
        if payload is None:
            self._last_seen[channel] = None
            return False
        fp = fingerprint(payload)
        if fp == self._last_seen[channel]:
            return False
        self._last_seen[channel] = fp
        result = self._store.append(payload)
        if self._on_append is not None:
            self._on_append(result)
        return True

    def _record_unchanged(self) -> None:
        self.no_change_count += 1
        if self.no_change_count > self.backoff_threshold:
            self.current_interval_ms = min(self.current_interval_ms * self.backoff_factor, self.max_interval_ms)

    async def _read_channel(self, name: str, read: Callable[[], Awaitable[T]]) -> T | object:
        try:
            return await read()
        except Exception:
            logger.warning("Clipboard %s read failed", name, exc_info=True)
            return _FAILED

    def _arm(self, delay_ms: float) -> None:
        self._handle = self._loop.call_later(delay_ms / 1000, self._fire, self._generation)
        self.state = PollerState.SCHEDULED

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, generation: int) -> None:
        self._handle = None
        if generation != self._generation or not self._running:
            return
        self.state = PollerState.SAMPLING
        self._task = self._loop.create_task(self._cycle(generation))

    async def _cycle(self, generation: int) -> None:
        try:
            await self.sample_once()
        except Exception:
            logger.exception("Clipboard sample failed")
        finally:
            if self._running and generation == self._generation:
                self._arm(self.current_interval_ms)
            elif self._handle is None:
                self.state = PollerState.IDLE
