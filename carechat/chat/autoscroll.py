"""Keep the conversation view pinned to the newest message."""

import asyncio
import os
from typing import Callable, Protocol

import structlog

from carechat.chat.message_log import MessageLog

logger = structlog.get_logger(__name__)


class ScrollTarget(Protocol):
    def scroll_to_end(self, animated: bool = True) -> None: ...


class AutoscrollController:
    """Schedules a scroll-to-end after each log length change.

    The scroll runs after a short delay so layout can settle; changes that
    arrive inside the delay window collapse into a single scroll. An empty
    log never scrolls.
    """

    def __init__(self, target: ScrollTarget, delay: float | None = None):
        self.target = target
        if delay is None:
            delay = int(os.environ.get("AUTOSCROLL_DELAY_MS", "100")) / 1000
        self.delay = delay
        self.scroll_count = 0
        self._last_length = 0
        self._handle: asyncio.TimerHandle | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def watch(self, log: MessageLog | None) -> None:
        """Follow a new log, dropping the previous one."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if log is None:
            self.cancel()
            self._last_length = 0
            return
        self._unsubscribe = log.subscribe(self.on_length_change)
        self.on_length_change(len(log))

    def on_length_change(self, length: int) -> None:
        if length == self._last_length:
            return
        self._last_length = length
        if length == 0:
            return
        self._schedule()

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (synchronous caller): scroll right away
            self._fire()
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self.scroll_count += 1
        logger.debug("autoscroll.fire", length=self._last_length)
        self.target.scroll_to_end(animated=True)

    @property
    def is_scheduled(self) -> bool:
        return self._handle is not None

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
