"""User-visible notices emitted by the engine instead of raising."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Literal

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Notice:
    """One alert for the screen to show.

    Attributes:
        title: Short heading, e.g. "Error".
        message: Human-readable explanation.
        level: "error" or "info".
        retryable: Whether the screen should offer a retry affordance.
    """
    title: str
    message: str
    level: Literal["error", "info"] = "error"
    retryable: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


NoticeHandler = Callable[[Notice], None]


class NoticeBoard:
    """Collects notices and forwards them to an optional handler."""

    def __init__(self, handler: NoticeHandler | None = None):
        self._handler = handler
        self._notices: list[Notice] = []

    def post(self, title: str, message: str, *, level: str = "error",
             retryable: bool = False) -> Notice:
        notice = Notice(title=title, message=message, level=level, retryable=retryable)
        self._notices.append(notice)
        logger.debug("notice.posted", title=title, level=level, retryable=retryable)
        if self._handler is not None:
            self._handler(notice)
        return notice

    @property
    def notices(self) -> list[Notice]:
        return list(self._notices)

    @property
    def latest(self) -> Notice | None:
        return self._notices[-1] if self._notices else None

    def drain(self) -> list[Notice]:
        """Return and forget all pending notices."""
        drained, self._notices = self._notices, []
        return drained

    def __len__(self) -> int:
        return len(self._notices)
