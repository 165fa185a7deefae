"""Paginated view over previous conversations.

Pages are fetched with an offset cursor and appended to the accumulated
list until an explicit refresh resets it. Page loads are serialized: a
next-page request while anything is loading, or after the server said
there is nothing more, is a silent no-op. Each request is stamped with a
generation number; a page that lands after a newer first-page load has
started is discarded instead of being merged into the fresh list.
"""

import os
from dataclasses import dataclass
from datetime import datetime

import structlog

from carechat.api.client import ApiError, ChatApiClient
from carechat.api.schemas import HistoryEntry, HistoryPage, Pagination
from carechat.core.notices import NoticeBoard, NoticeHandler
from carechat.errors import HistoryLoadError, NotAuthenticatedError
from carechat.history.formatting import HistoryItemView, build_item_view, total_label

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 10
DEFAULT_LOAD_THRESHOLD = 100.0


@dataclass(frozen=True)
class ScrollMetrics:
    """Scroll position reported by the list when a gesture settles."""
    viewport_height: float
    scroll_offset: float
    content_height: float


def is_close_to_bottom(metrics: ScrollMetrics, threshold: float = DEFAULT_LOAD_THRESHOLD) -> bool:
    return metrics.viewport_height + metrics.scroll_offset >= metrics.content_height - threshold


class HistoryPaginator:
    """Accumulates history pages for the history screen."""

    def __init__(
        self,
        api: ChatApiClient,
        page_size: int | None = None,
        load_threshold: float | None = None,
        on_notice: NoticeHandler | None = None,
    ):
        self._api = api
        self.page_size = page_size or int(os.environ.get("HISTORY_PAGE_SIZE", str(DEFAULT_PAGE_SIZE)))
        if load_threshold is None:
            load_threshold = float(os.environ.get("HISTORY_LOAD_THRESHOLD", str(DEFAULT_LOAD_THRESHOLD)))
        self.load_threshold = load_threshold
        self.notices = NoticeBoard(on_notice)

        self.entries: list[HistoryEntry] = []
        self.pagination = Pagination(total=0, limit=self.page_size, offset=0, has_more=False)
        self.is_loading = False
        self.is_refreshing = False
        self.is_loading_more = False
        self.last_error: HistoryLoadError | None = None
        self._generation = 0

    @property
    def is_busy(self) -> bool:
        return self.is_loading or self.is_refreshing or self.is_loading_more

    async def load_first_page(self, refresh: bool = False) -> HistoryPage | None:
        """Fetch offset 0 and replace the list and cursor wholesale.

        Args:
            refresh: True for pull-to-refresh (drives is_refreshing instead
                of is_loading).

        Returns:
            The page, or None if the load failed or was superseded.
        """
        self._generation += 1
        generation = self._generation
        # Any next-page load still in flight is now stale
        self.is_loading_more = False
        if refresh:
            self.is_refreshing = True
        else:
            self.is_loading = True

        logger.debug("history.first_page", refresh=refresh, limit=self.page_size)
        try:
            page = await self._api.fetch_history(limit=self.page_size, offset=0)
        except (ApiError, NotAuthenticatedError) as e:
            if generation == self._generation:
                self._fail(e, "Failed to load chat history. Please try again.")
            return None
        finally:
            if generation == self._generation:
                self.is_loading = False
                self.is_refreshing = False

        if generation != self._generation:
            logger.info("history.stale_page_discarded", offset=0)
            return None

        self.entries = list(page.chat_sessions)
        self.pagination = page.pagination
        self.last_error = None
        logger.info("history.page_loaded", offset=0, count=len(page.chat_sessions),
                    total=page.pagination.total, has_more=page.pagination.has_more)
        return page

    async def refresh(self) -> HistoryPage | None:
        return await self.load_first_page(refresh=True)

    async def load_next_page(self) -> HistoryPage | None:
        """Fetch the page after the current cursor and append it.

        No-op (returns None) when has_more is false or a load is in flight.
        """
        if not self.pagination.has_more:
            logger.debug("history.next_ignored", reason="no_more")
            return None
        if self.is_busy:
            logger.debug("history.next_ignored", reason="busy")
            return None

        generation = self._generation
        previous = self.pagination
        offset = previous.next_offset
        self.is_loading_more = True

        logger.debug("history.next_page", limit=previous.limit, offset=offset)
        try:
            page = await self._api.fetch_history(limit=previous.limit, offset=offset)
        except (ApiError, NotAuthenticatedError) as e:
            if generation == self._generation:
                self._fail(e, "Failed to load more conversations. Please try again.")
            return None
        finally:
            if generation == self._generation:
                self.is_loading_more = False

        if generation != self._generation:
            logger.info("history.stale_page_discarded", offset=offset)
            return None

        cursor = page.pagination
        if cursor.offset <= previous.offset:
            # Keep the cursor moving forward even if the server echoes a stale offset
            logger.warning("history.cursor_not_advanced", sent=offset, received=cursor.offset)
            cursor = cursor.model_copy(update={"offset": offset})

        self.entries.extend(page.chat_sessions)
        self.pagination = cursor
        self.last_error = None
        logger.info("history.page_loaded", offset=cursor.offset, count=len(page.chat_sessions),
                    total=cursor.total, has_more=cursor.has_more)
        return page

    async def on_scroll_settled(self, metrics: ScrollMetrics) -> HistoryPage | None:
        """Scroll-settle hook: load the next page near the bottom edge."""
        if not self.pagination.has_more:
            return None
        if not is_close_to_bottom(metrics, self.load_threshold):
            return None
        return await self.load_next_page()

    def close(self) -> None:
        """Screen unmounted: results of in-flight loads will be dropped."""
        self._generation += 1
        self.is_loading = self.is_refreshing = self.is_loading_more = False

    def _fail(self, error: Exception, message: str) -> None:
        if isinstance(error, NotAuthenticatedError):
            message = str(error)
        self.last_error = HistoryLoadError(message)
        logger.error("history.load_failed", error=str(error),
                     status=getattr(error, "status_code", None))
        self.notices.post("Error", message, retryable=True)

    def items(self, now: datetime | None = None) -> list[HistoryItemView]:
        return [build_item_view(entry, now) for entry in self.entries]

    def total_label(self) -> str:
        return total_label(self.pagination.total)

    @property
    def is_empty(self) -> bool:
        return not self.entries and not self.is_busy
