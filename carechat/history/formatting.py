"""Display policies for the history list and message bubbles.

All functions are pure: pass `now` explicitly to get deterministic output.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from carechat.api.schemas import HistoryEntry, Message, MessageMetadata

PREVIEW_CHARS = int(os.environ.get("HISTORY_PREVIEW_CHARS", "60"))
ELLIPSIS = "..."
USER_PREFIX = "You: "
EMPTY_PREVIEW = "No messages"


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def format_clock_time(moment: datetime) -> str:
    """12-hour clock time, e.g. "03:07 PM"."""
    return moment.strftime("%I:%M %p")


def format_relative_time(last_activity: datetime, now: datetime | None = None) -> str:
    """Label for when a conversation was last active.

    Same calendar day -> clock time, one day before -> "Yesterday",
    2-6 days before -> "N days ago", older -> locale date. Days are counted
    on calendar dates in now's timezone.

    Args:
        last_activity: When the conversation last changed.
        now: Reference time; defaults to the current UTC time.

    Returns:
        Display label.
    """
    now = _aware(now or datetime.now(timezone.utc))
    then = _aware(last_activity).astimezone(now.tzinfo)
    days = (now.date() - then.date()).days

    if days <= 0:
        return format_clock_time(then)
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    return then.strftime("%x")


def truncate_preview(text: str, budget: int = PREVIEW_CHARS) -> str:
    if len(text) <= budget:
        return text
    return text[:budget] + ELLIPSIS


def message_preview(messages: Sequence[Message], budget: int = PREVIEW_CHARS) -> str:
    """Most recent message, truncated, marked when the user wrote it."""
    if not messages:
        return EMPTY_PREVIEW
    last = messages[-1]
    preview = truncate_preview(last.content, budget)
    return f"{USER_PREFIX}{preview}" if last.is_user else preview


def message_count_label(count: int) -> str:
    return "1 message" if count == 1 else f"{count} messages"


def total_label(total: int) -> str:
    return "1 total conversation" if total == 1 else f"{total} total conversations"


def confidence_label(metadata: MessageMetadata | None) -> str | None:
    """Label like "87% confidence"; the score is already a percentage."""
    if metadata is None or metadata.confidence is None:
        return None
    return f"{round(metadata.confidence)}% confidence"


@dataclass(frozen=True)
class HistoryItemView:
    """Everything one history row needs to render."""
    id: str
    title: str
    preview: str
    time_label: str
    count_label: str
    is_active: bool


def build_item_view(entry: HistoryEntry, now: datetime | None = None,
                    budget: int = PREVIEW_CHARS) -> HistoryItemView:
    return HistoryItemView(
        id=entry.id,
        title=entry.title,
        preview=message_preview(entry.messages, budget),
        time_label=format_relative_time(entry.last_activity, now),
        count_label=message_count_label(len(entry.messages)),
        is_active=entry.is_active,
    )
