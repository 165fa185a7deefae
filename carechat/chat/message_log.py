"""Ordered message log for one conversation.

Append-only from the client's point of view. The only removal is the
rollback of a failed optimistic send, addressed by message id. Listeners
are told about every length change so the view can follow the newest entry.
"""

from typing import Callable, Iterable, Iterator

import structlog

from carechat.api.schemas import Message

logger = structlog.get_logger(__name__)

LengthListener = Callable[[int], None]


class MessageLog:
    """Insertion-ordered, id-unique sequence of Message."""

    def __init__(self, messages: Iterable[Message] = ()):
        self._messages: list[Message] = []
        self._ids: set[str] = set()
        self._listeners: list[LengthListener] = []
        for message in messages:
            self._insert(message)

    def subscribe(self, listener: LengthListener) -> Callable[[], None]:
        """Register a length-change listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def append(self, message: Message) -> None:
        """Append a message at the end.

        Raises:
            ValueError: If a message with the same id is already in the log.
        """
        self._insert(message)
        self._notify()

    def remove(self, message_id: str) -> Message | None:
        """Remove exactly one message by id, keeping the others in order.

        Returns:
            The removed message, or None if no entry had that id.
        """
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                del self._messages[index]
                self._ids.discard(message_id)
                self._notify()
                return message
        logger.warning("log.remove_missing", message_id=message_id)
        return None

    def _insert(self, message: Message) -> None:
        if message.id in self._ids:
            raise ValueError(f"Duplicate message id in log: {message.id}")
        self._messages.append(message)
        self._ids.add(message.id)

    def _notify(self) -> None:
        length = len(self._messages)
        for listener in list(self._listeners):
            listener(length)

    def snapshot(self) -> list[Message]:
        """Copy of the current entries for rendering."""
        return list(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]
