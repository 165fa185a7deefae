"""Live session ownership: create-or-resume, replace, discard.

The store holds at most one Session. It is created lazily once the
credential is usable and replaced wholesale when the user starts a new
conversation. Nothing is persisted locally.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import structlog

from carechat.api.client import ApiError, ChatApiClient
from carechat.chat.message_log import MessageLog
from carechat.errors import NotAuthenticatedError, SessionInitError

logger = structlog.get_logger(__name__)

DEFAULT_TITLE = "New Conversation"

SessionListener = Callable[["Session | None"], None]


@dataclass
class Session:
    """The conversation currently being composed and rendered.

    Attributes:
        id: Server-assigned id. Sends stay disabled while this is None.
        title: Server-assigned display label.
        log: Ordered message log.
        created_activity: Last activity reported by the server at creation.
    """
    id: str | None = None
    title: str = ""
    log: MessageLog = field(default_factory=MessageLog)
    created_activity: datetime | None = None

    @property
    def is_ready(self) -> bool:
        return self.id is not None

    @property
    def last_activity(self) -> datetime | None:
        """Timestamp of the newest message, falling back to the server's value."""
        last = self.log.last
        return last.timestamp if last is not None else self.created_activity


class SessionStore:
    """Creates and replaces the live session, one request at a time."""

    def __init__(self, api: ChatApiClient, default_title: str | None = None):
        self._api = api
        self.default_title = default_title or os.environ.get("CHAT_DEFAULT_SESSION_TITLE", DEFAULT_TITLE)
        self.session: Session | None = None
        self._busy = False
        self._generation = 0
        self._listeners: list[SessionListener] = []

    def subscribe(self, listener: SessionListener) -> None:
        """Call listener with the new Session (or None) whenever it changes."""
        self._listeners.append(listener)

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def is_ready(self) -> bool:
        return self.session is not None and self.session.is_ready

    async def create_or_resume(self, title: str | None = None) -> Session | None:
        """Ask the server for a session and install it as the live one.

        Any messages the server already tracks for the session are loaded
        into the new log.

        Args:
            title: Display label; defaults to the configured title.

        Returns:
            The installed Session, or None if the call was ignored because
            another creation is in flight or the store was discarded meanwhile.

        Raises:
            SessionInitError: If the request failed or was refused.
        """
        if self._busy:
            logger.warning("session.create_ignored", reason="busy")
            return None

        self._busy = True
        generation = self._generation
        try:
            resp = await self._api.create_session(title or self.default_title)
        except (ApiError, NotAuthenticatedError) as e:
            logger.error("session.create_failed", error=str(e),
                         status=getattr(e, "status_code", None))
            raise SessionInitError("Could not start a conversation. Please try again.") from e
        finally:
            self._busy = False

        if generation != self._generation:
            logger.info("session.create_discarded", reason="store_discarded")
            return None

        payload = resp.chat_session
        session = Session(
            id=payload.id,
            title=payload.title,
            log=MessageLog(payload.messages),
            created_activity=payload.last_activity,
        )
        self._install(session)
        logger.info("session.ready", session_id=session.id, resumed_messages=len(session.log))
        return session

    async def replace(self) -> Session | None:
        """Discard the current session and create a fresh one.

        Repeated calls while a creation is in flight are no-ops, so rapid
        "new conversation" taps never race two sessions.
        """
        if self._busy:
            logger.warning("session.replace_ignored", reason="busy")
            return None
        self.discard()
        return await self.create_or_resume()

    def discard(self) -> None:
        """Drop the live session; a creation still in flight will be ignored."""
        self._generation += 1
        if self.session is not None:
            logger.info("session.discarded", session_id=self.session.id)
        self._install(None)

    def _install(self, session: Session | None) -> None:
        self.session = session
        for listener in list(self._listeners):
            listener(session)
