"""Chat engine: the surface the chat screen talks to.

Wires the injected credential, the session store, the message dispatcher
and the autoscroll controller together. The engine stays inert until the
credential is usable; every failure becomes a Notice instead of an
exception escaping into the view.

Exposed: send_message(), current_log, is_session_ready, is_pending,
input_text, visible_items(), new_conversation(), retry_session().
"""

from dataclasses import dataclass

import structlog

from carechat.api.client import ChatApiClient
from carechat.api.schemas import Message, Sender
from carechat.chat.autoscroll import AutoscrollController, ScrollTarget
from carechat.chat.dispatcher import MessageDispatcher, SendOutcome
from carechat.chat.session_store import Session, SessionStore
from carechat.core.credentials import Credential
from carechat.core.notices import NoticeBoard, NoticeHandler
from carechat.errors import SendError, SessionInitError

logger = structlog.get_logger(__name__)

TYPING_TEXT = "AI is thinking..."


@dataclass(frozen=True)
class TypingPlaceholder:
    """Transient assistant bubble shown while a send is pending. Never logged."""
    text: str = TYPING_TEXT
    sender: Sender = Sender.ASSISTANT


class ChatEngine:
    """Live conversation for one mounted chat screen."""

    def __init__(
        self,
        credential: Credential,
        api: ChatApiClient | None = None,
        scroll_target: ScrollTarget | None = None,
        on_notice: NoticeHandler | None = None,
        default_title: str | None = None,
    ):
        self.credential = credential
        self._owns_api = api is None
        self.api = api or ChatApiClient(credential)
        self.notices = NoticeBoard(on_notice)
        self.store = SessionStore(self.api, default_title=default_title)
        self.dispatcher = MessageDispatcher(self._deliver, self.notices)
        self.autoscroll = AutoscrollController(scroll_target) if scroll_target is not None else None
        self.init_error: SessionInitError | None = None
        self.mounted = False
        self.store.subscribe(self._on_session_changed)

    # Lifecycle

    async def mount(self) -> bool:
        """Create (or resume) the session once the credential is usable.

        Returns:
            True if a session is ready afterwards.
        """
        if not self.credential.usable:
            logger.info("engine.inert", reason="unauthenticated")
            return False
        self.mounted = True
        if self.store.is_ready:
            return True
        return await self._start(self.store.create_or_resume)

    async def retry_session(self) -> bool:
        """User-initiated retry after a failed session start."""
        return await self.mount()

    async def new_conversation(self) -> bool:
        """Discard the live session and start a new one.

        No-op while a session start or a send is in flight.
        """
        if not self.credential.usable:
            logger.info("engine.inert", reason="unauthenticated")
            return False
        if self.dispatcher.is_pending:
            logger.info("engine.new_conversation_ignored", reason="pending")
            return False
        self.mounted = True
        return await self._start(self.store.replace)

    def unmount(self) -> None:
        """Navigation away: drop the session and any pending results."""
        self.mounted = False
        self.store.discard()
        logger.info("engine.unmounted")

    async def aclose(self) -> None:
        self.unmount()
        if self._owns_api:
            await self.api.aclose()

    def update_credential(self, credential: Credential) -> None:
        """React to the credential provider (login, logout, token refresh)."""
        self.credential = credential
        self.api.with_credential(credential)
        if not credential.usable and self.mounted:
            logger.info("engine.signed_out")
            self.unmount()

    async def _start(self, operation) -> bool:
        try:
            await operation()
        except SessionInitError as e:
            self.init_error = e
            self.notices.post("Error", str(e), retryable=True)
            return False
        if self.store.is_ready:
            self.init_error = None
        return self.store.is_ready

    def _on_session_changed(self, session: Session | None) -> None:
        log = session.log if session is not None and session.is_ready else None
        self.dispatcher.attach(log)
        if self.autoscroll is not None:
            self.autoscroll.watch(log)

    # Sending

    async def send_message(self, text: str | None = None) -> SendOutcome:
        """Send text, or the input buffer when text is None."""
        return await self.dispatcher.send(text)

    async def _deliver(self, text: str, client_message_id: str) -> Message:
        session = self.store.session
        if session is None or session.id is None:
            raise SendError("No active conversation.")
        resp = await self.api.send_message(session.id, text, client_message_id=client_message_id)
        return resp.ai_message.to_message()

    # History hand-off

    async def resume_session(self, entry_id: str) -> Session | None:
        """Open a history entry in the live view.

        Not wired yet: the live session and the history list are separate.
        Always returns None and leaves the live session untouched.
        """
        logger.info("engine.resume_unsupported", entry_id=entry_id)
        return None

    # Read-only view state

    @property
    def session(self) -> Session | None:
        return self.store.session

    @property
    def current_log(self) -> list[Message]:
        session = self.store.session
        return session.log.snapshot() if session is not None else []

    @property
    def is_session_ready(self) -> bool:
        return self.store.is_ready

    @property
    def is_pending(self) -> bool:
        return self.dispatcher.is_pending

    @property
    def is_starting(self) -> bool:
        return self.store.is_busy

    @property
    def input_text(self) -> str:
        return self.dispatcher.input_text

    @input_text.setter
    def input_text(self, value: str) -> None:
        self.dispatcher.input_text = value

    @property
    def can_send(self) -> bool:
        return self.dispatcher.can_send()

    def visible_items(self) -> list[Message | TypingPlaceholder]:
        """Log entries plus the typing placeholder while a send is pending."""
        items: list[Message | TypingPlaceholder] = list(self.current_log)
        if self.is_pending:
            items.append(TypingPlaceholder())
        return items
