"""Clinician assistant console.

Session-less Q&A for doctor accounts over POST /doctors/ai-chat. Uses the
same dispatcher as the patient chat, so the optimistic apply, pending
gate and rollback behave identically. The log lives only as long as the
console object.
"""

import structlog

from carechat.api.client import ChatApiClient
from carechat.api.schemas import Message, Sender, utcnow
from carechat.chat.autoscroll import AutoscrollController, ScrollTarget
from carechat.chat.dispatcher import MessageDispatcher, SendOutcome
from carechat.chat.engine import TypingPlaceholder
from carechat.chat.message_log import MessageLog
from carechat.core.credentials import Credential
from carechat.core.notices import NoticeBoard, NoticeHandler
from carechat.errors import AccessDeniedError

logger = structlog.get_logger(__name__)

CLINICIAN_ROLE = "doctor"


class AssistantConsole:
    """Role-gated assistant chat without a server-side session."""

    def __init__(
        self,
        credential: Credential,
        api: ChatApiClient | None = None,
        scroll_target: ScrollTarget | None = None,
        on_notice: NoticeHandler | None = None,
    ):
        if credential.usable and credential.role != CLINICIAN_ROLE:
            logger.warning("assistant.access_denied", role=credential.role)
            raise AccessDeniedError("The assistant console is available to doctors only.")

        self.credential = credential
        self._owns_api = api is None
        self.api = api or ChatApiClient(credential)
        self.notices = NoticeBoard(on_notice)
        self.log = MessageLog()
        # Unauthenticated consoles stay inert: no log attached, sends rejected
        self.dispatcher = MessageDispatcher(
            self._deliver, self.notices, log=self.log if credential.usable else None,
        )
        self.autoscroll = AutoscrollController(scroll_target) if scroll_target is not None else None
        if self.autoscroll is not None:
            self.autoscroll.watch(self.log)

    async def send_message(self, text: str | None = None) -> SendOutcome:
        return await self.dispatcher.send(text)

    async def _deliver(self, text: str, client_message_id: str) -> Message:
        resp = await self.api.consult(text)
        return Message(sender=Sender.ASSISTANT, content=resp.response, timestamp=utcnow())

    async def aclose(self) -> None:
        self.dispatcher.attach(None)
        if self.autoscroll is not None:
            self.autoscroll.watch(None)
        if self._owns_api:
            await self.api.aclose()

    @property
    def current_log(self) -> list[Message]:
        return self.log.snapshot()

    @property
    def is_pending(self) -> bool:
        return self.dispatcher.is_pending

    @property
    def input_text(self) -> str:
        return self.dispatcher.input_text

    @input_text.setter
    def input_text(self, value: str) -> None:
        self.dispatcher.input_text = value

    def visible_items(self) -> list[Message | TypingPlaceholder]:
        items: list[Message | TypingPlaceholder] = self.log.snapshot()
        if self.is_pending:
            items.append(TypingPlaceholder())
        return items
