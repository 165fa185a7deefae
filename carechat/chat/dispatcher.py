"""Message dispatch with optimistic apply and exact rollback.

A send is a small state machine:

    IDLE -> SENDING -> SUCCEEDED -> IDLE
                    -> FAILED    -> IDLE

Only IDLE accepts a new send, so two sends can never interleave their
appends. The fixed order for one send is: optimistic append, enter
SENDING, network call, append reply or roll back, back to IDLE. The
return to IDLE is unconditional.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable

import structlog

from carechat.api.client import ApiError
from carechat.api.schemas import Message, Sender, new_message_id, utcnow
from carechat.chat.message_log import MessageLog
from carechat.core.notices import NoticeBoard
from carechat.errors import NotAuthenticatedError, SendError

logger = structlog.get_logger(__name__)

# (trimmed text, optimistic message id) -> assistant message
Deliver = Callable[[str, str], Awaitable[Message]]
StateListener = Callable[["SendState"], None]

SEND_FAILED_MESSAGE = "Failed to get AI response. Please try again."


class SendState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SendOutcome(str, Enum):
    REJECTED = "rejected"        # precondition failed, nothing happened
    DELIVERED = "delivered"      # reply appended
    ROLLED_BACK = "rolled_back"  # optimistic message removed
    DISCARDED = "discarded"      # completed after the log was detached


_TRANSITIONS = {
    SendState.IDLE: {SendState.SENDING},
    SendState.SENDING: {SendState.SUCCEEDED, SendState.FAILED},
    SendState.SUCCEEDED: {SendState.IDLE},
    SendState.FAILED: {SendState.IDLE},
}


class IllegalTransitionError(RuntimeError):
    pass


class MessageDispatcher:
    """Sends messages into a MessageLog through an injected deliver coroutine."""

    def __init__(self, deliver: Deliver, notices: NoticeBoard | None = None,
                 log: MessageLog | None = None):
        self._deliver = deliver
        self._notices = notices if notices is not None else NoticeBoard()
        self.log = log
        self.state = SendState.IDLE
        self.input_text = ""
        self.last_error: SendError | None = None
        self._listeners: list[StateListener] = []

    def attach(self, log: MessageLog | None) -> None:
        """Point the dispatcher at a new log (None disables sending)."""
        self.log = log

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    @property
    def is_pending(self) -> bool:
        """Pending gate: true from send start until its resolution."""
        return self.state is not SendState.IDLE

    def can_send(self, text: str | None = None) -> bool:
        candidate = self.input_text if text is None else text
        return bool(candidate.strip()) and self.log is not None and not self.is_pending

    async def send(self, text: str | None = None) -> SendOutcome:
        """Send text (or the input buffer) to the assistant.

        Args:
            text: Message text. Defaults to the current input buffer.

        Returns:
            What happened to the send. Failures are rolled back and turned
            into a notice rather than raised.
        """
        trimmed = (self.input_text if text is None else text).strip()
        if not trimmed:
            return SendOutcome.REJECTED
        if self.log is None:
            logger.warning("send.rejected", reason="no_session")
            return SendOutcome.REJECTED
        if self.is_pending:
            logger.warning("send.rejected", reason="pending")
            return SendOutcome.REJECTED

        log = self.log
        outgoing = Message(id=new_message_id(), sender=Sender.USER, content=trimmed, timestamp=utcnow())
        log.append(outgoing)
        self.input_text = ""
        self._transition(SendState.SENDING)
        logger.info("send.started", message_id=outgoing.id, msg_len=len(trimmed))

        try:
            reply = await self._deliver(trimmed, outgoing.id)
        except asyncio.CancelledError:
            self._transition(SendState.FAILED)
            log.remove(outgoing.id)
            logger.warning("send.cancelled", message_id=outgoing.id)
            raise
        except Exception as e:
            self._transition(SendState.FAILED)
            log.remove(outgoing.id)
            if self.log is not log:
                logger.info("send.failed_after_detach", message_id=outgoing.id)
                return SendOutcome.DISCARDED
            self.last_error = SendError(_failure_text(e))
            logger.error("send.rolled_back", message_id=outgoing.id, error=str(e),
                         status=getattr(e, "status_code", None))
            self._notices.post("Error", self.last_error.args[0], retryable=True)
            return SendOutcome.ROLLED_BACK
        else:
            self._transition(SendState.SUCCEEDED)
            if self.log is not log:
                logger.info("send.reply_discarded", message_id=outgoing.id)
                return SendOutcome.DISCARDED
            if reply.id in log:
                reply = reply.model_copy(update={"id": new_message_id()})
            log.append(reply)
            self.last_error = None
            logger.info("send.delivered", message_id=outgoing.id, reply_id=reply.id)
            return SendOutcome.DELIVERED
        finally:
            self._transition(SendState.IDLE)

    def _transition(self, new_state: SendState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise IllegalTransitionError(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        for listener in list(self._listeners):
            listener(new_state)


def _failure_text(error: Exception) -> str:
    if isinstance(error, NotAuthenticatedError):
        return str(error)
    if isinstance(error, ApiError) and error.is_client_error and error.status_code != 404:
        return error.message
    return SEND_FAILED_MESSAGE
