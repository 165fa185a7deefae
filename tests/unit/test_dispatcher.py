"""Unit tests for optimistic send, rollback and the pending gate."""

import asyncio

import pytest

from carechat.api.client import ApiError
from carechat.api.schemas import Message, Sender
from carechat.chat.dispatcher import (
    IllegalTransitionError,
    MessageDispatcher,
    SendOutcome,
    SendState,
)
from carechat.chat.message_log import MessageLog
from carechat.core.notices import NoticeBoard


class Scripted:
    """Deliver coroutine that answers from a script, optionally gated."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, text, client_message_id):
        self.calls.append((text, client_message_id))
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0) if self.results else Message(sender="ai", content=f"re: {text}")
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def log():
    return MessageLog([
        Message(id="old-1", sender="user", content="earlier question"),
        Message(id="old-2", sender="ai", content="earlier answer"),
    ])


@pytest.fixture
def notices():
    return NoticeBoard()


class TestPreconditions:

    @pytest.mark.asyncio
    async def test_blank_text_rejected(self, log, notices):
        deliver = Scripted()
        dispatcher = MessageDispatcher(deliver, notices, log=log)
        assert await dispatcher.send("   ") is SendOutcome.REJECTED
        assert deliver.calls == []
        assert len(log) == 2

    @pytest.mark.asyncio
    async def test_no_log_rejected(self, notices):
        deliver = Scripted()
        dispatcher = MessageDispatcher(deliver, notices, log=None)
        assert await dispatcher.send("hello") is SendOutcome.REJECTED
        assert deliver.calls == []

    @pytest.mark.asyncio
    async def test_second_send_while_pending_rejected(self, log, notices):
        deliver = Scripted()
        deliver.gate = asyncio.Event()
        dispatcher = MessageDispatcher(deliver, notices, log=log)

        first = asyncio.create_task(dispatcher.send("one"))
        await asyncio.sleep(0)
        assert dispatcher.is_pending
        assert await dispatcher.send("two") is SendOutcome.REJECTED

        deliver.gate.set()
        assert await first is SendOutcome.DELIVERED
        assert len(deliver.calls) == 1
        assert [m.content for m in log][-2:] == ["one", "re: one"]


class TestOptimisticApply:

    @pytest.mark.asyncio
    async def test_user_message_appended_before_network(self, log, notices):
        deliver = Scripted()
        deliver.gate = asyncio.Event()
        dispatcher = MessageDispatcher(deliver, notices, log=log)
        dispatcher.input_text = "  I feel dizzy  "

        task = asyncio.create_task(dispatcher.send())
        await asyncio.sleep(0)

        assert len(log) == 3
        assert log.last.sender is Sender.USER
        assert log.last.content == "I feel dizzy"
        assert dispatcher.input_text == ""

        deliver.gate.set()
        await task

    @pytest.mark.asyncio
    async def test_trimmed_text_and_id_sent(self, log, notices):
        deliver = Scripted()
        dispatcher = MessageDispatcher(deliver, notices, log=log)
        await dispatcher.send("  hello  ")
        text, client_id = deliver.calls[0]
        assert text == "hello"
        assert client_id == log[2].id

    @pytest.mark.asyncio
    async def test_reply_appended(self, log, notices):
        reply = Message(id="srv-9", sender="ai", content="Drink water.")
        dispatcher = MessageDispatcher(Scripted(reply), notices, log=log)
        assert await dispatcher.send("thirsty?") is SendOutcome.DELIVERED
        assert [m.id for m in log][-1] == "srv-9"
        assert not dispatcher.is_pending

    @pytest.mark.asyncio
    async def test_reply_id_collision_rederived(self, log, notices):
        reply = Message(id="old-1", sender="ai", content="dup id")
        dispatcher = MessageDispatcher(Scripted(reply), notices, log=log)
        await dispatcher.send("x")
        assert log.last.content == "dup id"
        assert log.last.id != "old-1"


class TestRollback:

    @pytest.mark.asyncio
    async def test_failed_send_removes_exact_message(self, log, notices):
        before = [m.id for m in log]
        dispatcher = MessageDispatcher(Scripted(ApiError("boom", status_code=500)), notices, log=log)

        assert await dispatcher.send("lost") is SendOutcome.ROLLED_BACK
        assert [m.id for m in log] == before
        assert dispatcher.last_error is not None
        assert notices.latest.retryable is True
        assert not dispatcher.is_pending

    @pytest.mark.asyncio
    async def test_empty_board_receives_notice_and_forwards_it(self, log):
        seen = []
        board = NoticeBoard(seen.append)
        dispatcher = MessageDispatcher(Scripted(ApiError("boom", status_code=500)), board, log=log)

        await dispatcher.send("lost")
        assert len(board) == 1
        assert seen == board.notices

    @pytest.mark.asyncio
    async def test_unexpected_exception_rolls_back(self, log, notices):
        dispatcher = MessageDispatcher(Scripted(RuntimeError("bug")), notices, log=log)
        assert await dispatcher.send("x") is SendOutcome.ROLLED_BACK
        assert len(log) == 2
        assert dispatcher.state is SendState.IDLE

    @pytest.mark.asyncio
    async def test_client_error_message_surfaced(self, log, notices):
        dispatcher = MessageDispatcher(Scripted(ApiError("Message too long", status_code=422)),
                                       notices, log=log)
        await dispatcher.send("x")
        assert notices.latest.message == "Message too long"

    @pytest.mark.asyncio
    async def test_server_error_uses_generic_message(self, log, notices):
        dispatcher = MessageDispatcher(Scripted(ApiError("stack trace", status_code=500)),
                                       notices, log=log)
        await dispatcher.send("x")
        assert notices.latest.message == "Failed to get AI response. Please try again."

    @pytest.mark.asyncio
    async def test_cancellation_rolls_back_and_propagates(self, log, notices):
        deliver = Scripted()
        deliver.gate = asyncio.Event()
        dispatcher = MessageDispatcher(deliver, notices, log=log)

        task = asyncio.create_task(dispatcher.send("x"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(log) == 2
        assert not dispatcher.is_pending
        assert len(notices) == 0

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, log, notices):
        dispatcher = MessageDispatcher(Scripted(ApiError("down")), notices, log=log)
        assert await dispatcher.send("again") is SendOutcome.ROLLED_BACK
        assert await dispatcher.send("again") is SendOutcome.DELIVERED
        assert [m.content for m in log][-2:] == ["again", "re: again"]


class TestStateMachine:

    @pytest.mark.asyncio
    async def test_success_transitions(self, log, notices):
        states = []
        dispatcher = MessageDispatcher(Scripted(), notices, log=log)
        dispatcher.subscribe(states.append)
        await dispatcher.send("x")
        assert states == [SendState.SENDING, SendState.SUCCEEDED, SendState.IDLE]

    @pytest.mark.asyncio
    async def test_failure_transitions(self, log, notices):
        states = []
        dispatcher = MessageDispatcher(Scripted(ApiError("no")), notices, log=log)
        dispatcher.subscribe(states.append)
        await dispatcher.send("x")
        assert states == [SendState.SENDING, SendState.FAILED, SendState.IDLE]

    @pytest.mark.asyncio
    async def test_pending_true_for_whole_round_trip(self, log, notices):
        observed = []

        async def deliver(text, client_id):
            observed.append(dispatcher.is_pending)
            await asyncio.sleep(0)
            observed.append(dispatcher.is_pending)
            return Message(sender="ai", content="ok")

        dispatcher = MessageDispatcher(deliver, notices, log=log)
        assert not dispatcher.is_pending
        await dispatcher.send("x")
        assert observed == [True, True]
        assert not dispatcher.is_pending

    def test_illegal_transition_raises(self, log, notices):
        dispatcher = MessageDispatcher(Scripted(), notices, log=log)
        with pytest.raises(IllegalTransitionError):
            dispatcher._transition(SendState.SUCCEEDED)


class TestDetach:

    @pytest.mark.asyncio
    async def test_reply_after_detach_discarded(self, log, notices):
        deliver = Scripted()
        deliver.gate = asyncio.Event()
        dispatcher = MessageDispatcher(deliver, notices, log=log)

        task = asyncio.create_task(dispatcher.send("x"))
        await asyncio.sleep(0)
        dispatcher.attach(MessageLog())
        deliver.gate.set()

        assert await task is SendOutcome.DISCARDED
        assert len(dispatcher.log) == 0
        assert len(notices) == 0

    @pytest.mark.asyncio
    async def test_failure_after_detach_is_silent(self, log, notices):
        deliver = Scripted(ApiError("gone"))
        deliver.gate = asyncio.Event()
        dispatcher = MessageDispatcher(deliver, notices, log=log)

        task = asyncio.create_task(dispatcher.send("x"))
        await asyncio.sleep(0)
        dispatcher.attach(None)
        deliver.gate.set()

        assert await task is SendOutcome.DISCARDED
        assert len(notices) == 0
