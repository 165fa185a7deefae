"""Shared fixtures for all tests."""

import asyncio
from datetime import datetime, timezone

import pytest

from carechat.api.schemas import (
    AssistantReply,
    ConsultResponse,
    CreateSessionResponse,
    HistoryEntry,
    HistoryPage,
    Message,
    Pagination,
    SendMessageResponse,
    SessionPayload,
)
from carechat.core.credentials import Credential


class FakeChatApi:
    """In-memory stand-in for ChatApiClient.

    Each endpoint pops its next result from a queue (an Exception in the
    queue is raised instead). When `hold` is an asyncio.Event, every call
    waits on it, which lets a test observe the in-flight state.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.sessions: list = []
        self.replies: list = []
        self.pages: list = []
        self.consults: list = []
        self.hold: asyncio.Event | None = None
        self.credential = None
        self._session_counter = 0

    async def _wait(self):
        if self.hold is not None:
            await self.hold.wait()

    @staticmethod
    def _unwrap(result):
        if isinstance(result, Exception):
            raise result
        return result

    async def create_session(self, title):
        self.calls.append(("create_session", title))
        await self._wait()
        if self.sessions:
            payload = self._unwrap(self.sessions.pop(0))
        else:
            self._session_counter += 1
            payload = SessionPayload(id=f"s-{self._session_counter}", title=title)
        return CreateSessionResponse(chat_session=payload)

    async def send_message(self, session_id, text, client_message_id=None):
        self.calls.append(("send_message", session_id, text, client_message_id))
        await self._wait()
        if self.replies:
            reply = self._unwrap(self.replies.pop(0))
        else:
            reply = AssistantReply(content=f"echo: {text}")
        return SendMessageResponse(ai_message=reply)

    async def fetch_history(self, limit, offset):
        self.calls.append(("fetch_history", limit, offset))
        await self._wait()
        return self._unwrap(self.pages.pop(0))

    async def consult(self, text):
        self.calls.append(("consult", text))
        await self._wait()
        if self.consults:
            return self._unwrap(self.consults.pop(0))
        return ConsultResponse(response=f"note: {text}")

    def with_credential(self, credential):
        self.credential = credential

    async def aclose(self):
        pass

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeScrollTarget:
    def __init__(self):
        self.scrolls = 0

    def scroll_to_end(self, animated: bool = True) -> None:
        self.scrolls += 1


def make_entry(index: int, messages: list[Message] | None = None) -> HistoryEntry:
    return HistoryEntry(
        id=f"h-{index}",
        title=f"Conversation {index}",
        last_activity=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
        is_active=index == 0,
        messages=messages or [],
    )


def make_page(start: int, count: int, total: int, limit: int = 10, offset: int | None = None) -> HistoryPage:
    offset = start if offset is None else offset
    return HistoryPage(
        chat_sessions=[make_entry(i) for i in range(start, start + count)],
        pagination=Pagination(total=total, limit=limit, offset=offset,
                              has_more=offset + count < total),
    )


@pytest.fixture
def fake_api() -> FakeChatApi:
    return FakeChatApi()


@pytest.fixture
def scroll_target() -> FakeScrollTarget:
    return FakeScrollTarget()


@pytest.fixture
def patient() -> Credential:
    return Credential(token="tok-patient", is_authenticated=True, role="patient")


@pytest.fixture
def doctor() -> Credential:
    return Credential(token="tok-doctor", is_authenticated=True, role="doctor")


@pytest.fixture
def anonymous() -> Credential:
    return Credential()


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 10, 16, 15, 7, tzinfo=timezone.utc)


@pytest.fixture
def page_factory():
    return make_page


@pytest.fixture
def entry_factory():
    return make_entry
