"""Contract tests for the chat API client (httpx MockTransport, no network)."""

import json

import httpx
import pytest

from carechat.api.client import ApiError, ChatApiClient
from carechat.errors import NotAuthenticatedError

BASE_URL = "http://testserver/api"


def _client(credential, handler):
    return ChatApiClient(credential, base_url=BASE_URL, timeout=1, transport=httpx.MockTransport(handler))


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status=200, body=None, raw=None):
        self.requests: list[httpx.Request] = []
        self.status = status
        self.body = body if body is not None else {}
        self.raw = raw

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raw is not None:
            return httpx.Response(self.status, content=self.raw)
        return httpx.Response(self.status, json=self.body)


class TestAuth:

    @pytest.mark.asyncio
    async def test_bearer_header(self, patient):
        handler = Recorder(201, {"chatSession": {"_id": "s-1", "title": "New Conversation"}})
        async with _client(patient, handler) as api:
            await api.create_session("New Conversation")
        assert handler.requests[0].headers["Authorization"] == "Bearer tok-patient"

    @pytest.mark.asyncio
    async def test_no_request_without_credential(self, anonymous):
        handler = Recorder()
        async with _client(anonymous, handler) as api:
            with pytest.raises(NotAuthenticatedError):
                await api.fetch_history(limit=10, offset=0)
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_refreshed_credential_used(self, anonymous, patient):
        handler = Recorder(body={"response": "ok"})
        async with _client(anonymous, handler) as api:
            api.with_credential(patient)
            await api.consult("hello")
        assert handler.requests[0].headers["Authorization"] == "Bearer tok-patient"


class TestEndpoints:

    @pytest.mark.asyncio
    async def test_create_session_parses_underscore_id(self, patient):
        handler = Recorder(201, {"chatSession": {
            "_id": "s-9", "title": "New Conversation",
            "messages": [{"_id": "m1", "sender": "ai", "content": "Welcome back"}],
        }})
        async with _client(patient, handler) as api:
            resp = await api.create_session("New Conversation")

        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/chat/session"
        assert json.loads(request.content) == {"title": "New Conversation"}
        assert resp.chat_session.id == "s-9"
        assert resp.chat_session.messages[0].sender.value == "assistant"

    @pytest.mark.asyncio
    async def test_send_message_body_and_idempotency_key(self, patient):
        handler = Recorder(body={"aiMessage": {
            "content": "Hi!", "timestamp": "2026-10-16T15:07:00Z",
            "metadata": {"confidence": 87, "aiModel": "m"},
        }})
        async with _client(patient, handler) as api:
            resp = await api.send_message("s-1", "hello", client_message_id="c-1")

        request = handler.requests[0]
        assert json.loads(request.content) == {
            "sessionId": "s-1", "message": "hello", "type": "text", "clientMessageId": "c-1",
        }
        assert request.headers["Idempotency-Key"] == "c-1"
        message = resp.ai_message.to_message()
        assert message.content == "Hi!"
        assert message.id
        assert message.metadata.confidence == 87

    @pytest.mark.asyncio
    async def test_history_query_params(self, patient):
        handler = Recorder(body={
            "chatSessions": [],
            "pagination": {"total": 0, "limit": 10, "offset": 20, "hasMore": False},
        })
        async with _client(patient, handler) as api:
            page = await api.fetch_history(limit=10, offset=20)

        params = handler.requests[0].url.params
        assert params["limit"] == "10"
        assert params["offset"] == "20"
        assert page.pagination.offset == 20

    @pytest.mark.asyncio
    async def test_long_message_left_to_server(self, patient):
        handler = Recorder(422, {"detail": "Message must be at most 2000 characters."})
        async with _client(patient, handler) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.send_message("s-1", "x" * 2001)
        assert len(json.loads(handler.requests[0].content)["message"]) == 2001
        assert exc_info.value.status_code == 422
        assert exc_info.value.message == "Message must be at most 2000 characters."

    @pytest.mark.asyncio
    async def test_empty_message_refused_locally(self, patient):
        handler = Recorder()
        async with _client(patient, handler) as api:
            with pytest.raises(ApiError):
                await api.send_message("s-1", "")
        assert handler.requests == []


class TestErrors:

    @pytest.mark.asyncio
    async def test_server_message_surfaced(self, patient):
        handler = Recorder(500, {"message": "Database unavailable"})
        async with _client(patient, handler) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.create_session("t")
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Database unavailable"
        assert not exc_info.value.is_client_error

    @pytest.mark.asyncio
    async def test_fastapi_detail_surfaced(self, patient):
        handler = Recorder(404, {"detail": "Chat session not found."})
        async with _client(patient, handler) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.send_message("missing", "hello")
        assert exc_info.value.message == "Chat session not found."
        assert exc_info.value.is_client_error

    @pytest.mark.asyncio
    async def test_generic_message_without_body(self, patient):
        handler = Recorder(502, raw=b"<html>bad gateway</html>")
        async with _client(patient, handler) as api:
            with pytest.raises(ApiError, match=r"Request failed \(502\)"):
                await api.fetch_history(limit=10, offset=0)

    @pytest.mark.asyncio
    async def test_timeout(self, patient):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(patient, handler) as api:
            with pytest.raises(ApiError, match="timed out") as exc_info:
                await api.send_message("s-1", "hello")
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_connection_error(self, patient):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(patient, handler) as api:
            with pytest.raises(ApiError, match="Cannot reach the server"):
                await api.create_session("t")

    @pytest.mark.asyncio
    async def test_unexpected_shape(self, patient):
        handler = Recorder(body={"unexpected": True})
        async with _client(patient, handler) as api:
            with pytest.raises(ApiError, match="unexpected response"):
                await api.send_message("s-1", "hello")

    @pytest.mark.asyncio
    async def test_invalid_json(self, patient):
        handler = Recorder(raw=b"not json")
        async with _client(patient, handler) as api:
            with pytest.raises(ApiError, match="unreadable"):
                await api.fetch_history(limit=10, offset=0)
