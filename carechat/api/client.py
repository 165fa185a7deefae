"""Async HTTP client for the chat API.

POST /chat/session   - create (or resume) the live session
POST /chat/message   - send a user message, receive the assistant reply
GET  /chat/history   - page through previous conversations
POST /doctors/ai-chat - session-less clinician assistant

Every call carries the bearer credential. A call is refused locally with
NotAuthenticatedError when the credential is not usable, so no request
is ever built without a token.
"""

import os
import time

import httpx
import structlog
from pydantic import ValidationError

from carechat.api.schemas import (
    ConsultRequest,
    ConsultResponse,
    CreateSessionRequest,
    CreateSessionResponse,
    HistoryPage,
    SendMessageRequest,
    SendMessageResponse,
)
from carechat.core.credentials import Credential
from carechat.errors import NotAuthenticatedError

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000/api"


class ApiError(Exception):
    """Remote call failed: transport error, timeout, bad status or bad body.

    Attributes:
        status_code: HTTP status, or None when no response was received.
        message: Server-provided message when available.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class ChatApiClient:
    """Wraps httpx.AsyncClient with bearer auth and uniform error mapping."""

    def __init__(
        self,
        credential: Credential,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credential = credential
        self.base_url = (base_url or os.environ.get("API_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.timeout = timeout if timeout is not None else float(os.environ.get("API_TIMEOUT", "30"))
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    def with_credential(self, credential: Credential) -> None:
        """Swap in a refreshed credential from the provider."""
        self.credential = credential

    async def create_session(self, title: str) -> CreateSessionResponse:
        """Create a new conversation.

        Args:
            title: Display label for the session.

        Returns:
            Parsed response holding the server's session, including any
            messages it already tracks.
        """
        body = CreateSessionRequest(title=title).to_wire()
        data = await self._request("POST", "/chat/session", json=body)
        return self._parse(CreateSessionResponse, data, "/chat/session")

    async def send_message(
        self,
        session_id: str,
        text: str,
        client_message_id: str | None = None,
    ) -> SendMessageResponse:
        """Send one user message to the live session.

        Args:
            session_id: Server id of the active session.
            text: Trimmed message text.
            client_message_id: Id of the optimistic log entry, sent as the
                idempotency key.

        Returns:
            Parsed response with the assistant reply.
        """
        try:
            body = SendMessageRequest(
                session_id=session_id,
                message=text,
                client_message_id=client_message_id,
            ).to_wire()
        except ValidationError:
            raise ApiError("Message cannot be empty.")
        headers = {"Idempotency-Key": client_message_id} if client_message_id else None
        data = await self._request("POST", "/chat/message", json=body, headers=headers)
        return self._parse(SendMessageResponse, data, "/chat/message")

    async def fetch_history(self, limit: int, offset: int) -> HistoryPage:
        """Fetch one page of previous conversations.

        Args:
            limit: Page size.
            offset: Number of entries to skip.

        Returns:
            Parsed page with entries and the server's cursor.
        """
        data = await self._request("GET", "/chat/history", params={"limit": limit, "offset": offset})
        return self._parse(HistoryPage, data, "/chat/history")

    async def consult(self, text: str) -> ConsultResponse:
        """Ask the session-less clinician assistant."""
        try:
            body = ConsultRequest(message=text).to_wire()
        except ValidationError:
            raise ApiError("Message cannot be empty.")
        data = await self._request("POST", "/doctors/ai-chat", json=body)
        return self._parse(ConsultResponse, data, "/doctors/ai-chat")

    async def _request(self, method: str, path: str, *, json: dict | None = None,
                       params: dict | None = None, headers: dict | None = None) -> dict:
        if not self.credential.usable:
            logger.warning("api.unauthenticated", method=method, path=path)
            raise NotAuthenticatedError("You need to be signed in to use the chat.")

        request_headers = self.credential.auth_header()
        if headers:
            request_headers.update(headers)

        start = time.monotonic()
        logger.debug("api.request", method=method, path=path)
        try:
            resp = await self._client.request(method, path, json=json, params=params,
                                              headers=request_headers)
        except httpx.TimeoutException:
            logger.warning("api.timeout", method=method, path=path, threshold=self.timeout)
            raise ApiError("The request timed out. Please try again.")
        except httpx.TransportError as e:
            logger.warning("api.transport_error", method=method, path=path, error=str(e))
            raise ApiError("Cannot reach the server. Check your connection.")

        latency_ms = int((time.monotonic() - start) * 1000)
        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.error("api.bad_status", method=method, path=path,
                         status=resp.status_code, latency_ms=latency_ms)
            raise ApiError(message, status_code=resp.status_code)

        logger.debug("api.response", method=method, path=path,
                     status=resp.status_code, latency_ms=latency_ms)
        try:
            return resp.json()
        except ValueError:
            logger.error("api.invalid_json", method=method, path=path)
            raise ApiError("The server sent an unreadable response.", status_code=resp.status_code)

    @staticmethod
    def _parse(model, data: dict, path: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error("api.unexpected_shape", path=path, errors=e.error_count())
            raise ApiError("The server sent an unexpected response.")


def _error_message(resp: httpx.Response) -> str:
    """Pull the server's explanation out of an error body, if any."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return f"Request failed ({resp.status_code})."
