"""FastAPI endpoints for the reference chat server.

POST /api/chat/session   - create a session (older ones become inactive)
POST /api/chat/message   - store a user message and return the assistant reply
GET  /api/chat/history   - page through the caller's sessions
POST /api/doctors/ai-chat - session-less clinician assistant
GET  /health             - component health check
"""

import time

import structlog
from fastapi import APIRouter, HTTPException, Query, Request

from carechat.api.schemas import (
    AssistantReply,
    ConsultRequest,
    ConsultResponse,
    CreateSessionRequest,
    CreateSessionResponse,
    HistoryPage,
    Message,
    SendMessageRequest,
    SendMessageResponse,
)
from devserver.core.auth import require_user
from devserver.core.database import (
    create_chat_session,
    find_reply,
    get_chat_session,
    list_history,
    save_exchange,
)
from devserver.core.responder import respond, respond_to_clinician

logger = structlog.get_logger(__name__)

MAX_MESSAGE_CHARS = 2000

router = APIRouter(prefix="/api")
health_router = APIRouter()


@router.post("/chat/session", response_model=CreateSessionResponse, status_code=201)
def create_session(request: CreateSessionRequest, req: Request):
    """Create a new chat session for the caller."""
    user = require_user(req)
    try:
        session = create_chat_session(user.user_id, request.title)
    except Exception as e:
        logger.error("chat_session.create_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Could not create a chat session.")
    logger.info("chat_session.created", session_id=session.id, user_id=user.user_id)
    return CreateSessionResponse(chat_session=session)


@router.post("/chat/message", response_model=SendMessageResponse)
def send_message(request: SendMessageRequest, req: Request):
    """Answer a user message: dedupe -> respond -> persist -> reply."""
    start = time.monotonic()
    user = require_user(req)
    session_id = request.session_id

    if len(request.message) > MAX_MESSAGE_CHARS:
        raise HTTPException(status_code=422, detail=f"Message must be at most {MAX_MESSAGE_CHARS} characters.")

    if get_chat_session(session_id, user.user_id) is None:
        raise HTTPException(status_code=404, detail="Chat session not found.")

    key = request.client_message_id or req.headers.get("Idempotency-Key")
    if key:
        existing = find_reply(session_id, key)
        if existing is not None:
            logger.info("chat_message.replayed", session_id=session_id)
            return SendMessageResponse(ai_message=_as_reply(existing))

    reply = respond(request.message)
    try:
        stored = save_exchange(session_id, request.message, reply, client_message_id=key)
    except Exception as e:
        logger.error("chat_message.persist_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Service temporarily unavailable. Please try again in a moment.")

    latency_ms = int((time.monotonic() - start) * 1000)
    logger.info("chat_message.response", session_id=session_id,
                msg_len=len(request.message), latency_ms=latency_ms)
    return SendMessageResponse(ai_message=_as_reply(stored))


@router.get("/chat/history", response_model=HistoryPage)
def history(req: Request, limit: int = Query(10, ge=1), offset: int = Query(0, ge=0)):
    """List the caller's sessions, most recent first."""
    user = require_user(req)
    page = list_history(user.user_id, limit=limit, offset=offset)
    logger.info("chat_history.page", user_id=user.user_id, offset=offset,
                count=len(page.chat_sessions), total=page.pagination.total)
    return page


@router.post("/doctors/ai-chat", response_model=ConsultResponse)
def consult(request: ConsultRequest, req: Request):
    """Clinician assistant: doctors only, nothing is stored."""
    require_user(req, role="doctor")
    if len(request.message) > MAX_MESSAGE_CHARS:
        raise HTTPException(status_code=422, detail=f"Message must be at most {MAX_MESSAGE_CHARS} characters.")
    return ConsultResponse(response=respond_to_clinician(request.message))


@health_router.get("/health")
def health(req: Request):
    """Check health of the server components."""
    components = {}
    try:
        from devserver.core.database import get_session
        with get_session() as db:
            db.connection()
        components["sqlite"] = "ok"
    except Exception:
        components["sqlite"] = "error"

    tokens = getattr(req.app.state, "tokens", None)
    components["auth"] = "ok" if tokens else "error"

    errors = [k for k, v in components.items() if v == "error"]
    if not errors:
        status = "healthy"
    elif len(errors) == len(components):
        status = "unhealthy"
    else:
        status = "degraded"
    return {"status": status, "components": components}


def _as_reply(message: Message) -> AssistantReply:
    return AssistantReply(
        id=message.id,
        content=message.content,
        timestamp=message.timestamp,
        metadata=message.metadata,
    )
