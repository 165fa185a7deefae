"""SQLAlchemy + SQLite persistence for the reference chat server.

Stores chat sessions and their messages, and serves the paginated
history listing.
"""

import os
import uuid
from datetime import datetime, timezone
from pathlib import Path

import structlog
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text, UniqueConstraint, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from carechat.api.schemas import (
    AssistantReply,
    HistoryEntry,
    HistoryPage,
    Message,
    MessageMetadata,
    Pagination,
    SessionPayload,
)

logger = structlog.get_logger(__name__)

Base = declarative_base()

MAX_PAGE_SIZE = 50


def _now() -> datetime:
    # SQLite drops tzinfo; everything is stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ChatSessionRow(Base):
    """One conversation owned by a user."""
    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String, index=True, nullable=False)
    title = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=_now)
    last_activity = Column(DateTime, nullable=False, default=_now)


class ChatMessageRow(Base):
    """Persistent chat message row."""
    __tablename__ = "chat_messages"
    # One user row and one reply per idempotency key
    __table_args__ = (UniqueConstraint("session_id", "client_message_id", "sender"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    public_id = Column(String, unique=True, nullable=False, default=lambda: uuid.uuid4().hex)
    session_id = Column(String, index=True, nullable=False)
    sender = Column(String, nullable=False)  # "user" or "assistant"
    content = Column(Text, nullable=False)
    kind = Column(String, nullable=False, default="text")
    timestamp = Column(DateTime, nullable=False, default=_now)
    # Idempotency key of the user message this row belongs to / answers
    client_message_id = Column(String, index=True, nullable=True)
    ai_model = Column(String, nullable=True)
    confidence = Column(Float, nullable=True)


_engine = None
_SessionLocal = None


def init_db(database_url: str | None = None) -> None:
    """Create engine + tables. Call once at startup.

    Args:
        database_url: SQLAlchemy connection string. Defaults to DATABASE_URL env var.
    """
    global _engine, _SessionLocal

    url = database_url or os.environ.get("DATABASE_URL", "sqlite:///data/carechat.sqlite")
    kwargs = {}
    if url.startswith("sqlite") and ":memory:" in url:
        # One shared connection so every thread sees the same in-memory DB
        kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    elif url.startswith("sqlite:///"):
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        kwargs = {"connect_args": {"check_same_thread": False}}
    _engine = create_engine(url, echo=False, **kwargs)
    _SessionLocal = sessionmaker(bind=_engine)

    Base.metadata.create_all(_engine)
    logger.info("db.initialized", url=url.split("///")[0] + "///***")


def get_engine():
    return _engine


def get_session() -> Session:
    """Get a new database session."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal()


def create_chat_session(user_id: str, title: str) -> SessionPayload:
    """Create a session for a user and mark their older sessions inactive.

    Args:
        user_id: Owner of the session.
        title: Display label requested by the client.

    Returns:
        The new session as a wire payload (no messages yet).
    """
    with get_session() as db:
        db.query(ChatSessionRow).filter(
            ChatSessionRow.user_id == user_id,
            ChatSessionRow.is_active.is_(True),
        ).update({ChatSessionRow.is_active: False})
        row = ChatSessionRow(user_id=user_id, title=title, is_active=True)
        db.add(row)
        db.commit()
        db.refresh(row)
        logger.debug("db.session_created", session_id=row.id)
        return _session_payload(row, [])


def get_chat_session(session_id: str, user_id: str) -> SessionPayload | None:
    """Fetch a session with its messages, or None if it isn't the user's."""
    with get_session() as db:
        row = db.get(ChatSessionRow, session_id)
        if row is None or row.user_id != user_id:
            return None
        return _session_payload(row, _messages_for(db, session_id))


def find_reply(session_id: str, client_message_id: str) -> Message | None:
    """Assistant message already stored for an idempotency key, if any."""
    with get_session() as db:
        return _find_reply(db, session_id, client_message_id)


def save_exchange(
    session_id: str,
    user_text: str,
    reply: AssistantReply,
    client_message_id: str | None = None,
) -> Message:
    """Persist a user message and its assistant reply in one transaction.

    Args:
        session_id: Target session.
        user_text: The user's message.
        reply: The assistant reply to store.
        client_message_id: Idempotency key sent by the client.

    Returns:
        The stored assistant message, with its server-assigned id. When
        the key was already stored, the earlier reply instead.
    """
    with get_session() as db:
        session_row = db.get(ChatSessionRow, session_id)
        now = _now()
        db.add(ChatMessageRow(
            session_id=session_id,
            sender="user",
            content=user_text,
            timestamp=now,
            client_message_id=client_message_id,
        ))
        metadata = reply.metadata or MessageMetadata()
        assistant = ChatMessageRow(
            session_id=session_id,
            sender="assistant",
            content=reply.content,
            timestamp=reply.timestamp.astimezone(timezone.utc).replace(tzinfo=None),
            client_message_id=client_message_id,
            ai_model=metadata.ai_model,
            confidence=metadata.confidence,
        )
        db.add(assistant)
        if session_row is not None:
            session_row.last_activity = assistant.timestamp
        try:
            db.commit()
        except IntegrityError:
            # A concurrent delivery with the same key committed first
            db.rollback()
            existing = _find_reply(db, session_id, client_message_id) if client_message_id else None
            if existing is None:
                raise
            logger.info("db.exchange_replayed", session_id=session_id)
            return existing
        db.refresh(assistant)
        logger.debug("db.exchange_saved", session_id=session_id)
        return _row_to_message(assistant)


def list_history(user_id: str, limit: int, offset: int) -> HistoryPage:
    """One page of a user's sessions, most recently active first.

    Args:
        user_id: Owner of the sessions.
        limit: Page size, clamped to 1..MAX_PAGE_SIZE.
        offset: Entries to skip.

    Returns:
        Entries with full message lists plus the pagination cursor.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)
    with get_session() as db:
        query = db.query(ChatSessionRow).filter(ChatSessionRow.user_id == user_id)
        total = query.count()
        rows = (
            query.order_by(ChatSessionRow.last_activity.desc(), ChatSessionRow.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        entries = [
            HistoryEntry(
                id=row.id,
                title=row.title,
                last_activity=row.last_activity,
                is_active=row.is_active,
                messages=_messages_for(db, row.id),
            )
            for row in rows
        ]
    return HistoryPage(
        chat_sessions=entries,
        pagination=Pagination(
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(entries) < total,
        ),
    )


def _find_reply(db: Session, session_id: str, client_message_id: str) -> Message | None:
    row = (
        db.query(ChatMessageRow)
        .filter(
            ChatMessageRow.session_id == session_id,
            ChatMessageRow.client_message_id == client_message_id,
            ChatMessageRow.sender == "assistant",
        )
        .first()
    )
    return _row_to_message(row) if row is not None else None


def _messages_for(db: Session, session_id: str) -> list[Message]:
    rows = (
        db.query(ChatMessageRow)
        .filter(ChatMessageRow.session_id == session_id)
        .order_by(ChatMessageRow.id.asc())
        .all()
    )
    return [_row_to_message(r) for r in rows]


def _session_payload(row: ChatSessionRow, messages: list[Message]) -> SessionPayload:
    return SessionPayload(
        id=row.id,
        title=row.title,
        messages=messages,
        last_activity=row.last_activity,
        is_active=row.is_active,
    )


def _row_to_message(row: ChatMessageRow) -> Message:
    """Convert a SQLAlchemy row to a Pydantic Message."""
    metadata = None
    if row.ai_model is not None or row.confidence is not None:
        metadata = MessageMetadata(confidence=row.confidence, ai_model=row.ai_model)
    return Message(
        id=row.public_id,
        sender=row.sender,
        content=row.content,
        timestamp=row.timestamp,
        kind=row.kind,
        metadata=metadata,
    )
