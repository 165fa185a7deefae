"""FastAPI application entry point for the reference chat server.

Startup sequence: load tokens -> init DB.
Run with: uvicorn devserver.main:app --port 8000
"""

import json
import os
import time
from collections import defaultdict
from contextlib import asynccontextmanager

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import JSONResponse

from devserver.api.routes import health_router, router
from devserver.core.auth import bearer_token, load_tokens
from devserver.core.database import init_db

load_dotenv()

logger = structlog.get_logger(__name__)

RATE_LIMITED_PATH = "/api/chat/message"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("startup.begin")

    app.state.tokens = load_tokens()
    logger.info("startup.tokens_loaded", count=len(app.state.tokens))

    init_db()
    logger.info("startup.db_initialized")

    logger.info("startup.complete")
    yield
    logger.info("shutdown.complete")


app = FastAPI(
    title="CareChat Reference API",
    description="Local stand-in for the chat endpoints consumed by the CareChat client",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiter: per-caller request throttling on message sends
RATE_LIMIT = int(os.environ.get("RATE_LIMIT_PER_MIN", "30"))
_rate_buckets: dict[str, list[float]] = defaultdict(list)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Enforce per-caller rate limiting on message sends."""
    if request.url.path != RATE_LIMITED_PATH or request.method != "POST":
        return await call_next(request)

    # Read request body so it can be replayed to the route
    body = await request.body()
    caller = bearer_token(request)
    if caller is None:
        try:
            caller = json.loads(body).get("sessionId", "unknown")
        except (ValueError, AttributeError):
            caller = "unknown"

    now = time.monotonic()
    # Prune timestamps older than 60s
    _rate_buckets[caller] = [t for t in _rate_buckets[caller] if now - t < 60]
    window = _rate_buckets[caller]

    if len(window) >= RATE_LIMIT:
        logger.warning("rate_limit.exceeded")
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please wait a moment."},
        )

    window.append(now)

    async def receive_body():
        return {"type": "http.request", "body": body}

    request = StarletteRequest(request.scope, receive_body)
    return await call_next(request)


def reset_rate_limits() -> None:
    _rate_buckets.clear()


app.include_router(router)
app.include_router(health_router)
