"""Bearer-token auth for the reference server.

Tokens come from DEV_API_TOKENS as comma-separated token:user_id:role
triples, e.g. "tok-a:patient-1:patient,tok-b:doctor-7:doctor".
"""

import os
from dataclasses import dataclass

import structlog
from fastapi import HTTPException, Request

logger = structlog.get_logger(__name__)

DEFAULT_TOKENS = "dev-token:patient-1:patient"


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str


def load_tokens(raw: str | None = None) -> dict[str, Principal]:
    """Parse the token table.

    Args:
        raw: Token table string. Defaults to DEV_API_TOKENS env var.

    Returns:
        Mapping from bearer token to its principal. Malformed entries are skipped.
    """
    raw = raw if raw is not None else os.environ.get("DEV_API_TOKENS", DEFAULT_TOKENS)
    tokens: dict[str, Principal] = {}
    for item in raw.split(","):
        parts = [p.strip() for p in item.split(":")]
        if len(parts) != 3 or not all(parts):
            if item.strip():
                logger.warning("auth.bad_token_entry")
            continue
        token, user_id, role = parts
        tokens[token] = Principal(user_id=user_id, role=role)
    return tokens


def bearer_token(req: Request) -> str | None:
    header = req.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_user(req: Request, role: str | None = None) -> Principal:
    """Resolve the caller from the Authorization header.

    Raises:
        HTTPException: 401 without a known token, 403 on a role mismatch.
    """
    tokens = getattr(req.app.state, "tokens", None)
    if tokens is None:
        tokens = req.app.state.tokens = load_tokens()

    token = bearer_token(req)
    principal = tokens.get(token) if token else None
    if principal is None:
        logger.warning("auth.rejected", path=req.url.path)
        raise HTTPException(status_code=401, detail="Authentication required.")
    if role is not None and principal.role != role:
        logger.warning("auth.forbidden", path=req.url.path, role=principal.role)
        raise HTTPException(status_code=403, detail="Access denied.")
    return principal
