"""
Market Bot - API Routes
========================
Thin controllers over the ``ChatEngine``:

  - POST /api/chat  → stream a grounded answer for a conversation
  - GET  /health    → embedding-model readiness and passage count

Components are read from ``request.app.state`` (populated by the
application lifespan in ``marketbot.src.main``).  No business logic
lives here.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import BaseModel, Field

from marketbot.src.core.chat_engine import ChatEngine
from marketbot.src.core.exceptions import InvalidConversationError
from marketbot.src.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


class ChatMessageIn(BaseModel):
    role: str = "user"
    # Not constrained to ``str`` here: a non-text last message is answered
    # with 400 by the engine, not 422 by validation.
    content: Any = None


class ChatRequest(BaseModel):
    messages: list[ChatMessageIn] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    embedding_model_ready: bool
    passages: int


@router.post("/api/chat")
async def chat(body: ChatRequest, request: Request):
    engine: ChatEngine = request.app.state.chat_engine
    try:
        prompt = await engine.prepare([m.model_dump() for m in body.messages])
    except InvalidConversationError as exc:
        logger.warning("[API] Rejected conversation: %s", exc)
        return PlainTextResponse("Invalid message format", status_code=400)

    return StreamingResponse(engine.stream_reply(prompt), media_type="text/plain; charset=utf-8")


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    provider = request.app.state.provider
    store = request.app.state.store
    return HealthResponse(status="ok", embedding_model_ready=provider.is_ready, passages=store.count())
