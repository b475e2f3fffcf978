"""
Market Bot - Application Entry Point
=====================================
FastAPI application factory.  The lifespan owns the process-wide
components and builds each of them exactly once:

    EmbeddingProvider → PassageStore → Retriever → ChatEngine

They are stored on ``app.state`` for the route handlers.  Components
passed to ``create_app`` are used as-is, which is how the tests inject
fakes.

Serve with any ASGI server, e.g. ``uvicorn marketbot.src.main:app``.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from langchain_core.language_models.chat_models import BaseChatModel

from marketbot.config.prompt_templates import BOT_NAME
from marketbot.src.api.routes import router
from marketbot.src.core.chat_engine import ChatEngine
from marketbot.src.core.embedding_provider import get_instance
from marketbot.src.core.retriever import Retriever
from marketbot.src.database.vector_store import PassageStore
from marketbot.src.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(provider=None, store=None, llm: BaseChatModel | None = None) -> FastAPI:
    """Build the app; missing components are created at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        t_start = time.perf_counter()

        app.state.provider = provider if provider is not None else await get_instance()
        app.state.store = store if store is not None else PassageStore(embedder=app.state.provider)
        app.state.retriever = Retriever(app.state.provider, app.state.store)
        app.state.chat_engine = ChatEngine(app.state.retriever, llm=llm)

        logger.info("%s ready in %.1fms (%d passages).", BOT_NAME, (time.perf_counter() - t_start) * 1000, app.state.store.count())
        yield
        logger.info("%s shutting down.", BOT_NAME)

    app = FastAPI(title=BOT_NAME, lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()
