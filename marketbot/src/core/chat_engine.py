"""
Market Bot - Chat Engine
=========================
Glue between an incoming conversation, the ``Retriever`` and the chat
model.  Flow:

    1. Take the last message of the conversation (must be text).
    2. Retrieve context for it (never fails, see ``Retriever.search``).
    3. Render the system prompt with that context.
    4. Prepend it to the full conversation.
    5. Stream the model's answer chunk by chunk.

The LLM is injected; by default it is a ``ChatGoogleGenerativeAI``
instance built from ``settings``.  Conversations are not persisted.
"""

from __future__ import annotations

import time
from typing import Any, AsyncIterator

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from marketbot.config.prompt_templates import STREAM_ERROR_REPLY, SYSTEM_PROMPT_TEMPLATE
from marketbot.config.settings import settings
from marketbot.src.core.exceptions import InvalidConversationError
from marketbot.src.core.retriever import Retriever
from marketbot.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Type aliases ───────────────────────────────────────────────────────
ChatMessage = dict[str, Any]

_ROLE_TO_MESSAGE: dict[str, type[BaseMessage]] = {
    "system": SystemMessage,
    "user": HumanMessage,
    "assistant": AIMessage,
}


def last_user_message(messages: list[ChatMessage]) -> str:
    """Return the text of the final message, or raise ``InvalidConversationError``."""
    if not messages:
        raise InvalidConversationError("conversation is empty")
    content = messages[-1].get("content")
    if not isinstance(content, str):
        raise InvalidConversationError("last message content must be a string")
    return content


def render_system_prompt(context: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(context=context)


def build_messages(messages: list[ChatMessage], context: str) -> list[BaseMessage]:
    """System prompt with ``context`` followed by the whole conversation."""
    prompt: list[BaseMessage] = [SystemMessage(content=render_system_prompt(context))]
    for msg in messages:
        role = msg.get("role", "user")
        message_cls = _ROLE_TO_MESSAGE.get(role)
        if message_cls is None:
            logger.warning("[CHAT] Skipping message with unknown role '%s'.", role)
            continue
        content = msg.get("content")
        prompt.append(message_cls(content=content if isinstance(content, (str, list)) else str(content)))
    return prompt


def _init_llm() -> BaseChatModel:
    from langchain_google_genai import ChatGoogleGenerativeAI

    return ChatGoogleGenerativeAI(model=settings.LLM_MODEL, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())


class ChatEngine:
    """
    Parameters
    ----------
    retriever
        Supplies the grounding context.
    llm
        Any LangChain chat model.  Built from ``settings`` if omitted.
    """

    def __init__(self, retriever: Retriever, llm: BaseChatModel | None = None) -> None:
        self._retriever = retriever
        self._llm = llm if llm is not None else _init_llm()

    async def prepare(self, messages: list[ChatMessage]) -> list[BaseMessage]:
        """Validate the conversation and build the grounded prompt."""
        question = last_user_message(messages)

        t_search = time.perf_counter()
        context = await self._retriever.search(question)
        logger.info("[CHAT] Context ready in %.1fms (%d chars).", (time.perf_counter() - t_search) * 1000, len(context))

        return build_messages(messages, context)

    async def stream_reply(self, prompt: list[BaseMessage]) -> AsyncIterator[str]:
        """Yield the model's answer as text chunks."""
        t_llm = time.perf_counter()
        total_chars = 0
        try:
            async for chunk in self._llm.astream(prompt):
                text = chunk.content if isinstance(chunk.content, str) else ""
                if text:
                    total_chars += len(text)
                    yield text
        except Exception:
            logger.exception("[CHAT] LLM stream failed after %d chars.", total_chars)
            yield STREAM_ERROR_REPLY
            return

        logger.info("[CHAT] LLM stream finished: %.1fms (%d chars).", (time.perf_counter() - t_llm) * 1000, total_chars)

