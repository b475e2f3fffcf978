"""Tests for prompt assembly and reply streaming."""

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from marketbot.config.prompt_templates import NO_INFORMATION_REPLY, STREAM_ERROR_REPLY
from marketbot.src.core.chat_engine import ChatEngine, build_messages, last_user_message, render_system_prompt
from marketbot.src.core.exceptions import InvalidConversationError
from marketbot.src.core.retriever import Retriever

from conftest import InMemoryRanker


class ExplodingLLM:
    async def astream(self, prompt):
        yield AIMessage(content="Partial ")
        raise RuntimeError("quota exceeded")


def fake_llm(*replies):
    return GenericFakeChatModel(messages=iter([AIMessage(content=r) for r in replies]))


async def collect(stream):
    return "".join([chunk async for chunk in stream])


class TestConversationHelpers:

    def test_last_user_message(self):
        messages = [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}, {"role": "user", "content": "When does NSE open?"}]
        assert last_user_message(messages) == "When does NSE open?"

    def test_empty_conversation(self):
        with pytest.raises(InvalidConversationError):
            last_user_message([])

    @pytest.mark.parametrize("content", [None, 42, [{"type": "text", "text": "hi"}]])
    def test_non_text_last_message(self, content):
        with pytest.raises(InvalidConversationError):
            last_user_message([{"role": "user", "content": content}])

    def test_system_prompt_embeds_context(self):
        prompt = render_system_prompt("NSE opens at 9am")
        assert "--- CONTEXT ---\nNSE opens at 9am\n--- END CONTEXT ---" in prompt
        assert "Market Bot" in prompt
        assert NO_INFORMATION_REPLY in prompt

    def test_build_messages_order(self):
        conversation = [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}, {"role": "user", "content": "Dividends?"}]
        built = build_messages(conversation, "Dividends are paid quarterly")

        assert isinstance(built[0], SystemMessage)
        assert "Dividends are paid quarterly" in built[0].content
        assert [type(m) for m in built[1:]] == [HumanMessage, AIMessage, HumanMessage]
        assert [m.content for m in built[1:]] == ["Hi", "Hello", "Dividends?"]

    def test_unknown_roles_skipped(self):
        built = build_messages([{"role": "tool", "content": "x"}, {"role": "user", "content": "Hi"}], "ctx")
        assert len(built) == 2


class TestChatEngine:

    @pytest.mark.asyncio
    async def test_prepare_injects_retrieved_context(self, provider):
        retriever = Retriever(provider, InMemoryRanker(provider, ["NSE opens at 9am", "Dividends are paid quarterly"]))
        engine = ChatEngine(retriever, llm=fake_llm("unused"))

        prompt = await engine.prepare([{"role": "user", "content": "What time does the market open?"}])

        assert "NSE opens at 9am" in prompt[0].content
        assert prompt[-1].content == "What time does the market open?"

    @pytest.mark.asyncio
    async def test_prepare_with_empty_knowledge_base(self, provider):
        engine = ChatEngine(Retriever(provider, InMemoryRanker(provider)), llm=fake_llm("unused"))
        prompt = await engine.prepare([{"role": "user", "content": "Anything?"}])
        assert "No relevant information found." in prompt[0].content

    @pytest.mark.asyncio
    async def test_prepare_rejects_bad_conversation(self, provider):
        engine = ChatEngine(Retriever(provider, InMemoryRanker(provider)), llm=fake_llm("unused"))
        with pytest.raises(InvalidConversationError):
            await engine.prepare([{"role": "user", "content": None}])

    @pytest.mark.asyncio
    async def test_stream_reply_yields_full_answer(self, provider):
        engine = ChatEngine(Retriever(provider, InMemoryRanker(provider)), llm=fake_llm("The NSE opens at 9am."))
        prompt = build_messages([{"role": "user", "content": "When?"}], "NSE opens at 9am")
        assert await collect(engine.stream_reply(prompt)) == "The NSE opens at 9am."

    @pytest.mark.asyncio
    async def test_stream_failure_ends_with_apology(self, provider):
        engine = ChatEngine(Retriever(provider, InMemoryRanker(provider)), llm=ExplodingLLM())
        prompt = build_messages([{"role": "user", "content": "When?"}], "ctx")
        assert await collect(engine.stream_reply(prompt)) == "Partial " + STREAM_ERROR_REPLY
