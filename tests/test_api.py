"""End-to-end tests for the FastAPI app with injected components."""

import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage

from marketbot.src.main import create_app

from conftest import InMemoryRanker


@pytest.fixture
def client(provider):
    llm = GenericFakeChatModel(messages=iter([AIMessage(content="The NSE opens at 9am."), AIMessage(content="Second answer.")]))
    app = create_app(provider=provider, store=InMemoryRanker(provider, ["NSE opens at 9am", "Dividends are paid quarterly"]), llm=llm)
    with TestClient(app) as test_client:
        yield test_client


class TestChatEndpoint:

    def test_streams_answer(self, client):
        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "What time does the market open?"}]})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "The NSE opens at 9am."

    def test_multi_turn_conversation(self, client):
        messages = [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello, I'm Market Bot."},
            {"role": "user", "content": "When are dividends paid?"},
        ]
        assert client.post("/api/chat", json={"messages": messages}).status_code == 200

    def test_non_string_last_message_rejected(self, client):
        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": [{"type": "image"}]}]})
        assert response.status_code == 400
        assert response.text == "Invalid message format"

    def test_empty_conversation_rejected(self, client):
        response = client.post("/api/chat", json={"messages": []})
        assert response.status_code == 400

    def test_malformed_body(self, client):
        assert client.post("/api/chat", json={"messages": "hello"}).status_code == 422


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "embedding_model_ready": True, "passages": 2}
