#!/usr/bin/env python
# coding: utf-8
"""
HTTP surface tests with the agent runtime and external services patched out
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from open_superagent.agent import api_runtime
from open_superagent.agent.api_runtime import PreparedTurn
from open_superagent.api.server import _split_messages, create_app
from open_superagent.api.schemas import ChatMessage
from open_superagent.api.settings import Settings
from open_superagent.tool.tool_registry import ToolRegistry


@pytest.fixture
def client(public_dir):
    settings = Settings.build(public_dir=public_dir, chat_retry_attempts=2, chat_retry_delay=0)
    with TestClient(create_app(settings)) as c:
        yield c


def _events(body: str):
    events = []
    for block in body.strip().split("\n\n"):
        lines = block.split("\n")
        events.append(lines[0].removeprefix("event: "))
    return events


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_set_model_roundtrip(client):
    assert client.get("/api/set-model").json() == {"model": {"provider": "gemini", "modelName": "gemini-2.5-flash"}}

    resp = client.post("/api/set-model", json={"provider": "claude", "modelName": "claude-4-sonnet"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "model": {"provider": "claude", "modelName": "claude-4-sonnet"}}
    assert client.get("/api/set-model").json()["model"]["provider"] == "claude"


def test_set_model_requires_fields(client):
    resp = client.post("/api/set-model", json={"provider": "claude"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Provider and modelName are required"}


def test_chat_requires_messages(client):
    resp = client.post("/api/chat", json={"messages": []})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Messages are required"}


def test_split_messages_uses_last_message_as_current():
    messages = [
        ChatMessage(role="system", content="be brief"),
        ChatMessage(role="user", content="hi"),
        ChatMessage(role="assistant", content="hello"),
        ChatMessage(role="user", content="weather?"),
    ]
    system_prompt, history, current = _split_messages(messages)
    assert system_prompt == "be brief"
    assert history == [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
    assert current == "weather?"


def test_chat_streams_agent_events(client):
    async def fake_stream(turn):
        yield {"type": "session_start", "data": {"sessionId": turn.session_id}}
        yield {"type": "token", "data": {"content": "hi"}}
        yield {"type": "assistant_final", "data": {"reply": "hi", "result_type": "answer"}}

    turn = PreparedTurn(session_id="abc", agent=None, query="hello", image_paths=[])
    with patch("open_superagent.api.server.prepare_turn", AsyncMock(return_value=turn)), \
            patch("open_superagent.agent.api_runtime.run_turn_stream", fake_stream):
        resp = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hello"}], "sessionId": "abc"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert _events(resp.text) == ["session_start", "token", "assistant_final", "done"]


def test_openai_models_stream_directly(client):
    async def fake_direct(messages, model):
        for token in ("a", "b"):
            yield token

    with patch("open_superagent.agent.api_runtime.stream_direct", fake_direct):
        resp = client.post("/api/chat", json={
            "messages": [{"role": "user", "content": "hello"}],
            "model": {"provider": "openai", "modelName": "gpt-4o"},
        })

    assert _events(resp.text) == ["token", "token", "assistant_final", "done"]
    assert '"reply": "ab"' in resp.text


@pytest.fixture
def unavailable_model(monkeypatch, scripted_llm):
    """Agent team whose model fails on the first request, as an overloaded provider does."""
    created = []

    class UnavailableLLM(scripted_llm):
        def astream(self, messages, tools=None, **kwargs):
            raise RuntimeError("503 Service Unavailable: Visibility check was unavailable")

    def fake_create_model(provider, model_name, *args, **kwargs):
        llm = UnavailableLLM(model_name=model_name)
        created.append(llm)
        return llm

    monkeypatch.setattr(api_runtime, "create_model", fake_create_model)
    monkeypatch.setattr(api_runtime, "MAIN_AGENT_TOOL_GROUPS", [])
    monkeypatch.setattr(api_runtime, "get_registry", AsyncMock(return_value=ToolRegistry()))
    return created


def test_chat_model_unavailable_is_retried_then_503(client, unavailable_model):
    resp = client.post("/api/chat", json={
        "messages": [{"role": "user", "content": "hello"}],
        "sessionId": "unavailable-model",
    })

    assert resp.status_code == 503
    body = resp.json()
    assert body["retryable"] is True
    assert "Visibility check was unavailable" in body["details"]
    # one team (main + two sub-agents) per attempt
    assert len(unavailable_model) == 3 * 2


def test_chat_recovers_when_retry_succeeds(client):
    calls = []

    async def flaky_direct(messages, model):
        calls.append(model.model_name)
        if len(calls) == 1:
            raise RuntimeError("503 Service Unavailable")
        yield "ok"

    with patch("open_superagent.agent.api_runtime.stream_direct", flaky_direct):
        resp = client.post("/api/chat", json={
            "messages": [{"role": "user", "content": "hello"}],
            "model": {"provider": "openai", "modelName": "gpt-4o"},
        })

    assert resp.status_code == 200
    assert _events(resp.text) == ["token", "assistant_final", "done"]
    assert len(calls) == 2


def test_chat_other_errors_are_500(client):
    with patch("open_superagent.api.server.prepare_turn", AsyncMock(side_effect=RuntimeError("boom"))):
        resp = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hello"}]})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Chat API error", "details": "boom"}


def test_multi_agent_chat_errors_are_500(client):
    with patch("open_superagent.api.server.prepare_turn", AsyncMock(side_effect=RuntimeError("503 boom"))):
        resp = client.post("/api/multi-agent-chat", json={"messages": [{"role": "user", "content": "hello"}]})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to process request", "details": "503 boom"}


def test_reset_clears_session(client):
    with patch("open_superagent.api.server.reset_session", AsyncMock()) as reset:
        resp = client.post("/api/reset", json={"sessionId": "abc"})
    assert resp.json() == {"ok": True, "sessionId": "abc"}
    reset.assert_awaited_once_with("abc")


def test_browser_session(client):
    assert client.post("/api/browser-session", json={}).status_code == 400

    live = {"success": True, "sessionId": "bb", "liveViewUrl": "https://example/live"}
    with patch("open_superagent.api.server.create_live_session", AsyncMock(return_value=live)):
        assert client.post("/api/browser-session", json={"task": "open a page"}).json() == live

    with patch("open_superagent.api.server.create_live_session", AsyncMock(side_effect=RuntimeError("no key"))):
        resp = client.post("/api/browser-session", json={"task": "open a page"})
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "no key"}


def test_research_routes(client):
    assert client.post("/api/research-plan", json={}).status_code == 400
    assert client.post("/api/deep-research", json={"query": ""}).json() == {"error": "Query is required"}

    plan = {"title": "Cats", "steps": []}
    with patch("open_superagent.api.server.ResearchHandler") as handler:
        handler.return_value.create_research_plan = AsyncMock(return_value=plan)
        assert client.post("/api/research-plan", json={"query": "cats"}).json() == plan

        handler.return_value.run_deep_research = AsyncMock(side_effect=RuntimeError("quota"))
        resp = client.post("/api/deep-research", json={"query": "cats"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal Server Error", "details": "quota"}


def test_media_routes(client, public_dir):
    (public_dir / "generated-music" / "song.mp3").write_bytes(b"123")

    assert client.get("/api/media/videos").json() == {"videos": []}
    music = client.get("/api/media/music").json()["music"]
    assert music[0]["name"] == "song.mp3"
    assert client.get("/generated-music/song.mp3").content == b"123"


def test_slide_creator_route(client):
    resp = client.post("/api/slide-creator", json={"action": "initial_request"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "sessionId is required"}

    resp = client.post("/api/slide-creator", json={
        "sessionId": "s", "action": "initial_request", "topic": "Cats", "slideCount": 3,
    })
    assert resp.status_code == 200
    assert resp.json()["nextExpectedAction"] == "plan_approval"


def test_runtime_is_shut_down_with_the_app(public_dir):
    with patch("open_superagent.api.server.shutdown_runtime", AsyncMock()) as shutdown:
        with TestClient(create_app(Settings.build(public_dir=public_dir))) as c:
            assert c.get("/health").status_code == 200
            shutdown.assert_not_awaited()
        shutdown.assert_awaited_once()
