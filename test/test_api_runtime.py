#!/usr/bin/env python
# coding: utf-8
"""
Runtime tests: team wiring, message flattening, session handling and the turn event stream
"""

import base64

import pytest

from open_superagent.agent import api_runtime
from open_superagent.agent.api_runtime import PreparedTurn, build_team, flatten_message_content
from open_superagent.agent.model_store import ModelConfig
from open_superagent.agent.super_agent import SuperAgent
from open_superagent.agent.super_config import AgentFactory

GEMINI = ModelConfig(provider="gemini", model_name="gemini-2.5-flash")


@pytest.fixture
def session_dir(monkeypatch, tmp_path):
    monkeypatch.setattr(api_runtime, "SESSION_DATA_DIR", tmp_path)
    return tmp_path


def test_main_team_has_browsing_and_research_sub_agents():
    agent = build_team(GEMINI)

    assert agent.config.id == api_runtime.MAIN_AGENT_ID
    assert agent.config.agent_type == "main"
    assert agent.config.tool_groups == api_runtime.MAIN_AGENT_TOOL_GROUPS
    assert set(agent.sub_agents) == {"agent-browsing", "agent-research"}
    assert agent.sub_agents["agent-browsing"].config.tool_groups == api_runtime.BROWSING_AGENT_TOOL_GROUPS
    assert agent.llm.model_provider() == "gemini"


def test_network_team_is_led_by_the_coordinator():
    coordinator = build_team(GEMINI, network=True)

    assert coordinator.config.id == api_runtime.NETWORK_AGENT_ID
    assert coordinator.config.tool_groups == []
    assert set(coordinator.sub_agents) == {"agent-research", "agent-browsing", "agent-superagent"}
    superagent = coordinator.sub_agents["agent-superagent"]
    assert superagent.config.agent_type == "sub"
    assert set(superagent.sub_agents) == {"agent-browsing", "agent-research"}


def test_flatten_plain_and_multimodal_content(session_dir):
    assert flatten_message_content("s1", "hello") == ("hello", [])
    assert flatten_message_content("s1", None) == ("", [])

    png = base64.b64encode(b"\x89PNG").decode()
    text, paths = flatten_message_content("s1", [
        {"type": "text", "text": "what is this?"},
        {"type": "image", "image": f"data:image/png;base64,{png}"},
        {"type": "image_url", "image_url": {"url": "https://example.com/cat.jpg"}},
        {"type": "text", "text": "  "},
    ])

    assert text == "what is this?"
    assert [p.rsplit("/", 1)[-1] for p in paths] == ["image_01.png", "image_02.url.txt"]
    assert (session_dir / "s1" / "image_01.png").read_bytes() == b"\x89PNG"
    assert (session_dir / "s1" / "image_02.url.txt").read_text() == "https://example.com/cat.jpg"


def test_session_dir_names_are_sanitized(session_dir):
    assert api_runtime._session_dir("../../etc") == session_dir / ".._.._etc"


@pytest.mark.asyncio
async def test_reset_session_drops_context_and_files(session_dir):
    agent = build_team(GEMINI)
    api_runtime._bind_session_context(agent, "s2")
    agent.context_manager.add_user_message("remember me")
    (session_dir / "s2").mkdir()

    await api_runtime.reset_session("s2")

    assert not (session_dir / "s2").exists()
    other = build_team(GEMINI)
    api_runtime._bind_session_context(other, "s2")
    assert other.context_manager.get_history() == []
    await api_runtime.reset_session("s2")


def test_bound_sessions_share_history():
    first = build_team(GEMINI)
    api_runtime._bind_session_context(first, "s3")
    first.context_manager.add_user_message("hi")

    second = build_team(GEMINI)
    api_runtime._bind_session_context(second, "s3")
    assert second.context_manager.get_history() == [{"role": "user", "content": "hi"}]
    api_runtime._SESSION_CTX.clear()


@pytest.mark.asyncio
async def test_run_turn_stream_emits_events_messages_and_final_reply(scripted_llm):
    config = AgentFactory.create_main_agent_config(
        agent_id="main", description="test", provider="openai", model_name="gpt-4o",
        prompt_template=[{"role": "system", "content": "test"}],
    )
    agent = SuperAgent(config, scripted_llm(turns=["all done"], summary="the reply"))
    turn = PreparedTurn(session_id="s4", agent=agent, query="hello", image_paths=[])

    events = [event async for event in api_runtime.run_turn_stream(turn)]
    types = [e["type"] for e in events]

    assert types[0] == "session_start"
    assert types[-1] == "assistant_final"
    assert events[-1]["data"] == {"reply": "the reply", "result_type": "answer"}
    assert "token" in types and "final_answer" in types
    assert "user_message" in types and "assistant_message" in types


@pytest.mark.asyncio
async def test_run_turn_stream_reports_agent_crashes(scripted_llm):
    config = AgentFactory.create_main_agent_config(
        agent_id="main", description="test", provider="openai", model_name="gpt-4o", prompt_template=[],
    )
    llm = scripted_llm(turns=["x"])

    async def broken_summary(*args, **kwargs):
        raise RuntimeError("summary failed")

    agent = SuperAgent(config, llm)
    agent.context_manager.generate_summary = broken_summary
    turn = PreparedTurn(session_id="s5", agent=agent, query="hello", image_paths=[])

    events = [event async for event in api_runtime.run_turn_stream(turn)]

    assert events[-1] == {"type": "error", "data": {"error": "summary failed"}}
