#!/usr/bin/env python
# coding: utf-8
"""
SuperAgent ReAct loop tests with a scripted model and an in-memory MCP server
"""

import pytest

from open_superagent.agent.super_agent import SuperAgent, detect_tool_error
from open_superagent.agent.super_config import AgentFactory
from open_superagent.tool.tool_registry import ToolRegistry


def _main_config(**overrides):
    params = dict(
        agent_id="main",
        description="Main agent",
        provider="openai",
        model_name="gpt-4o",
        prompt_template=[{"role": "system", "content": "You are a test agent."}],
        tool_groups=["echo"],
        max_iteration=5,
    )
    params.update(overrides)
    return AgentFactory.create_main_agent_config(**params)


def _sub_config(agent_id="agent-helper"):
    return AgentFactory.create_sub_agent_config(
        agent_id=agent_id,
        description="Helper",
        provider="openai",
        model_name="gpt-4o",
        prompt_template=[{"role": "system", "content": "You help."}],
    )


def test_detect_tool_error():
    assert detect_tool_error("[ERROR]: boom") == "boom"
    assert detect_tool_error('{"success": false, "message": "no key"}') == "no key"
    assert detect_tool_error({"error": "bad"}) == "bad"
    assert detect_tool_error("all good") is None
    assert detect_tool_error({"success": True}) is None


@pytest.mark.asyncio
async def test_agent_calls_tools_then_summarizes(scripted_llm, echo_server):
    registry = ToolRegistry()
    registry.register_group("echo", echo_server)
    llm = scripted_llm(turns=[[("echo", {"text": "hi", "times": "2"})], "The answer is hi hi"], summary="hi hi")
    agent = SuperAgent(_main_config(), llm, registry)

    events = []

    async def collect(event):
        events.append(event)

    agent.set_event_callback(collect)
    try:
        result = await agent.invoke({"query": "say hi twice"})
    finally:
        await registry.close()

    assert result == {"output": "hi hi", "result_type": "answer"}

    history = agent.context_manager.get_history()
    tool_messages = [m for m in history if m["role"] == "tool"]
    assert tool_messages[0]["content"] == "hi hi"
    assert tool_messages[0]["tool_call_id"] == "call_0"

    types = [e["type"] for e in events]
    assert types.count("iteration_start") == 2
    assert "tool_executing" in types and "tool_completed" in types
    assert "final_answer" in types
    assert all(e["agent_id"] == "main" for e in events)

    # tools offered to the model come from the registry group
    offered = {t["function"]["name"] for t in llm.stream_calls[0]["tools"]}
    assert "echo" in offered


@pytest.mark.asyncio
async def test_soft_tool_failures_are_reported_as_tool_errors(scripted_llm, echo_server):
    registry = ToolRegistry()
    registry.register_group("echo", echo_server)
    llm = scripted_llm(turns=[[("fail_softly", {"reason": "quota"})], "sorry"])
    agent = SuperAgent(_main_config(), llm, registry)

    events = []

    async def collect(event):
        events.append(event)

    agent.set_event_callback(collect)
    try:
        await agent.invoke({"query": "try it"})
    finally:
        await registry.close()

    errors = [e for e in events if e["type"] == "tool_error"]
    assert errors and errors[0]["data"]["error"] == "quota"
    tool_message = next(m for m in agent.context_manager.get_history() if m["role"] == "tool")
    assert tool_message["content"] == "Error: quota"


@pytest.mark.asyncio
async def test_extra_tool_calls_beyond_limit_are_skipped(scripted_llm, echo_server):
    registry = ToolRegistry()
    registry.register_group("echo", echo_server)
    calls = [("echo", {"text": str(i)}) for i in range(3)]
    llm = scripted_llm(turns=[calls, "done"])
    agent = SuperAgent(_main_config(max_tool_calls_per_turn=1), llm, registry)
    try:
        await agent.invoke({"query": "many"})
    finally:
        await registry.close()

    tool_messages = [m for m in agent.context_manager.get_history() if m["role"] == "tool"]
    assert len(tool_messages) == 3
    assert tool_messages[0]["content"] == "0"
    assert tool_messages[1]["content"].startswith("Skipped")


@pytest.mark.asyncio
async def test_max_iterations_marks_task_failed(scripted_llm, echo_server):
    registry = ToolRegistry()
    registry.register_group("echo", echo_server)
    llm = scripted_llm(turns=[[("echo", {"text": "again"})]] * 3)
    agent = SuperAgent(_main_config(max_iteration=2), llm, registry)
    try:
        result = await agent.invoke({"query": "loop forever"})
    finally:
        await registry.close()

    assert result["result_type"] == "error"


@pytest.mark.asyncio
async def test_sub_agent_is_exposed_as_tool_and_starts_fresh(scripted_llm):
    sub_llm = scripted_llm(turns=["first", "second"], summary="sub summary")
    sub_agent = SuperAgent(_sub_config(), sub_llm)

    main_llm = scripted_llm(
        turns=[[("agent-helper", {"subtask": "task one"})], [("agent-helper", {"subtask": "task two"})], "done"],
        summary="main summary",
    )
    main_agent = SuperAgent(_main_config(tool_groups=[]), main_llm)
    main_agent.register_sub_agent("agent-helper", sub_agent)

    result = await main_agent.invoke({"query": "delegate"})

    assert result["output"] == "main summary"
    offered = {t["function"]["name"] for t in main_llm.stream_calls[0]["tools"]}
    assert offered == {"agent-helper"}

    # second subtask does not see the first one
    second_call_messages = sub_llm.stream_calls[1]["messages"]
    assert not any("task one" in str(m.get("content")) for m in second_call_messages)

    tool_messages = [m for m in main_agent.context_manager.get_history() if m["role"] == "tool"]
    assert tool_messages[0]["content"] == "sub summary"


@pytest.mark.asyncio
async def test_empty_query_is_rejected(scripted_llm):
    agent = SuperAgent(_main_config(tool_groups=[]), scripted_llm())
    assert await agent.invoke({"query": ""}) == {"output": "No query provided", "result_type": "error"}


@pytest.mark.asyncio
async def test_failed_tool_call_still_answers_every_call_id(scripted_llm, echo_server):
    registry = ToolRegistry()
    registry.register_group("echo", echo_server)
    llm = scripted_llm(turns=[[("no_such_tool", {}), ("echo", {"text": "hi"})]])
    agent = SuperAgent(_main_config(), llm, registry)
    try:
        result = await agent.invoke({"query": "use a missing tool"})
    finally:
        await registry.close()

    assert result["result_type"] == "error"
    history = agent.context_manager.get_history()
    call_ids = [c["id"] for m in history if m["role"] == "assistant" for c in m.get("tool_calls", [])]
    answered = [m["tool_call_id"] for m in history if m["role"] == "tool"]
    assert call_ids == ["call_0", "call_1"]
    assert answered == call_ids
    assert history[-1]["content"].startswith("Skipped")


@pytest.mark.asyncio
async def test_first_model_failure_propagates_and_leaves_context_untouched(scripted_llm):
    class UnavailableLLM(scripted_llm):
        def astream(self, messages, tools=None, **kwargs):
            raise RuntimeError("503 Service Unavailable")

    agent = SuperAgent(_main_config(tool_groups=[]), UnavailableLLM())
    with pytest.raises(RuntimeError, match="503"):
        await agent.invoke({"query": "hello"})

    assert agent.context_manager.get_history() == []
