#!/usr/bin/env python
# coding: utf-8
"""
ToolCallHandler tests: argument parsing / conversion and dispatch
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from open_superagent.agent.tool_call_handler import MAX_RESULT_CHARS, ToolCallHandler
from open_superagent.llm.messages import ToolCall
from open_superagent.tool.tool_registry import RegisteredTool


def _registry_with(tool: RegisteredTool, result):
    registry = MagicMock()
    registry.get_tool.side_effect = lambda name: tool if name == tool.name else None
    registry.call_tool = AsyncMock(return_value=result)
    return registry


ECHO = RegisteredTool(
    name="echo",
    description="Repeat text",
    input_schema={
        "type": "object",
        "properties": {
            "text": {"type": "string"},
            "times": {"type": "integer"},
            "loud": {"type": "boolean"},
            "tags": {"type": "array"},
        },
        "required": ["text"],
    },
    group="echo",
)


def test_parse_tool_call_accepts_flat_and_openai_layouts():
    flat = ToolCall(id="1", name="echo", arguments='{"text": "a"}')
    assert ToolCallHandler.parse_tool_call(flat) == ("echo", {"text": "a"})

    nested = {"id": "2", "function": {"name": "echo", "arguments": '{"text": "b"}'}}
    assert ToolCallHandler.parse_tool_call(nested) == ("echo", {"text": "b"})

    broken = ToolCall(id="3", name="echo", arguments="{not json")
    assert ToolCallHandler.parse_tool_call(broken) == ("echo", {})

    with pytest.raises(RuntimeError):
        ToolCallHandler.parse_tool_call({"arguments": "{}"})


def test_convert_tool_args_follows_schema_types():
    handler = ToolCallHandler()
    converted = handler.convert_tool_args(
        {"text": 5, "times": "3", "loud": "yes", "tags": '["a", "b"]', "extra": "kept"}, ECHO
    )
    assert converted == {"text": "5", "times": 3, "loud": True, "tags": ["a", "b"], "extra": "kept"}


def test_convert_keeps_raw_value_when_conversion_fails():
    handler = ToolCallHandler()
    assert handler.convert_tool_args({"times": "many"}, ECHO)["times"] == "many"


@pytest.mark.asyncio
async def test_missing_required_parameters_are_reported_to_the_model():
    registry = _registry_with(ECHO, "unused")
    handler = ToolCallHandler(registry=registry)

    result = await handler.execute_tool_call(ToolCall(id="1", name="echo", arguments='{"times": 2}'))

    assert "Missing required parameters: ['text']" in result
    registry.call_tool.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_tool_raises():
    handler = ToolCallHandler(registry=_registry_with(ECHO, ""))
    with pytest.raises(ValueError, match="Tool not found"):
        await handler.execute_tool_call(ToolCall(id="1", name="other", arguments="{}"))


@pytest.mark.asyncio
async def test_results_are_truncated_or_replaced_when_empty():
    handler = ToolCallHandler(registry=_registry_with(ECHO, "x" * (MAX_RESULT_CHARS + 10)))
    long_result = await handler.execute_tool_call(ToolCall(id="1", name="echo", arguments='{"text": "a"}'))
    assert long_result.endswith("... [Result truncated]")
    assert len(long_result) < MAX_RESULT_CHARS + 50

    handler = ToolCallHandler(registry=_registry_with(ECHO, ""))
    empty_result = await handler.execute_tool_call(ToolCall(id="1", name="echo", arguments='{"text": "a"}'))
    assert "produced no specific output" in empty_result


@pytest.mark.asyncio
async def test_sub_agent_calls_are_routed_to_the_agent():
    sub_agent = MagicMock()
    sub_agent.config.description = "Browsing specialist"
    sub_agent.invoke = AsyncMock(return_value={"output": "found it"})
    handler = ToolCallHandler(sub_agents={"agent-browsing": sub_agent})

    tool = handler.create_sub_agent_tool("agent-browsing", sub_agent)
    assert tool["function"]["parameters"]["required"] == ["subtask"]

    result = await handler.execute_tool_call(
        ToolCall(id="1", name="agent-browsing", arguments='{"subtask": "find the weather"}')
    )
    assert result == "found it"
    query = sub_agent.invoke.call_args.args[0]["query"]
    assert query.startswith("find the weather")


def test_long_running_tools_get_a_timeout():
    assert ToolCallHandler.timeout_for("browser_goto")
    assert ToolCallHandler.timeout_for("veo2_video_generation")
    assert ToolCallHandler.timeout_for("web_search") is None


def test_format_tool_calls_for_message():
    formatted = ToolCallHandler.format_tool_calls_for_message(
        [ToolCall(id="c1", name="echo", arguments='{"text": "a"}')]
    )
    assert formatted == [
        {"id": "c1", "type": "function", "function": {"name": "echo", "arguments": '{"text": "a"}'}}
    ]
    assert ToolCallHandler.format_tool_calls_for_message(None) is None
