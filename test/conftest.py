#!/usr/bin/env python
# coding: utf-8
"""
Shared fixtures: a scripted ChatLLM that never touches the network and a
small in-memory FastMCP server for registry / agent tests.
"""

import json
from typing import Dict, List, Optional

import pytest
from fastmcp import FastMCP

from open_superagent.llm.chat_llm import ChatLLM
from open_superagent.llm.messages import AIMessage, AIMessageChunk, ToolCall


class ScriptedLLM(ChatLLM):
    """
    ChatLLM whose streamed turns and summaries come from a script.

    Each entry of `turns` is either a string (plain answer) or a list of
    (tool_name, args) tuples (tool calls).
    """

    def __init__(self, turns: Optional[List] = None, summary: str = "Final summary", model_name: str = "gpt-4o"):
        super().__init__(api_key="test-key", model_name=model_name, provider="openai")
        self.turns = list(turns or [])
        self.summary = summary
        self.stream_calls: List[Dict] = []
        self.invoke_calls: List[Dict] = []

    async def astream(self, messages, tools=None, **kwargs):
        self.stream_calls.append({"messages": list(messages), "tools": tools or []})
        turn = self.turns.pop(0) if self.turns else "done"
        if isinstance(turn, str):
            for word in turn.split(" "):
                yield AIMessageChunk(content=word + " ")
            return
        tool_calls = [
            ToolCall(id=f"call_{i}", index=i, name=name, arguments=json.dumps(args))
            for i, (name, args) in enumerate(turn)
        ]
        yield AIMessageChunk(content="", tool_calls=tool_calls)

    async def ainvoke(self, messages, tools=None, **kwargs):
        self.invoke_calls.append({"messages": list(messages), **kwargs})
        return AIMessage(content=self.summary)

    def ensure_summary_context(self, message_history, summary_prompt):
        return True

    def _estimate_tokens(self, text: str) -> int:
        return len(text) // 4


@pytest.fixture
def scripted_llm():
    return ScriptedLLM


@pytest.fixture
def echo_server():
    server = FastMCP("echo-mcp-server")

    @server.tool()
    async def echo(text: str, times: int = 1) -> str:
        """Repeat text.

        Args:
            text: Text to repeat.
            times: How many times.
        """
        return " ".join([text] * times)

    @server.tool()
    async def fail_softly(reason: str) -> dict:
        """Report a failure in the result body.

        Args:
            reason: Why it failed.
        """
        return {"success": False, "error": reason}

    @server.tool()
    async def empty() -> str:
        """Return nothing."""
        return ""

    return server


@pytest.fixture
def public_dir(tmp_path):
    d = tmp_path / "public"
    d.mkdir()
    return d
