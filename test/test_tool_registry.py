import pytest

from open_superagent.tool.tool_registry import MCPToolSession, ToolRegistry


@pytest.mark.asyncio
async def test_registry_loads_groups_and_converts_schemas(echo_server):
    registry = ToolRegistry()
    registry.register_group("echo", echo_server)
    try:
        tools = await registry.openai_tools(["echo"])
        names = {t["function"]["name"] for t in tools}
        assert names == {"echo", "fail_softly", "empty"}

        echo = next(t for t in tools if t["function"]["name"] == "echo")
        params = echo["function"]["parameters"]
        assert params["type"] == "object"
        assert "text" in params["properties"]
        assert registry.get_tool("echo").required == ["text"]
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_registry_dispatches_calls(echo_server):
    registry = ToolRegistry()
    registry.register_group("echo", echo_server)
    try:
        await registry.load_group("echo")
        assert await registry.call_tool("echo", {"text": "hi", "times": 2}) == "hi hi"
        with pytest.raises(ValueError):
            await registry.call_tool("nope", {})
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_unknown_group_is_rejected():
    with pytest.raises(ValueError):
        await ToolRegistry().load_group("missing")


@pytest.mark.asyncio
async def test_session_reports_tool_errors_as_text(echo_server):
    session = MCPToolSession(echo_server, name="echo")
    try:
        result = await session.call_tool("echo", {})
        assert result.startswith("[ERROR]:")
        assert session.connected
    finally:
        await session.close()
    assert not session.connected
