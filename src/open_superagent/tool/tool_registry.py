# SPDX-FileCopyrightText: 2025 MiromindAI
#
# SPDX-License-Identifier: Apache-2.0

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from fastmcp import Client

from open_superagent.tool.logger import bootstrap_logger

logger = bootstrap_logger()


@dataclass
class RegisteredTool:
    name: str
    description: str
    input_schema: Dict[str, Any]
    group: str

    @property
    def required(self) -> List[str]:
        return list(self.input_schema.get("required", []) or [])

    @property
    def properties(self) -> Dict[str, Any]:
        return dict(self.input_schema.get("properties", {}) or {})

    def to_openai_tool(self) -> Dict[str, Any]:
        parameters = dict(self.input_schema) if self.input_schema else {"type": "object", "properties": {}}
        parameters.setdefault("type", "object")
        parameters.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or self.name,
                "parameters": parameters,
            },
        }


class MCPToolSession:
    """Class to maintain a persistent MCP client session.

    `server` is anything fastmcp.Client accepts: an in-process FastMCP
    instance, an http(s)/sse URL or a path to a server script.
    """

    def __init__(self, server, name: Optional[str] = None):
        self.server = server
        self.name = name or getattr(server, "name", None) or str(server)
        self._client: Optional[Client] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self):
        """Connect to the MCP server and initialize the session."""
        async with self._lock:
            if self._client is None:
                client = Client(self.server)
                await client.__aenter__()
                self._client = client
                logger.info(f"Connected to MCP server '{self.name}'")

    async def list_tools(self):
        if self._client is None:
            await self.connect()
        return await self._client.list_tools()

    async def call_tool(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """Call a tool while maintaining the session. Tool errors come back as '[ERROR]: ...' text."""
        if self._client is None:
            await self.connect()

        logger.info(f"Calling tool '{tool_name}' with arguments: {arguments}")
        tool_result = await self._client.call_tool(tool_name, arguments or {}, raise_on_error=False)
        texts = [getattr(c, "text", "") for c in (tool_result.content or []) if getattr(c, "text", None)]
        result_content = "\n".join(texts)
        if tool_result.is_error:
            return f"[ERROR]: {result_content or 'tool failed without a message'}"
        return result_content

    async def close(self):
        """Close the session and connection."""
        if self._client is not None:
            client, self._client = self._client, None
            await client.__aexit__(None, None, None)
            logger.info(f"Closed MCP session '{self.name}'")


@dataclass
class ToolRegistry:
    """Named tool groups backed by MCP sessions."""

    sessions: Dict[str, MCPToolSession] = field(default_factory=dict)
    _tools: Dict[str, RegisteredTool] = field(default_factory=dict)
    _groups: Dict[str, List[str]] = field(default_factory=dict)
    _loaded: set = field(default_factory=set)

    def register_group(self, group: str, server) -> MCPToolSession:
        session = server if isinstance(server, MCPToolSession) else MCPToolSession(server, name=group)
        self.sessions[group] = session
        return session

    @property
    def groups(self) -> List[str]:
        return list(self.sessions)

    async def load_group(self, group: str) -> List[RegisteredTool]:
        if group not in self.sessions:
            raise ValueError(f"Unknown tool group: {group}")
        if group not in self._loaded:
            tools = await self.sessions[group].list_tools()
            names = []
            for tool in tools:
                registered = RegisteredTool(
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=tool.inputSchema or {},
                    group=group,
                )
                if tool.name in self._tools and self._tools[tool.name].group != group:
                    logger.warning(f"Tool '{tool.name}' from group '{group}' shadows group '{self._tools[tool.name].group}'")
                self._tools[tool.name] = registered
                names.append(tool.name)
            self._groups[group] = names
            self._loaded.add(group)
            logger.info(f"Loaded {len(names)} tools from group '{group}'")
        return [self._tools[n] for n in self._groups[group]]

    async def tools_for(self, groups: Iterable[str]) -> List[RegisteredTool]:
        result: List[RegisteredTool] = []
        for group in groups:
            result.extend(await self.load_group(group))
        return result

    async def openai_tools(self, groups: Iterable[str]) -> List[Dict[str, Any]]:
        return [t.to_openai_tool() for t in await self.tools_for(groups)]

    def get_tool(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> str:
        tool = self.get_tool(name)
        if tool is None:
            raise ValueError(f"Tool not found: {name}")
        return await self.sessions[tool.group].call_tool(name, arguments)

    async def close(self):
        for group, session in list(self.sessions.items()):
            try:
                await session.close()
            except Exception as e:
                logger.warning(f"Failed to close tool group '{group}': {e}")
