#!/usr/bin/env python
# coding: utf-8
"""
Tool Call Handler
Handles tool call execution, type conversion, and formatting
Also manages sub-agent tool creation and execution
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from open_superagent.agent.prompt_templates import get_sub_agent_task_prompt
from open_superagent.tool.logger import bootstrap_logger
from open_superagent.tool.tool_registry import RegisteredTool, ToolRegistry

logger = bootstrap_logger()

MAX_RESULT_CHARS = 100_000  # 100k chars = 25k tokens

# browser sessions and video jobs can legitimately run for many minutes
LONG_RUNNING_TIMEOUT = 30 * 60
LONG_RUNNING_PREFIXES = ("browser_", "veo2_")


class ToolCallHandler:
    """
    Handles all tool call related operations:
    - Sub-agent tool creation (function tool wrappers)
    - Type conversion for tool arguments
    - Tool execution (registry tools and sub-agents)
    - Tool call formatting for message history
    """

    def __init__(self, sub_agents: Dict[str, Any] = None, registry: Optional[ToolRegistry] = None):
        # 'is not None' keeps the caller's dict reference so later registrations are seen
        self._sub_agents = sub_agents if sub_agents is not None else {}
        self._registry = registry

    def create_sub_agent_tool(self, agent_name: str, sub_agent: Any) -> Dict[str, Any]:
        """
        Create an OpenAI function tool for a sub-agent

        Args:
            agent_name: Name of the sub-agent (should start with 'agent-')
            sub_agent: SuperAgent instance

        Returns:
            Function tool dict; execution is routed by execute_tool_call()
        """
        description = sub_agent.config.description or f"Sub-agent: {agent_name}"

        logger.info(f"Created tool wrapper for sub-agent '{agent_name}'")
        return {
            "type": "function",
            "function": {
                "name": agent_name,
                "description": f"{description}. Delegate a subtask to this specialized agent by providing a clear task description.",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "subtask": {
                            "type": "string",
                            "description": "The task or question to delegate to this sub-agent. Be specific and provide all necessary context.",
                        }
                    },
                    "required": ["subtask"],
                },
            },
        }

    def convert_tool_args(self, tool_args: dict, tool: Optional[RegisteredTool]) -> dict:
        """
        Convert tool arguments to correct types based on the tool's JSON schema

        Args:
            tool_args: Raw arguments from LLM (may be strings)
            tool: Registered tool with input schema

        Returns:
            Converted arguments with correct types
        """
        if tool is None or not tool.properties:
            return tool_args

        converted = dict(tool_args)
        for param_name, schema in tool.properties.items():
            if param_name not in tool_args:
                continue

            value = tool_args[param_name]
            param_type = schema.get("type") if isinstance(schema, dict) else None
            if value is None or not isinstance(param_type, str):
                continue

            try:
                if param_type == "integer":
                    converted[param_name] = int(value)
                elif param_type == "number":
                    converted[param_name] = float(value)
                elif param_type == "boolean":
                    if isinstance(value, str):
                        converted[param_name] = value.lower() in ("true", "1", "yes")
                    else:
                        converted[param_name] = bool(value)
                elif param_type == "string":
                    converted[param_name] = value if isinstance(value, str) else str(value)
                elif param_type in ("array", "object") and isinstance(value, str):
                    converted[param_name] = json.loads(value)
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to convert {param_name} to {param_type}: {e}, using raw value")
                converted[param_name] = value

        return converted

    @staticmethod
    def parse_tool_call(tool_call) -> tuple[str, dict]:
        """Return (name, args) for flat ToolCall objects, OpenAI-style objects or dicts."""
        if isinstance(tool_call, dict):
            fn = tool_call.get("function") or {}
            tool_name = tool_call.get("name") or fn.get("name")
            tool_args_raw = tool_call.get("arguments", fn.get("arguments"))
        else:
            tool_name = getattr(tool_call, "name", None)
            tool_args_raw = getattr(tool_call, "arguments", None)
            if not tool_name or tool_args_raw is None:
                fn = getattr(tool_call, "function", None)
                if fn is not None:
                    tool_name = tool_name or getattr(fn, "name", None)
                    if tool_args_raw is None:
                        tool_args_raw = getattr(fn, "arguments", None)

        if not tool_name:
            raise RuntimeError(f"ToolCall missing tool name: {tool_call}")

        tool_args = {}
        if isinstance(tool_args_raw, dict):
            tool_args = tool_args_raw
        elif isinstance(tool_args_raw, str):
            s = tool_args_raw.strip()
            if s:
                try:
                    parsed = json.loads(s)
                    tool_args = parsed if isinstance(parsed, dict) else {}
                except json.JSONDecodeError:
                    # invalid JSON from the model, treated as no arguments
                    tool_args = {}

        return tool_name, tool_args

    async def execute_tool_call(self, tool_call) -> Any:
        """
        Execute a single tool call

        Args:
            tool_call: Tool call object from LLM

        Returns:
            Tool execution result
        """
        tool_name, tool_args = self.parse_tool_call(tool_call)

        logger.debug(
            f"Tool {tool_name} raw args: {tool_args}, "
            f"types: {[(k, type(v).__name__) for k, v in tool_args.items()]}"
        )

        if tool_name.startswith("agent-"):
            return await self._execute_sub_agent(tool_name, tool_args)
        return await self._execute_regular_tool(tool_name, tool_args)

    async def _execute_sub_agent(self, tool_name: str, tool_args: dict) -> Any:
        if tool_name not in self._sub_agents:
            raise ValueError(f"Sub-agent not found: {tool_name}")

        sub_agent = self._sub_agents[tool_name]
        subtask = get_sub_agent_task_prompt(tool_args.get("subtask", ""))

        result = await sub_agent.invoke({"query": subtask})

        return result.get("output", "No result from sub-agent")

    @staticmethod
    def timeout_for(tool_name: str) -> Optional[float]:
        if tool_name.startswith(LONG_RUNNING_PREFIXES):
            return LONG_RUNNING_TIMEOUT
        return None

    async def _execute_regular_tool(self, tool_name: str, tool_args: dict) -> Any:
        tool = self._registry.get_tool(tool_name) if self._registry else None
        if not tool:
            raise ValueError(f"Tool not found: {tool_name}")

        missing_params = [p for p in tool.required if p not in tool_args]
        if missing_params:
            error_msg = (
                f"Error calling tool '{tool_name}': Missing required parameters: {missing_params}. "
                f"Please provide these parameters and retry the tool call."
            )
            logger.warning(error_msg)
            return error_msg

        tool_args = self.convert_tool_args(tool_args, tool)
        logger.debug(f"Tool {tool_name} converted args: {tool_args}")

        timeout_seconds = self.timeout_for(tool_name)
        if timeout_seconds:
            try:
                result = await asyncio.wait_for(
                    self._registry.call_tool(tool_name, tool_args), timeout=timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning(f"Tool {tool_name} timed out after {timeout_seconds} seconds")
                return f"No results obtained due to timeout from {tool_name} for taking too long"
        else:
            result = await self._registry.call_tool(tool_name, tool_args)

        result_str = result if isinstance(result, str) else str(result)

        if len(result_str) > MAX_RESULT_CHARS:
            result_str = result_str[:MAX_RESULT_CHARS] + "\n... [Result truncated]"
        elif len(result_str) == 0:
            result_str = f"Tool call to {tool_name} completed, but produced no specific output or result."
        return result_str

    @staticmethod
    def format_tool_calls_for_message(tool_calls) -> Optional[List[Dict]]:
        """Format tool calls for message history (OpenAI layout, arguments as JSON string)."""
        if not tool_calls:
            return None

        formatted: List[Dict] = []
        for tc in tool_calls:
            tc_id = getattr(tc, "id", None) or getattr(tc, "tool_call_id", None)
            tc_type = getattr(tc, "type", None) or "function"

            name = getattr(tc, "name", None)
            arguments = getattr(tc, "arguments", None)

            if not name or arguments is None:
                fn = getattr(tc, "function", None)
                if fn is not None:
                    name = name or getattr(fn, "name", None)
                    if arguments is None:
                        arguments = getattr(fn, "arguments", None)

            if isinstance(arguments, dict):
                arguments = json.dumps(arguments, ensure_ascii=False)
            elif arguments is None:
                arguments = "{}"
            else:
                arguments = str(arguments)

            formatted.append({
                "id": tc_id,
                "type": tc_type,
                "function": {
                    "name": name or "",
                    "arguments": arguments
                }
            })

        return formatted
