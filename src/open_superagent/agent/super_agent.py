#!/usr/bin/env python
# coding: utf-8
"""
Super Agent
ReAct loop over ChatLLM streaming with MCP tool groups and sub-agents.
Main agent and sub-agents use the same class with different configs.
"""

import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

from open_superagent.agent.context_manager import ContextManager
from open_superagent.agent.prompt_templates import get_task_instruction_prompt
from open_superagent.agent.super_config import AgentConfig
from open_superagent.agent.tool_call_handler import ToolCallHandler
from open_superagent.llm.chat_llm import ChatLLM, ContextLimitError
from open_superagent.llm.messages import AIMessage
from open_superagent.tool.logger import bootstrap_logger
from open_superagent.tool.tool_registry import ToolRegistry

logger = bootstrap_logger()

EventCallback = Callable[[Dict[str, Any]], Awaitable[None]]


def detect_tool_error(result: Any) -> Optional[str]:
    """Return the error message if a tool result reports a failure, else None."""
    if isinstance(result, str):
        stripped = result.strip()
        if stripped.startswith("[ERROR]"):
            return stripped.split(":", 1)[1].strip() if ":" in stripped else stripped
        try:
            result = json.loads(stripped)
        except (json.JSONDecodeError, ValueError):
            return None

    if isinstance(result, dict):
        if result.get("error"):
            return str(result["error"])
        if result.get("success") is False:
            return str(result.get("message") or "Tool reported failure")
    return None


class SuperAgent:
    """
    ReAct agent with custom context management:
    - streaming model calls with token / final_answer events
    - tool execution through the ToolRegistry and sub-agents
    - context limit handling and history compression
    - summary generation at the end of every task
    """

    def __init__(self, config: AgentConfig, llm: ChatLLM, registry: Optional[ToolRegistry] = None):
        self.config = config
        self._llm = llm
        self._registry = registry

        self._context_manager = ContextManager(
            llm=self._llm,
            max_history_length=config.constrain.reserved_max_chat_rounds * 2
        )

        self._sub_agents: Dict[str, "SuperAgent"] = {}
        self._sub_agent_tools: List[Dict] = []

        self._tool_call_handler = ToolCallHandler(
            sub_agents=self._sub_agents,
            registry=self._registry
        )

        # Event callback for streaming status updates (iteration, tool execution, etc.)
        self._event_callback: Optional[EventCallback] = None

    @property
    def llm(self) -> ChatLLM:
        return self._llm

    @property
    def context_manager(self) -> ContextManager:
        return self._context_manager

    @context_manager.setter
    def context_manager(self, cm: ContextManager):
        cm.bind_llm(self._llm)
        self._context_manager = cm

    @property
    def sub_agents(self) -> Dict[str, "SuperAgent"]:
        return dict(self._sub_agents)

    def register_sub_agent(self, agent_name: str, sub_agent: "SuperAgent"):
        """
        Register a sub-agent instance and expose it as a tool

        Args:
            agent_name: Name of the sub-agent (should start with 'agent-' for automatic routing)
            sub_agent: SuperAgent instance to register
        """
        self._sub_agents[agent_name] = sub_agent
        self._sub_agent_tools.append(self._tool_call_handler.create_sub_agent_tool(agent_name, sub_agent))
        if self._event_callback is not None:
            sub_agent.set_event_callback(self._event_callback)
        logger.info(f"Registered sub-agent '{agent_name}' as tool")

    def set_event_callback(self, callback: Optional[EventCallback]):
        """
        Set event callback for streaming status updates.
        The callback receives dicts with keys type, agent_id, agent_type, data.
        """
        self._event_callback = callback
        for sub_agent in self._sub_agents.values():
            sub_agent.set_event_callback(callback)

    async def _emit_event(self, event_type: str, data: dict):
        if self._event_callback:
            event = {
                "type": event_type,
                "agent_id": self.config.id,
                "agent_type": self.config.agent_type,
                "data": data
            }
            try:
                await self._event_callback(event)
            except Exception as e:
                logger.warning(f"Event callback failed: {e}")

    async def get_tools(self) -> List[Dict]:
        tools: List[Dict] = []
        if self._registry is not None and self.config.tool_groups:
            tools.extend(await self._registry.openai_tools(self.config.tool_groups))
        tools.extend(self._sub_agent_tools)
        return tools

    def _reset_context(self):
        """Fresh history for a new task, keeping injected system messages."""
        system_messages = [m for m in self._context_manager.get_history() if m.get("role") == "system"]
        self._context_manager = ContextManager(
            llm=self._llm,
            max_history_length=self._context_manager.max_history_length
        )
        for msg in system_messages:
            self._context_manager.add_message("system", msg["content"])

    async def call_model(self, user_input: str, is_first_call: bool = False) -> AIMessage:
        """
        Call LLM for reasoning

        Args:
            user_input: User input
            is_first_call: Whether this is the first call (adds user message)

        Returns:
            AIMessage: LLM output
        """
        if is_first_call:
            self._context_manager.add_user_message(user_input)

        messages = list(self.config.prompt_template)
        messages.extend(self._context_manager.get_history())

        tools = await self.get_tools()

        full_content = ""
        final_tool_calls = None

        async for chunk in self._llm.astream(messages=messages, tools=tools):
            if chunk.content:
                full_content += chunk.content
                await self._emit_event("token", {"content": chunk.content})

            if chunk.tool_calls:
                final_tool_calls = chunk.tool_calls

        # no tool calls means this text is the answer; clients replace the streamed reasoning with it
        if not final_tool_calls and full_content:
            await self._emit_event("final_answer", {"content": full_content})

        llm_output = AIMessage(role="assistant", content=full_content, tool_calls=final_tool_calls)

        self._context_manager.add_assistant_message(
            llm_output.content or "",
            tool_calls=ToolCallHandler.format_tool_calls_for_message(llm_output.tool_calls)
        )

        return llm_output

    async def _maybe_compress(self):
        if not self.config.enable_compression:
            return
        if not self._context_manager.should_compress(self.config.model_name):
            return
        info = await self._context_manager.compress()
        await self._emit_event("context_compressed", {
            "original_tokens": info.original_tokens,
            "new_tokens": info.new_tokens,
            "ratio": info.ratio,
        })

    async def _run_tool_calls(self, llm_output: AIMessage, iteration: int):
        max_tool_calls_per_turn = self.config.max_tool_calls_per_turn
        num_calls = len(llm_output.tool_calls)
        if num_calls > max_tool_calls_per_turn:
            logger.warning(
                f"Too many tool calls ({num_calls}), processing only first {max_tool_calls_per_turn}"
            )

        for position, tool_call in enumerate(llm_output.tool_calls[:max_tool_calls_per_turn]):
            tool_name = tool_call.name
            logger.info(f"Executing tool: {tool_name}")

            await self._emit_event("tool_executing", {
                "tool_name": tool_name,
                "iteration": iteration
            })

            try:
                result = await self._tool_call_handler.execute_tool_call(tool_call)
            except Exception as tool_error:
                logger.error(f"Tool {tool_name} failed: {tool_error}")
                await self._emit_event("tool_error", {
                    "tool_name": tool_name,
                    "iteration": iteration,
                    "error": str(tool_error)
                })
                self._context_manager.add_tool_message(
                    tool_call.id,
                    f"Error executing tool: {str(tool_error)}"
                )
                # every tool_call id of the assistant message needs an answer before the history is reused
                for pending in llm_output.tool_calls[position + 1:]:
                    self._context_manager.add_tool_message(
                        pending.id,
                        f"Skipped: an earlier tool call ({tool_name}) failed."
                    )
                raise

            logger.debug(f"Tool {tool_name}'s results: {result}")

            error_msg = detect_tool_error(result)
            if error_msg is not None:
                logger.error(f"Tool {tool_name} returned error: {error_msg}")
                await self._emit_event("tool_error", {
                    "tool_name": tool_name,
                    "iteration": iteration,
                    "error": error_msg
                })
                self._context_manager.add_tool_message(tool_call.id, f"Error: {error_msg}")
            else:
                result_preview = str(result)[:500] if result else ""
                await self._emit_event("tool_completed", {
                    "tool_name": tool_name,
                    "iteration": iteration,
                    "result_preview": result_preview
                })
                self._context_manager.add_tool_message(tool_call.id, str(result))

        # calls beyond the per-turn limit still need a tool message for every tool_call id
        for tool_call in llm_output.tool_calls[max_tool_calls_per_turn:]:
            self._context_manager.add_tool_message(
                tool_call.id,
                f"Skipped: at most {max_tool_calls_per_turn} tool calls are executed per turn."
            )

    async def invoke(self, inputs: Dict) -> Dict:
        """
        Complete ReAct loop for one task

        Args:
            inputs: {"query": user question}

        Returns:
            Result dict with 'output' and 'result_type'
        """
        query = inputs.get("query", "")
        if not query:
            return {"output": "No query provided", "result_type": "error"}

        if self.config.reset_context_per_task:
            self._reset_context()

        is_main_agent = self.config.agent_type == "main"
        user_input = get_task_instruction_prompt(query) if is_main_agent else query

        iteration = 0
        max_iteration = self.config.constrain.max_iteration
        is_first_call = True
        task_failed = False

        while iteration < max_iteration:
            iteration += 1
            logger.info(
                f"===={'Main' if is_main_agent else 'Sub-agent'} iteration {iteration}==== ({self.config.id})"
            )

            await self._emit_event("iteration_start", {
                "iteration": iteration,
                "max_iteration": max_iteration
            })

            try:
                llm_output = await self.call_model(user_input, is_first_call=is_first_call)
                is_first_call = False

                if not llm_output.tool_calls:
                    logger.info("No tool calls, task completed")
                    break

                await self._run_tool_calls(llm_output, iteration)

                await self._maybe_compress()

                if self.config.enable_context_limit_retry:
                    temp_summary = f"Summarize the task: {query}"
                    if not self._context_manager.fits_summary(temp_summary):
                        logger.warning("Context limit reached, triggering summary")
                        task_failed = True
                        break

            except ContextLimitError:
                logger.warning("Context limit exceeded during execution")
                task_failed = True
                break

            except Exception as e:
                if is_first_call:
                    # the model never answered; leave the context as it was and let the caller retry
                    logger.error(f"First model call failed for {self.config.id}: {e}")
                    self._context_manager.discard_last_user_message()
                    raise
                logger.error(f"Error during iteration {iteration}: {e}")
                task_failed = True
                break
        else:
            logger.warning(f"Max iterations ({max_iteration}) reached")
            task_failed = True

        summary = await self._context_manager.generate_summary(
            task_description=query,
            task_failed=task_failed,
            system_prompts=self.config.prompt_template,
            agent_type=self.config.agent_type,
            task_guidance=self.config.task_guidance,
        )

        _, usage_log = self._llm.format_token_usage_summary()
        logger.info(usage_log)

        return {
            "output": summary,
            "result_type": "error" if task_failed else "answer"
        }
