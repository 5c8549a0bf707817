#!/usr/bin/env python
# coding: utf-8
"""
Super Agent Configuration
ReAct agent config with tool groups, sub-agents and execution constraints
"""

from typing import Dict, List

from pydantic import BaseModel, Field


class AgentConstraints(BaseModel):
    """Agent execution constraints"""
    max_iteration: int = Field(default=10, description="Maximum iterations for ReAct loop")
    max_tool_calls_per_turn: int = Field(default=5, description="Maximum tool calls per turn")
    reserved_max_chat_rounds: int = Field(default=40, description="Reserved max chat rounds for context")


class AgentConfig(BaseModel):
    """
    ReAct agent config:
    - model provider / name
    - system prompt template
    - tool groups served by the ToolRegistry
    - context limit handling and compression
    """

    id: str
    version: str = "1.0"
    description: str = ""

    # Agent type (main or sub-agent name)
    agent_type: str = Field(default="main", description="Agent type: main or sub")

    provider: str = Field(default="gemini", description="Model provider: openai, claude, gemini or grok")
    model_name: str = Field(default="gemini-2.5-flash")

    prompt_template: List[Dict] = Field(default_factory=list, description="System messages prepended to every call")
    tool_groups: List[str] = Field(default_factory=list, description="ToolRegistry groups exposed to this agent")

    constrain: AgentConstraints = Field(default_factory=AgentConstraints)

    # Context management
    enable_context_limit_retry: bool = Field(default=True, description="Enable context limit retry with message removal")
    enable_compression: bool = Field(default=True, description="Compress history once the model threshold is crossed")

    # Sub-agents answer each subtask from a clean history
    reset_context_per_task: bool = Field(default=False)

    # Guidance text for summary generation
    task_guidance: str = Field(
        default="",
        description="Additional guidance for task execution and summary generation"
    )

    @property
    def max_tool_calls_per_turn(self) -> int:
        return self.constrain.max_tool_calls_per_turn


class AgentFactory:
    """Factory for creating agent configs"""

    @staticmethod
    def create_main_agent_config(
        agent_id: str,
        description: str,
        provider: str,
        model_name: str,
        prompt_template: List[Dict],
        tool_groups: List[str] = None,
        max_iteration: int = 20,
        max_tool_calls_per_turn: int = 5,
        task_guidance: str = "",
        agent_version: str = "1.0",
    ) -> AgentConfig:
        """Create main agent configuration"""

        constraints = AgentConstraints(
            max_iteration=max_iteration,
            max_tool_calls_per_turn=max_tool_calls_per_turn
        )

        return AgentConfig(
            id=agent_id,
            version=agent_version,
            description=description,
            agent_type="main",
            provider=provider,
            model_name=model_name,
            prompt_template=prompt_template,
            tool_groups=tool_groups or [],
            constrain=constraints,
            task_guidance=task_guidance,
        )

    @staticmethod
    def create_sub_agent_config(
        agent_id: str,
        description: str,
        provider: str,
        model_name: str,
        prompt_template: List[Dict],
        tool_groups: List[str] = None,
        max_iteration: int = 10,
        max_tool_calls_per_turn: int = 3,
        agent_version: str = "1.0",
    ) -> AgentConfig:
        """Create sub-agent configuration"""

        constraints = AgentConstraints(
            max_iteration=max_iteration,
            max_tool_calls_per_turn=max_tool_calls_per_turn
        )

        return AgentConfig(
            id=agent_id,
            version=agent_version,
            description=description,
            agent_type="sub",
            provider=provider,
            model_name=model_name,
            prompt_template=prompt_template,
            tool_groups=tool_groups or [],
            constrain=constraints,
            reset_context_per_task=True,
        )
