"""
Research endpoints
Research plan generation (JSON-mode chat completion) and OpenAI deep research (Responses API)
"""

from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from open_superagent.agent.prompt_templates import (
    DEEP_RESEARCH_DEVELOPER_PROMPT,
    RESEARCH_PLAN_SYSTEM_PROMPT,
)
from open_superagent.llm.chat_llm import create_model
from open_superagent.tool.logger import bootstrap_logger

logger = bootstrap_logger()

RESEARCH_PLAN_MODEL = "gpt-4-turbo"
DEEP_RESEARCH_MODEL = "o4-mini-deep-research-2025-06-26"

PLAN_STEP_TYPES = ("search", "analyze", "report")


class ResearchHandler:
    """
    OpenAI-backed research helpers

    Features:
    - Research plan with a title and search / analyze / report steps
    - Deep research report with web search through the Responses API
    """

    def __init__(self, api_key: str, client: Optional[AsyncOpenAI] = None):
        self.api_key = api_key
        # deep research runs for minutes
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=3600)

    async def create_research_plan(self, query: str) -> Dict[str, Any]:
        """
        Ask the model for a research plan

        Returns:
            {"title": ..., "steps": [{"type": search|analyze|report, "description": ...}]}

        Raises:
            ValueError: If the model returns no usable plan
        """
        llm = create_model("openai", RESEARCH_PLAN_MODEL, api_key=self.api_key, client=self.client)
        plan = await llm.complete_json(RESEARCH_PLAN_SYSTEM_PROMPT, query)
        if not isinstance(plan, dict):
            raise ValueError("The API did not return a valid plan.")

        steps = plan.get("steps") or []
        unknown = [s.get("type") for s in steps if isinstance(s, dict) and s.get("type") not in PLAN_STEP_TYPES]
        if unknown:
            logger.warning(f"Research plan contains unknown step types: {unknown}")
        return plan

    async def run_deep_research(self, query: str) -> Dict[str, Any]:
        """Run a deep research request and return the raw Responses API payload as a dict."""
        logger.info(f"Starting deep research with {DEEP_RESEARCH_MODEL}")
        response = await self.client.responses.create(
            model=DEEP_RESEARCH_MODEL,
            input=[
                {
                    "role": "developer",
                    "content": [{"type": "input_text", "text": DEEP_RESEARCH_DEVELOPER_PROMPT}],
                },
                {
                    "role": "user",
                    "content": [{"type": "input_text", "text": query}],
                },
            ],
            reasoning={"summary": "auto"},
            tools=[{"type": "web_search_preview"}],
        )
        return response.model_dump(mode="json")
