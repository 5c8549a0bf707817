#!/usr/bin/env python
# coding: utf-8
"""
Context Manager
Manages conversation history, summary generation with context overflow handling,
and compression of long histories.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from open_superagent.agent.prompt_templates import get_compression_summary_prompt, get_summary_prompt
from open_superagent.llm.chat_llm import ChatLLM, ContextLimitError
from open_superagent.llm.token_limits import (
    DEFAULT_COMPRESSION_THRESHOLD,
    DEFAULT_CONTEXT_WINDOW,
    get_compression_threshold,
)
from open_superagent.tool.logger import bootstrap_logger

logger = bootstrap_logger()

# tool calls to these survive compression untouched
IMPORTANT_TOOLS = (
    "html_slide",
    "web_search",
    "gemini_image_generation",
    "imagen4_generation",
    "veo2_video_generation",
    "minimax_tts",
)

_IMPORTANT_KEYWORDS = ("error", "failed", "generated", "created")

_TOPIC_KEYWORDS = (
    (("slide", "presentation"), "presentations"),
    (("search",), "web search"),
    (("image",), "image generation"),
    (("video",), "video generation"),
    (("browser",), "browser automation"),
)

Summarizer = Callable[[List[Dict]], Awaitable[str]]


@dataclass
class CompressionInfo:
    original_tokens: int
    new_tokens: int
    ratio: float
    timestamp: datetime = field(default_factory=datetime.now)


def estimate_message_tokens(messages: List[Dict]) -> int:
    """Rough token estimate: ~4 chars per token for text, ~3 for tool call JSON."""
    total = 0
    for msg in messages:
        content = msg.get("content")
        if isinstance(content, str):
            total += -(-len(content) // 4)
        elif isinstance(content, list):
            for part in content:
                if isinstance(part, dict) and part.get("type") == "text":
                    total += -(-len(part.get("text", "")) // 4)
                else:
                    total += -(-len(json.dumps(part, ensure_ascii=False)) // 3)
        if msg.get("tool_calls"):
            total += -(-len(json.dumps(msg["tool_calls"], ensure_ascii=False)) // 3)
        # role and metadata
        total += 10
    return total


def _tool_call_names(message: Dict) -> List[str]:
    names = []
    for tc in message.get("tool_calls") or []:
        fn = tc.get("function") if isinstance(tc, dict) else None
        if fn and fn.get("name"):
            names.append(fn["name"])
    return names


class ContextManager:
    """
    Manages conversation context throughout agent lifecycle:
    - Message history management (add, retrieve, trim)
    - Summary generation with automatic context overflow handling
    - Compression of old messages once the model's threshold is crossed
    """

    def __init__(
        self,
        llm: Optional[ChatLLM] = None,
        max_history_length: int = 100
    ):
        """
        Initialize context manager

        Args:
            llm: ChatLLM instance (required for summary generation)
            max_history_length: Maximum number of messages to keep in history
        """
        self._llm = llm
        self.max_history_length = max_history_length
        self._history: List[Dict] = []
        self.last_compression: Optional[CompressionInfo] = None

    @classmethod
    def from_history(
        cls,
        history: List[Dict],
        llm: Optional[ChatLLM] = None,
        max_history_length: int = 100
    ) -> "ContextManager":
        """
        Create a ContextManager instance from frontend-provided history.

        This enables stateless mode where the frontend manages conversation history
        and passes it with each request.
        """
        cm = cls(llm=llm, max_history_length=max_history_length)
        for msg in history:
            role = msg.get("role", "user")
            content = msg.get("content", "")
            extra = {k: v for k, v in msg.items() if k not in ("role", "content")}
            cm.add_message(role, content, **extra)
        return cm

    def bind_llm(self, llm: ChatLLM):
        """Stored contexts outlive a single request; each turn brings its own model."""
        self._llm = llm

    # ========== Basic History Management ==========

    def add_message(self, role: str, content: Any, **kwargs):
        message = {"role": role, "content": content}
        message.update(kwargs)
        self._history.append(message)
        self._trim_if_needed()

    def upsert_system_message(self, content: str, startswith: str):
        """
        Replace the most recent system message whose content startswith a marker;
        otherwise append a new system message.
        """
        for i in range(len(self._history) - 1, -1, -1):
            msg = self._history[i]
            if msg.get("role") == "system":
                msg_content = msg.get("content")
                if isinstance(msg_content, str) and msg_content.startswith(startswith):
                    self._history[i]["content"] = content
                    self._trim_if_needed()
                    return
        self.add_message("system", content)

    def add_user_message(self, content: Any):
        self.add_message("user", content)

    def add_assistant_message(self, content: str, tool_calls: List = None):
        """Add assistant message with optional tool calls"""
        message_data = {"role": "assistant", "content": content}
        if tool_calls:
            message_data["tool_calls"] = tool_calls
        self._history.append(message_data)
        self._trim_if_needed()

    def add_tool_message(self, tool_call_id: str, content: str):
        self.add_message("tool", content, tool_call_id=tool_call_id)

    def get_history(self) -> List[Dict]:
        """Get message history (returns copy)"""
        return self._history.copy()

    def clear(self):
        self._history = []
        logger.debug("Cleared message history")

    def remove_last_messages(self, count: int = 2):
        self._remove_last_messages(count)

    def discard_last_user_message(self) -> bool:
        """Drop the newest message if it is a user message (a turn that never reached the model)."""
        if self._history and self._history[-1].get("role") == "user":
            self._history.pop()
            return True
        return False

    def _trim_if_needed(self):
        """Trim history if exceeds max length (keep system messages)"""
        if len(self._history) <= self.max_history_length:
            return

        system_messages = [msg for msg in self._history if msg.get("role") == "system"]
        other_messages = [msg for msg in self._history if msg.get("role") != "system"]

        max_other = self.max_history_length - len(system_messages)
        if max_other <= 0:
            self._history = system_messages
            return

        trimmed = other_messages[-max_other:]

        # a leading tool result without its assistant tool call is rejected by providers
        while trimmed and trimmed[0].get("role") == "tool":
            trimmed.pop(0)

        self._history = system_messages + trimmed
        logger.info(f"Auto-trimmed history to {len(self._history)} messages")

    def _remove_last_messages(self, count: int):
        if len(self._history) > count:
            self._history = self._history[:-count]
            logger.debug(f"Removed {count} messages from context (now {len(self._history)} messages)")

    def fits_summary(self, summary_prompt: str) -> bool:
        """False (after dropping the last exchange) when a summary call would overflow the model."""
        if not self._llm:
            return True
        return self._llm.ensure_summary_context(self._history, summary_prompt)

    # ========== Summary Generation with Context Overflow Handling ==========

    async def generate_summary(
        self,
        task_description: str,
        task_failed: bool,
        system_prompts: List[Dict],
        agent_type: str = "main",
        max_retries: int = 5,
        task_guidance: str = ""
    ) -> str:
        """
        Generate summary with automatic context overflow handling.

        If context is too long for summary, removes the last two messages
        and retries until it fits or max retries reached.
        """
        if not self._llm:
            raise ValueError("LLM is required for summary generation. Pass llm parameter to ContextManager.__init__")

        retry_count = 0

        while retry_count < max_retries:
            try:
                prompt = get_summary_prompt(task_description, task_failed, task_guidance)

                messages = system_prompts.copy()
                messages.extend(self._history)
                messages.append({"role": "user", "content": prompt})

                response = await self._llm.ainvoke(messages=messages, tools=[])

                if response.content:
                    logger.info(f"[{agent_type}] Summary generated successfully")
                    return response.content

            except ContextLimitError as e:
                logger.warning(f"Context limit exceeded during summary generation: {e}")

            retry_count += 1

            if len(self._history) > 2:
                self._remove_last_messages(count=2)
                logger.warning(
                    f"Summary generation retry {retry_count}/{max_retries}, "
                    f"removed 2 messages (history now: {len(self._history)} messages)"
                )
            else:
                logger.error("Cannot generate summary - context too full even after removing all messages")
                return "Unable to generate summary due to context limits. Please try again with a shorter conversation."

        logger.error(f"Summary generation failed after {max_retries} retries")
        return "Summary generation failed after multiple retries due to context limits."

    # ========== Compression ==========

    def estimate_tokens(self) -> int:
        return estimate_message_tokens(self._history)

    def should_compress(self, model_name: str, force: bool = False) -> bool:
        if force:
            return True
        if not self._history:
            return False

        token_count = self.estimate_tokens()
        threshold = get_compression_threshold(model_name)
        if threshold is None:
            threshold = int(DEFAULT_CONTEXT_WINDOW * DEFAULT_COMPRESSION_THRESHOLD)
        return token_count > threshold

    def _split_units(self, messages: List[Dict]) -> List[List[Dict]]:
        """Group an assistant tool-call message with the tool results that answer it."""
        units: List[List[Dict]] = []
        for msg in messages:
            if msg.get("role") == "tool" and units and (
                units[-1][0].get("tool_calls") and units[-1][0].get("role") == "assistant"
            ):
                units[-1].append(msg)
            else:
                units.append([msg])
        return units

    @staticmethod
    def _is_important(message: Dict) -> bool:
        if any(name in IMPORTANT_TOOLS for name in _tool_call_names(message)):
            return True
        content = message.get("content")
        if isinstance(content, str):
            lowered = content.lower()
            return any(word in lowered for word in _IMPORTANT_KEYWORDS)
        return False

    def extract_important_messages(self, messages: List[Dict]) -> tuple[List[Dict], List[Dict]]:
        """Split messages into (important, regular). The last three messages are always important."""
        units = self._split_units(messages)
        recent_ids = {id(m) for m in messages[-3:]}

        important: List[Dict] = []
        regular: List[Dict] = []
        for unit in units:
            keep = any(id(m) in recent_ids or self._is_important(m) for m in unit)
            (important if keep else regular).extend(unit)
        return important, regular

    @staticmethod
    def heuristic_summary(messages: List[Dict]) -> str:
        user_messages = 0
        tool_calls = 0
        generated = 0
        topics: List[str] = []

        for msg in messages:
            if msg.get("role") == "user":
                user_messages += 1
            tool_calls += len(msg.get("tool_calls") or [])
            content = msg.get("content")
            if isinstance(content, str):
                lowered = content.lower()
                if "generated" in lowered or "created" in lowered:
                    generated += 1
                for keywords, topic in _TOPIC_KEYWORDS:
                    if topic not in topics and any(k in lowered for k in keywords):
                        topics.append(topic)

        summary = "=== Conversation summary ===\n"
        summary += f"User messages: {user_messages}\n"
        summary += f"Tool calls: {tool_calls}\n"
        summary += f"Generated content: {generated}\n"
        if topics:
            summary += f"Main topics: {', '.join(topics)}\n"
        summary += "\nImportant information is kept in the following messages."
        return summary

    async def _summarize_with_llm(self, messages: List[Dict]) -> str:
        transcript = "\n".join(
            f"{m.get('role')}: {m.get('content') if isinstance(m.get('content'), str) else json.dumps(m.get('content'), ensure_ascii=False)}"
            for m in messages
        )
        response = await self._llm.ainvoke(
            messages=[{"role": "user", "content": get_compression_summary_prompt(transcript)}],
            tools=[]
        )
        if not response.content:
            raise ValueError("empty compression summary")
        return response.content

    async def compress(self, summarizer: Optional[Summarizer] = None) -> CompressionInfo:
        """
        Replace non-important messages with one assistant summary message.
        System messages are kept as-is.
        """
        original_tokens = self.estimate_tokens()
        if not self._history:
            info = CompressionInfo(original_tokens=0, new_tokens=0, ratio=1.0)
            self.last_compression = info
            return info

        system_messages = [m for m in self._history if m.get("role") == "system"]
        other_messages = [m for m in self._history if m.get("role") != "system"]
        important, regular = self.extract_important_messages(other_messages)

        if summarizer is None and self._llm is not None:
            summarizer = self._summarize_with_llm

        compressed = list(system_messages)
        if regular:
            summary = None
            if summarizer is not None:
                try:
                    summary = await summarizer(regular)
                except Exception as e:
                    logger.warning(f"AI summarization failed, falling back to simple summary: {e}")
            if not summary:
                summary = self.heuristic_summary(regular)
            compressed.append({"role": "assistant", "content": summary})
        compressed.extend(important)

        self._history = compressed
        new_tokens = self.estimate_tokens()
        info = CompressionInfo(
            original_tokens=original_tokens,
            new_tokens=new_tokens,
            ratio=new_tokens / original_tokens if original_tokens > 0 else 1.0,
        )
        self.last_compression = info
        logger.info(
            f"Compressed history: {original_tokens} -> {new_tokens} tokens "
            f"({len(regular)} messages summarized)"
        )
        return info
