#!/usr/bin/env python
# coding: utf-8
"""
Provider-routed chat client.
OpenAI, Anthropic, Google and xAI all expose OpenAI-compatible chat
completion endpoints, so a single AsyncOpenAI-based client serves every
provider the agents can run on.
"""

import json
import os
from typing import Any, AsyncIterator, Dict, List, Optional

import tiktoken
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict

from open_superagent.llm.messages import AIMessage, AIMessageChunk, ToolCall, UsageMetadata
from open_superagent.llm.token_limits import DEFAULT_CONTEXT_WINDOW, get_token_limit
from open_superagent.tool.logger import bootstrap_logger

logger = bootstrap_logger()

PROVIDER_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "claude": "https://api.anthropic.com/v1/",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "grok": "https://api.x.ai/v1",
}

# environment variables holding each provider's key, first match wins
PROVIDER_KEY_ENV = {
    "openai": ("OPENAI_API_KEY",),
    "claude": ("ANTHROPIC_API_KEY",),
    "gemini": ("GOOGLE_GENERATIVE_AI_API_KEY", "GEMINI_API_KEY"),
    "grok": ("XAI_API_KEY",),
}

# models that must go through the Responses API instead of chat completions
RESPONSES_API_MODELS = {"o3-pro-2025-06-10"}

_CONTEXT_LIMIT_PHRASES = (
    "input is too long",
    "context limit",
    "maximum context length",
    "context_length_exceeded",
)


class ContextLimitError(Exception):
    """Exception raised when context limit is exceeded"""
    pass


class TokenUsage(BaseModel):
    """Token usage tracking"""
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_read_input_tokens: int = 0


class ChatLLMConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    provider: str
    api_key: str
    api_base: str
    model_name: str
    max_retries: int = 3
    timeout: int = 600
    temperature: float = 0.1
    top_p: float = 1.0
    max_tokens: int = 8192
    max_context_length: int = DEFAULT_CONTEXT_WINDOW
    use_responses_api: bool = False

    # Pricing (per million tokens)
    input_token_price: float = 3.0
    output_token_price: float = 15.0
    cache_input_token_price: float = 0.3


def _is_context_limit_error(error_str: str) -> bool:
    lowered = error_str.lower()
    return any(phrase in lowered for phrase in _CONTEXT_LIMIT_PHRASES)


def _is_reasoning_model(model_name: str) -> bool:
    # o-series models reject temperature/top_p and use max_completion_tokens
    return model_name.startswith(("o1", "o3", "o4"))


class ChatLLM:
    """AsyncOpenAI wrapper with streaming tool-call accumulation and usage tracking"""

    def __init__(
        self,
        api_key: str,
        model_name: str,
        provider: str = "openai",
        api_base: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
        **kwargs
    ):
        self.config = ChatLLMConfig(
            provider=provider,
            api_key=api_key,
            api_base=api_base or PROVIDER_BASE_URLS.get(provider, PROVIDER_BASE_URLS["openai"]),
            model_name=model_name,
            **kwargs
        )

        self._client = client or AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.api_base,
            timeout=self.config.timeout,
            max_retries=self.config.max_retries,
        )

        self.token_usage = TokenUsage()
        self.last_call_tokens = {"prompt_tokens": 0, "completion_tokens": 0}

        # tiktoken for token estimation
        self.encoding = None

    def model_provider(self) -> str:
        return self.config.provider

    def _build_params(self, messages: List[Dict], tools: Optional[List[Any]], stream: bool, **kwargs) -> Dict:
        model_name = kwargs.pop("model_name", None) or self.config.model_name
        params: Dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "stream": stream,
        }
        if _is_reasoning_model(model_name):
            params["max_completion_tokens"] = self.config.max_tokens
        else:
            params["temperature"] = kwargs.pop("temperature", self.config.temperature)
            params["max_tokens"] = self.config.max_tokens
            if self.config.top_p != 1.0:
                params["top_p"] = self.config.top_p

        if stream:
            params["stream_options"] = {"include_usage": True}

        if tools:
            params["tools"] = self._convert_tools_to_openai_format(tools)
            logger.debug(f"Added {len(params['tools'])} tools to API call")

        params.update(kwargs)
        return params

    async def ainvoke(
        self,
        messages: List[Dict],
        tools: Optional[List[Any]] = None,
        **kwargs: Any
    ) -> AIMessage:
        """Single non-streaming completion"""
        if self.config.use_responses_api:
            return await self._ainvoke_responses(messages)

        try:
            params = self._build_params(messages, tools, stream=False, **kwargs)
            response = await self._client.chat.completions.create(**params)

            if response.usage:
                self._update_token_usage(response.usage)

            return self._parse_response(response)

        except Exception as e:
            error_str = str(e)
            if _is_context_limit_error(error_str):
                logger.error(f"Context limit exceeded: {error_str}")
                raise ContextLimitError(f"Context limit exceeded: {error_str}") from e

            logger.error(f"[{self.config.provider}] LLM call failed: {error_str}")
            raise

    async def astream(
        self,
        messages: List[Dict],
        tools: Optional[List[Any]] = None,
        **kwargs: Any
    ) -> AsyncIterator[AIMessageChunk]:
        """Async streaming - yields token chunks as they arrive, then one chunk with tool calls"""
        if self.config.use_responses_api:
            # the Responses path is not streamed; emit the whole answer as one chunk
            message = await self._ainvoke_responses(messages)
            yield AIMessageChunk(content=message.content)
            return

        try:
            params = self._build_params(messages, tools, stream=True, **kwargs)
            response = await self._client.chat.completions.create(**params)

            # Track accumulated tool calls (they come in deltas)
            tool_call_accumulators: Dict[int, Dict] = {}

            async for chunk in response:
                if not chunk.choices:
                    # Final chunk with usage info
                    if getattr(chunk, "usage", None):
                        self._update_token_usage(chunk.usage)
                    continue

                delta = chunk.choices[0].delta

                if getattr(delta, "tool_calls", None):
                    for tc_delta in delta.tool_calls:
                        idx = tc_delta.index if tc_delta.index is not None else len(tool_call_accumulators)
                        acc = tool_call_accumulators.setdefault(idx, {"id": None, "name": "", "arguments": ""})
                        if tc_delta.id:
                            acc["id"] = tc_delta.id
                        if tc_delta.function:
                            if tc_delta.function.name:
                                acc["name"] = tc_delta.function.name
                            if tc_delta.function.arguments:
                                acc["arguments"] += tc_delta.function.arguments

                content = getattr(delta, "content", None) or ""
                if content:
                    yield AIMessageChunk(content=content)

            if tool_call_accumulators:
                final_tool_calls = [
                    ToolCall(
                        id=acc["id"] or f"call_{idx}",
                        type="function",
                        index=idx,
                        name=acc["name"],
                        arguments=acc["arguments"] or "{}",
                    )
                    for idx, acc in sorted(tool_call_accumulators.items())
                ]
                yield AIMessageChunk(content="", tool_calls=final_tool_calls)

        except Exception as e:
            error_str = str(e)
            if _is_context_limit_error(error_str):
                logger.error(f"Context limit exceeded: {error_str}")
                raise ContextLimitError(f"Context limit exceeded: {error_str}") from e

            logger.error(f"[{self.config.provider}] streaming call failed: {error_str}")
            raise

    async def _ainvoke_responses(self, messages: List[Dict]) -> AIMessage:
        """o3-pro style models are only served by the Responses API"""
        input_items = []
        for msg in messages:
            content = msg.get("content")
            if not isinstance(content, str):
                content = json.dumps(content, ensure_ascii=False)
            role = msg.get("role", "user")
            if role == "system":
                role = "developer"
            elif role == "tool":
                role = "user"
            input_items.append({"role": role, "content": content})

        try:
            response = await self._client.responses.create(
                model=self.config.model_name,
                input=input_items,
            )
        except Exception as e:
            if _is_context_limit_error(str(e)):
                raise ContextLimitError(f"Context limit exceeded: {e}") from e
            raise

        usage = getattr(response, "usage", None)
        if usage:
            input_tokens = getattr(usage, "input_tokens", 0) or 0
            output_tokens = getattr(usage, "output_tokens", 0) or 0
            self.last_call_tokens = {"prompt_tokens": input_tokens, "completion_tokens": output_tokens}
            self.token_usage.total_input_tokens += input_tokens
            self.token_usage.total_output_tokens += output_tokens

        return AIMessage(
            content=getattr(response, "output_text", "") or "",
            usage_metadata=UsageMetadata(model_name=self.config.model_name, finish_reason="stop"),
        )

    async def complete_json(self, system_prompt: str, user_prompt: str, **kwargs) -> Dict:
        """JSON-mode completion, parsed into a dict"""
        message = await self.ainvoke(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
            **kwargs
        )
        if not message.content:
            raise ValueError("LLM did not return a JSON payload")
        return parse_json_payload(message.content)

    def _convert_tools_to_openai_format(self, tools: List[Any]) -> List[Dict]:
        openai_tools = []
        for tool in tools:
            if isinstance(tool, dict):
                if "type" in tool and "function" in tool:
                    openai_tools.append(tool)
                else:
                    # Assume it's just the function part
                    openai_tools.append({"type": "function", "function": tool})
            elif hasattr(tool, "model_dump"):
                openai_tools.append({"type": "function", "function": tool.model_dump(exclude_none=True)})
        return openai_tools

    def _update_token_usage(self, usage_data):
        """Update cumulative token usage"""
        if not usage_data:
            return

        input_tokens = getattr(usage_data, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage_data, "completion_tokens", 0) or 0

        prompt_tokens_details = getattr(usage_data, "prompt_tokens_details", None)
        cached_tokens = 0
        if prompt_tokens_details:
            cached_tokens = getattr(prompt_tokens_details, "cached_tokens", 0) or 0

        self.last_call_tokens = {
            "prompt_tokens": input_tokens,
            "completion_tokens": output_tokens
        }

        self.token_usage.total_input_tokens += input_tokens
        self.token_usage.total_output_tokens += output_tokens
        self.token_usage.total_cache_read_input_tokens += cached_tokens

        logger.debug(
            f"Token usage - Input: {self.token_usage.total_input_tokens}, "
            f"Output: {self.token_usage.total_output_tokens}, "
            f"Cache: {self.token_usage.total_cache_read_input_tokens}"
        )

    def _parse_response(self, response) -> AIMessage:
        if not response or not getattr(response, "choices", None):
            raise ValueError("LLM did not return a valid response")

        choice = response.choices[0]
        message = choice.message
        content = getattr(message, "content", "") or ""

        tool_calls = None
        raw_tool_calls = getattr(message, "tool_calls", None)
        if raw_tool_calls:
            tool_calls = []
            for i, tc in enumerate(raw_tool_calls):
                fn = getattr(tc, "function", None)
                arguments = getattr(fn, "arguments", None) if fn is not None else None
                tool_calls.append(
                    ToolCall(
                        id=getattr(tc, "id", None),
                        type=getattr(tc, "type", "function") or "function",
                        index=i,
                        name=(getattr(fn, "name", "") if fn is not None else "") or "",
                        arguments=arguments if arguments is not None else "{}",
                    )
                )

        usage_metadata = None
        if getattr(response, "usage", None):
            usage_metadata = UsageMetadata(
                model_name=getattr(response, "model", "") or "",
                finish_reason=getattr(choice, "finish_reason", "") or ""
            )

        return AIMessage(content=content, tool_calls=tool_calls, usage_metadata=usage_metadata)

    def _estimate_tokens(self, text: str) -> int:
        """Estimate token count using tiktoken"""
        if not self.encoding:
            try:
                self.encoding = tiktoken.get_encoding("o200k_base")
            except Exception:
                self.encoding = tiktoken.get_encoding("cl100k_base")

        try:
            return len(self.encoding.encode(text))
        except Exception:
            # Fallback: ~4 chars per token
            return len(text) // 4

    def estimate_messages_tokens(self, messages: List[Dict]) -> int:
        total = 0
        for msg in messages:
            content = msg.get("content", "")
            if not isinstance(content, str):
                content = json.dumps(content, ensure_ascii=False)
            total += self._estimate_tokens(content) + 10
            if msg.get("tool_calls"):
                total += self._estimate_tokens(json.dumps(msg["tool_calls"], ensure_ascii=False))
        return total

    def ensure_summary_context(self, message_history: List[Dict], summary_prompt: str) -> bool:
        """
        Check if current message_history + summary_prompt would exceed context limit.
        If yes, remove the last tool-result/assistant pair and return False.
        """
        last_prompt_tokens = self.last_call_tokens.get("prompt_tokens", 0)
        last_completion_tokens = self.last_call_tokens.get("completion_tokens", 0)
        buffer_factor = 1.2

        summary_tokens = self._estimate_tokens(summary_prompt) * buffer_factor

        last_user_tokens = 0
        if message_history and message_history[-1]["role"] in ("user", "tool"):
            content = message_history[-1]["content"]
            if isinstance(content, list):
                text = " ".join(item.get("text", "") for item in content if item.get("type") == "text")
            else:
                text = str(content)
            last_user_tokens = self._estimate_tokens(text) * buffer_factor

        estimated_total = (
            last_prompt_tokens +
            last_completion_tokens +
            last_user_tokens +
            summary_tokens +
            self.config.max_tokens
        )

        if estimated_total >= self.config.max_context_length:
            logger.warning(
                f"Context + summary would exceed limit: {estimated_total} >= {self.config.max_context_length}"
            )

            if message_history and message_history[-1]["role"] in ("user", "tool"):
                message_history.pop()

            if message_history and message_history[-1]["role"] == "assistant":
                message_history.pop()

            logger.info(f"Removed last assistant/tool pair, current history length: {len(message_history)}")
            return False

        logger.debug(f"Context check passed: {estimated_total}/{self.config.max_context_length}")
        return True

    def get_token_usage(self) -> Dict[str, int]:
        return self.token_usage.model_dump()

    def format_token_usage_summary(self) -> tuple[List[str], str]:
        """Format token usage statistics and cost estimation"""
        usage = self.token_usage

        total_input = usage.total_input_tokens
        total_output = usage.total_output_tokens
        cache_input = usage.total_cache_read_input_tokens

        cost = (
            ((total_input - cache_input) / 1_000_000 * self.config.input_token_price) +
            (cache_input / 1_000_000 * self.config.cache_input_token_price) +
            (total_output / 1_000_000 * self.config.output_token_price)
        )

        summary_lines = [
            "\n" + "-" * 20 + " Token Usage & Cost " + "-" * 20,
            f"Total Input Tokens: {total_input}",
            f"Total Cache Input Tokens: {cache_input}",
            f"Total Output Tokens: {total_output}",
            "-" * 60,
            f"Estimated Cost (with cache): ${cost:.4f} USD",
            "-" * 60
        ]

        log_string = (
            f"[{self.config.provider}/{self.config.model_name}] "
            f"Total Input: {total_input}, Cache Input: {cache_input}, "
            f"Output: {total_output}, Cost: ${cost:.4f} USD"
        )

        return summary_lines, log_string


def parse_json_payload(text: str) -> Any:
    """Parse a model reply that should be JSON, tolerating ```json fences and leading prose."""
    s = (text or "").strip()
    if s.startswith("```"):
        s = s.split("\n", 1)[1] if "\n" in s else ""
        if s.rstrip().endswith("```"):
            s = s.rstrip()[:-3]
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        start = min([i for i in (s.find("{"), s.find("[")) if i != -1], default=-1)
        end = max(s.rfind("}"), s.rfind("]"))
        if start == -1 or end <= start:
            raise
        return json.loads(s[start:end + 1])


def api_key_from_env(provider: str) -> str:
    for name in PROVIDER_KEY_ENV.get(provider, ()):
        value = os.environ.get(name)
        if value:
            return value
    return ""


def create_model(provider: str, model_name: str, api_key: Optional[str] = None, settings=None, **kwargs) -> ChatLLM:
    """Build a ChatLLM for one of the supported providers (openai, claude, gemini, grok)."""
    provider = (provider or "").strip().lower()
    if provider not in PROVIDER_BASE_URLS:
        raise ValueError(f"Unsupported provider: {provider}")

    if api_key is None:
        api_key = settings.api_key_for(provider) if settings is not None else api_key_from_env(provider)

    limit = get_token_limit(model_name)
    if limit is not None:
        kwargs.setdefault("max_context_length", limit.context_window)
        if limit.max_output:
            kwargs.setdefault("max_tokens", min(limit.max_output, 16_000))

    if provider == "openai" and model_name in RESPONSES_API_MODELS:
        kwargs.setdefault("use_responses_api", True)

    return ChatLLM(
        api_key=api_key or "",
        model_name=model_name,
        provider=provider,
        **kwargs
    )
