#!/usr/bin/env python
# coding: utf-8

from open_superagent.llm.chat_llm import ChatLLM, ChatLLMConfig, ContextLimitError, create_model
from open_superagent.llm.messages import AIMessage, AIMessageChunk, ToolCall

__all__ = [
    "ChatLLM",
    "ChatLLMConfig",
    "ContextLimitError",
    "create_model",
    "AIMessage",
    "AIMessageChunk",
    "ToolCall",
]
