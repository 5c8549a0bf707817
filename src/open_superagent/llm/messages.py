#!/usr/bin/env python
# coding: utf-8
"""
Message types returned by ChatLLM.
Tool calls use the flat name/arguments layout; arguments stay a JSON string
exactly as the provider streamed it.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ToolCall(BaseModel):
    id: Optional[str] = None
    type: str = "function"
    index: int = 0
    name: str = ""
    arguments: str = "{}"


class UsageMetadata(BaseModel):
    model_name: str = ""
    finish_reason: Optional[str] = ""


class AIMessage(BaseModel):
    role: str = "assistant"
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    usage_metadata: Optional[UsageMetadata] = None


class AIMessageChunk(BaseModel):
    role: str = "assistant"
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = Field(default=None)
