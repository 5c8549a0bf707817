#!/usr/bin/env python
# coding: utf-8

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant", "tool", "data"]

# --------- Multimodal message parts ---------

class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """
    image can be:
      - data URL: "data:image/png;base64,...."
      - raw base64: "iVBORw0K..."
      - http(s) URL: "https://..."
    """
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["image"] = "image"
    data: str = Field(..., alias="image", description="dataURL/base64/http(s) url")
    mime_type: Optional[str] = Field(default=None, alias="mimeType", description="e.g. image/png")


class ImageUrlPart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: Dict[str, Any]


ContentPart = Union[TextPart, ImagePart, ImageUrlPart]


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Role
    # plain string or parts list
    content: Union[str, List[ContentPart]] = ""


# --------- Requests ---------

class ModelSelection(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    provider: Optional[str] = None
    model_name: Optional[str] = Field(default=None, alias="modelName")


class ChatRequest(BaseModel):
    """
    One chat turn:
      - messages: the conversation so far, the last one being the new user message.
                  Earlier messages become the agent's history (stateless mode).
                  A single message continues the backend session of session_id.
      - model: optional provider/modelName overriding the stored selection
      - session_id: identify a conversation for backend-managed history
      - system_prompt: optional; upserted into the session context
    """
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    messages: List[ChatMessage] = Field(default_factory=list)
    model: Optional[ModelSelection] = None
    session_id: str = Field(default="default", alias="sessionId")
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")


class SetModelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    provider: Optional[str] = None
    model_name: Optional[str] = Field(default=None, alias="modelName")


class BrowserSessionRequest(BaseModel):
    task: Optional[str] = None


class QueryRequest(BaseModel):
    query: Optional[str] = None


class ResetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
