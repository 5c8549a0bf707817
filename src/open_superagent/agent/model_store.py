#!/usr/bin/env python
# coding: utf-8
"""
Current model selection shared by the chat routes.
"""

import threading
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ModelConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, protected_namespaces=())

    provider: str
    model_name: str = Field(alias="modelName")

    def to_public(self) -> dict:
        return {"provider": self.provider, "modelName": self.model_name}


class ModelConfigStore:
    """Holds the model used when a request does not pick one itself."""

    def __init__(self, provider: str = "gemini", model_name: str = "gemini-2.5-flash"):
        self._lock = threading.Lock()
        self._current = ModelConfig(provider=provider, model_name=model_name)

    def get(self) -> ModelConfig:
        with self._lock:
            return self._current

    def set(self, provider: str, model_name: str) -> ModelConfig:
        if not provider or not model_name:
            raise ValueError("Provider and modelName are required")
        with self._lock:
            self._current = ModelConfig(provider=provider, model_name=model_name)
            return self._current

    def resolve(self, provider: Optional[str] = None, model_name: Optional[str] = None) -> ModelConfig:
        """Request-level choice wins, otherwise the stored one."""
        if provider and model_name:
            return ModelConfig(provider=provider, model_name=model_name)
        return self.get()
