#!/usr/bin/env python
# coding: utf-8

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(os.getenv("OPEN_SUPERAGENT_ENV", Path.cwd() / ".env"))
if _env_path.exists():
    load_dotenv(_env_path)


def _split_csv(raw: str) -> list[str]:
    raw = raw.strip()
    if raw == "*":
        return ["*"]
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass(frozen=True)
class Settings:
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))

    cors_allow_origins: list[str] = None

    # model used when neither the request nor /api/set-model picked one
    default_model_provider: str = field(default_factory=lambda: os.getenv("DEFAULT_MODEL_PROVIDER", "gemini"))
    default_model_name: str = field(default_factory=lambda: os.getenv("DEFAULT_MODEL_NAME", "gemini-2.5-flash"))

    # provider keys
    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    anthropic_api_key: str = field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""))
    gemini_api_key: str = field(
        default_factory=lambda: os.getenv("GOOGLE_GENERATIVE_AI_API_KEY") or os.getenv("GEMINI_API_KEY", "")
    )
    xai_api_key: str = field(default_factory=lambda: os.getenv("XAI_API_KEY", ""))

    # files written by tools (images, videos, audio, screenshots)
    public_dir: Path = field(default_factory=lambda: Path(os.getenv("PUBLIC_DIR", "./public")).resolve())
    session_dir: Path = field(
        default_factory=lambda: Path(os.getenv("SUPERAGENT_SESSION_DIR", "./.superagent_sessions")).resolve()
    )

    chat_retry_attempts: int = field(default_factory=lambda: int(os.getenv("CHAT_RETRY_ATTEMPTS", "3")))
    chat_retry_delay: float = field(default_factory=lambda: float(os.getenv("CHAT_RETRY_DELAY", "2.0")))
    agent_max_iteration: int = field(default_factory=lambda: int(os.getenv("AGENT_MAX_ITERATION", "10")))

    def api_key_for(self, provider: str) -> str:
        return {
            "openai": self.openai_api_key,
            "claude": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
            "grok": self.xai_api_key,
        }.get(provider, "")

    @staticmethod
    def build(**overrides) -> "Settings":
        cors_allow_origins = _split_csv(os.getenv("CORS_ALLOW_ORIGINS", "*"))
        overrides.setdefault("cors_allow_origins", cors_allow_origins)
        return Settings(**overrides)
