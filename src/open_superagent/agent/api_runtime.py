#!/usr/bin/env python
# coding: utf-8
"""
Runtime behind the chat routes
Builds the agent team for the requested model, keeps per-session contexts and
turns one agent run into a stream of events.
"""

import asyncio
import base64
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from open_superagent.agent.context_manager import ContextManager
from open_superagent.agent.model_store import ModelConfig
from open_superagent.agent.prompt_templates import (
    get_browsing_agent_system_prompt,
    get_main_agent_system_prompt,
    get_research_agent_system_prompt,
    get_research_network_system_prompt,
)
from open_superagent.agent.super_agent import SuperAgent
from open_superagent.agent.super_config import AgentFactory
from open_superagent.llm.chat_llm import create_model
from open_superagent.tool.logger import bootstrap_logger
from open_superagent.tool.mcp_servers import SERVER_MODULES, load_server
from open_superagent.tool.tool_registry import ToolRegistry

logger = bootstrap_logger()

MAIN_AGENT_ID = "Open-SuperAgent"
NETWORK_AGENT_ID = "research-network"

MAIN_AGENT_TOOL_GROUPS = ["slides", "media", "workspace", "code"]
BROWSING_AGENT_TOOL_GROUPS = ["browser", "searching"]
RESEARCH_AGENT_TOOL_GROUPS = ["searching", "research"]

MAX_ITERATION = int(os.getenv("AGENT_MAX_ITERATION", "10"))

_REGISTRY: Optional[ToolRegistry] = None
_INIT_LOCK = asyncio.Lock()

# =============== Session Stores ===============
# (session_id, agent_id) -> ContextManager
_SESSION_CTX: Dict[Tuple[str, str], ContextManager] = {}

# per session system prompt marker
SYSTEM_MARKER = "[FRONTEND_SYSTEM_PROMPT]\n"

# where to store uploaded images
SESSION_DATA_DIR = Path(os.getenv("SUPERAGENT_SESSION_DIR", "./.superagent_sessions")).resolve()

HISTORY_POLL_INTERVAL = 0.15

# events that prove the model answered at least once
MODEL_OUTPUT_EVENTS = ("token", "final_answer", "tool_executing", "assistant_message", "assistant_final")


@dataclass
class PreparedTurn:
    """Everything needed to run one turn, resolved before the response starts streaming."""
    session_id: str
    agent: SuperAgent
    query: str
    image_paths: List[str]


# ----------------- tool registry -----------------

async def get_registry() -> ToolRegistry:
    """Shared registry with one in-process MCP session per tool group, created once."""
    global _REGISTRY

    async with _INIT_LOCK:
        if _REGISTRY is None:
            registry = ToolRegistry()
            for group in SERVER_MODULES:
                registry.register_group(group, load_server(group))
            _REGISTRY = registry
        return _REGISTRY


# ----------------- agent team -----------------

def build_team(model: ModelConfig, registry: Optional[ToolRegistry] = None, network: bool = False) -> SuperAgent:
    """
    Main agent "Open-SuperAgent" with the browsing and research sub-agents.
    With network=True a coordinator routes between research, browsing and the
    full Open-SuperAgent team instead.
    """
    now = datetime.now()

    def llm():
        return create_model(model.provider, model.model_name)

    browsing_agent = SuperAgent(
        AgentFactory.create_sub_agent_config(
            agent_id="agent-browsing",
            description="Web search and remote browser specialist",
            provider=model.provider,
            model_name=model.model_name,
            prompt_template=[{"role": "system", "content": get_browsing_agent_system_prompt(now)}],
            tool_groups=BROWSING_AGENT_TOOL_GROUPS,
            max_iteration=MAX_ITERATION,
        ),
        llm(),
        registry,
    )
    research_agent = SuperAgent(
        AgentFactory.create_sub_agent_config(
            agent_id="agent-research",
            description="Research specialist that validates sources, synthesizes findings and writes citations",
            provider=model.provider,
            model_name=model.model_name,
            prompt_template=[{"role": "system", "content": get_research_agent_system_prompt(now)}],
            tool_groups=RESEARCH_AGENT_TOOL_GROUPS,
            max_iteration=MAX_ITERATION,
        ),
        llm(),
        registry,
    )

    main_factory = AgentFactory.create_sub_agent_config if network else AgentFactory.create_main_agent_config
    main_agent = SuperAgent(
        main_factory(
            agent_id=MAIN_AGENT_ID,
            description="Open-SuperAgent, a general-purpose agent for slides, media, Google Workspace files and code",
            provider=model.provider,
            model_name=model.model_name,
            prompt_template=[{"role": "system", "content": get_main_agent_system_prompt(now)}],
            tool_groups=MAIN_AGENT_TOOL_GROUPS,
            max_iteration=MAX_ITERATION,
        ),
        llm(),
        registry,
    )
    main_agent.register_sub_agent("agent-browsing", browsing_agent)
    main_agent.register_sub_agent("agent-research", research_agent)

    if not network:
        return main_agent

    coordinator = SuperAgent(
        AgentFactory.create_main_agent_config(
            agent_id=NETWORK_AGENT_ID,
            description="Research network coordinator",
            provider=model.provider,
            model_name=model.model_name,
            prompt_template=[{"role": "system", "content": get_research_network_system_prompt(now)}],
            max_iteration=MAX_ITERATION,
        ),
        llm(),
        registry,
    )
    coordinator.register_sub_agent("agent-research", research_agent)
    coordinator.register_sub_agent("agent-browsing", browsing_agent)
    coordinator.register_sub_agent("agent-superagent", main_agent)
    return coordinator


# ----------------- utils: session ctx -----------------

def _bind_session_context(agent: SuperAgent, session_id: str) -> None:
    """
    Bind session context so multi-turn works:
    same session_id will reuse the same ContextManager (history)
    """
    key = (session_id, agent.config.id)
    cm = _SESSION_CTX.get(key)
    if cm is None:
        cm = ContextManager(llm=agent.llm, max_history_length=agent.context_manager.max_history_length)
        _SESSION_CTX[key] = cm
    agent.context_manager = cm


def _session_dir(session_id: str) -> Path:
    safe = re.sub(r"[^a-zA-Z0-9_\-\.]", "_", session_id)[:200]
    return SESSION_DATA_DIR / safe


def _guess_ext_from_mime(mime: Optional[str]) -> str:
    if not mime:
        return ".png"
    m = mime.lower()
    if "png" in m:
        return ".png"
    if "jpeg" in m or "jpg" in m:
        return ".jpg"
    if "webp" in m:
        return ".webp"
    if "gif" in m:
        return ".gif"
    return ".png"


def _strip_data_url(data: str) -> Tuple[Optional[str], str]:
    """
    data:image/png;base64,xxxx -> (image/png, xxxx)
    else -> (None, data)
    """
    if not data.startswith("data:"):
        return None, data
    m = re.match(r"^data:([^;]+);base64,(.*)$", data, flags=re.IGNORECASE | re.DOTALL)
    if not m:
        return None, data
    return m.group(1), m.group(2)


def _save_image_part(session_id: str, idx: int, data: str, mime_type: Optional[str]) -> Path:
    """
    Save image to local disk.
    - if http(s) url: save a .url.txt
    - else: treat as dataURL or raw base64
    """
    directory = _session_dir(session_id)
    directory.mkdir(parents=True, exist_ok=True)

    if data.startswith("http://") or data.startswith("https://"):
        p = directory / f"image_{idx:02d}.url.txt"
        p.write_text(data, encoding="utf-8")
        return p

    mime_from_dataurl, payload = _strip_data_url(data)
    ext = _guess_ext_from_mime(mime_type or mime_from_dataurl)

    p = directory / f"image_{idx:02d}{ext}"
    p.write_bytes(base64.b64decode(payload))
    return p


def _part_get(part: Any, key: str, default=None):
    """Field access for dict parts and pydantic parts alike."""
    if isinstance(part, dict):
        return part.get(key, default)
    return getattr(part, key, default)


def _image_source(part: Any) -> Tuple[Optional[str], Optional[str]]:
    """(data, mime) of an image part; AI SDK parts use 'image', OpenAI-style parts 'image_url'."""
    image_url = _part_get(part, "image_url")
    if image_url:
        url = image_url.get("url") if isinstance(image_url, dict) else image_url
        return url, None
    data = _part_get(part, "data") or _part_get(part, "image") or _part_get(part, "url")
    mime = _part_get(part, "mime_type") or _part_get(part, "mimeType")
    return data, mime


def flatten_message_content(session_id: str, content: Any) -> Tuple[str, List[str]]:
    """
    content can be:
      - str
      - list of text / image parts (pydantic objects or dicts)
    Return:
      text, [saved_image_paths]
    """
    if content is None:
        return "", []
    if isinstance(content, str):
        return content, []

    text_chunks: List[str] = []
    images: List[str] = []
    idx = 1

    for part in content:
        ptype = _part_get(part, "type")

        if ptype == "text":
            t = _part_get(part, "text", "")
            if t and str(t).strip():
                text_chunks.append(str(t))

        elif ptype in ("image", "image_url"):
            data, mime_type = _image_source(part)
            if data and str(data).strip():
                fp = _save_image_part(session_id, idx, str(data), mime_type)
                images.append(str(fp))
                idx += 1

    return "\n".join(text_chunks).strip(), images


def _history_text(history: List[Dict]) -> List[Dict]:
    """Frontend history with multimodal content reduced to text."""
    result = []
    for msg in history:
        content = msg.get("content")
        if not isinstance(content, str):
            content = "\n".join(
                str(_part_get(p, "text", "")) for p in (content or []) if _part_get(p, "type") == "text"
            )
        result.append({"role": msg.get("role", "user"), "content": content})
    return result


# ----------------- turn preparation -----------------

async def prepare_turn(
    session_id: str,
    user_message_content: Any,
    model: ModelConfig,
    system_prompt: Optional[str] = None,
    history: Optional[List[Dict]] = None,
    network: bool = False,
) -> PreparedTurn:
    """
    Build the team, attach the session context and resolve the user input.

    Args:
        session_id: Session identifier
        user_message_content: User message content (text or multimodal)
        model: Model the team runs on
        system_prompt: Optional system prompt to inject
        history: Optional frontend-managed history. If provided, uses stateless mode.
                 If None or empty, uses backend session management.
        network: Route through the research network coordinator
    """
    registry = await get_registry()
    agent = build_team(model, registry, network=network)

    if history:
        agent.context_manager = ContextManager.from_history(
            history=_history_text(history),
            llm=agent.llm,
            max_history_length=agent.context_manager.max_history_length,
        )
    else:
        _bind_session_context(agent, session_id)

    if system_prompt:
        sp = f"{SYSTEM_MARKER}{system_prompt}".strip()
        agent.context_manager.upsert_system_message(sp, SYSTEM_MARKER)

    user_text, image_paths = flatten_message_content(session_id, user_message_content)
    query = (user_text or "").strip()
    if image_paths:
        joined = "\n".join(f"- {p}" for p in image_paths)
        query += f"\n\n[Images attached by the user, saved locally:]\n{joined}"

    return PreparedTurn(session_id=session_id, agent=agent, query=query.strip() or " ", image_paths=image_paths)


# ----------------- SSE: run one turn -----------------

def _message_event(msg: Dict) -> Dict[str, Any]:
    role = msg.get("role")
    if role == "assistant":
        return {"type": "assistant_message", "data": msg}
    if role == "tool":
        return {"type": "tool_message", "data": msg}
    if role == "system":
        return {"type": "system_message", "data": msg}
    if role == "user":
        return {"type": "user_message", "data": msg}
    return {"type": "message", "data": msg}


async def run_turn_stream(turn: PreparedTurn) -> AsyncIterator[Dict[str, Any]]:
    """
    SSE event async generator.
    Runs the agent in the background and streams its events (main agent and
    sub-agents) together with new history messages while it works.
    """
    agent = turn.agent
    event_queue: asyncio.Queue = asyncio.Queue()

    async def event_callback(event: dict):
        await event_queue.put(event)

    agent.set_event_callback(event_callback)

    yield {"type": "session_start", "data": {"session_id": turn.session_id}}

    # messages already in the context were seen by the client
    last_idx = len(agent.context_manager.get_history())
    task = asyncio.create_task(agent.invoke({"query": turn.query}))

    try:
        while True:
            while True:
                try:
                    event = event_queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                yield {"type": event["type"], "data": event}

            hist = agent.context_manager.get_history() or []
            while last_idx < len(hist):
                yield _message_event(hist[last_idx])
                last_idx += 1

            if task.done():
                while not event_queue.empty():
                    event = event_queue.get_nowait()
                    yield {"type": event["type"], "data": event}

                try:
                    result = task.result()
                except Exception as e:
                    logger.error(f"Agent turn failed for session {turn.session_id}: {e}")
                    yield {"type": "error", "data": {"error": str(e)}}
                    break

                yield {
                    "type": "assistant_final",
                    "data": {
                        "reply": result.get("output", ""),
                        "result_type": result.get("result_type", "answer"),
                    },
                }
                break

            await asyncio.sleep(HISTORY_POLL_INTERVAL)
    finally:
        if not task.done():
            task.cancel()
        agent.set_event_callback(None)


class TurnStartError(RuntimeError):
    """The turn failed before the model produced any output."""


async def _replay(buffered: List[Dict[str, Any]], rest: AsyncIterator) -> AsyncIterator:
    for item in buffered:
        yield item
    async for item in rest:
        yield item


async def start_turn_stream(turn: PreparedTurn) -> AsyncIterator[Dict[str, Any]]:
    """
    Run a turn until the model answers for the first time.

    Events seen so far are buffered and replayed by the returned iterator,
    so callers can retry or answer with an error status before streaming.

    Raises:
        TurnStartError: The run ended with an error before any model output
    """
    stream = run_turn_stream(turn)
    buffered: List[Dict[str, Any]] = []
    async for event in stream:
        if event["type"] == "error":
            await stream.aclose()
            raise TurnStartError(event["data"]["error"])
        buffered.append(event)
        if event["type"] in MODEL_OUTPUT_EVENTS:
            break
    return _replay(buffered, stream)


async def start_direct_stream(messages: List[Dict], model: ModelConfig) -> AsyncIterator[str]:
    """Plain streaming completion whose first token has already been received."""
    stream = stream_direct(messages, model)
    buffered: List[str] = []
    async for token in stream:
        buffered.append(token)
        break
    return _replay(buffered, stream)


async def stream_direct(messages: List[Dict], model: ModelConfig) -> AsyncIterator[str]:
    """Plain streaming completion without tools or agents."""
    llm = create_model(model.provider, model.model_name)
    async for chunk in llm.astream(messages=_history_text(messages)):
        if chunk.content:
            yield chunk.content


async def reset_session(session_id: str) -> None:
    """
    Clear contexts + delete saved images for this session
    """
    keys = [k for k in list(_SESSION_CTX.keys()) if k[0] == session_id]
    for k in keys:
        _SESSION_CTX.pop(k, None)

    d = _session_dir(session_id)
    if d.exists():
        shutil.rmtree(d, ignore_errors=True)


async def shutdown_runtime():
    """Close MCP sessions and any browser still connected."""
    global _REGISTRY

    async with _INIT_LOCK:
        registry, _REGISTRY = _REGISTRY, None
    if registry is None:
        return

    browser_session = registry.sessions.get("browser")
    if browser_session is not None and browser_session.connected:
        from open_superagent.tool.mcp_servers.browser_mcp_server import close_all_sessions
        await close_all_sessions()
    await registry.close()
