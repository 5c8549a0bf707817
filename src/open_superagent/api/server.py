#!/usr/bin/env python
# coding: utf-8
import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed

from open_superagent.agent.api_runtime import (
    prepare_turn,
    reset_session,
    shutdown_runtime,
    start_direct_stream,
    start_turn_stream,
)
from open_superagent.agent.model_store import ModelConfig, ModelConfigStore
from open_superagent.agent.research import ResearchHandler
from open_superagent.agent.slide_creator import SlideCreatorError, SlideCreatorStore
from open_superagent.api.schemas import (
    BrowserSessionRequest,
    ChatMessage,
    ChatRequest,
    QueryRequest,
    ResetRequest,
    SetModelRequest,
)
from open_superagent.api.settings import Settings
from open_superagent.tool.logger import bootstrap_logger
from open_superagent.tool.mcp_servers.browser_mcp_server import create_live_session
from open_superagent.tool.media_library import list_media

logger = bootstrap_logger()

STATIC_DIRS = ("generated-images", "generated-videos", "generated-music", "browser-screenshots", "browser-downloads")

RETRYABLE_MARKERS = ("Visibility check was unavailable", "503")

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def _sse(event_type: str, data: Any) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data, ensure_ascii=False, default=str)}\n\n"


def _split_messages(messages: List[ChatMessage]):
    """(system_prompt, history, current user content) from a chat request's message list."""
    system_prompts = [m.content for m in messages if m.role == "system" and isinstance(m.content, str)]
    conversation = [m for m in messages if m.role not in ("system", "data")]
    if not conversation:
        return (system_prompts[-1] if system_prompts else None), [], ""
    current = conversation[-1]
    history = [m.model_dump(include={"role", "content"}) for m in conversation[:-1]]
    return (system_prompts[-1] if system_prompts else None), history, current.content


def _chat_error_response(error: Exception) -> JSONResponse:
    message = str(error)
    if any(marker in message for marker in RETRYABLE_MARKERS):
        return JSONResponse(
            status_code=503,
            content={
                "error": "The model service is temporarily unavailable. Please try again.",
                "details": message,
                "retryable": True,
            },
        )
    return JSONResponse(status_code=500, content={"error": "Chat API error", "details": message})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.build()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await shutdown_runtime()

    app = FastAPI(title="Open-SuperAgent API", version="0.3", lifespan=lifespan)
    app.state.settings = settings
    app.state.model_store = ModelConfigStore(settings.default_model_provider, settings.default_model_name)
    app.state.slide_creator = SlideCreatorStore()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for name in STATIC_DIRS:
        directory = settings.public_dir / name
        directory.mkdir(parents=True, exist_ok=True)
        app.mount(f"/{name}", StaticFiles(directory=str(directory)), name=name)

    @app.get("/health")
    def health():
        return {"ok": True}

    # ----------------- model selection -----------------

    @app.get("/api/set-model")
    def get_model():
        return {"model": app.state.model_store.get().to_public()}

    @app.post("/api/set-model")
    def set_model(req: SetModelRequest):
        if not req.provider or not req.model_name:
            return JSONResponse(status_code=400, content={"error": "Provider and modelName are required"})
        try:
            model = app.state.model_store.set(req.provider, req.model_name)
        except Exception as e:
            logger.error(f"[Set Model] Error: {e}")
            return JSONResponse(status_code=500, content={"error": "Failed to set model"})
        logger.info(f"[Set Model] Updated model to: {model.provider} - {model.model_name}")
        return {"success": True, "model": model.to_public()}

    # ----------------- chat -----------------

    def _retrying() -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(settings.chat_retry_attempts),
            wait=wait_fixed(settings.chat_retry_delay),
            before_sleep=lambda state: logger.warning(
                f"Chat start-up failed ({state.attempt_number}/{settings.chat_retry_attempts}): {state.outcome.exception()}"
            ),
            reraise=True,
        )

    async def _start_with_retry(req: ChatRequest, model: ModelConfig, network: bool) -> AsyncIterator[Dict[str, Any]]:
        """Prepare the turn and wait for the model's first output, retrying the whole start-up."""
        system_prompt, history, content = _split_messages(req.messages)
        if req.system_prompt:
            system_prompt = req.system_prompt
        async for attempt in _retrying():
            with attempt:
                turn = await prepare_turn(
                    session_id=req.session_id,
                    user_message_content=content,
                    model=model,
                    system_prompt=system_prompt,
                    history=history or None,
                    network=network,
                )
                return await start_turn_stream(turn)

    async def _direct_with_retry(req: ChatRequest, model: ModelConfig) -> AsyncIterator[str]:
        messages = [m.model_dump(include={"role", "content"}) for m in req.messages if m.role != "data"]
        async for attempt in _retrying():
            with attempt:
                return await start_direct_stream(messages, model)

    def _direct_stream(tokens: AsyncIterator[str], request: Request) -> StreamingResponse:
        async def event_gen() -> AsyncIterator[str]:
            reply = ""
            try:
                async for token in tokens:
                    reply += token
                    yield _sse("token", {"content": token})
                    if await request.is_disconnected():
                        return
                yield _sse("assistant_final", {"reply": reply, "result_type": "answer"})
            except asyncio.CancelledError:
                return
            except Exception as e:
                logger.error(f"Direct stream failed: {e}")
                yield _sse("error", {"error": str(e)})
            yield "event: done\ndata: {}\n\n"

        return StreamingResponse(event_gen(), media_type="text/event-stream", headers=SSE_HEADERS)

    async def _chat(req: ChatRequest, request: Request, network: bool):
        if not req.messages:
            return JSONResponse(status_code=400, content={"error": "Messages are required"})

        selection = req.model
        model = app.state.model_store.resolve(
            selection.provider if selection else None,
            selection.model_name if selection else None,
        )
        logger.info(f"Chat request (session={req.session_id}) using {model.provider} - {model.model_name}")

        try:
            if model.provider == "openai" and not network:
                return _direct_stream(await _direct_with_retry(req, model), request)
            events = await _start_with_retry(req, model, network)
        except Exception as e:
            logger.error(f"Chat API error: {e}")
            if network:
                return JSONResponse(status_code=500, content={"error": "Failed to process request", "details": str(e)})
            return _chat_error_response(e)

        async def event_gen() -> AsyncIterator[str]:
            try:
                async for ev in events:
                    yield _sse(ev["type"], ev["data"])
                    if await request.is_disconnected():
                        break
            except asyncio.CancelledError:
                return
            except Exception as e:
                yield _sse("error", {"error": str(e)})

            yield "event: done\ndata: {}\n\n"

        return StreamingResponse(event_gen(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/api/chat")
    async def chat(req: ChatRequest, request: Request):
        """SSE stream of the Open-SuperAgent team working on the last user message."""
        return await _chat(req, request, network=False)

    @app.post("/api/multi-agent-chat")
    async def multi_agent_chat(req: ChatRequest, request: Request):
        """SSE stream of the research network coordinator."""
        return await _chat(req, request, network=True)

    @app.post("/api/reset")
    async def reset(req: ResetRequest):
        try:
            await reset_session(req.session_id)
            app.state.slide_creator.clear(req.session_id)
            return {"ok": True, "sessionId": req.session_id}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    # ----------------- browser -----------------

    @app.post("/api/browser-session")
    async def browser_session(req: BrowserSessionRequest):
        if not req.task:
            return JSONResponse(status_code=400, content={"error": "Task is required"})
        try:
            return await create_live_session(req.task)
        except Exception as e:
            logger.error(f"Session creation error: {e}")
            return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    # ----------------- research -----------------

    def _research_handler() -> ResearchHandler:
        return ResearchHandler(api_key=settings.openai_api_key)

    @app.post("/api/research-plan")
    async def research_plan(req: QueryRequest):
        if not req.query:
            return JSONResponse(status_code=400, content={"error": "Query is required"})
        try:
            return await _research_handler().create_research_plan(req.query)
        except Exception as e:
            logger.error(f"[Research Plan API Error] {e}")
            return JSONResponse(status_code=500, content={"error": "Internal Server Error", "details": str(e)})

    @app.post("/api/deep-research")
    async def deep_research(req: QueryRequest):
        if not req.query:
            return JSONResponse(status_code=400, content={"error": "Query is required"})
        try:
            return await _research_handler().run_deep_research(req.query)
        except Exception as e:
            logger.error(f"[Deep Research API Error] {e}")
            return JSONResponse(status_code=500, content={"error": "Internal Server Error", "details": str(e)})

    # ----------------- media -----------------

    @app.get("/api/media/videos")
    def media_videos():
        try:
            return {"videos": list_media(settings.public_dir, "videos")}
        except Exception as e:
            logger.error(f"Failed to list videos: {e}")
            return JSONResponse(status_code=500, content={"error": "Failed to fetch videos"})

    @app.get("/api/media/music")
    def media_music():
        try:
            return {"music": list_media(settings.public_dir, "music")}
        except Exception as e:
            logger.error(f"Failed to list music: {e}")
            return JSONResponse(status_code=500, content={"error": "Failed to fetch music"})

    # ----------------- slide creator -----------------

    @app.post("/api/slide-creator")
    async def slide_creator(request: Request):
        try:
            body: Dict[str, Any] = await request.json()
            return await app.state.slide_creator.handle(body)
        except SlideCreatorError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except Exception as e:
            logger.error(f"[slide-creator] Error: {e}")
            return JSONResponse(status_code=500, content={"error": "Failed to process request", "details": str(e)})

    return app


app = create_app()


def main():
    import uvicorn

    settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
