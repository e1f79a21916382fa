# apps/api/main.py

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from toolrelay.core import metrics
from toolrelay.core.logging import configure_logging, request_logging_middleware, stream_id_var
from toolrelay.core.settings import get_settings
from toolrelay.orchestration.context_router import ContextRouter, TTLClassificationCache
from toolrelay.orchestration.controller import IterationController
from toolrelay.orchestration.tool_runtime import ToolDispatcher
from toolrelay.orchestration.types import ChatMessage, EngineLimits
from toolrelay.providers.openai_compat import get_provider
from toolrelay.storage.repo import append_message, create_thread, get_thread, get_thread_messages
from toolrelay.tools.registry import build_default_registry
from toolrelay.wire.encoder import encode_event, encode_heartbeat

settings = get_settings()
configure_logging(level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
log = logging.getLogger("app.api")

# Allow specific origins, avoid wildcard with credentials
allow_origins = [o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Stream-Id", "X-Thread-Id", "X-Request-Id"],
)

app.middleware("http")(request_logging_middleware)

app.state.tools = build_default_registry(settings)
app.state.dispatcher = ToolDispatcher(app.state.tools)
app.state.router = ContextRouter(
    TTLClassificationCache(ttl_sec=settings.classification_cache_ttl_sec, max_size=settings.classification_cache_max)
)
app.state.provider = get_provider()

# stream_id -> cancel event of the request currently streaming
ACTIVE_STREAMS: dict[str, asyncio.Event] = {}

STREAM_HEADERS = {
    "Content-Type": "text/event-stream; charset=utf-8",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatRequest(BaseModel):
    model: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    thread_id: Optional[str] = None
    persist: bool = False
    active_tool: Optional[str] = None
    temperature: Optional[float] = None


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/config")
async def config() -> JSONResponse:
    safe_config = {
        "app_name": settings.app_name,
        "env": settings.app_env,
        "db_dialect": settings.db_dialect,
        "log_level": settings.log_level,
        "provider": {
            "base_url": str(settings.provider_base_url) if settings.provider_base_url else None,
            "default_model": settings.default_model,
            "api_key_set": bool(settings.provider_api_key),
        },
        "engine": {
            "max_rounds": settings.engine_max_rounds,
            "max_tools_per_round": settings.engine_max_tools_per_round,
            "duplicate_call_limit": settings.engine_duplicate_call_limit,
            "tool_call_caps": settings.tool_call_caps,
        },
        "stream": {"heartbeat_sec": settings.stream_heartbeat_sec},
        "tools": app.state.tools.names(),
    }
    return JSONResponse(content=safe_config)


@app.get("/tools")
async def list_tools() -> JSONResponse:
    return JSONResponse(content={"tools": app.state.tools.catalog()})


@app.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/threads/{thread_id}/messages")
async def thread_messages(thread_id: str) -> JSONResponse:
    if get_thread(thread_id) is None:
        raise HTTPException(status_code=404, detail="thread not found")
    return JSONResponse(content={"thread_id": thread_id, "messages": get_thread_messages(thread_id)})


def _prepare_thread(req: ChatRequest) -> Optional[str]:
    if not (req.persist or req.thread_id):
        return None
    thread_id = req.thread_id
    if thread_id is None or get_thread(thread_id) is None:
        thread_id = create_thread(thread_id=thread_id).id
    last_user = next((m for m in reversed(req.messages) if m.role == "user"), None)
    if last_user is not None and last_user.content:
        append_message(thread_id, "user", last_user.content)
    return thread_id


@app.post("/chat/completions")
async def chat_completions(req: ChatRequest) -> StreamingResponse:
    if not req.messages:
        raise HTTPException(status_code=400, detail="messages must not be empty")

    stream_id = f"stream_{uuid4().hex}"
    thread_id = _prepare_thread(req)
    cancel_event = asyncio.Event()
    ACTIVE_STREAMS[stream_id] = cancel_event

    status = app.state.router.route(req.messages, req.active_tool)
    controller = IterationController(
        app.state.provider,
        app.state.dispatcher,
        model=req.model or settings.default_model,
        limits=EngineLimits.from_settings(settings),
        temperature=req.temperature,
        forced_tool=req.active_tool,
        status=status,
        cancel_event=cancel_event,
    )

    async def event_iter():
        last_frame_ts = time.monotonic()
        done_event = asyncio.Event()
        queue: asyncio.Queue[bytes] = asyncio.Queue()

        async def heartbeat_loop():
            try:
                while not done_event.is_set():
                    await asyncio.sleep(settings.stream_heartbeat_sec)
                    if time.monotonic() - last_frame_ts >= settings.stream_heartbeat_sec:
                        await queue.put(encode_heartbeat())
            except asyncio.CancelledError:
                pass

        async def produce_loop():
            nonlocal last_frame_ts
            stream_id_var.set(stream_id)
            log.info({"event": "stream.start", "model": controller.model, "messages": len(req.messages), "thread_id": thread_id})
            try:
                async for event in controller.run(req.messages):
                    last_frame_ts = time.monotonic()
                    await queue.put(encode_event(event))
                if thread_id is not None and controller.output_text:
                    append_message(thread_id, "assistant", controller.output_text)
            finally:
                done_event.set()

        metrics.ACTIVE_STREAMS.inc()
        hb_task = asyncio.create_task(heartbeat_loop())
        prod_task = asyncio.create_task(produce_loop())
        try:
            while True:
                if done_event.is_set() and queue.empty():
                    break
                try:
                    chunk = await asyncio.wait_for(queue.get(), timeout=0.5)
                    yield chunk
                except asyncio.TimeoutError:
                    continue
        finally:
            prod_task.cancel(); hb_task.cancel()
            ACTIVE_STREAMS.pop(stream_id, None)
            metrics.ACTIVE_STREAMS.dec()
            log.info({"event": "stream.end", "outcome": controller.outcome})

    headers = {**STREAM_HEADERS, "X-Stream-Id": stream_id}
    if thread_id is not None:
        headers["X-Thread-Id"] = thread_id
    return StreamingResponse(event_iter(), headers=headers)


@app.post("/chat/streams/{stream_id}/cancel")
async def cancel_stream(stream_id: str) -> JSONResponse:
    cancel_event = ACTIVE_STREAMS.get(stream_id)
    if cancel_event is None:
        raise HTTPException(status_code=404, detail="stream id not found or already completed")
    cancel_event.set()
    return JSONResponse(content={"status": "cancelling", "stream_id": stream_id})
