"""FastAPI application exposing per-session memory over Redis."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .compaction import Compactor, WindowCompactor
from .config import load_config
from .errors import StoreUnavailableError
from .models import AckResponse, DeleteLastRequest, MemoryMessages, MemoryResponse
from .registry import SessionCleanupRegistry
from .service import MemoryService
from .store import RedisStore
from .summarizer import Summarizer, create_summarizer

logger = logging.getLogger(__name__)


# -----------------------------
# Utilities
# -----------------------------
def _make_store(cfg: Dict[str, Any]) -> RedisStore:
    url = str(cfg.get("redis", {}).get("url") or "redis://localhost:6379/0")
    return RedisStore.from_url(url)


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    store: Optional[RedisStore] = None,
    compactor: Optional[Compactor] = None,
    registry: Optional[SessionCleanupRegistry] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    window_size = int(cfg["memory"]["window_size"])

    # CORS
    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    # Services
    owns_store = store is None
    if store is None:
        store = _make_store(cfg)
    summarizer: Optional[Summarizer] = None
    if compactor is None and cfg.get("compaction", {}).get("enabled", True):
        summarizer = create_summarizer(cfg)
        compactor = WindowCompactor(summarizer, window_size)
    service = MemoryService(
        store,
        window_size=window_size,
        registry=registry,
        compactor=compactor,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Memory server up (window_size=%d)", window_size)
        yield
        await service.drain()
        if summarizer is not None:
            await summarizer.aclose()
        # Injected stores belong to the caller.
        if owns_store:
            await store.close()

    app = FastAPI(title="Session Memory Server", version="0.1.0", lifespan=lifespan)
    app.state.service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": "Store unavailable"})

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "store": await store.ping(),
            "window_size": window_size,
            "pending_compactions": service.pending_compactions,
        }

    @app.get("/sessions/{session_id}/memory", response_model=MemoryResponse)
    async def get_memory(session_id: str) -> MemoryResponse:
        return await service.read(session_id)

    @app.post("/sessions/{session_id}/memory", response_model=AckResponse)
    async def post_memory(session_id: str, body: MemoryMessages) -> AckResponse:
        await service.append(session_id, body.messages)
        return AckResponse(status="Ok")

    @app.delete("/sessions/{session_id}/memory", response_model=AckResponse)
    async def delete_memory(session_id: str) -> AckResponse:
        await service.delete(session_id)
        return AckResponse(status="Ok")

    @app.delete("/sessions/{session_id}/memory/last", response_model=AckResponse)
    async def delete_last_messages(session_id: str, req: DeleteLastRequest):
        if await service.delete_last(session_id, req.count, req.message_text):
            return AckResponse(status="Ok")
        return JSONResponse(
            status_code=400,
            content=AckResponse(status="Failed: Message text mismatch").model_dump(),
        )

    return app
