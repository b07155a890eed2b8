"""
aiswitch.proxy — HTTP gateway (FastAPI) over the orchestration service.

Exposes the vendor-agnostic surface to local tools that would rather speak
HTTP than import Python:

    GET    /health
    GET    /v1/models               vendor catalogue
    GET    /v1/active               active vendor + adapter status
    PUT    /v1/active               switch the active vendor
    POST   /v1/complete             one complete answer
    POST   /v1/stream               server-sent events, one frame per chunk
    POST   /v1/test-connection      probe a candidate key (no side effects)
    PUT    /v1/keys/{vendor}        validate + store a key
    DELETE /v1/keys/{vendor}        remove a key

Runs on ``http://127.0.0.1:8765`` by default (``aiswitch serve``).
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from aiswitch import __version__
from aiswitch.adapters import validate_turns
from aiswitch.core.config import ConfigurationStore
from aiswitch.core.errors import (
    AISwitchError,
    ConfigurationError,
    CredentialStoreError,
    NoActiveClientError,
    UnknownVendorError,
    ValidationError,
)
from aiswitch.core.models import CompletionOptions, CompletionResult, ConversationTurn
from aiswitch.credentials import CredentialStore
from aiswitch.keys import ApiKeyManager, ModelInfo
from aiswitch.service import AIService

logger = logging.getLogger("aiswitch.proxy")


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class CompletionRequest(BaseModel):
    messages: list[ConversationTurn]
    options: CompletionOptions | None = None


class ActiveModelRequest(BaseModel):
    vendor: str


class ApiKeyRequest(BaseModel):
    api_key: str


class TestConnectionRequest(BaseModel):
    vendor: str
    api_key: str


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    config: ConfigurationStore | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the gateway; *config* and *transport* are injectable for tests."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = config if config is not None else ConfigurationStore.load()
        credentials: CredentialStore | None = None
        if store.get("ai.useSecureStorage") and store.get("ai.supabaseUrl"):
            credentials = CredentialStore.from_config(store, transport=transport)

        service = AIService(store, transport=transport)
        keys = ApiKeyManager(store, service, credentials)
        if credentials is not None:
            try:
                await keys.load_stored_keys()
            except CredentialStoreError as exc:
                logger.warning("Could not load stored API keys: %s", exc)

        app.state.config = store
        app.state.service = service
        app.state.keys = keys
        logger.info("aiswitch gateway started (active=%s)", service.get_active_model())

        yield

        await service.aclose()
        if credentials is not None:
            await credentials.aclose()
        logger.info("aiswitch gateway shut down.")

    app = FastAPI(
        title="aiswitch gateway",
        description="Provider-agnostic completion layer over Gemini and Groq.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    status_for: list[tuple[type[AISwitchError], int]] = [
        (ValidationError, 422),
        (UnknownVendorError, 404),
        (NoActiveClientError, 503),
        (ConfigurationError, 409),
        (CredentialStoreError, 502),
    ]

    @app.exception_handler(AISwitchError)
    async def _aiswitch_error(request: Request, exc: AISwitchError) -> JSONResponse:
        status = next((code for cls, code in status_for if isinstance(exc, cls)), 500)
        return JSONResponse(
            status_code=status,
            content={"error": {"code": exc.code, "message": exc.message}},
        )


def _register_routes(app: FastAPI) -> None:

    def _service(request: Request) -> AIService:
        return request.app.state.service

    def _keys(request: Request) -> ApiKeyManager:
        return request.app.state.keys

    async def _active_status(service: AIService) -> dict[str, Any]:
        client = await service.get_active_client()
        return {
            "vendor": service.get_active_model(),
            "model_name": client.model_name() if client else None,
            "token_limit": client.token_limit() if client else None,
            "available": bool(client and client.is_available()),
        }

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "aiswitch", "version": __version__}

    @app.get("/v1/models", response_model=list[ModelInfo])
    async def list_models(request: Request) -> list[ModelInfo]:
        return _keys(request).available_models()

    @app.get("/v1/active")
    async def get_active(request: Request) -> dict[str, Any]:
        return await _active_status(_service(request))

    @app.put("/v1/active")
    async def put_active(body: ActiveModelRequest, request: Request) -> dict[str, Any]:
        service = _service(request)
        await service.set_active_model(body.vendor)
        return await _active_status(service)

    @app.post("/v1/complete", response_model=CompletionResult)
    async def complete(body: CompletionRequest, request: Request) -> CompletionResult:
        return await _service(request).complete(body.messages, body.options)

    @app.post("/v1/stream")
    async def stream(body: CompletionRequest, request: Request) -> StreamingResponse:
        service = _service(request)
        # Preconditions surface as HTTP errors before the stream opens
        validate_turns(body.messages)
        client = await service.get_active_client()
        if client is None:
            raise NoActiveClientError("No active AI client available")
        if not client.api_key:
            raise ConfigurationError(f"{client.model_name()} has no API key configured")

        return StreamingResponse(
            _sse_frames(service, body),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/v1/test-connection")
    async def test_connection(body: TestConnectionRequest, request: Request) -> dict[str, Any]:
        ok = await _service(request).test_connection(body.vendor, body.api_key)
        return {"vendor": body.vendor, "ok": ok}

    @app.put("/v1/keys/{vendor}")
    async def put_key(vendor: str, body: ApiKeyRequest, request: Request) -> dict[str, Any]:
        await _keys(request).set_api_key(vendor, body.api_key)
        return {"vendor": vendor, "stored": True}

    @app.delete("/v1/keys/{vendor}")
    async def delete_key(vendor: str, request: Request) -> dict[str, Any]:
        await _keys(request).remove_api_key(vendor)
        return {"vendor": vendor, "stored": False}


async def _sse_frames(service: AIService, body: CompletionRequest) -> AsyncIterator[str]:
    """Relay chunks as ``data:`` frames, then the final result, then ``[DONE]``."""
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    cancel = asyncio.Event()

    async def _run() -> CompletionResult:
        try:
            return await service.stream_complete(
                body.messages, queue.put_nowait, body.options, cancel=cancel
            )
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(_run())
    try:
        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield f"data: {json.dumps({'delta': chunk})}\n\n"
        result = await task
        yield f"data: {json.dumps({'result': result.model_dump(mode='json')})}\n\n"
        yield "data: [DONE]\n\n"
    finally:
        # Client went away mid-stream: stop reading from the vendor
        if not task.done():
            cancel.set()
            await task


app = create_app()
