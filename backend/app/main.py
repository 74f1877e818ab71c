"""FastAPI application for the admin slot ingestion service.

Operational goals:
- Every failure is a typed JSON error with the taxonomy's status code
- Strict bearer authentication with admin-only authorization
- DB-backed per-subject rate limiting
- Request-id propagation and structured access logs
- Side effects (cache, audit rows) dispatched off the response path
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

import app.models as _models  # noqa: F401  (register all ORM models deterministically)
from app.api.v1.router import router as api_router
from app.core.db import create_db_engine, create_session_factory
from app.services.dispatcher import BackgroundDispatcher, Dispatcher
from ingestion.core.config import IngestionSettings, load_settings
from ingestion.core.errors import IngestionError, classify_error
from ingestion.core.log import get_logger


logger = logging.getLogger("slots.access")
# Access logs are part of the audit trail; emit them by default.
logger.setLevel(logging.INFO)

log = get_logger("slots.ingestion.api")

CORS_ORIGINS_ENV = "SLOT_CORS_ORIGINS"


def _cors_origins() -> list[str]:
    raw = os.environ.get(CORS_ORIGINS_ENV, "*")
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


def _error_response(err: IngestionError, request_id: Optional[str] = None) -> JSONResponse:
    headers = {"x-request-id": request_id} if request_id else None
    return JSONResponse(status_code=err.status_code, content=err.to_json(), headers=headers)


def create_app(
    *,
    settings: Optional[IngestionSettings] = None,
    session_factory: Optional[sessionmaker[Session]] = None,
    http: Optional[httpx.AsyncClient] = None,
    dispatcher: Optional[Dispatcher] = None,
) -> FastAPI:
    """Build the app. Anything not injected is created on startup and released on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned_http = owned_dispatcher = engine = None
        state = app.state
        if state.settings is None:
            state.settings = load_settings()
        if state.session_factory is None:
            engine = create_db_engine()
            state.session_factory = create_session_factory(engine)
        if state.http is None:
            owned_http = state.http = httpx.AsyncClient()
        if state.dispatcher is None:
            owned_dispatcher = state.dispatcher = BackgroundDispatcher()
        try:
            yield
        finally:
            if owned_dispatcher is not None:
                owned_dispatcher.shutdown()
            if owned_http is not None:
                await owned_http.aclose()
            if engine is not None:
                engine.dispose()

    app = FastAPI(
        title="Slot Ingestion API",
        version="2.0.0",
        openapi_url="/openapi.json",
        docs_url=None,
        redoc_url=None,
        description="Admin-only AI slot metadata ingestion.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.http = http
    app.state.dispatcher = dispatcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(api_router)

    @app.exception_handler(IngestionError)
    async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
        log.error(
            "handler.error",
            path=request.url.path,
            type=exc.kind.value,
            message=exc.message,
        )
        return _error_response(exc, request.headers.get("x-request-id"))

    @app.middleware("http")
    async def request_id_and_access_log(request: Request, call_next: Callable):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start = time.time()
        try:
            response = await call_next(request)
        except Exception as e:  # noqa: BLE001
            classified = classify_error(e)
            logger.exception("Unhandled error", extra={"request_id": request_id})
            return _error_response(classified, request_id)

        duration_ms = int((time.time() - start) * 1000)
        response.headers["x-request-id"] = request_id

        # Structured access log (no sensitive content).
        logger.info(
            json.dumps(
                {
                    "event": "access",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": getattr(response, "status_code", None),
                    "duration_ms": duration_ms,
                }
            )
        )
        return response

    return app


app = create_app()
