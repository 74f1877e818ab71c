"""API dependencies.

Everything a request needs is built from `app.state` (settings, session
factory, shared httpx client, side-effect dispatcher), so tests can swap any
piece with `app.dependency_overrides` or by passing it to `create_app`.
"""

from __future__ import annotations

from fastapi import Depends, Request

from app.repositories.ingestion_repo import DEFAULT_ENDPOINT, IngestionRepository
from app.security.auth import Principal, require_admin
from ingestion.core.config import IngestionSettings
from ingestion.core.extractor import GeminiClient, ImageSafetyFinder, SlotExtractor
from ingestion.core.pipeline import IngestionPipeline


def get_settings(request: Request) -> IngestionSettings:
    return request.app.state.settings


def get_repository(request: Request) -> IngestionRepository:
    state = request.app.state
    return IngestionRepository(state.session_factory, state.settings)


def get_pipeline(request: Request, repository: IngestionRepository = Depends(get_repository)) -> IngestionPipeline:
    state = request.app.state
    settings: IngestionSettings = state.settings
    client = GeminiClient(state.http, settings)
    return IngestionPipeline(
        repository,
        SlotExtractor(client),
        ImageSafetyFinder(state.http, client, settings),
        state.dispatcher,
        settings,
    )


def enforce_rate_limit(
    principal: Principal = Depends(require_admin),
    repository: IngestionRepository = Depends(get_repository),
) -> Principal:
    """Per-subject request budget, checked after authentication."""
    repository.check_rate_limit(principal.sub, DEFAULT_ENDPOINT)
    return principal


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"
