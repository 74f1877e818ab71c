"""API v1 root router."""

from __future__ import annotations

from fastapi import APIRouter

from app.api.v1.ingest import router as ingest_router


router = APIRouter(prefix="/v1")
router.include_router(ingest_router, tags=["ingestion"])
