"""Schemas for the admin slot ingestion endpoint.

Request bodies are validated by the pipeline itself (so malformed input gets
the taxonomy's `validation_error` shape); these models define the response
contract.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


ActionEnum = Literal["inserted", "updated", "cached", "duplicate"]


class SlotSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: Optional[str] = None
    provider: Optional[str] = None
    rtp: Optional[float] = None
    volatility: Optional[str] = None
    max_win_multiplier: Optional[float] = None
    theme: Optional[str] = None
    features: Optional[str] = None
    image: Optional[str] = None
    twitch_safe: Optional[bool] = None
    release_year: Optional[int] = None


class ImageStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: Optional[str] = None
    status: str
    reason: str


class IngestOutcome(BaseModel):
    """One pipeline result as returned to API callers."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    action: ActionEnum
    slot: SlotSummary
    confidence: int = Field(ge=0, le=100)
    source: str
    needs_review: bool = Field(alias="needsReview")
    image: Optional[ImageStatus] = None
    warnings: list[str] = Field(default_factory=list)
    duration_ms: int


class SingleIngestResponse(IngestOutcome):
    ok: bool = True
    mode: Literal["single"] = "single"


class BatchItemError(BaseModel):
    name: Optional[Any] = None
    provider: Optional[Any] = None
    error: dict[str, Any]


class BatchIngestResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool = True
    mode: Literal["batch"] = "batch"
    total: int
    succeeded: int
    failed: int
    inserted: int
    updated: int
    cached: int
    duplicates: int
    needs_review: int
    truncated: bool
    results: list[IngestOutcome]
    errors: list[BatchItemError]


class ErrorBody(BaseModel):
    type: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: str


class ErrorResponse(BaseModel):
    ok: Literal[False] = False
    error: ErrorBody
