"""Admin slot ingestion endpoint.

POST /v1/admin/ingest-slot
    Authorization: Bearer <HS256 JWT with an admin-class role>
    Body: {"name": "Mental", "provider": "Nolimit City"}
    Batch: {"batch": [{"name": "Mental"}, {"name": "Wanted Dead or a Wild"}]}
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from app.api.deps import enforce_rate_limit, get_client_ip, get_pipeline, get_settings
from app.schemas.ingestion import BatchIngestResponse, ErrorResponse, SingleIngestResponse
from app.security.auth import Principal
from ingestion.core.config import IngestionSettings
from ingestion.core.errors import ValidationError
from ingestion.core.log import get_logger
from ingestion.core.pipeline import IngestionPipeline, RequestContext

log = get_logger("slots.ingestion.api")

router = APIRouter()

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    code: {"model": ErrorResponse} for code in (400, 401, 409, 422, 429, 500, 502)
}


async def _read_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e


@router.post("/admin/ingest-slot", responses=_ERROR_RESPONSES)
async def ingest_slot(
    request: Request,
    principal: Principal = Depends(enforce_rate_limit),
    pipeline: IngestionPipeline = Depends(get_pipeline),
    settings: IngestionSettings = Depends(get_settings),
) -> dict[str, Any]:
    ip = get_client_ip(request)
    log.info("auth.verified", user_id=principal.sub, ip=ip, roles=sorted(r.value for r in principal.roles))
    context = RequestContext(requested_by=principal.sub, ip_address=ip)

    body = await _read_body(request)

    if isinstance(body, dict) and isinstance(body.get("batch"), list):
        items = body["batch"]
        if not items:
            raise ValidationError("Batch array is empty")
        if len(items) > settings.batch_max_items:
            raise ValidationError(
                f"Batch size exceeds maximum of {settings.batch_max_items}", {"received": len(items)}
            )

        batch = await pipeline.ingest_batch(items, context)
        response = BatchIngestResponse(
            **batch.summary,
            results=[r.to_response() for r in batch.results],
            errors=batch.errors,
        )
        return response.model_dump(by_alias=True)

    if not isinstance(body, dict) or not body.get("name"):
        raise ValidationError('Field "name" is required. For batch, use {"batch": [...]}')

    result = await pipeline.ingest(body, context)
    return SingleIngestResponse.model_validate(result.to_response()).model_dump(by_alias=True)
