"""Slot ingestion pipeline orchestrator.

Execution order for one submission:
    1. Validating        -> ValidationError
    2. SafetyGate        -> ModerationError (before any AI spend)
    3. CacheCheck        -> terminal `cached`            (skip_cache / force_refresh)
    4. DuplicateCheck    -> terminal `duplicate`         (force_refresh)
    5. Extracting        -> AIError
    6. Normalizing       -> ValidationError
    7. SourceCompliance  (warns only)
    8. ImagePipeline     (skip_image; quarantine is logged, never fatal)
    9. ConfidenceGate    -> approved | manual_review
   10. Persisting        -> InternalError
   11. Logging           (cache, source refs, moderation log; dispatched)

An ingestion log row is dispatched on every exit path. Batches run strictly
sequentially with a fixed pause between items.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from app.repositories.ingestion_repo import IngestionRepository, build_cache_key
from app.services.dispatcher import Dispatcher
from ingestion.core.config import DEFAULT_SETTINGS, IngestionSettings
from ingestion.core.errors import IngestionError, ModerationError, classify_error
from ingestion.core.extractor import ImageResult, ImageSafetyFinder, SlotExtractor
from ingestion.core.log import Timer, get_logger
from ingestion.core.validator import (
    CompliantSource,
    ValidatedRecord,
    check_content_safety,
    is_provider_safe,
    validate_input,
    validate_slot_data,
)

log = get_logger("slots.ingestion.pipeline")

SOURCE_CACHE = "cache"
SOURCE_DATABASE = "database"

ACTION_INSERTED = "inserted"
ACTION_UPDATED = "updated"
ACTION_CACHED = "cached"
ACTION_DUPLICATE = "duplicate"

QUARANTINE_REASON = "ai_image_safety_check_failed"


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Who asked, for the audit trail."""

    requested_by: str = "system"
    ip_address: Optional[str] = None


@dataclass(slots=True)
class ProcessingContext:
    """Per-run scratch state. Never persisted with the slot."""

    log_entry: dict[str, Any]
    warnings: list[str] = field(default_factory=list)
    compliant_sources: list[CompliantSource] = field(default_factory=list)
    rejected_sources: list[str] = field(default_factory=list)
    provider_safe: bool = True
    source: Optional[str] = None
    tokens: int = 0


@dataclass(frozen=True, slots=True)
class PipelineResult:
    action: str
    slot: dict[str, Any]
    confidence: int
    source: str
    needs_review: bool
    warnings: list[str]
    duration_ms: int
    image: Optional[ImageResult] = None
    record: Optional[ValidatedRecord] = None
    ok: bool = True

    def to_response(self) -> dict[str, Any]:
        slot = self.slot
        return {
            "action": self.action,
            "slot": {
                "id": slot.get("id"),
                "name": slot.get("name"),
                "provider": slot.get("provider"),
                "rtp": slot.get("rtp"),
                "volatility": slot.get("volatility"),
                "max_win_multiplier": slot.get("max_win_multiplier"),
                "theme": slot.get("theme"),
                "features": slot.get("features"),
                "image": slot.get("image"),
                "twitch_safe": slot.get("twitch_safe"),
                "release_year": slot.get("release_year"),
            },
            "confidence": self.confidence,
            "source": self.source,
            "needsReview": self.needs_review,
            "image": self.image.to_json() if self.image else None,
            "warnings": list(self.warnings),
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True, slots=True)
class BatchResult:
    results: list[PipelineResult]
    errors: list[dict[str, Any]]
    summary: dict[str, Any]


def _empty_summary() -> dict[str, Any]:
    return {
        "total": 0,
        "succeeded": 0,
        "failed": 0,
        "inserted": 0,
        "updated": 0,
        "cached": 0,
        "duplicates": 0,
        "needs_review": 0,
        "truncated": False,
    }


class IngestionPipeline:
    def __init__(
        self,
        repository: IngestionRepository,
        extractor: SlotExtractor,
        image_finder: ImageSafetyFinder,
        dispatcher: Dispatcher,
        settings: IngestionSettings = DEFAULT_SETTINGS,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._repo = repository
        self._extractor = extractor
        self._image_finder = image_finder
        self._dispatcher = dispatcher
        self._settings = settings
        self._sleep = sleep

    async def ingest(self, payload: Any, context: Optional[RequestContext] = None) -> PipelineResult:
        context = context or RequestContext()
        raw = payload if isinstance(payload, Mapping) else {}
        ctx = ProcessingContext(
            log_entry={
                "slot_name": str(raw.get("name") or "unknown"),
                "provider_hint": raw.get("provider") or None,
                "requested_by": context.requested_by,
                "ip_address": context.ip_address,
                "metadata": {},
            }
        )
        timer = log.timer("pipeline.total")

        try:
            return await self._run(payload, ctx, timer)
        except Exception as e:
            classified = classify_error(e)
            duration_ms = timer.end(name=ctx.log_entry["slot_name"], error=classified.kind.value)
            ctx.log_entry.update(
                status="failed",
                error_type=classified.kind.value,
                error_message=classified.message,
                duration_ms=duration_ms,
            )
            self._write_audit(ctx)
            log.error(
                "pipeline.failed",
                name=ctx.log_entry["slot_name"],
                error_type=classified.kind.value,
                error_message=classified.message,
            )
            if classified is e:
                raise
            raise classified from e

    async def _run(self, payload: Any, ctx: ProcessingContext, timer: Timer) -> PipelineResult:
        # 1. Validating
        log.info("pipeline.start", name=ctx.log_entry["slot_name"], provider=ctx.log_entry["provider_hint"])
        request = validate_input(payload)
        name, provider, options = request.name, request.provider, request.options
        ctx.log_entry["slot_name"] = name
        ctx.log_entry["provider_hint"] = provider

        # 2. SafetyGate
        self._safety_gate(name, provider)
        ctx.provider_safe = is_provider_safe(provider, self._settings)
        ctx.log_entry["metadata"]["provider_safe"] = ctx.provider_safe

        cache_key = build_cache_key(name, provider)

        # 3. CacheCheck
        if not options.skip_cache and not options.force_refresh:
            cached = self._repo.cache_get(cache_key)
            if cached:
                log.info("pipeline.cache_hit", name=name)
                return self._short_circuit(ctx, timer, ACTION_CACHED, SOURCE_CACHE, cached)

        # 4. DuplicateCheck
        if not options.force_refresh:
            match = self._repo.check_duplicate(name, provider)
            if match.is_duplicate and match.existing_record:
                log.info("pipeline.duplicate", name=name, existing_id=match.existing_record.get("id"))
                ctx.log_entry["result_slot_id"] = match.existing_record.get("id")
                return self._short_circuit(ctx, timer, ACTION_DUPLICATE, SOURCE_DATABASE, match.existing_record)

        # 5. Extracting
        extraction = await self._extractor.extract_metadata(name, provider)
        ctx.source = extraction.source
        ctx.tokens = extraction.tokens
        ctx.log_entry["source"] = extraction.source
        ctx.log_entry["gemini_tokens_used"] = extraction.tokens
        ctx.log_entry["metadata"]["ai_source"] = extraction.source

        # 6. Normalizing
        record, sources = validate_slot_data(
            extraction.draft, name, self._settings, grounded=extraction.grounded
        )

        # 7. SourceCompliance
        ctx.compliant_sources = list(sources.compliant)
        ctx.rejected_sources = list(sources.rejected)
        if ctx.rejected_sources:
            ctx.warnings.append(f"{len(ctx.rejected_sources)} source(s) rejected for compliance")
            log.warning("pipeline.sources_rejected", name=name, rejected=ctx.rejected_sources)

        # 8. ImagePipeline
        if options.skip_image:
            image = ImageResult(url=None, status="pending", reason="skipped")
        else:
            image = await self._image_pipeline(record, ctx)

        # 9. ConfidenceGate
        threshold = self._settings.confidence_threshold
        needs_review = record.confidence_score < threshold
        if needs_review:
            record.moderation_status = "manual_review"
            ctx.warnings.append(
                f"Low confidence ({record.confidence_score}/{threshold}) - flagged for manual review"
            )
        else:
            record.moderation_status = "approved"

        # 10. Persisting
        upsert = self._repo.upsert_record(record)
        action = ACTION_INSERTED if upsert.is_new else ACTION_UPDATED

        # 11. Logging
        slot = {
            "id": str(upsert.id),
            **record.public_fields(),
            "image_safety_status": record.image_safety_status,
            "moderation_status": record.moderation_status,
        }
        if ctx.compliant_sources:
            self._dispatcher.submit(
                "source_references",
                self._repo.write_source_references,
                upsert.id,
                [
                    {"url": s.url, "domain": s.domain, "type": "review_site", "is_compliant": True}
                    for s in ctx.compliant_sources
                ],
            )
        self._dispatcher.submit("cache_set", self._repo.cache_set, cache_key, slot)
        self._dispatcher.submit(
            "moderation_log",
            self._repo.write_moderation_log,
            {
                "slot_id": upsert.id,
                "slot_name": record.name,
                "check_type": "content_filter",
                "status": record.moderation_status,
                "details": {
                    "confidence": record.confidence_score,
                    "source": ctx.source,
                    "twitch_safe": record.twitch_safe,
                },
            },
        )

        duration_ms = timer.end(name=record.name, action=action)
        ctx.log_entry.update(
            status="completed",
            confidence_score=record.confidence_score,
            result_slot_id=upsert.id,
            duration_ms=duration_ms,
        )
        self._write_audit(ctx)

        return PipelineResult(
            action=action,
            slot=slot,
            confidence=record.confidence_score,
            source=ctx.source or "",
            needs_review=needs_review,
            warnings=list(ctx.warnings),
            duration_ms=duration_ms,
            image=image,
            record=record,
        )

    def _safety_gate(self, name: str, provider: Optional[str]) -> None:
        verdict = check_content_safety(name, self._settings)
        if verdict.blocked:
            raise ModerationError(
                f'Blocked content in slot name: "{verdict.term}"',
                {"name": name, "blocked_term": verdict.term},
            )
        if provider:
            verdict = check_content_safety(provider, self._settings)
            if verdict.blocked:
                raise ModerationError(
                    f'Blocked content in provider name: "{verdict.term}"',
                    {"provider": provider, "blocked_term": verdict.term},
                )

    async def _image_pipeline(self, record: ValidatedRecord, ctx: ProcessingContext) -> ImageResult:
        image = await self._image_finder.find_safe_image(record.name, record.provider)
        if image.url:
            record.image = image.url
        record.image_safety_status = image.status

        if image.status == "quarantined":
            ctx.warnings.append("Image was quarantined - all candidates flagged by AI safety check")
            self._dispatcher.submit(
                "moderation_log",
                self._repo.write_moderation_log,
                {
                    "slot_name": record.name,
                    "check_type": "image_safety",
                    "status": "quarantined",
                    "details": {"name": record.name, "image_url": image.url, "reason": image.reason},
                    "flagged_reasons": [QUARANTINE_REASON],
                },
            )
        return image

    def _short_circuit(
        self,
        ctx: ProcessingContext,
        timer: Timer,
        action: str,
        source: str,
        slot: Mapping[str, Any],
    ) -> PipelineResult:
        name = ctx.log_entry["slot_name"]
        duration_ms = timer.end(name=name, action=action)
        confidence = slot.get("confidence_score") or 0
        ctx.log_entry.update(
            status="completed", source=source, duration_ms=duration_ms, confidence_score=slot.get("confidence_score")
        )
        self._write_audit(ctx)
        return PipelineResult(
            action=action,
            slot=dict(slot),
            confidence=confidence,
            source=source,
            needs_review=False,
            warnings=[],
            duration_ms=duration_ms,
        )

    def _write_audit(self, ctx: ProcessingContext) -> None:
        self._dispatcher.submit("ingestion_log", self._repo.write_ingestion_log, dict(ctx.log_entry))

    async def ingest_batch(
        self, items: Sequence[Any], context: Optional[RequestContext] = None
    ) -> BatchResult:
        if not isinstance(items, (list, tuple)) or not items:
            return BatchResult(results=[], errors=[], summary=_empty_summary())

        max_items = self._settings.batch_max_items
        batch = list(items[:max_items])
        results: list[PipelineResult] = []
        errors: list[dict[str, Any]] = []

        log.info("pipeline.batch_start", count=len(batch))

        for item in batch:
            try:
                results.append(await self.ingest(item, context))
            except IngestionError as e:
                raw = item if isinstance(item, Mapping) else {}
                errors.append({"name": raw.get("name"), "provider": raw.get("provider"), "error": e.to_json()})

            await self._sleep(self._settings.batch_delay_seconds)

        summary = {
            "total": len(batch),
            "succeeded": len(results),
            "failed": len(errors),
            "inserted": sum(1 for r in results if r.action == ACTION_INSERTED),
            "updated": sum(1 for r in results if r.action == ACTION_UPDATED),
            "cached": sum(1 for r in results if r.action == ACTION_CACHED),
            "duplicates": sum(1 for r in results if r.action == ACTION_DUPLICATE),
            "needs_review": sum(1 for r in results if r.needs_review),
            "truncated": len(items) > max_items,
        }
        log.info("pipeline.batch_complete", **summary)
        return BatchResult(results=results, errors=errors, summary=summary)
