from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from app.models.audit import IngestionLog, ModerationLog, SourceReference
from app.models.ingestion_cache import IngestionCacheEntry
from app.models.slot import Slot
from conftest import build_pipeline
from ingestion.core.errors import AIError, IngestionError, ModerationError, ValidationError
from ingestion.core.pipeline import RequestContext
from ingestion.core.validator import ValidatedRecord


MENTAL = {
    "name": "Mental",
    "provider": "Nolimit City",
    "rtp": 96.08,
    "volatility": "very high",
    "max_win": "66666x",
    "theme": "Asylum horror",
    "features": "xWays, xSplit, Enhancer Cells",
    "release_year": 2021,
    "confidence": 85,
    "sources": ["https://www.nolimitcity.com/games/mental", "https://stake.com/casino/games/mental"],
    "twitch_safe": True,
}


def _rows(session_factory, model):
    with session_factory() as s:
        return s.execute(select(model)).scalars().all()


def _ingest(pipeline, payload, context=None):
    return asyncio.run(pipeline.ingest(payload, context))


# Scenario A: fresh insert


def test_fresh_slot_is_inserted(pipeline, upstream, session_factory):
    upstream.text_replies = [MENTAL]

    result = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City"}, RequestContext("admin-1", "10.0.0.1"))

    assert result.ok is True
    assert result.action == "inserted"
    assert result.needs_review is False
    assert result.source == "google_ai"
    assert result.confidence == 85
    assert result.image.status == "not_found"
    assert result.warnings == ["1 source(s) rejected for compliance"]
    assert result.slot["volatility"] == "very_high"
    assert result.slot["max_win_multiplier"] == 66666.0

    [slot] = _rows(session_factory, Slot)
    assert (slot.name, slot.provider, slot.moderation_status) == ("Mental", "Nolimit City", "approved")
    assert slot.source_citations == ["https://www.nolimitcity.com/games/mental"]
    assert str(slot.id) == result.slot["id"]

    [log_row] = _rows(session_factory, IngestionLog)
    assert log_row.status == "completed"
    assert log_row.extraction_source == "google_ai"
    assert log_row.result_slot_id == slot.id
    assert log_row.requested_by == "admin-1"
    assert log_row.ip_address == "10.0.0.1"

    [moderation] = _rows(session_factory, ModerationLog)
    assert (moderation.check_type, moderation.verdict, moderation.slot_id) == ("content_filter", "approved", slot.id)

    [ref] = _rows(session_factory, SourceReference)
    assert ref.domain == "nolimitcity.com"

    [cache] = _rows(session_factory, IngestionCacheEntry)
    assert cache.cache_key == "slot:nolimit_city:mental"


def test_response_shape(pipeline, upstream):
    upstream.text_replies = [MENTAL]
    body = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City", "skipImage": True}).to_response()

    assert set(body) == {"action", "slot", "confidence", "source", "needsReview", "image", "warnings", "duration_ms"}
    assert body["needsReview"] is False
    assert body["image"] == {"url": None, "status": "pending", "reason": "skipped"}
    assert body["slot"]["name"] == "Mental"


# Scenario B: repeat is served from cache


def test_repeat_request_is_served_from_cache(pipeline, upstream, session_factory):
    upstream.text_replies = [MENTAL]
    first = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City"})

    second = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City", "forceRefresh": False})

    assert second.action == "cached"
    assert second.source == "cache"
    assert second.confidence == 85
    assert second.slot["id"] == first.slot["id"]
    assert len(upstream.text_calls) == 1
    assert len(_rows(session_factory, IngestionLog)) == 2


def test_skip_cache_falls_through_to_duplicate_check(pipeline, upstream):
    upstream.text_replies = [MENTAL]
    _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City"})

    result = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City", "skip_cache": True})
    assert result.action == "duplicate"
    assert result.source == "database"
    assert len(upstream.text_calls) == 1


# Scenario C and the confidence gate


def test_low_confidence_is_flagged_for_review(pipeline, upstream, session_factory):
    upstream.text_replies = [{**MENTAL, "confidence": 40}]

    result = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City", "skipImage": True})

    assert result.needs_review is True
    assert "Low confidence (40/60) - flagged for manual review" in result.warnings
    [slot] = _rows(session_factory, Slot)
    assert slot.moderation_status == "manual_review"
    [moderation] = _rows(session_factory, ModerationLog)
    assert moderation.verdict == "manual_review"


@pytest.mark.parametrize("confidence,status,needs_review", [(59, "manual_review", True), (60, "approved", False)])
def test_confidence_gate_boundary(pipeline, upstream, confidence, status, needs_review):
    upstream.text_replies = [{**MENTAL, "confidence": confidence}]
    result = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City", "skipImage": True})
    assert result.needs_review is needs_review
    assert result.record.moderation_status == status


@pytest.mark.parametrize(
    "reply",
    [
        {"name": "Mental", "provider": "Nolimit City", "confidence": "95"},
        {"name": "Mental", "provider": "Nolimit City", "rtp": 96.08, "volatility": "high", "max_win": "66666x"},
    ],
)
def test_parametric_fallback_confidence_is_capped(pipeline, upstream, session_factory, reply):
    # grounded stage fails on every attempt, plain stage answers
    upstream.text_replies = [500, 500, 500, reply]

    result = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City", "skipImage": True})

    assert result.source == "gemini_ai"
    assert result.confidence == 70
    [slot] = _rows(session_factory, Slot)
    assert slot.confidence_score == 70


# Scenario D: image quarantine


def test_all_flagged_images_are_quarantined(pipeline, upstream, session_factory):
    urls = [f"https://cdn.example.org/mental-{i}.png" for i in range(3)]
    upstream.add_image_candidates(urls)
    upstream.vision_replies = [{"safe": False, "reason": "gore"}] * 3
    upstream.text_replies = [MENTAL]

    result = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City"})

    assert result.image.status == "quarantined"
    assert result.record.image_safety_status == "quarantined"
    assert any("quarantined" in w for w in result.warnings)
    assert upstream.vision_calls == 3

    [slot] = _rows(session_factory, Slot)
    assert slot.image == urls[0]
    assert slot.image_safety_status == "quarantined"

    quarantine = [m for m in _rows(session_factory, ModerationLog) if m.check_type == "image_safety"]
    assert len(quarantine) == 1
    assert quarantine[0].verdict == "quarantined"
    assert quarantine[0].flagged_reasons == ["ai_image_safety_check_failed"]


def test_safe_image_is_attached(pipeline, upstream, session_factory):
    upstream.add_image_candidates(["https://cdn.example.org/mental-cover.png"])
    upstream.text_replies = [MENTAL]

    result = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City"})

    assert result.image.status == "safe"
    assert result.slot["image"] == "https://cdn.example.org/mental-cover.png"
    assert result.to_response()["image"] == {
        "url": "https://cdn.example.org/mental-cover.png",
        "status": "safe",
        "reason": "ok",
    }
    [slot] = _rows(session_factory, Slot)
    assert slot.image_safety_status == "safe"


# Safety gate


@pytest.mark.parametrize(
    "payload",
    [{"name": "xXx Slot"}, {"name": "Mental", "provider": "NSFW Studios"}],
)
def test_blocked_content_never_reaches_the_model(pipeline, upstream, session_factory, payload):
    with pytest.raises(ModerationError) as exc:
        _ingest(pipeline, payload)

    assert exc.value.status_code == 422
    assert upstream.text_calls == []
    assert upstream.search_calls == 0

    [log_row] = _rows(session_factory, IngestionLog)
    assert log_row.status == "failed"
    assert log_row.error_class == "moderation_error"
    assert _rows(session_factory, Slot) == []


# Duplicates and forced refresh


def test_existing_slot_is_reported_as_duplicate(pipeline, repository, upstream):
    repository.upsert_record(ValidatedRecord(name="Gates of Olympus", provider="Pragmatic Play", confidence_score=90))

    result = _ingest(pipeline, {"name": "gates of olympus", "provider": "Pragmatic Play"})

    assert result.action == "duplicate"
    assert result.confidence == 90
    assert result.needs_review is False
    assert upstream.text_calls == []


def test_force_refresh_reextracts_and_updates(pipeline, repository, upstream, session_factory):
    existing = repository.upsert_record(
        ValidatedRecord(name="Gates of Olympus", provider="Pragmatic Play", rtp=96.5, confidence_score=90)
    )
    upstream.text_replies = [{"name": "Gates of Olympus", "provider": "Pragmatic Play", "volatility": "high", "confidence": 92}]

    result = _ingest(
        pipeline, {"name": "Gates of Olympus", "provider": "Pragmatic Play", "forceRefresh": True, "skipImage": True}
    )

    assert result.action == "updated"
    assert result.slot["id"] == str(existing.id)
    [slot] = _rows(session_factory, Slot)
    assert slot.rtp == 96.5
    assert slot.volatility == "high"
    assert slot.confidence_score == 92


# Failures


def test_invalid_input_is_audited(pipeline, session_factory):
    with pytest.raises(ValidationError):
        _ingest(pipeline, {"name": ""})

    [log_row] = _rows(session_factory, IngestionLog)
    assert log_row.slot_name == "unknown"
    assert log_row.status == "failed"
    assert log_row.error_class == "validation_error"


def test_ai_failure_is_audited(pipeline, upstream, session_factory):
    upstream.text_replies = []

    with pytest.raises(AIError):
        _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City"}, RequestContext("admin-1"))

    [log_row] = _rows(session_factory, IngestionLog)
    assert log_row.status == "failed"
    assert log_row.error_class == "ai_error"
    assert log_row.error_message.startswith("Gemini 500")
    assert log_row.requested_by == "admin-1"
    assert _rows(session_factory, Slot) == []


def test_foreign_exception_is_classified(pipeline, repository, upstream, monkeypatch):
    upstream.text_replies = [MENTAL]

    def boom(_record):
        raise RuntimeError("duplicate key value violates unique constraint")

    monkeypatch.setattr(repository, "upsert_record", boom)

    with pytest.raises(IngestionError) as exc:
        _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City", "skipImage": True})
    assert exc.value.kind.value == "duplicate_error"
    assert isinstance(exc.value.__cause__, RuntimeError)


def test_side_effect_failures_do_not_change_the_result(pipeline, repository, upstream, monkeypatch):
    upstream.text_replies = [MENTAL]

    def boom(*_args, **_kwargs):
        raise RuntimeError("audit table missing")

    monkeypatch.setattr(repository, "write_ingestion_log", boom)
    monkeypatch.setattr(repository, "cache_set", boom)

    result = _ingest(pipeline, {"name": "Mental", "provider": "Nolimit City", "skipImage": True})
    assert result.action == "inserted"


# Batch


def test_batch_isolates_failures_and_summarizes(repository, http_client, settings, upstream):
    sleeps: list[float] = []
    pipeline = build_pipeline(repository, http_client, settings, sleeps=sleeps)
    upstream.text_replies = [MENTAL, {"name": "Gates of Olympus", "provider": "Pragmatic Play", "confidence": 30}]

    batch = asyncio.run(
        pipeline.ingest_batch(
            [
                {"name": "Mental", "provider": "Nolimit City", "skipImage": True},
                {"name": "xXx Slot"},
                {"name": "Gates of Olympus", "provider": "Pragmatic Play", "skipImage": True},
            ]
        )
    )

    assert batch.summary == {
        "total": 3,
        "succeeded": 2,
        "failed": 1,
        "inserted": 2,
        "updated": 0,
        "cached": 0,
        "duplicates": 0,
        "needs_review": 1,
        "truncated": False,
    }
    assert batch.errors[0]["name"] == "xXx Slot"
    assert batch.errors[0]["error"]["error"]["type"] == "moderation_error"
    # one pause after every item
    assert sleeps == [settings.batch_delay_seconds] * 3


def test_batch_is_truncated(pipeline, upstream):
    batch = asyncio.run(pipeline.ingest_batch([{"name": ""}] * 52))

    assert batch.summary["total"] == 50
    assert batch.summary["failed"] == 50
    assert batch.summary["truncated"] is True
    assert upstream.text_calls == []


def test_empty_batch(pipeline):
    batch = asyncio.run(pipeline.ingest_batch([]))
    assert batch.results == [] and batch.errors == []
    assert batch.summary["total"] == 0
