"""Data access for the slot ingestion engine.

Caching, fixed-bucket rate limiting, duplicate detection, the idempotent slot
upsert and the append-only audit writers all live here. Every operation opens
its own short session from the injected factory.

Cache and audit operations are best-effort: they log and return instead of
raising, because the pipeline must not fail on an optimization or a log row.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.models.audit import IngestionLog, ModerationLog, SourceReference
from app.models.ingestion_cache import IngestionCacheEntry
from app.models.rate_limit import RateLimitWindow
from app.models.slot import Slot
from ingestion.core.config import DEFAULT_SETTINGS, IngestionSettings
from ingestion.core.errors import InternalError, RateLimitError
from ingestion.core.log import get_logger
from ingestion.core.validator import ValidatedRecord


UTC = timezone.utc
DEFAULT_ENDPOINT = "ingest-slot"
FUZZY_CANDIDATE_LIMIT = 5

log = get_logger("slots.ingestion.db")

_NON_ALNUM_SPACE = re.compile(r"[^a-z0-9\s]")
_WS = re.compile(r"\s+")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _key_part(value: Optional[str]) -> str:
    return _WS.sub("_", (value or "").strip().lower())


def build_cache_key(name: str, provider: Optional[str] = None) -> str:
    """`slot:{provider-or-_}:{name}`, lowercase, whitespace runs -> `_`."""
    return f"slot:{_key_part(provider) or '_'}:{_key_part(name)}"


def normalize_for_match(value: str) -> str:
    """Lowercase, punctuation stripped, whitespace collapsed."""
    return _WS.sub(" ", _NON_ALNUM_SPACE.sub("", value.lower())).strip()


@dataclass(frozen=True, slots=True)
class DuplicateMatch:
    is_duplicate: bool
    existing_record: Optional[dict[str, Any]] = None


@dataclass(frozen=True, slots=True)
class UpsertResult:
    id: uuid.UUID
    is_new: bool


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


class IngestionRepository:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: IngestionSettings = DEFAULT_SETTINGS,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock

    # Response cache

    def cache_get(self, key: str) -> Optional[dict[str, Any]]:
        try:
            with self._session_factory() as session:
                entry = session.execute(
                    select(IngestionCacheEntry)
                    .where(IngestionCacheEntry.cache_key == key)
                    .where(IngestionCacheEntry.expires_at > self._clock())
                    .limit(1)
                ).scalar_one_or_none()
                if entry is None:
                    return None
                response = dict(entry.response)

                try:
                    entry.hit_count = (entry.hit_count or 0) + 1
                    session.commit()
                except SQLAlchemyError as e:
                    session.rollback()
                    log.debug("cache.hit_count_failed", key=key, error=str(e))

            log.debug("cache.hit", key=key)
            return response
        except Exception as e:  # noqa: BLE001
            log.warning("cache.read_error", key=key, error=str(e))
            return None

    def cache_set(self, key: str, response: Mapping[str, Any]) -> None:
        expires_at = self._clock() + timedelta(hours=self._settings.cache_ttl_hours)
        try:
            with self._session_factory() as session:
                entry = session.execute(
                    select(IngestionCacheEntry).where(IngestionCacheEntry.cache_key == key)
                ).scalar_one_or_none()
                if entry is None:
                    session.add(
                        IngestionCacheEntry(cache_key=key, response=dict(response), expires_at=expires_at, hit_count=0)
                    )
                else:
                    entry.response = dict(response)
                    entry.expires_at = expires_at
                    entry.hit_count = 0
                session.commit()
            log.debug("cache.set", key=key, expires_at=expires_at.isoformat())
        except Exception as e:  # noqa: BLE001
            log.warning("cache.write_error", key=key, error=str(e))

    # Rate limiting

    def window_start(self, now: Optional[datetime] = None) -> datetime:
        bucket_seconds = self._settings.rate_limit_window_minutes * 60
        epoch = int((now or self._clock()).timestamp())
        return datetime.fromtimestamp(epoch - (epoch % bucket_seconds), tz=UTC)

    def check_rate_limit(self, identifier: str, endpoint: str = DEFAULT_ENDPOINT) -> None:
        """Count this call against the current bucket or raise RateLimitError.

        Read-then-write is not atomic; concurrent first requests may undercount
        by one, which is accepted.
        """
        limit = self._settings.rate_limit_max_requests
        window = self._settings.rate_limit_window_minutes
        start = self.window_start()

        try:
            with self._session_factory() as session:
                row = session.execute(
                    select(RateLimitWindow)
                    .where(RateLimitWindow.identifier == identifier)
                    .where(RateLimitWindow.endpoint == endpoint)
                    .where(RateLimitWindow.window_start == start)
                    .limit(1)
                ).scalar_one_or_none()

                if row is not None and row.request_count >= limit:
                    raise RateLimitError(
                        f"Rate limit exceeded: {limit} requests per {window}min",
                        {"identifier": identifier, "endpoint": endpoint, "limit": limit},
                    )

                if row is not None:
                    row.request_count = row.request_count + 1
                    session.commit()
                    return

                session.add(
                    RateLimitWindow(identifier=identifier, endpoint=endpoint, window_start=start, request_count=1)
                )
                try:
                    session.commit()
                except IntegrityError:
                    # Another request created this bucket first.
                    session.rollback()
                    log.debug("rate_limit.insert_race", identifier=identifier, endpoint=endpoint)
        except SQLAlchemyError as e:
            raise InternalError(f"Rate limit check failed: {e}", {"endpoint": endpoint}) from e

    # Duplicate detection

    def check_duplicate(self, name: str, provider: Optional[str] = None) -> DuplicateMatch:
        name_lower = name.strip().lower()
        try:
            with self._session_factory() as session:
                stmt = select(Slot).where(func.lower(Slot.name) == func.lower(name.strip()))
                if provider and provider.strip():
                    stmt = stmt.where(func.lower(Slot.provider) == func.lower(provider.strip()))
                exact = session.execute(stmt.limit(1)).scalar_one_or_none()
                if exact is not None:
                    return DuplicateMatch(is_duplicate=True, existing_record=exact.to_summary())

                normalized = normalize_for_match(name_lower)
                words = [w for w in normalized.split(" ") if len(w) > 2]
                if len(words) < 2:
                    return DuplicateMatch(is_duplicate=False)

                pattern = f"%{words[0]}%{words[1]}%"
                candidates = session.execute(
                    select(Slot).where(func.lower(Slot.name).like(pattern)).limit(FUZZY_CANDIDATE_LIMIT)
                ).scalars().all()
                for row in candidates:
                    if normalize_for_match(row.name) == normalized:
                        return DuplicateMatch(is_duplicate=True, existing_record=row.to_summary())
        except SQLAlchemyError as e:
            raise InternalError(f"Duplicate check failed: {e}", {"name": name}) from e

        return DuplicateMatch(is_duplicate=False)

    # Slot upsert

    @staticmethod
    def _merge(existing: Slot, record: ValidatedRecord, now: datetime) -> None:
        """Copy only populated fields; weaker extractions never null out data."""
        if record.rtp is not None:
            existing.rtp = record.rtp
        if record.volatility and record.volatility != "unknown":
            existing.volatility = record.volatility
        if record.max_win_multiplier is not None:
            existing.max_win_multiplier = record.max_win_multiplier
        if record.image:
            existing.image = record.image
            existing.image_safety_status = record.image_safety_status
        if record.theme:
            existing.theme = record.theme
        if record.features:
            existing.features = record.features
        if record.twitch_safe is not None:
            existing.twitch_safe = record.twitch_safe
        if record.confidence_score is not None:
            existing.confidence_score = record.confidence_score
        if record.moderation_status:
            existing.moderation_status = record.moderation_status
        if record.release_year:
            existing.release_year = record.release_year
        if record.source_citations:
            existing.source_citations = list(record.source_citations)
        if record.ingestion_version:
            existing.ingestion_version = record.ingestion_version
        existing.ai_extracted_at = now

    def upsert_record(self, record: ValidatedRecord) -> UpsertResult:
        timer = log.timer("db.upsert_slot")
        now = self._clock()
        try:
            with self._session_factory() as session:
                # lower() runs in SQL on both sides so one case-folding applies
                existing = session.execute(
                    select(Slot)
                    .where(func.lower(Slot.name) == func.lower(record.name))
                    .where(func.lower(Slot.provider) == func.lower(record.provider or ""))
                    .limit(1)
                ).scalar_one_or_none()

                if existing is not None:
                    self._merge(existing, record, now)
                    session.commit()
                    timer.end(slot_name=record.name, action="update")
                    return UpsertResult(id=existing.id, is_new=False)

                slot = Slot(
                    name=record.name,
                    provider=record.provider or "",
                    rtp=record.rtp,
                    volatility=record.volatility or "unknown",
                    max_win_multiplier=record.max_win_multiplier,
                    theme=record.theme,
                    features=record.features,
                    image=record.image,
                    status="live",
                    twitch_safe=True if record.twitch_safe is None else record.twitch_safe,
                    confidence_score=record.confidence_score,
                    image_safety_status=record.image_safety_status or "pending",
                    moderation_status=record.moderation_status or "approved",
                    release_year=record.release_year,
                    source_citations=list(record.source_citations),
                    ingestion_version=record.ingestion_version,
                    ai_extracted_at=now,
                )
                session.add(slot)
                session.commit()
                timer.end(slot_name=record.name, action="insert")
                return UpsertResult(id=slot.id, is_new=True)
        except SQLAlchemyError as e:
            raise InternalError(f"Failed to upsert slot: {e}", {"slot_name": record.name}) from e

    # Audit writers (never raise)

    def write_ingestion_log(self, entry: Mapping[str, Any]) -> None:
        try:
            with self._session_factory() as session:
                session.add(
                    IngestionLog(
                        slot_name=str(entry.get("slot_name") or "unknown")[:200],
                        provider_hint=entry.get("provider_hint"),
                        status=entry.get("status") or "completed",
                        error_class=entry.get("error_type"),
                        error_message=entry.get("error_message"),
                        duration_ms=entry.get("duration_ms"),
                        gemini_tokens=entry.get("gemini_tokens_used") or None,
                        extraction_source=entry.get("source"),
                        confidence_score=entry.get("confidence_score"),
                        result_slot_id=_as_uuid(entry.get("result_slot_id")),
                        requested_by=entry.get("requested_by") or "system",
                        ip_address=entry.get("ip_address"),
                        metadata_=dict(entry.get("metadata") or {}),
                    )
                )
                session.commit()
        except Exception as e:  # noqa: BLE001
            log.error("db.ingestion_log_failed", error=str(e), entry_name=entry.get("slot_name"))

    def write_moderation_log(self, entry: Mapping[str, Any]) -> None:
        try:
            with self._session_factory() as session:
                session.add(
                    ModerationLog(
                        slot_id=_as_uuid(entry.get("slot_id")),
                        slot_name=entry.get("slot_name") or "unknown",
                        check_type=entry["check_type"],
                        verdict=entry["status"],
                        details=dict(entry.get("details") or {}),
                        flagged_reasons=list(entry.get("flagged_reasons") or []),
                        reviewed_by=entry.get("reviewed_by"),
                    )
                )
                session.commit()
        except Exception as e:  # noqa: BLE001
            log.error("db.moderation_log_failed", error=str(e), slot_name=entry.get("slot_name"))

    def write_source_references(self, slot_id: uuid.UUID, sources: Iterable[Mapping[str, Any]]) -> None:
        rows = [
            SourceReference(
                slot_id=slot_id,
                url=s["url"],
                domain=s["domain"],
                source_type=s.get("type") or "review_site",
                is_compliant=s.get("is_compliant", True),
            )
            for s in sources
        ]
        if not rows:
            return
        try:
            with self._session_factory() as session:
                session.add_all(rows)
                session.commit()
        except Exception as e:  # noqa: BLE001
            log.error("db.source_refs_failed", error=str(e), slot_id=str(slot_id))
