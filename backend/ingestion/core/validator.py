"""Input validation, normalization and compliance checks.

Pure and synchronous: no network, no database. Functions either return a
normalized value or raise a typed ValidationError; the field normalizers never
raise at all and degrade to None / "unknown" instead.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict

from ingestion.core.config import DEFAULT_SETTINGS, VOLATILITY_ENUM, IngestionSettings
from ingestion.core.errors import ValidationError

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 200
PROVIDER_MAX_LENGTH = 100
THEME_MAX_LENGTH = 200
FEATURES_MAX_LENGTH = 500

_NON_ALNUM_SPACE = re.compile(r"[^a-z0-9\s]")
_WS = re.compile(r"\s+")
_WORD_START = re.compile(r"\b([a-z])(\w*)")

VOLATILITY_ALIASES = {
    "very high": "very_high", "extreme": "very_high", "extremely high": "very_high",
    "extra high": "very_high", "intense": "very_high",
    "high/medium": "high", "medium/high": "high", "med high": "high",
    "medium high": "high", "high medium": "high",
    "medium/low": "medium", "low/medium": "medium", "med low": "medium",
    "medium low": "medium", "low medium": "medium",
    "med": "medium", "moderate": "medium", "mild": "low",
    "low": "low", "medium": "medium", "high": "high",
}


@dataclass(frozen=True, slots=True)
class IngestionOptions:
    skip_cache: bool = False
    skip_image: bool = False
    force_refresh: bool = False


@dataclass(frozen=True, slots=True)
class IngestionRequest:
    name: str
    provider: Optional[str] = None
    options: IngestionOptions = field(default_factory=IngestionOptions)


@dataclass(frozen=True, slots=True)
class SafetyVerdict:
    blocked: bool
    term: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SourceCheck:
    compliant: bool
    domain: str
    blocked: bool = False


@dataclass(frozen=True, slots=True)
class CompliantSource:
    url: str
    domain: str


@dataclass(frozen=True, slots=True)
class SourceFilterResult:
    compliant: list[CompliantSource]
    rejected: list[str]


class ExtractedDraft(BaseModel):
    """Raw model output. Every field is loosely typed on purpose."""

    model_config = ConfigDict(extra="allow")

    name: Any = None
    provider: Any = None
    rtp: Any = None
    volatility: Any = None
    max_win: Any = None
    max_win_multiplier: Any = None
    theme: Any = None
    features: Any = None
    release_year: Any = None
    confidence: Any = None
    sources: Any = None
    source_citations: Any = None
    twitch_safe: Any = None


@dataclass(slots=True)
class ValidatedRecord:
    """Persistence-ready slot. Every numeric/enum field is domain-valid or None."""

    name: str
    provider: str
    rtp: Optional[float] = None
    volatility: str = "unknown"
    max_win_multiplier: Optional[float] = None
    theme: Optional[str] = None
    features: Optional[str] = None
    release_year: Optional[int] = None
    twitch_safe: bool = True
    confidence_score: int = 0
    source_citations: list[str] = field(default_factory=list)
    moderation_status: str = "approved"
    image: Optional[str] = None
    image_safety_status: str = "pending"
    ingestion_version: str = DEFAULT_SETTINGS.ingestion_version

    def public_fields(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "provider": self.provider,
            "rtp": self.rtp,
            "volatility": self.volatility,
            "max_win_multiplier": self.max_win_multiplier,
            "theme": self.theme,
            "features": self.features,
            "image": self.image,
            "twitch_safe": self.twitch_safe,
            "confidence_score": self.confidence_score,
            "release_year": self.release_year,
        }


def _flag(payload: Mapping[str, Any], snake: str, camel: str) -> bool:
    return bool(payload.get(snake) or payload.get(camel))


def validate_input(payload: Any) -> IngestionRequest:
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")

    raw_name = payload.get("name")
    name = str(raw_name).strip() if raw_name is not None else ""
    if not name:
        raise ValidationError('Field "name" is required')
    if len(name) < NAME_MIN_LENGTH or len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"Slot name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters",
            {"name": name[:NAME_MAX_LENGTH], "length": len(name)},
        )

    raw_provider = payload.get("provider")
    provider = str(raw_provider).strip() if raw_provider is not None else ""
    if len(provider) > PROVIDER_MAX_LENGTH:
        raise ValidationError(
            f"Provider name must be at most {PROVIDER_MAX_LENGTH} characters",
            {"provider": provider[:PROVIDER_MAX_LENGTH], "length": len(provider)},
        )

    return IngestionRequest(
        name=name,
        provider=provider or None,
        options=IngestionOptions(
            skip_cache=_flag(payload, "skip_cache", "skipCache"),
            skip_image=_flag(payload, "skip_image", "skipImage"),
            force_refresh=_flag(payload, "force_refresh", "forceRefresh"),
        ),
    )


def check_content_safety(text: Optional[str], settings: IngestionSettings = DEFAULT_SETTINGS) -> SafetyVerdict:
    """Substring match against the blocked-term list after stripping punctuation."""
    lowered = _NON_ALNUM_SPACE.sub("", (text or "").lower())
    for term in settings.blocked_search_terms:
        if term in lowered:
            return SafetyVerdict(blocked=True, term=term)
    return SafetyVerdict(blocked=False)


def canonical_provider(raw: Optional[str], settings: IngestionSettings = DEFAULT_SETTINGS) -> str:
    if not raw or not str(raw).strip():
        return ""
    raw = str(raw).strip()
    lowered = raw.lower()

    aliases = settings.canonical_providers
    if lowered in aliases:
        return aliases[lowered]

    # "Pragmatic Play Ltd" -> "Pragmatic Play"
    for alias, canonical in aliases.items():
        if alias in lowered or lowered in alias:
            return canonical

    return re.sub(r"\b\w", lambda m: m.group(0).upper(), raw)


def normalize_slot_name(raw: Optional[str]) -> str:
    if not raw:
        return ""
    collapsed = _WS.sub(" ", str(raw).strip())
    # Capitalize lowercase word starts; keep existing capitals ("XL", "iSoftBet").
    return _WORD_START.sub(lambda m: m.group(1).upper() + m.group(2), collapsed)


def normalize_volatility(raw: Any) -> str:
    if raw is None or not isinstance(raw, (str, int, float)):
        return "unknown"
    key = re.sub(r"[-_\s]+", "_", str(raw).strip().lower())
    if not key:
        return "unknown"
    if key in VOLATILITY_ENUM:
        return key
    spaced = key.replace("_", " ")
    return VOLATILITY_ALIASES.get(spaced) or VOLATILITY_ALIASES.get(key) or "unknown"


def _to_float(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def normalize_rtp(raw: Any, settings: IngestionSettings = DEFAULT_SETTINGS) -> Optional[float]:
    if raw is None or raw == "" or raw == "N/A":
        return None
    if isinstance(raw, str):
        cleaned = re.sub(r"[^0-9.]", "", raw)
        match = re.match(r"\d*\.?\d+", cleaned)
        value = _to_float(match.group(0)) if match else None
    else:
        value = _to_float(raw)
    if value is None or value < settings.rtp_min or value > settings.rtp_max:
        return None
    return round(value, 2)


def normalize_max_win(raw: Any, settings: IngestionSettings = DEFAULT_SETTINGS) -> Optional[float]:
    if raw is None or raw == "" or raw == "N/A":
        return None
    text = re.sub(r"[xX×,]", "", str(raw)).strip()
    match = re.match(r"\d*\.?\d+", text)
    value = _to_float(match.group(0)) if match else None
    if value is None or value <= 0 or value > settings.max_win_ceiling:
        return None
    return round(value, 2)


def normalize_release_year(
    raw: Any, settings: IngestionSettings = DEFAULT_SETTINGS, *, today: Optional[datetime] = None
) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = _to_float(raw)
        year = int(value) if value is not None else None
    else:
        match = re.match(r"\s*(\d+)", str(raw))
        year = int(match.group(1)) if match else None
    if year is None:
        return None
    current_year = (today or datetime.now(timezone.utc)).year
    if year < settings.earliest_release_year or year > current_year + 1:
        return None
    return year


def is_provider_safe(provider: Optional[str], settings: IngestionSettings = DEFAULT_SETTINGS) -> bool:
    if not provider or not provider.strip():
        return True
    lowered = provider.lower().strip()
    return any(p in lowered or lowered in p for p in settings.safe_providers)


def check_source_compliance(url: Any, settings: IngestionSettings = DEFAULT_SETTINGS) -> SourceCheck:
    """Block list first, then allow list. Anything unlisted is rejected."""
    try:
        host = urlparse(str(url)).hostname if isinstance(url, str) else None
    except ValueError:
        host = None
    if not host:
        return SourceCheck(compliant=False, domain="invalid_url")

    domain = host[4:] if host.startswith("www.") else host

    if any(d in domain for d in settings.blocked_domains):
        return SourceCheck(compliant=False, domain=domain, blocked=True)

    allowed = any(d in domain or domain.endswith(f".{d}") for d in settings.allowed_source_domains)
    return SourceCheck(compliant=allowed, domain=domain)


def filter_compliant_sources(
    urls: Optional[Iterable[Any]], settings: IngestionSettings = DEFAULT_SETTINGS
) -> SourceFilterResult:
    compliant: list[CompliantSource] = []
    rejected: list[str] = []
    if isinstance(urls, str):
        urls = [urls]
    for url in urls or []:
        check = check_source_compliance(url, settings)
        if check.compliant:
            compliant.append(CompliantSource(url=url, domain=check.domain))
        else:
            rejected.append(str(url))
    return SourceFilterResult(compliant=compliant, rejected=rejected)


def compute_confidence(
    *,
    name: Optional[str],
    provider: Optional[str],
    rtp: Optional[float],
    volatility: Optional[str],
    max_win_multiplier: Optional[float],
) -> int:
    """Completeness-weighted fallback when the model omits a confidence."""
    score = 0
    if name:
        score += 20
    if provider:
        score += 20
    if rtp is not None:
        score += 20
    if volatility and volatility != "unknown":
        score += 15
    if max_win_multiplier is not None:
        score += 15
    # rtp and max win together cross-validate each other
    if rtp is not None and max_win_multiplier is not None:
        score += 10
    return min(100, score)


def _clip(raw: Any, limit: int) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)):
        raw = ", ".join(str(item) for item in raw)
    text = str(raw).strip()
    return text[:limit] if text else None


def validate_slot_data(
    draft: Union[ExtractedDraft, Mapping[str, Any], None],
    fallback_name: str,
    settings: IngestionSettings = DEFAULT_SETTINGS,
    *,
    grounded: bool = True,
) -> tuple[ValidatedRecord, SourceFilterResult]:
    """Build a ValidatedRecord from model output.

    Output that was not grounded in live search results has its confidence
    capped at `groundless_confidence_cap`, whether the model reported a score
    or one was computed from field coverage.

    Raises ValidationError only when the draft is unusable or when neither a
    name nor a provider can be determined.
    """
    if isinstance(draft, Mapping):
        draft = ExtractedDraft.model_validate(dict(draft))
    if not isinstance(draft, ExtractedDraft):
        raise ValidationError("AI extraction returned invalid data", {"input_name": fallback_name})

    name = normalize_slot_name(draft.name if isinstance(draft.name, str) and draft.name.strip() else fallback_name)
    if not name:
        raise ValidationError("Could not determine slot name", {"input_name": fallback_name})

    provider = canonical_provider(draft.provider if isinstance(draft.provider, str) else None, settings)
    if not provider:
        raise ValidationError(
            "Could not determine provider", {"name": name, "raw_provider": draft.provider}
        )

    rtp = normalize_rtp(draft.rtp, settings)
    max_win = normalize_max_win(
        draft.max_win if draft.max_win not in (None, "") else draft.max_win_multiplier, settings
    )
    volatility = normalize_volatility(draft.volatility)
    release_year = normalize_release_year(draft.release_year, settings)

    twitch_safe = is_provider_safe(provider, settings) and not check_content_safety(name, settings).blocked

    confidence = _to_float(draft.confidence)
    if confidence is not None:
        confidence_score = int(min(100, max(0, round(confidence))))
    else:
        confidence_score = compute_confidence(
            name=name, provider=provider, rtp=rtp, volatility=volatility, max_win_multiplier=max_win
        )
    if not grounded:
        confidence_score = min(confidence_score, settings.groundless_confidence_cap)

    raw_sources = draft.sources if draft.sources is not None else draft.source_citations
    sources = filter_compliant_sources(raw_sources if isinstance(raw_sources, (list, tuple, str)) else [], settings)

    record = ValidatedRecord(
        name=name,
        provider=provider,
        rtp=rtp,
        volatility=volatility,
        max_win_multiplier=max_win,
        theme=_clip(draft.theme, THEME_MAX_LENGTH),
        features=_clip(draft.features, FEATURES_MAX_LENGTH),
        release_year=release_year,
        twitch_safe=twitch_safe,
        confidence_score=confidence_score,
        source_citations=[s.url for s in sources.compliant],
        ingestion_version=settings.ingestion_version,
    )
    return record, sources
