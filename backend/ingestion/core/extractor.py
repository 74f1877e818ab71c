"""AI-backed slot metadata extraction (Google Gemini over REST).

Two-stage extraction:
  1. Gemini with the google_search tool (grounded in live web results)
  2. Fallback: plain Gemini (parametric knowledge only), confidence capped

Image pipeline:
  1. Image-search HTML fetch -> candidate URL extraction -> keyword block list
  2. Gemini Vision stream-safety check on up to 3 candidates

All I/O goes through one injected `httpx.AsyncClient` so tests can swap the
transport.
"""

from __future__ import annotations

import asyncio
import base64
import json
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from ingestion.core.config import DEFAULT_SETTINGS, IngestionSettings
from ingestion.core.errors import AIError, IngestionError, InternalError
from ingestion.core.log import get_logger
from ingestion.core.validator import ExtractedDraft

log = get_logger("slots.ingestion.extractor")

Sleep = Callable[[float], Awaitable[None]]

SOURCE_GROUNDED = "google_ai"
SOURCE_PARAMETRIC = "gemini_ai"

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}
IMAGE_FETCH_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; SlotBot/1.0)"}

_IMAGE_WITH_DIMENSIONS = re.compile(r'"(https?://[^"]+?\.(?:jpg|png|jpeg|webp))",\d+,\d+')
_IMAGE_QUOTED = re.compile(r'"(https?://[^"]+?\.(?:jpg|png|jpeg|webp))"')
_FENCE_OPEN = re.compile(r"^```(?:json)?\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")
_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def build_extraction_prompt(name: str, provider: Optional[str]) -> str:
    by = f" by {provider}" if provider else ""
    return f"""You are a slot game metadata expert. Extract VERIFIED metadata for the online slot game "{name}"{by}.

CRITICAL RULES:
- Only return data you are CONFIDENT about from reputable sources.
- If you are unsure about a value, set it to null.
- Never hallucinate or guess RTP, volatility, or max win values.
- Always prefer official provider data over third-party sources.
- Return ONLY a raw JSON object. NO markdown, NO code fences, NO explanation.

Return this exact JSON structure:
{{
  "name": "Official slot name with proper capitalization",
  "provider": "Official provider/studio name",
  "rtp": 96.50,
  "volatility": "high",
  "max_win": "10000x",
  "theme": "Brief theme description",
  "features": "Key features comma-separated",
  "release_year": 2024,
  "confidence": 85,
  "sources": ["https://source1.com/page", "https://source2.com/page"],
  "twitch_safe": true
}}

Field notes:
- rtp: Return as a number (e.g. 96.50). Must be between 80 and 99.99. Null if unknown.
- volatility: One of "low", "medium", "high", "very_high". Null if unknown.
- max_win: Format as "10000x" or similar multiplier. Null if unknown.
- confidence: Your confidence (0-100) that this data is accurate.
- sources: URLs where you found this information. Empty array if from memory.
- twitch_safe: true if safe for Twitch streaming, false if contains NSFW/explicit imagery."""


def build_vision_prompt(slot_name: str) -> str:
    return f"""This is a slot game cover image for "{slot_name}". Evaluate if it is SAFE to display on a Twitch or YouTube live stream.

Return ONLY a raw JSON object (no markdown):
{{"safe": true, "reason": "brief explanation"}}

Mark safe=false if: nudity, sexual/suggestive content, excessive gore, drug use, real-world violence.
Mark safe=true for: standard slot art, cartoon violence, dark themes without explicit gore, anime characters in normal attire."""


def parse_model_json(raw: Optional[str]) -> Optional[dict[str, Any]]:
    """Pull a JSON object out of model text that may carry fences or prose."""
    if not raw:
        return None
    text = raw.strip()
    if text.startswith("```"):
        text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text))

    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        return data

    match = _JSON_BLOCK.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
        except ValueError:
            return None
        if isinstance(data, dict):
            return data
    return None


def _reply_text(payload: Any) -> str:
    try:
        return payload["candidates"][0]["content"]["parts"][0]["text"] or ""
    except (KeyError, IndexError, TypeError):
        return ""


def _reply_tokens(payload: Any) -> Optional[int]:
    try:
        return int(payload["usageMetadata"]["totalTokenCount"])
    except (KeyError, TypeError, ValueError):
        return None


@dataclass(frozen=True, slots=True)
class ModelReply:
    text: str
    tokens: Optional[int]
    grounded: bool


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    draft: ExtractedDraft
    source: str
    tokens: int

    @property
    def grounded(self) -> bool:
        return self.source == SOURCE_GROUNDED


@dataclass(frozen=True, slots=True)
class ImageResult:
    url: Optional[str]
    status: str  # safe | quarantined | not_found | pending
    reason: str

    def to_json(self) -> dict[str, Any]:
        return {"url": self.url, "status": self.status, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class VisionVerdict:
    safe: bool
    reason: str


class GeminiClient:
    """Thin REST client for `generateContent` with retry and backoff."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        settings: IngestionSettings = DEFAULT_SETTINGS,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._http = http
        self._settings = settings
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return self._settings.api_key() is not None

    def _backoff(self, attempt: int) -> float:
        return self._settings.gemini_retry_base_seconds * (2 ** attempt)

    async def call(
        self,
        prompt: str,
        *,
        grounded: bool = False,
        temperature: float = 0.1,
        max_tokens: int = 1024,
    ) -> ModelReply:
        api_key = self._settings.api_key()
        if not api_key:
            raise InternalError("GEMINI_API_KEY not configured")

        body: dict[str, Any] = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        if grounded:
            body["tools"] = [{"google_search": {}}]

        max_retries = self._settings.gemini_max_retries
        timeout = self._settings.gemini_timeout_seconds
        last_error: Optional[IngestionError] = None

        for attempt in range(max_retries + 1):
            try:
                response = await self._http.post(
                    self._settings.gemini_url,
                    params={"key": api_key},
                    json=body,
                    timeout=timeout,
                )

                if response.status_code == 429:
                    delay = self._backoff(attempt)
                    log.warning("gemini.rate_limited", attempt=attempt, delay=delay)
                    last_error = AIError("Gemini rate limited", {"attempt": attempt})
                    await self._sleep(delay)
                    continue

                if response.status_code >= 400:
                    raise AIError(
                        f"Gemini {response.status_code}: {response.text[:200]}",
                        {"status": response.status_code},
                    )

                payload = response.json()
                text = _reply_text(payload)
                if not text.strip():
                    raise AIError("Gemini returned empty response")

                return ModelReply(text=text, tokens=_reply_tokens(payload), grounded=grounded)

            except httpx.TimeoutException:
                last_error = AIError("Gemini request timed out", {"timeout": timeout})
            except AIError as e:
                last_error = e
            except (httpx.HTTPError, ValueError) as e:
                last_error = AIError(f"Gemini request failed: {e}")

            if attempt < max_retries:
                delay = self._backoff(attempt)
                log.warning("gemini.retry", attempt=attempt + 1, error=last_error.message, delay=delay)
                await self._sleep(delay)

        raise last_error or AIError("Gemini extraction failed after all retries")

    async def classify_image(self, image_bytes: bytes, mime_type: str, slot_name: str) -> Optional[dict[str, Any]]:
        """Vision safety call. Returns the parsed verdict, or None when the call failed."""
        api_key = self._settings.api_key()
        if not api_key:
            return None
        body = {
            "contents": [
                {
                    "parts": [
                        {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(image_bytes).decode("ascii")}},
                        {"text": build_vision_prompt(slot_name)},
                    ]
                }
            ],
            "generationConfig": {"temperature": 0.1, "maxOutputTokens": 150},
        }
        response = await self._http.post(
            self._settings.gemini_url,
            params={"key": api_key},
            json=body,
            timeout=self._settings.vision_timeout_seconds,
        )
        if response.status_code >= 400:
            return None
        text = _reply_text(response.json()).strip()
        if text.startswith("```"):
            text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text))
        return json.loads(text)


class SlotExtractor:
    def __init__(self, client: GeminiClient) -> None:
        self._client = client

    async def extract_metadata(self, name: str, provider: Optional[str] = None) -> ExtractionResult:
        timer = log.timer("extract.slot")
        prompt = build_extraction_prompt(name, provider)

        # Stage 1: grounded search
        try:
            log.info("extract.grounded_start", name=name, provider=provider)
            reply = await self._client.call(prompt, grounded=True)
            data = parse_model_json(reply.text)
            if data and data.get("name"):
                draft = ExtractedDraft.model_validate(data)
                timer.end(name=name, source=SOURCE_GROUNDED, confidence=draft.confidence)
                return ExtractionResult(draft=draft, source=SOURCE_GROUNDED, tokens=reply.tokens or 0)
            log.warning("extract.grounded_empty", name=name)
        except IngestionError as e:
            log.warning("extract.grounded_failed", name=name, error=e.message)

        # Stage 2: parametric knowledge only
        try:
            log.info("extract.plain_start", name=name, provider=provider)
            reply = await self._client.call(prompt, grounded=False)
            data = parse_model_json(reply.text)
            if not data or not data.get("name"):
                raise AIError("Gemini returned no usable data", {"name": name})

            # confidence is capped after normalization, see validate_slot_data(grounded=False)
            draft = ExtractedDraft.model_validate(data)
            timer.end(name=name, source=SOURCE_PARAMETRIC, confidence=draft.confidence)
            return ExtractionResult(draft=draft, source=SOURCE_PARAMETRIC, tokens=reply.tokens or 0)
        except IngestionError as e:
            timer.end(name=name, source="failed", error=e.message)
            raise


def extract_image_urls(html: str, blocked_keywords: tuple[str, ...], limit: int = 15) -> list[str]:
    candidates = [m.group(1) for m in _IMAGE_WITH_DIMENSIONS.finditer(html)][:limit]
    if not candidates:
        candidates = [m.group(1) for m in _IMAGE_QUOTED.finditer(html)][:limit]
    return [url for url in candidates if not any(kw in url.lower() for kw in blocked_keywords)]


class ImageSafetyFinder:
    def __init__(
        self,
        http: httpx.AsyncClient,
        client: GeminiClient,
        settings: IngestionSettings = DEFAULT_SETTINGS,
    ) -> None:
        self._http = http
        self._client = client
        self._settings = settings

    @staticmethod
    def build_query(name: str, provider: Optional[str]) -> str:
        if provider:
            return f'"{provider}" "{name}" slot game'
        return f'"{name}" online slot game logo'

    async def find_safe_image(self, name: str, provider: Optional[str] = None) -> ImageResult:
        if not self._client.configured:
            return ImageResult(url=None, status="not_found", reason="No API key")

        timer = log.timer("extract.image")
        try:
            response = await self._http.get(
                self._settings.image_search_url,
                params={"q": self.build_query(name, provider), "tbm": "isch"},
                headers=BROWSER_HEADERS,
                timeout=self._settings.image_search_timeout_seconds,
            )
            if response.status_code >= 400:
                timer.end(name=name, status="not_found")
                return ImageResult(url=None, status="not_found", reason=f"Image search {response.status_code}")

            candidates = extract_image_urls(
                response.text, self._settings.blocked_image_keywords, self._settings.image_candidate_limit
            )
        except httpx.HTTPError as e:
            log.warning("extract.image_error", name=name, error=str(e))
            timer.end(name=name, status="not_found")
            return ImageResult(url=None, status="not_found", reason=str(e))

        if not candidates:
            timer.end(name=name, status="not_found")
            return ImageResult(url=None, status="not_found", reason="No images found")

        for index, url in enumerate(candidates[: self._settings.image_vision_checks]):
            verdict = await self.validate_image_safety(url, name)
            if verdict.safe:
                timer.end(name=name, status="safe", candidate=index)
                return ImageResult(url=url, status="safe", reason=verdict.reason)
            log.debug("extract.image_rejected", name=name, index=index, reason=verdict.reason)

        timer.end(name=name, status="quarantined")
        return ImageResult(url=candidates[0], status="quarantined", reason="All candidates flagged by AI")

    async def validate_image_safety(self, image_url: str, slot_name: str) -> VisionVerdict:
        """Vision check for one candidate. Errors in the check itself fail open."""
        try:
            image = await self._http.get(
                image_url,
                headers=IMAGE_FETCH_HEADERS,
                follow_redirects=True,
                timeout=self._settings.image_fetch_timeout_seconds,
            )
            if image.status_code >= 400:
                return VisionVerdict(safe=False, reason="image_unreachable")

            content_type = image.headers.get("content-type", "")
            if not content_type.startswith("image/"):
                return VisionVerdict(safe=False, reason="not_an_image")
            mime_type = content_type.split(";")[0].strip()

            parsed = await self._client.classify_image(image.content, mime_type, slot_name)
            if parsed is None:
                return VisionVerdict(safe=True, reason="validation_skipped")

            safe = parsed.get("safe") if isinstance(parsed, dict) else None
            reason = parsed.get("reason") if isinstance(parsed, dict) else None
            return VisionVerdict(
                safe=safe if isinstance(safe, bool) else True,
                reason=reason if isinstance(reason, str) else "unknown",
            )
        except Exception as e:  # noqa: BLE001
            log.warning("extract.vision_error", image_url=image_url, error=str(e))
            return VisionVerdict(safe=True, reason="validation_error")
