"""Typed ingestion errors.

Every failure the pipeline raises is an IngestionError subclass constructed at
the point of detection. The transport boundary serializes it verbatim with
`to_json()` and responds with `status_code`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    AI = "ai_error"
    MODERATION = "moderation_error"
    DUPLICATE = "duplicate_error"
    SOURCE = "source_error"
    RATE_LIMIT = "rate_limit_error"
    AUTH = "auth_error"
    INTERNAL = "internal_error"


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AI: 502,
    ErrorKind.MODERATION: 422,
    ErrorKind.DUPLICATE: 409,
    ErrorKind.SOURCE: 422,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.AUTH: 401,
    ErrorKind.INTERNAL: 500,
}


class IngestionError(RuntimeError):
    """Base error for the slot ingestion pipeline.

    `details` is extra context for callers and logs; it must never carry secrets.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})
        self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def status_code(self) -> int:
        return STATUS_CODES.get(self.kind, 500)

    def to_json(self) -> dict[str, Any]:
        return {
            "ok": False,
            "error": {
                "type": self.kind.value,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp,
            },
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ValidationError(IngestionError):
    """Malformed request or unusable extracted data."""

    kind = ErrorKind.VALIDATION


class AIError(IngestionError):
    """The AI text service failed or returned nothing usable."""

    kind = ErrorKind.AI


class ModerationError(IngestionError):
    """Blocked content in the submitted name or provider."""

    kind = ErrorKind.MODERATION


class DuplicateError(IngestionError):
    kind = ErrorKind.DUPLICATE


class SourceError(IngestionError):
    kind = ErrorKind.SOURCE


class RateLimitError(IngestionError):
    kind = ErrorKind.RATE_LIMIT


class AuthError(IngestionError):
    kind = ErrorKind.AUTH


class InternalError(IngestionError):
    kind = ErrorKind.INTERNAL


def classify_error(exc: BaseException) -> IngestionError:
    """Map any exception onto the taxonomy.

    Typed errors pass through unchanged. The message sniffing below is a
    last resort for foreign exceptions only.
    """
    if isinstance(exc, IngestionError):
        return exc

    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    if "rate limit" in lowered or "429" in lowered:
        return RateLimitError(message)
    if "gemini" in lowered:
        return AIError(message)
    if "duplicate" in lowered or "unique" in lowered:
        return DuplicateError(message)
    if "auth" in lowered or "unauthorized" in lowered:
        return AuthError(message)
    return InternalError(message)
