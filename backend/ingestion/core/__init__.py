"""Slot ingestion core.

Pure building blocks (errors, settings, validation) are re-exported here. The
extractor and pipeline are imported from their modules directly because they
depend on the app's persistence layer.
"""

from ingestion.core.config import DEFAULT_SETTINGS, IngestionSettings, load_settings
from ingestion.core.errors import (
    AIError,
    AuthError,
    DuplicateError,
    ErrorKind,
    IngestionError,
    InternalError,
    ModerationError,
    RateLimitError,
    SourceError,
    ValidationError,
    classify_error,
)
from ingestion.core.validator import IngestionRequest, ValidatedRecord, validate_input, validate_slot_data

__all__ = [
    "DEFAULT_SETTINGS",
    "IngestionSettings",
    "load_settings",
    "AIError",
    "AuthError",
    "DuplicateError",
    "ErrorKind",
    "IngestionError",
    "InternalError",
    "ModerationError",
    "RateLimitError",
    "SourceError",
    "ValidationError",
    "classify_error",
    "IngestionRequest",
    "ValidatedRecord",
    "validate_input",
    "validate_slot_data",
]
