"""Append-only audit tables.

Written at pipeline completion or failure. Never read back by the pipeline.
"""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base, CreatedAtMixin, JSONType, UUIDPrimaryKeyMixin


class IngestionLog(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    __tablename__ = "ingestion_logs"

    slot_name: Mapped[str] = mapped_column(String(200), nullable=False)
    provider_hint: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")
    error_class: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gemini_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    extraction_source: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    confidence_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    result_slot_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)


class ModerationLog(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    __tablename__ = "moderation_logs"

    slot_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("slots.id", ondelete="SET NULL"), nullable=True, index=True
    )
    slot_name: Mapped[str] = mapped_column(String(200), nullable=False, default="unknown")
    check_type: Mapped[str] = mapped_column(String(32), nullable=False)
    verdict: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    flagged_reasons: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class SourceReference(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    __tablename__ = "source_references"

    slot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("slots.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    source_type: Mapped[str] = mapped_column(String(32), nullable=False, default="review_site")
    is_compliant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
