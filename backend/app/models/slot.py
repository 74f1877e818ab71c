"""Slot catalog record.

One row per (name, provider), matched case-insensitively. Rows are mutable:
re-ingestion merges newer non-null fields into the existing row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base, CreatedAtMixin, JSONType, UpdatedAtMixin, UUIDPrimaryKeyMixin


class Slot(UUIDPrimaryKeyMixin, CreatedAtMixin, UpdatedAtMixin, Base):
    __tablename__ = "slots"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    provider: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    rtp: Mapped[Optional[float]] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=True)
    volatility: Mapped[str] = mapped_column(String(16), nullable=False, default="unknown")
    max_win_multiplier: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    theme: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    features: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    release_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="live")
    twitch_safe: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    confidence_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    image_safety_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    moderation_status: Mapped[str] = mapped_column(String(16), nullable=False, default="approved")
    source_citations: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    ingestion_version: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    ai_extracted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("rtp IS NULL OR (rtp >= 80 AND rtp <= 99.99)", name="ck_slots_rtp_range"),
        CheckConstraint(
            "volatility IN ('low', 'medium', 'high', 'very_high', 'unknown')", name="ck_slots_volatility"
        ),
        CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 100)",
            name="ck_slots_confidence_range",
        ),
        CheckConstraint(
            "image_safety_status IN ('safe', 'quarantined', 'not_found', 'pending')",
            name="ck_slots_image_safety_status",
        ),
        CheckConstraint("moderation_status IN ('approved', 'manual_review')", name="ck_slots_moderation_status"),
    )

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
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


Index("ix_slots_lower_name_lower_provider", func.lower(Slot.name), func.lower(Slot.provider))
