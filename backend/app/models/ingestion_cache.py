"""Response cache for completed ingestions, keyed by normalized name+provider."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base, CreatedAtMixin, JSONType, UUIDPrimaryKeyMixin


class IngestionCacheEntry(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    __tablename__ = "ingestion_cache"

    cache_key: Mapped[str] = mapped_column(String(400), nullable=False, unique=True)
    response: Mapped[dict] = mapped_column(JSONType, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_ingestion_cache_expires_at", "expires_at"),)
