"""Fixed-bucket request counters (one row per identifier x endpoint x bucket)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin


class RateLimitWindow(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    __tablename__ = "api_rate_limits"

    identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(100), nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("identifier", "endpoint", "window_start", name="ux_api_rate_limits_window"),
    )
