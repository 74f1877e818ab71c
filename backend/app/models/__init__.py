"""SQLAlchemy models package.

All ORM classes are registered here so mapper configuration never depends on
import order.
"""

from app.models import (  # noqa: F401
    audit,
    ingestion_cache,
    rate_limit,
    slot,
)
