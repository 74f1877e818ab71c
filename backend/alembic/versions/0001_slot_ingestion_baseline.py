"""Slot ingestion baseline: catalog, cache, rate limits and audit tables."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic.
revision = "0001_slot_ingestion"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.create_table(
        "slots",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("provider", sa.String(100), nullable=False, server_default=""),
        sa.Column("rtp", sa.Numeric(5, 2), nullable=True),
        sa.Column("volatility", sa.String(16), nullable=False, server_default="unknown"),
        sa.Column("max_win_multiplier", sa.Numeric(12, 2), nullable=True),
        sa.Column("theme", sa.Text(), nullable=True),
        sa.Column("features", sa.Text(), nullable=True),
        sa.Column("release_year", sa.Integer(), nullable=True),
        sa.Column("image", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="live"),
        sa.Column("twitch_safe", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("confidence_score", sa.Integer(), nullable=True),
        sa.Column("image_safety_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("moderation_status", sa.String(16), nullable=False, server_default="approved"),
        sa.Column("source_citations", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("ingestion_version", sa.String(16), nullable=True),
        sa.Column("ai_extracted_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("rtp IS NULL OR (rtp >= 80 AND rtp <= 99.99)", name="ck_slots_rtp_range"),
        sa.CheckConstraint(
            "volatility IN ('low', 'medium', 'high', 'very_high', 'unknown')", name="ck_slots_volatility"
        ),
        sa.CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 100)",
            name="ck_slots_confidence_range",
        ),
        sa.CheckConstraint(
            "image_safety_status IN ('safe', 'quarantined', 'not_found', 'pending')",
            name="ck_slots_image_safety_status",
        ),
        sa.CheckConstraint("moderation_status IN ('approved', 'manual_review')", name="ck_slots_moderation_status"),
    )
    op.create_index(
        "ix_slots_lower_name_lower_provider",
        "slots",
        [sa.text("lower(name)"), sa.text("lower(provider)")],
    )

    op.create_table(
        "ingestion_cache",
        _id(),
        sa.Column("cache_key", sa.String(400), nullable=False, unique=True),
        sa.Column("response", postgresql.JSONB(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hit_count", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("ix_ingestion_cache_expires_at", "ingestion_cache", ["expires_at"])

    op.create_table(
        "api_rate_limits",
        _id(),
        sa.Column("identifier", sa.String(255), nullable=False),
        sa.Column("endpoint", sa.String(100), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("request_count", sa.Integer(), nullable=False, server_default="1"),
        _created_at(),
        sa.UniqueConstraint("identifier", "endpoint", "window_start", name="ux_api_rate_limits_window"),
    )

    op.create_table(
        "ingestion_logs",
        _id(),
        sa.Column("slot_name", sa.String(200), nullable=False),
        sa.Column("provider_hint", sa.String(100), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("error_class", sa.String(32), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("gemini_tokens", sa.Integer(), nullable=True),
        sa.Column("extraction_source", sa.String(32), nullable=True),
        sa.Column("confidence_score", sa.Integer(), nullable=True),
        sa.Column("result_slot_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("requested_by", sa.String(255), nullable=False, server_default="system"),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _created_at(),
    )

    op.create_table(
        "moderation_logs",
        _id(),
        sa.Column(
            "slot_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("slots.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("slot_name", sa.String(200), nullable=False, server_default="unknown"),
        sa.Column("check_type", sa.String(32), nullable=False),
        sa.Column("verdict", sa.String(32), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("flagged_reasons", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        _created_at(),
    )
    op.create_index("ix_moderation_logs_slot_id", "moderation_logs", ["slot_id"])

    op.create_table(
        "source_references",
        _id(),
        sa.Column(
            "slot_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("slots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("source_type", sa.String(32), nullable=False, server_default="review_site"),
        sa.Column("is_compliant", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("ix_source_references_slot_id", "source_references", ["slot_id"])


def downgrade() -> None:
    op.drop_index("ix_source_references_slot_id", table_name="source_references")
    op.drop_table("source_references")
    op.drop_index("ix_moderation_logs_slot_id", table_name="moderation_logs")
    op.drop_table("moderation_logs")
    op.drop_table("ingestion_logs")
    op.drop_table("api_rate_limits")
    op.drop_index("ix_ingestion_cache_expires_at", table_name="ingestion_cache")
    op.drop_table("ingestion_cache")
    op.drop_index("ix_slots_lower_name_lower_provider", table_name="slots")
    op.drop_table("slots")
