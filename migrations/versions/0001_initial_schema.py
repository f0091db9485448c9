"""Initial schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates work items with lease and cooldown columns, the hourly/daily
statistics tiers, alerts, daily summaries, manager state and worker configs.

Written manually (not via autogenerate) consistent with project migration policy.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # work_items table
    op.create_table(
        "work_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("fuero", sa.String(8), nullable=False),
        sa.Column("sub_docket", sa.String(50), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("source", sa.String(30), nullable=False, server_default="app"),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_valid", sa.Boolean(), nullable=True),
        sa.Column("needs_update", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("last_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("movimientos_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lease_worker_id", sa.String(100), nullable=True),
        sa.Column("lease_locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consecutive_errors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error_type", sa.String(30), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("skip_until", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("number", "year", "fuero", "sub_docket", name="uq_work_items_identity"),
    )
    op.create_index(
        "ix_work_items_eligibility",
        "work_items",
        ["source", "verified", "is_valid", "needs_update", "last_update", "lease_expires_at"],
    )
    op.create_index("ix_work_items_lease_worker_id", "work_items", ["lease_worker_id"])
    op.create_index("ix_work_items_skip_until", "work_items", ["skip_until"])

    # work_item_updates table (append-only history)
    op.create_table(
        "work_item_updates",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "work_item_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("work_items.id"),
            nullable=False,
        ),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("worker_type", sa.String(40), nullable=True),
        sa.Column("update_type", sa.String(10), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("movimientos_added", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("movimientos_total", sa.Integer(), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_work_item_updates_work_item_id", "work_item_updates", ["work_item_id"])
    op.create_index(
        "ix_work_item_updates_recorded_at", "work_item_updates", ["recorded_at", "worker_type"]
    )

    # worker_hourly_stats table
    op.create_table(
        "worker_hourly_stats",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("hour", sa.Integer(), nullable=False),
        sa.Column("fuero", sa.String(8), nullable=False),
        sa.Column("worker_type", sa.String(40), nullable=False),
        sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("movimientos_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_processing_time", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("min_processing_time", sa.BigInteger(), nullable=True),
        sa.Column("max_processing_time", sa.BigInteger(), nullable=True),
        sa.Column("manager_cycles", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_active_workers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active_workers_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_at_start", sa.Integer(), nullable=True),
        sa.Column("pending_at_end", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("last_update"),
        sa.UniqueConstraint("date", "hour", "fuero", "worker_type", name="uq_worker_hourly_stats_key"),
    )
    op.create_index("ix_worker_hourly_stats_date_hour", "worker_hourly_stats", ["date", "hour"])

    # worker_hourly_errors table (one counter per error type and hourly key)
    op.create_table(
        "worker_hourly_errors",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("hour", sa.Integer(), nullable=False),
        sa.Column("fuero", sa.String(8), nullable=False),
        sa.Column("worker_type", sa.String(40), nullable=False),
        sa.Column("error_type", sa.String(30), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_message", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "date", "hour", "fuero", "worker_type", "error_type",
            name="uq_worker_hourly_errors_key",
        ),
    )

    # worker_scaling_events table (bounded per hourly key)
    op.create_table(
        "worker_scaling_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("hour", sa.Integer(), nullable=False),
        sa.Column("fuero", sa.String(8), nullable=False),
        sa.Column("worker_type", sa.String(40), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("from_workers", sa.Integer(), nullable=False),
        sa.Column("to_workers", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(200), nullable=True),
    )
    op.create_index(
        "ix_worker_scaling_events_key",
        "worker_scaling_events",
        ["date", "hour", "fuero", "worker_type"],
    )

    # worker_daily_stats table
    op.create_table(
        "worker_daily_stats",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("fuero", sa.String(8), nullable=False),
        sa.Column("worker_type", sa.String(40), nullable=False),
        sa.Column("total_to_process", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("movimientos_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("private_causas", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("public_causas", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("captcha_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("captcha_successful", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("captcha_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_processing_time", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _timestamp("created_at"),
        _timestamp("last_update"),
        sa.UniqueConstraint("date", "fuero", "worker_type", name="uq_worker_daily_stats_key"),
    )
    op.create_index(
        "ix_worker_daily_stats_date_worker_type", "worker_daily_stats", ["date", "worker_type"]
    )

    # worker_runs table
    op.create_table(
        "worker_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "daily_stat_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("worker_daily_stats.id"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
        sa.Column("documents_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("documents_successful", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("documents_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("movimientos_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_worker_runs_daily_stat_id", "worker_runs", ["daily_stat_id"])

    # worker_error_logs table (newest 100 per day key)
    op.create_table(
        "worker_error_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "daily_stat_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("worker_daily_stats.id"),
            nullable=False,
        ),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("work_item_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("number", sa.Integer(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("error_type", sa.String(30), nullable=False, server_default="unknown"),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("stack", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_worker_error_logs_daily_stat_id", "worker_error_logs", ["daily_stat_id"])

    # alerts table
    op.create_table(
        "alerts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("scope", sa.String(20), nullable=False),
        sa.Column("subject", sa.String(120), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("fuero", sa.String(8), nullable=True),
        sa.Column("worker_type", sa.String(40), nullable=True),
        sa.Column("period_date", sa.String(10), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("dedup_key", sa.String(220), nullable=False),
        sa.Column("acknowledged", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
    )
    # At most one open alert per dedup key
    op.create_index(
        "uq_alerts_open_dedup_key",
        "alerts",
        ["dedup_key"],
        unique=True,
        postgresql_where=sa.text("NOT acknowledged"),
    )
    op.create_index("ix_alerts_scope_subject", "alerts", ["scope", "subject"])
    op.create_index("ix_alerts_period", "alerts", ["period_date", "worker_type"])

    # worker_daily_summaries table
    op.create_table(
        "worker_daily_summaries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("worker_type", sa.String(40), nullable=False),
        sa.Column("totals", postgresql.JSONB(), nullable=False),
        sa.Column("by_fuero", postgresql.JSONB(), nullable=False),
        sa.Column("hourly_distribution", postgresql.JSONB(), nullable=False),
        sa.Column("top_causas", postgresql.JSONB(), nullable=False),
        sa.Column("top_errors", postgresql.JSONB(), nullable=False),
        sa.Column("comparison", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("alerts_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "has_unacknowledged_alerts", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("date", "worker_type", name="uq_worker_daily_summaries_key"),
    )
    op.create_index("ix_worker_daily_summaries_date", "worker_daily_summaries", ["date"])

    # manager_states table (one row per manager name)
    op.create_table(
        "manager_states",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(60), nullable=False, unique=True),
        sa.Column("config", postgresql.JSONB(), nullable=False),
        sa.Column("workers", postgresql.JSONB(), nullable=False),
        sa.Column("pending", postgresql.JSONB(), nullable=False),
        sa.Column("optimal_workers", postgresql.JSONB(), nullable=False),
        sa.Column("system_resources", postgresql.JSONB(), nullable=True),
        sa.Column("reported_workers", postgresql.JSONB(), nullable=False),
        sa.Column("is_running", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_within_working_hours", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("last_cycle_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cycle_count", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("last_update"),
    )

    # manager_snapshots table (newest 1440 per manager)
    op.create_table(
        "manager_snapshots",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("manager_name", sa.String(60), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("workers", postgresql.JSONB(), nullable=False),
        sa.Column("pending", postgresql.JSONB(), nullable=False),
        sa.Column("optimal_workers", postgresql.JSONB(), nullable=False),
        sa.Column("system_resources", postgresql.JSONB(), nullable=True),
    )
    op.create_index(
        "ix_manager_snapshots_manager_recorded",
        "manager_snapshots",
        ["manager_name", "recorded_at"],
    )

    # worker_configs table
    op.create_table(
        "worker_configs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("worker_id", sa.String(100), nullable=False, unique=True),
        sa.Column("config", postgresql.JSONB(), nullable=False),
        _timestamp("updated_at"),
    )


def downgrade() -> None:
    op.drop_table("worker_configs")
    op.drop_index("ix_manager_snapshots_manager_recorded", table_name="manager_snapshots")
    op.drop_table("manager_snapshots")
    op.drop_table("manager_states")
    op.drop_index("ix_worker_daily_summaries_date", table_name="worker_daily_summaries")
    op.drop_table("worker_daily_summaries")
    op.drop_index("ix_alerts_period", table_name="alerts")
    op.drop_index("ix_alerts_scope_subject", table_name="alerts")
    op.drop_index("uq_alerts_open_dedup_key", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("ix_worker_error_logs_daily_stat_id", table_name="worker_error_logs")
    op.drop_table("worker_error_logs")
    op.drop_index("ix_worker_runs_daily_stat_id", table_name="worker_runs")
    op.drop_table("worker_runs")
    op.drop_index("ix_worker_daily_stats_date_worker_type", table_name="worker_daily_stats")
    op.drop_table("worker_daily_stats")
    op.drop_index("ix_worker_scaling_events_key", table_name="worker_scaling_events")
    op.drop_table("worker_scaling_events")
    op.drop_table("worker_hourly_errors")
    op.drop_index("ix_worker_hourly_stats_date_hour", table_name="worker_hourly_stats")
    op.drop_table("worker_hourly_stats")
    op.drop_index("ix_work_item_updates_recorded_at", table_name="work_item_updates")
    op.drop_index("ix_work_item_updates_work_item_id", table_name="work_item_updates")
    op.drop_table("work_item_updates")
    op.drop_index("ix_work_items_skip_until", table_name="work_items")
    op.drop_index("ix_work_items_lease_worker_id", table_name="work_items")
    op.drop_index("ix_work_items_eligibility", table_name="work_items")
    op.drop_table("work_items")
