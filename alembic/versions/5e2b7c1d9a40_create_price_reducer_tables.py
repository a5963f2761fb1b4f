"""create price reducer tables

Revision ID: 5e2b7c1d9a40
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "5e2b7c1d9a40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
money = sa.Numeric(10, 2)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "seller_accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("vacation_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "market_credentials",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("seller_accounts.id"), nullable=False, unique=True),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
        sa.Column("app_id", sa.Text(), nullable=True),
        sa.Column("client_secret_encrypted", sa.Text(), nullable=True),
        sa.Column("connection_status", sa.Text(), nullable=False, server_default="connected"),
        sa.Column("disconnected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "reduction_strategies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("seller_accounts.id"), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("reduction_type", sa.Text(), nullable=True),
        sa.Column("strategy_type", sa.Text(), nullable=True),
        sa.Column("reduction_amount", money, nullable=True),
        sa.Column("reduction_percentage", money, nullable=True),
        sa.Column("floor_price", money, nullable=True),
        sa.Column("frequency_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "listings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("seller_accounts.id"), nullable=False),
        sa.Column("ebay_item_id", sa.Text(), nullable=True),
        sa.Column("sku", sa.Text(), nullable=True),
        sa.Column("offer_id", sa.Text(), nullable=True),
        sa.Column("protocol", sa.Text(), nullable=False, server_default="UNCLASSIFIED"),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("quantity_available", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity_sold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("listing_url", sa.Text(), nullable=True),
        sa.Column("listing_status", sa.Text(), nullable=False, server_default="Active"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_price", money, nullable=False),
        sa.Column("original_price", money, nullable=True),
        sa.Column("minimum_price", money, nullable=True),
        sa.Column("reduction_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("strategy_id", sa.Uuid(), sa.ForeignKey("reduction_strategies.id"), nullable=True),
        sa.Column("reduction_percentage", money, nullable=True),
        sa.Column("reduction_interval", sa.Integer(), nullable=True),
        sa.Column("last_reduction_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_reduction_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_reductions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("market_average_price", money, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "ebay_item_id", name="uq_listings_account_item"),
        sa.UniqueConstraint("account_id", "sku", name="uq_listings_account_sku"),
    )
    op.create_index("ix_listings_due", "listings", ["reduction_enabled", "listing_status"])

    op.create_table(
        "price_reduction_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("seller_accounts.id"), nullable=False),
        sa.Column("listing_id", sa.Uuid(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("ebay_item_id", sa.Text(), nullable=True),
        sa.Column("sku", sa.Text(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("original_price", money, nullable=False),
        sa.Column("reduced_price", money, nullable=False),
        sa.Column("reduction_amount", money, nullable=False),
        sa.Column("reduction_percentage", money, nullable=True),
        sa.Column("trigger_type", sa.Text(), nullable=False),
        sa.Column("strategy_type", sa.Text(), nullable=True),
        sa.Column("strategy_name", sa.Text(), nullable=True),
        sa.Column("strategy_id", sa.Uuid(), nullable=True),
        sa.Column("protocol", sa.Text(), nullable=True),
        sa.Column("triggered_by", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_price_reduction_logs_created_at", "price_reduction_logs", ["created_at"])

    op.create_table(
        "run_guard_state",
        sa.Column("job_type", sa.Text(), primary_key=True),
        sa.Column("last_completed_key", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )

    op.create_table(
        "sync_cursors",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("seller_accounts.id"), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("cursor", json_type, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("account_id", "source", name="uq_sync_cursors_account_source"),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_type", sa.Text(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("read_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("write_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("meta", json_type, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_job_runs_job_type_started_at", "job_runs", ["job_type", "started_at"])


def downgrade() -> None:
    op.drop_index("ix_job_runs_job_type_started_at", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_table("sync_cursors")
    op.drop_table("run_guard_state")
    op.drop_index("ix_price_reduction_logs_created_at", table_name="price_reduction_logs")
    op.drop_table("price_reduction_logs")
    op.drop_index("ix_listings_due", table_name="listings")
    op.drop_table("listings")
    op.drop_table("reduction_strategies")
    op.drop_table("market_credentials")
    op.drop_table("seller_accounts")
