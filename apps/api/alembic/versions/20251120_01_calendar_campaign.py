"""Create daily calendar campaign and referral tables.

Revision ID: 20251120_01
Revises:
Create Date: 2025-11-20
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20251120_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


claim_status = sa.Enum("claimed", name="calendar_claim_status")
voucher_status = sa.Enum("issued", "redeemed", "locked", name="calendar_voucher_status")
raffle_status = sa.Enum("scheduled", "open", "drawn", name="calendar_raffle_status")
referral_status = sa.Enum("pending", "completed", "cancelled", name="referral_status")


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "calendar_settings",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _timestamp("updated_at"),
    )

    op.create_table(
        "calendar_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_date", sa.Date(), nullable=False, unique=True),
        sa.Column("slug", sa.String(), nullable=False, unique=True),
        sa.Column("types", sa.JSON(), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("claim_window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claim_window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_calendar_events_event_date", "calendar_events", ["event_date"])
    op.create_index("ix_calendar_events_published", "calendar_events", ["published"])

    op.create_table(
        "calendar_claims",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", claim_status, nullable=False),
        _timestamp("claimed_at"),
        sa.ForeignKeyConstraint(["event_date"], ["calendar_events.event_date"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "event_date", name="uq_calendar_claims_user_date"),
    )
    op.create_index("ix_calendar_claims_user_id", "calendar_claims", ["user_id"])

    op.create_table(
        "calendar_streaks",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_claimed_date", sa.Date(), nullable=True),
        _timestamp("updated_at"),
    )

    op.create_table(
        "calendar_vouchers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("voucher_type", sa.String(), nullable=False),
        sa.Column("scope", sa.String(), nullable=False, server_default="global"),
        sa.Column("amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default="calendar"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("status", voucher_status, nullable=False),
        _timestamp("issued_at"),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["event_date"], ["calendar_events.event_date"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "user_id",
            "event_date",
            "voucher_type",
            "scope",
            name="uq_calendar_vouchers_user_date_type_scope",
        ),
    )
    op.create_index("ix_calendar_vouchers_event_date", "calendar_vouchers", ["event_date"])
    op.create_index("ix_calendar_vouchers_user_status", "calendar_vouchers", ["user_id", "status"])

    op.create_table(
        "calendar_raffles",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("draw_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rules", sa.JSON(), nullable=False),
        sa.Column("status", raffle_status, nullable=False),
        sa.Column("draw_seed", sa.String(), nullable=True),
        sa.Column("draw_result", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "calendar_raffle_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("raffle_id", sa.String(), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["raffle_id"], ["calendar_raffles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("raffle_id", "user_id", "source", "event_date", name="uq_calendar_raffle_entries_key"),
    )
    op.create_index("ix_calendar_raffle_entries_user_id", "calendar_raffle_entries", ["user_id"])
    op.create_index("ix_calendar_raffle_entries_raffle_user", "calendar_raffle_entries", ["raffle_id", "user_id"])

    op.create_table(
        "calendar_raffle_entry_controls",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("raffle_id", sa.String(), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("weight_multiplier", sa.Numeric(6, 3), nullable=False, server_default="1"),
        sa.Column("excluded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["raffle_id"], ["calendar_raffles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("raffle_id", "user_id", name="uq_calendar_raffle_entry_controls_raffle_user"),
    )

    op.create_table(
        "calendar_raffle_winners",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("raffle_id", sa.String(), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("seed_used", sa.String(), nullable=False),
        sa.Column("audit_hash", sa.String(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _timestamp("drawn_at"),
        sa.ForeignKeyConstraint(["raffle_id"], ["calendar_raffles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("raffle_id", "position", name="uq_calendar_raffle_winners_position"),
    )

    op.create_table(
        "calendar_spin_wheels",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_date", sa.Date(), nullable=False, unique=True),
        sa.Column("items", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "calendar_spin_results",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("wheel_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("item_index", sa.Integer(), nullable=False),
        sa.Column("item_payload", sa.JSON(), nullable=False),
        _timestamp("spun_at"),
        sa.ForeignKeyConstraint(["event_date"], ["calendar_events.event_date"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["wheel_id"], ["calendar_spin_wheels.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "event_date", name="uq_calendar_spin_results_user_date"),
    )

    op.create_table(
        "calendar_referral_multipliers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("multiplier", sa.Numeric(5, 2), nullable=False, server_default="1"),
        sa.Column("applies_to", sa.String(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.UniqueConstraint("event_date", "applies_to", name="uq_calendar_referral_multipliers_date_target"),
    )
    op.create_index(
        "ix_calendar_referral_multipliers_event_date",
        "calendar_referral_multipliers",
        ["event_date"],
    )

    op.create_table(
        "calendar_achievements",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("achievement_key", sa.String(), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        _timestamp("awarded_at"),
        sa.UniqueConstraint("user_id", "achievement_key", name="uq_calendar_achievements_user_key"),
    )

    op.create_table(
        "calendar_event_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_calendar_event_log_type_date", "calendar_event_log", ["event_type", "event_date"])

    op.create_table(
        "calendar_metrics_daily",
        sa.Column("metric_date", sa.Date(), primary_key=True),
        sa.Column("claims_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("streak_7_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("streak_15_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vouchers_issued", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vouchers_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("raffle_entries_added", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "referrals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("referrer_user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("invitee_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("referrer_code", sa.String(), nullable=True),
        sa.Column("status", referral_status, nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_referrals_referrer_status", "referrals", ["referrer_user_id", "status"])


def downgrade() -> None:
    op.drop_index("ix_referrals_referrer_status", table_name="referrals")
    op.drop_table("referrals")
    op.drop_table("calendar_metrics_daily")
    op.drop_index("ix_calendar_event_log_type_date", table_name="calendar_event_log")
    op.drop_table("calendar_event_log")
    op.drop_table("calendar_achievements")
    op.drop_index("ix_calendar_referral_multipliers_event_date", table_name="calendar_referral_multipliers")
    op.drop_table("calendar_referral_multipliers")
    op.drop_table("calendar_spin_results")
    op.drop_table("calendar_spin_wheels")
    op.drop_table("calendar_raffle_winners")
    op.drop_table("calendar_raffle_entry_controls")
    op.drop_index("ix_calendar_raffle_entries_raffle_user", table_name="calendar_raffle_entries")
    op.drop_index("ix_calendar_raffle_entries_user_id", table_name="calendar_raffle_entries")
    op.drop_table("calendar_raffle_entries")
    op.drop_table("calendar_raffles")
    op.drop_index("ix_calendar_vouchers_user_status", table_name="calendar_vouchers")
    op.drop_index("ix_calendar_vouchers_event_date", table_name="calendar_vouchers")
    op.drop_table("calendar_vouchers")
    op.drop_table("calendar_streaks")
    op.drop_index("ix_calendar_claims_user_id", table_name="calendar_claims")
    op.drop_table("calendar_claims")
    op.drop_index("ix_calendar_events_published", table_name="calendar_events")
    op.drop_index("ix_calendar_events_event_date", table_name="calendar_events")
    op.drop_table("calendar_events")
    op.drop_table("calendar_settings")

    bind = op.get_bind()
    for enum in (referral_status, raffle_status, voucher_status, claim_status):
        enum.drop(bind, checkfirst=True)
