"""Daily calendar campaign domain models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    JSON,
    func,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from campaign_api.db.base import Base


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class CalendarSetting(Base):
    """Keyed runtime switches for the calendar campaign."""

    __tablename__ = "calendar_settings"

    key = Column(String, primary_key=True)
    enabled = Column(Boolean, nullable=False, default=False, server_default="false")
    metadata_json = Column("metadata", JSON, key="metadata_json", nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CalendarEvent(Base):
    """One published day of the campaign and its reward configuration."""

    __tablename__ = "calendar_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_date = Column(Date, nullable=False, unique=True, index=True)
    slug = Column(String, nullable=False, unique=True)
    types = Column(JSON, nullable=False, default=list)
    config = Column(JSON, nullable=False, default=dict)
    claim_window_start = Column(DateTime(timezone=True), nullable=False)
    claim_window_end = Column(DateTime(timezone=True), nullable=False)
    published = Column(Boolean, nullable=False, default=False, server_default="false", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CalendarClaimStatus(str, Enum):
    """Lifecycle for daily claims."""

    CLAIMED = "claimed"


class CalendarClaim(Base):
    """A user's claim of a single calendar day."""

    __tablename__ = "calendar_claims"
    __table_args__ = (
        UniqueConstraint("user_id", "event_date", name="uq_calendar_claims_user_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    event_date = Column(
        Date,
        ForeignKey("calendar_events.event_date", ondelete="CASCADE"),
        nullable=False,
    )
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(
        SqlEnum(CalendarClaimStatus, name="calendar_claim_status", values_callable=_enum_values),
        nullable=False,
        default=CalendarClaimStatus.CLAIMED,
    )
    claimed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CalendarStreak(Base):
    """Consecutive-day claim streak per user."""

    __tablename__ = "calendar_streaks"

    user_id = Column(UUID(as_uuid=True), primary_key=True)
    current_streak = Column(Integer, nullable=False, default=0, server_default="0")
    max_streak = Column(Integer, nullable=False, default=0, server_default="0")
    last_claimed_date = Column(Date, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CalendarVoucherStatus(str, Enum):
    """Voucher lifecycle."""

    ISSUED = "issued"
    REDEEMED = "redeemed"
    LOCKED = "locked"


class CalendarVoucher(Base):
    """Scoped benefit granted by a calendar day."""

    __tablename__ = "calendar_vouchers"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "event_date",
            "voucher_type",
            "scope",
            name="uq_calendar_vouchers_user_date_type_scope",
        ),
        Index("ix_calendar_vouchers_user_status", "user_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    event_date = Column(
        Date,
        ForeignKey("calendar_events.event_date", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    voucher_type = Column(String, nullable=False)
    scope = Column(String, nullable=False, default="global", server_default="global")
    amount = Column(Numeric(10, 2), nullable=True)
    source = Column(String, nullable=False, default="calendar", server_default="calendar")
    metadata_json = Column("metadata", JSON, key="metadata_json", nullable=False, default=dict)
    status = Column(
        SqlEnum(CalendarVoucherStatus, name="calendar_voucher_status", values_callable=_enum_values),
        nullable=False,
        default=CalendarVoucherStatus.ISSUED,
    )
    issued_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)


class CalendarRaffleStatus(str, Enum):
    """Raffle lifecycle."""

    SCHEDULED = "scheduled"
    OPEN = "open"
    DRAWN = "drawn"


class CalendarRaffle(Base):
    """Raffle collecting entries across the campaign."""

    __tablename__ = "calendar_raffles"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    draw_at = Column(DateTime(timezone=True), nullable=False)
    rules = Column(JSON, nullable=False, default=dict)
    status = Column(
        SqlEnum(CalendarRaffleStatus, name="calendar_raffle_status", values_callable=_enum_values),
        nullable=False,
        default=CalendarRaffleStatus.SCHEDULED,
    )
    draw_seed = Column(String, nullable=True)
    draw_result = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    winners = relationship(
        "CalendarRaffleWinner",
        back_populates="raffle",
        cascade="all, delete-orphan",
        order_by="CalendarRaffleWinner.position",
    )


class CalendarRaffleEntry(Base):
    """Additive ticket accumulator per raffle, user, source and day."""

    __tablename__ = "calendar_raffle_entries"
    __table_args__ = (
        UniqueConstraint(
            "raffle_id",
            "user_id",
            "source",
            "event_date",
            name="uq_calendar_raffle_entries_key",
        ),
        Index("ix_calendar_raffle_entries_raffle_user", "raffle_id", "user_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    raffle_id = Column(String, ForeignKey("calendar_raffles.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    source = Column(String, nullable=False)
    event_date = Column(Date, nullable=False)
    count = Column(Integer, nullable=False, default=0, server_default="0")
    metadata_json = Column("metadata", JSON, key="metadata_json", nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CalendarRaffleEntryControl(Base):
    """Operator weight override or exclusion for a raffle participant."""

    __tablename__ = "calendar_raffle_entry_controls"
    __table_args__ = (
        UniqueConstraint("raffle_id", "user_id", name="uq_calendar_raffle_entry_controls_raffle_user"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    raffle_id = Column(String, ForeignKey("calendar_raffles.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    weight_multiplier = Column(Numeric(6, 3), nullable=False, default=1, server_default="1")
    excluded = Column(Boolean, nullable=False, default=False, server_default="false")
    reason = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, key="metadata_json", nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CalendarRaffleWinner(Base):
    """Ranked raffle winner with its verification hash."""

    __tablename__ = "calendar_raffle_winners"
    __table_args__ = (
        UniqueConstraint("raffle_id", "position", name="uq_calendar_raffle_winners_position"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    raffle_id = Column(String, ForeignKey("calendar_raffles.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    position = Column(Integer, nullable=False)
    seed_used = Column(String, nullable=False)
    audit_hash = Column(String, nullable=False)
    metadata_json = Column("metadata", JSON, key="metadata_json", nullable=False, default=dict)
    drawn_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    raffle = relationship("CalendarRaffle", back_populates="winners")


class CalendarSpinWheel(Base):
    """Ordered, weighted wheel items for one calendar day."""

    __tablename__ = "calendar_spin_wheels"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_date = Column(Date, nullable=False, unique=True)
    items = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CalendarSpinResult(Base):
    """The single recorded spin outcome for a user and day."""

    __tablename__ = "calendar_spin_results"
    __table_args__ = (
        UniqueConstraint("user_id", "event_date", name="uq_calendar_spin_results_user_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    event_date = Column(
        Date,
        ForeignKey("calendar_events.event_date", ondelete="CASCADE"),
        nullable=False,
    )
    wheel_id = Column(UUID(as_uuid=True), ForeignKey("calendar_spin_wheels.id", ondelete="CASCADE"), nullable=False)
    item_index = Column(Integer, nullable=False)
    item_payload = Column(JSON, nullable=False, default=dict)
    spun_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CalendarReferralMultiplier(Base):
    """Per-day bonus rule applied when a referral completes."""

    __tablename__ = "calendar_referral_multipliers"
    __table_args__ = (
        UniqueConstraint("event_date", "applies_to", name="uq_calendar_referral_multipliers_date_target"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_date = Column(Date, nullable=False, index=True)
    multiplier = Column(Numeric(5, 2), nullable=False, default=1, server_default="1")
    applies_to = Column(String, nullable=False)
    notes = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, key="metadata_json", nullable=False, default=dict)


class CalendarAchievement(Base):
    """Streak milestone awarded at most once per user."""

    __tablename__ = "calendar_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_key", name="uq_calendar_achievements_user_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    achievement_key = Column(String, nullable=False)
    event_date = Column(Date, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    awarded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CalendarEventLog(Base):
    """Append-only audit trail of calendar operations."""

    __tablename__ = "calendar_event_log"
    __table_args__ = (
        Index("ix_calendar_event_log_type_date", "event_type", "event_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=True)
    event_type = Column(String, nullable=False)
    event_date = Column(Date, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CalendarMetricsDaily(Base):
    """Additive per-day campaign counters."""

    __tablename__ = "calendar_metrics_daily"

    metric_date = Column(Date, primary_key=True)
    claims_count = Column(Integer, nullable=False, default=0, server_default="0")
    streak_7_count = Column(Integer, nullable=False, default=0, server_default="0")
    streak_15_count = Column(Integer, nullable=False, default=0, server_default="0")
    vouchers_issued = Column(Integer, nullable=False, default=0, server_default="0")
    vouchers_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    raffle_entries_added = Column(Integer, nullable=False, default=0, server_default="0")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
