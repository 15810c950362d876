"""Referral records mirrored from the referral collaborator."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, Index, JSON, String, func
from sqlalchemy.dialects.postgresql import UUID

from campaign_api.db.base import Base


class ReferralStatus(str, Enum):
    """Lifecycle statuses for referrals."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Referral(Base):
    """A referral from an existing user to an invitee."""

    __tablename__ = "referrals"
    __table_args__ = (
        Index("ix_referrals_referrer_status", "referrer_user_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    referrer_user_id = Column(UUID(as_uuid=True), nullable=False)
    invitee_user_id = Column(UUID(as_uuid=True), nullable=True)
    referrer_code = Column(String, nullable=True)
    status = Column(
        SqlEnum(
            ReferralStatus,
            name="referral_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=ReferralStatus.PENDING,
    )
    metadata_json = Column("metadata", JSON, key="metadata_json", nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
