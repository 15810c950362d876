"""Referral lifecycle on the collaborator side of the calendar."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.models.referral import Referral, ReferralStatus
from campaign_api.services.calendar.referrals import ReferralCompleted, ReferralEventHub


class ReferralActivityService:
    """Creates and completes referrals, announcing completions on the hub."""

    def __init__(self, session: AsyncSession, *, hub: Optional[ReferralEventHub] = None) -> None:
        self._db = session
        self._hub = hub

    async def create_referral(
        self,
        referrer_user_id: UUID,
        *,
        invitee_user_id: UUID | None = None,
        referrer_code: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Referral:
        referral = Referral(
            referrer_user_id=referrer_user_id,
            invitee_user_id=invitee_user_id,
            referrer_code=referrer_code,
            metadata_json=metadata or {},
            status=ReferralStatus.PENDING,
        )
        self._db.add(referral)
        await self._db.commit()
        logger.info("Referral created", referral_id=str(referral.id), referrer_user_id=str(referrer_user_id))
        return referral

    async def complete_referral(self, referral_id: UUID, *, completed_at: datetime | None = None) -> Referral:
        """Mark a referral completed; subscribers run only on the first transition."""

        stmt = (
            select(Referral)
            .where(Referral.id == referral_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        referral = (await self._db.execute(stmt)).scalar_one_or_none()
        if referral is None:
            raise ValueError("Referral not found")
        if referral.status == ReferralStatus.COMPLETED:
            logger.info("Referral already completed", referral_id=str(referral_id))
            return referral
        if referral.status == ReferralStatus.CANCELLED:
            raise ValueError("Cancelled referrals cannot be completed")

        completion = completed_at or datetime.now(timezone.utc)
        referral.status = ReferralStatus.COMPLETED
        referral.completed_at = completion
        try:
            await self._db.flush()
            if self._hub is not None:
                await self._hub.publish(
                    self._db,
                    ReferralCompleted(
                        referral_id=referral.id,
                        referrer_user_id=referral.referrer_user_id,
                        invitee_user_id=referral.invitee_user_id,
                        completed_at=completion,
                        metadata=dict(referral.metadata_json or {}),
                    ),
                )
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        logger.info(
            "Referral completed",
            referral_id=str(referral_id),
            referrer_user_id=str(referral.referrer_user_id),
        )
        return referral


__all__ = ["ReferralActivityService"]
