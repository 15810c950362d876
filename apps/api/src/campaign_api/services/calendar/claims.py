"""Daily claim orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.db.dialect import dialect_insert
from campaign_api.models.calendar import (
    CalendarAchievement,
    CalendarClaim,
    CalendarClaimStatus,
    CalendarVoucher,
)
from campaign_api.schemas.calendar import EventRewardConfig, StreakMilestone
from .audit import CalendarAuditLog
from .catalog import EventCatalog, ensure_within_window
from .errors import CalendarValidationError
from .issuer import EntryGrantRecord, IssuanceResult, RewardIssuer, voucher_payload
from .metrics import MetricsAggregator, MetricsDelta
from .policy import RequestContext
from .referrals import ReferralActivity, SqlReferralActivity
from .streaks import StreakSnapshot, StreakTracker

CLAIM_BASE_SOURCE = "claim_base"
REFERRAL_BONUS_SOURCE = "referral_bonus"
STREAK_BONUS_SOURCE = "streak_bonus"


@dataclass
class ClaimOutcome:
    status: str
    claim: CalendarClaim
    streak: StreakSnapshot
    vouchers: list[CalendarVoucher] = field(default_factory=list)
    raffle_entries: list[EntryGrantRecord] = field(default_factory=list)
    achievements: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "claim": claim_payload(self.claim),
            "streak": self.streak.as_dict(),
            "vouchers": [voucher_payload(voucher) for voucher in self.vouchers],
            "raffle_entries": [entry.as_dict() for entry in self.raffle_entries],
            "achievements": list(self.achievements),
        }


def claim_payload(claim: CalendarClaim) -> dict[str, Any]:
    return {
        "id": str(claim.id),
        "user_id": str(claim.user_id),
        "event_date": claim.event_date.isoformat(),
        "status": claim.status.value if claim.status else None,
        "payload": dict(claim.payload or {}),
        "claimed_at": claim.claimed_at.isoformat() if claim.claimed_at else None,
    }


async def lock_claim(session: AsyncSession, user_id: UUID, event_date: date) -> Optional[CalendarClaim]:
    stmt = (
        select(CalendarClaim)
        .where(CalendarClaim.user_id == user_id, CalendarClaim.event_date == event_date)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_claim(session: AsyncSession, user_id: UUID, event_date: date) -> CalendarClaim:
    claim = await lock_claim(session, user_id, event_date)
    if claim is None:
        raise CalendarValidationError(
            "requires_claim",
            "The day must be claimed first",
            details={"event_date": event_date.isoformat()},
        )
    return claim


class ClaimService:
    """Records a user's daily claim and grants everything it unlocks."""

    def __init__(self, session: AsyncSession, *, referrals: ReferralActivity | None = None) -> None:
        self._db = session
        self._catalog = EventCatalog(session)
        self._issuer = RewardIssuer(session)
        self._streaks = StreakTracker(session)
        self._audit = CalendarAuditLog(session)
        self._metrics = MetricsAggregator(session)
        self._referrals = referrals or SqlReferralActivity(session)

    async def claim(
        self,
        user_id: UUID,
        event_date: date,
        *,
        ctx: RequestContext,
        payload: dict[str, Any] | None = None,
        tz_offset_minutes: int = 0,
    ) -> ClaimOutcome:
        now = ctx.current_time()
        event = await self._catalog.require_published(event_date)
        ensure_within_window(event.record, now, tz_offset_minutes)

        claim_data = {key: value for key, value in (payload or {}).items() if key != "choice"}
        claim = await self._insert_claim(user_id, event_date, claim_data, now)
        if claim is None:
            return await self._duplicate(user_id, event_date, ctx, payload)

        streak = await self._streaks.record_claim(user_id, event_date)
        config = event.config

        granted = await self._issuer.issue_reward_set(
            user_id, event_date, config.base_rewards, source=CLAIM_BASE_SOURCE
        )
        granted.extend(await self._fallback_entries(user_id, event_date, config))
        granted.extend(await self._referral_bonus(user_id, event_date, config))

        achievements: list[dict[str, Any]] = []
        streak_delta = MetricsDelta()
        for milestone in config.streak.milestones:
            if milestone.threshold > streak.current:
                continue
            achievement = await self._award_milestone(user_id, event_date, milestone)
            if achievement is None:
                continue
            achievements.append({"key": achievement.achievement_key, "threshold": milestone.threshold})
            if milestone.threshold == 7:
                streak_delta.streak_7 += 1
            elif milestone.threshold == 15:
                streak_delta.streak_15 += 1
            granted.extend(
                await self._issuer.issue_reward_set(
                    user_id, event_date, milestone.rewards, source=STREAK_BONUS_SOURCE
                )
            )

        await self._audit.record(
            "claim",
            user_id=user_id,
            event_date=event_date,
            ctx=ctx,
            payload={
                "claim_id": str(claim.id),
                "vouchers": len(granted.vouchers),
                "entries": granted.entries_added,
                "streak": streak.current,
                "tz_offset_minutes": tz_offset_minutes,
            },
        )
        await self._metrics.apply(event_date, MetricsDelta(claims=1) + granted.metrics_delta() + streak_delta)

        logger.info(
            "Calendar claim recorded",
            user_id=str(user_id),
            event_date=str(event_date),
            streak=streak.current,
            vouchers=len(granted.vouchers),
            entries=granted.entries_added,
            achievements=len(achievements),
        )
        return ClaimOutcome(
            status="claimed",
            claim=claim,
            streak=streak,
            vouchers=granted.vouchers,
            raffle_entries=granted.entries,
            achievements=achievements,
        )

    async def _insert_claim(
        self,
        user_id: UUID,
        event_date: date,
        payload: dict[str, Any],
        now: datetime,
    ) -> CalendarClaim | None:
        stmt = (
            dialect_insert(self._db, CalendarClaim)
            .values(
                user_id=user_id,
                event_date=event_date,
                payload=payload,
                status=CalendarClaimStatus.CLAIMED,
                claimed_at=now,
            )
            .on_conflict_do_nothing(index_elements=[CalendarClaim.user_id, CalendarClaim.event_date])
            .returning(CalendarClaim)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _duplicate(
        self,
        user_id: UUID,
        event_date: date,
        ctx: RequestContext,
        payload: dict[str, Any] | None,
    ) -> ClaimOutcome:
        existing = await require_claim(self._db, user_id, event_date)
        streak = await self._streaks.get(user_id)
        await self._audit.record(
            "claim_duplicate",
            user_id=user_id,
            event_date=event_date,
            ctx=ctx,
            payload={"claim_id": str(existing.id), "payload": payload or {}},
        )
        logger.info("Calendar claim duplicate", user_id=str(user_id), event_date=str(event_date))
        return ClaimOutcome(status="duplicate", claim=existing, streak=streak)

    async def _fallback_entries(
        self,
        user_id: UUID,
        event_date: date,
        config: EventRewardConfig,
    ) -> IssuanceResult:
        result = IssuanceResult()
        raffle = config.raffle
        if config.base_rewards.raffle_entries or raffle is None or not raffle.raffle_id:
            return result
        if not raffle.entries_on_claim:
            return result
        result.add_entry(
            await self._issuer.add_entries(
                user_id,
                event_date,
                raffle_id=raffle.raffle_id,
                count=raffle.entries_on_claim,
                source=CLAIM_BASE_SOURCE,
            )
        )
        return result

    async def _referral_bonus(
        self,
        user_id: UUID,
        event_date: date,
        config: EventRewardConfig,
    ) -> IssuanceResult:
        result = IssuanceResult()
        raffle = config.raffle
        if raffle is None or not raffle.raffle_id or raffle.bonus_per_referral_today <= 0:
            return result
        referrals_today = await self._referrals.completed_on(user_id, event_date)
        if referrals_today <= 0:
            return result
        result.add_entry(
            await self._issuer.add_entries(
                user_id,
                event_date,
                raffle_id=raffle.raffle_id,
                count=referrals_today * raffle.bonus_per_referral_today,
                source=REFERRAL_BONUS_SOURCE,
                metadata={"referrals_today": referrals_today},
            )
        )
        return result

    async def _award_milestone(
        self,
        user_id: UUID,
        event_date: date,
        milestone: StreakMilestone,
    ) -> CalendarAchievement | None:
        stmt = (
            dialect_insert(self._db, CalendarAchievement)
            .values(
                user_id=user_id,
                achievement_key=milestone.key,
                event_date=event_date,
                payload={"threshold": milestone.threshold, "awarded_on": event_date.isoformat()},
            )
            .on_conflict_do_nothing(
                index_elements=[CalendarAchievement.user_id, CalendarAchievement.achievement_key]
            )
            .returning(CalendarAchievement)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()


__all__ = [
    "CLAIM_BASE_SOURCE",
    "ClaimOutcome",
    "ClaimService",
    "REFERRAL_BONUS_SOURCE",
    "STREAK_BONUS_SOURCE",
    "claim_payload",
    "lock_claim",
    "require_claim",
]
