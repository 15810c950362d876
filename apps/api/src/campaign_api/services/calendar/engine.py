"""Transactional facade over the calendar services.

Every public coroutine is one unit of work: policy checks, the operation and
its audit/metrics writes either all commit or all roll back.
"""

from __future__ import annotations

import random
from datetime import date
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.models.calendar import CalendarAchievement, CalendarClaim
from campaign_api.observability.calendar import CalendarObservabilityStore, get_calendar_store
from .audit import CalendarAuditLog
from .catalog import local_today, validate_timezone_offset
from .choices import ChoiceOutcome, ChoiceService
from .claims import ClaimOutcome, ClaimService, claim_payload
from .errors import CalendarError, TransientStoreError
from .issuer import RewardIssuer, voucher_payload
from .metrics import MetricsAggregator, MetricsDelta
from .policy import (
    Authorizer,
    FeatureFlag,
    RequestContext,
    SessionAuthorizer,
    StoredFeatureFlag,
    ensure_feature_enabled,
    require_service_role,
)
from .raffle import DrawOutcome, DrawVerification, RaffleDrawService
from .referrals import ReferralActivity, SqlReferralActivity
from .spin import SpinOutcome, SpinService
from .streaks import StreakTracker
from .upgrades import UpgradeEvaluator, UpgradeOutcome

T = TypeVar("T")


class CalendarEngine:
    """Entry point used by the API layer and by operator tooling."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        feature_flag: FeatureFlag | None = None,
        authorizer: Authorizer | None = None,
        referrals: ReferralActivity | None = None,
        rng: random.Random | None = None,
        store: CalendarObservabilityStore | None = None,
    ) -> None:
        self._db = session
        self._feature_flag = feature_flag or StoredFeatureFlag(session)
        self._authorizer = authorizer or SessionAuthorizer()
        self._referrals = referrals or SqlReferralActivity(session)
        self._rng = rng
        self._store = store or get_calendar_store()

    async def claim(
        self,
        user_id: UUID,
        *,
        ctx: RequestContext,
        event_date: date | None = None,
        payload: dict[str, Any] | None = None,
        tz_offset_minutes: int | None = 0,
    ) -> ClaimOutcome:
        async def action() -> ClaimOutcome:
            offset = await self._member_preconditions(user_id, ctx, tz_offset_minutes)
            target_date = event_date or local_today(ctx.current_time(), offset)
            return await ClaimService(self._db, referrals=self._referrals).claim(
                user_id,
                target_date,
                ctx=ctx,
                payload=payload,
                tz_offset_minutes=offset,
            )

        return await self._run("claim", action)

    async def select_choice(
        self,
        user_id: UUID,
        event_date: date,
        choice_key: str,
        *,
        ctx: RequestContext,
        tz_offset_minutes: int | None = 0,
    ) -> ChoiceOutcome:
        async def action() -> ChoiceOutcome:
            offset = await self._member_preconditions(user_id, ctx, tz_offset_minutes)
            return await ChoiceService(self._db).select_choice(
                user_id, event_date, choice_key, ctx=ctx, tz_offset_minutes=offset
            )

        return await self._run("choice", action)

    async def reset_choice(
        self,
        user_id: UUID,
        event_date: date,
        *,
        ctx: RequestContext,
        tz_offset_minutes: int | None = 0,
    ) -> ChoiceOutcome:
        async def action() -> ChoiceOutcome:
            offset = await self._member_preconditions(user_id, ctx, tz_offset_minutes)
            return await ChoiceService(self._db).reset_choice(user_id, event_date, ctx=ctx, tz_offset_minutes=offset)

        return await self._run("choice_reset", action)

    async def spin(self, user_id: UUID, event_date: date, *, ctx: RequestContext) -> SpinOutcome:
        async def action() -> SpinOutcome:
            await self._member_preconditions(user_id, ctx, 0)
            return await SpinService(self._db, rng=self._rng).spin(user_id, event_date, ctx=ctx)

        return await self._run("spin", action)

    async def evaluate_upgrades(self, user_id: UUID, event_date: date, *, ctx: RequestContext) -> UpgradeOutcome:
        async def action() -> UpgradeOutcome:
            await self._member_preconditions(user_id, ctx, 0)
            return await UpgradeEvaluator(self._db, referrals=self._referrals).evaluate(user_id, event_date, ctx=ctx)

        return await self._run("upgrade", action)

    async def draw_raffle(self, raffle_id: str, *, ctx: RequestContext, seed: str | None = None) -> DrawOutcome:
        async def action() -> DrawOutcome:
            return await RaffleDrawService(self._db).draw(raffle_id, ctx=ctx, seed=seed)

        return await self._run("raffle_draw", action)

    async def verify_draw(self, raffle_id: str) -> DrawVerification:
        async def action() -> DrawVerification:
            return await RaffleDrawService(self._db).verify(raffle_id)

        return await self._run("raffle_verify", action)

    async def redeem_voucher(self, voucher_id: UUID, *, ctx: RequestContext) -> dict[str, Any]:
        async def action() -> dict[str, Any]:
            require_service_role(ctx)
            voucher = await RewardIssuer(self._db).redeem_voucher(voucher_id, now=ctx.current_time())
            await MetricsAggregator(self._db).apply(voucher.event_date, MetricsDelta(vouchers_redeemed=1))
            await CalendarAuditLog(self._db).record(
                "voucher_redeem",
                user_id=voucher.user_id,
                event_date=voucher.event_date,
                ctx=ctx,
                payload={"voucher_id": str(voucher.id), "voucher_type": voucher.voucher_type},
            )
            logger.info("Calendar voucher redeemed", voucher_id=str(voucher.id), user_id=str(voucher.user_id))
            return {"status": "redeemed", "voucher": voucher_payload(voucher)}

        return await self._run("voucher_redeem", action)

    async def user_overview(self, user_id: UUID, *, ctx: RequestContext) -> dict[str, Any]:
        """Dashboard view of everything a member has collected."""

        async def action() -> dict[str, Any]:
            await ensure_feature_enabled(self._feature_flag)
            await self._authorizer.ensure_can_act(ctx, user_id)
            claims = await self._db.execute(
                select(CalendarClaim)
                .where(CalendarClaim.user_id == user_id)
                .order_by(CalendarClaim.event_date.asc())
            )
            achievements = await self._db.execute(
                select(CalendarAchievement)
                .where(CalendarAchievement.user_id == user_id)
                .order_by(CalendarAchievement.event_date.asc())
            )
            issuer = RewardIssuer(self._db)
            streak = await StreakTracker(self._db).get(user_id)
            return {
                "status": "ok",
                "user_id": str(user_id),
                "streak": streak.as_dict(),
                "last_claimed_date": streak.last_claimed_date.isoformat() if streak.last_claimed_date else None,
                "claims": [claim_payload(claim) for claim in claims.scalars().all()],
                "vouchers": [voucher_payload(voucher) for voucher in await issuer.list_vouchers(user_id)],
                "raffle_entries": await issuer.entry_totals(user_id),
                "achievements": [
                    {"key": achievement.achievement_key, "event_date": achievement.event_date.isoformat()}
                    for achievement in achievements.scalars().all()
                ],
            }

        return await self._run("overview", action)

    async def _member_preconditions(
        self,
        user_id: UUID,
        ctx: RequestContext,
        tz_offset_minutes: int | None,
    ) -> int:
        await ensure_feature_enabled(self._feature_flag)
        await self._authorizer.ensure_can_act(ctx, user_id)
        return validate_timezone_offset(tz_offset_minutes)

    async def _run(self, operation: str, action: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await action()
            await self._db.commit()
        except CalendarError as exc:
            await self._db.rollback()
            self._store.record_error(operation, exc.code)
            logger.warning("Calendar operation rejected", operation=operation, code=exc.code, message=exc.message)
            raise
        except DBAPIError as exc:
            await self._db.rollback()
            if isinstance(exc, (OperationalError, InterfaceError)) or exc.connection_invalidated:
                self._store.record_error(operation, TransientStoreError.default_code)
                logger.warning("Calendar store unavailable", operation=operation, error=str(exc.orig))
                raise TransientStoreError(message="Calendar store is temporarily unavailable") from exc
            raise
        except Exception:
            await self._db.rollback()
            raise

        self._store.record_outcome(operation, _status_of(result))
        return result


def _status_of(result: Any) -> str:
    if isinstance(result, dict):
        return str(result.get("status", "ok"))
    if isinstance(result, DrawVerification):
        return "verified" if result.matches and result.hashes_valid else "mismatch"
    return str(getattr(result, "status", "ok"))


__all__ = ["CalendarEngine"]
