"""Exclusive per-day reward choices.

A claimed day may carry one selected option. Switching options removes every
reward previously granted with the ``choice`` source before granting the new
option; once any such voucher has been redeemed or locked the choice is fixed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.models.calendar import CalendarClaim, CalendarVoucher
from .audit import CalendarAuditLog
from .catalog import EventCatalog, ensure_within_window
from .claims import claim_payload, require_claim
from .errors import CalendarConflictError, CalendarValidationError
from .issuer import CHOICE_SOURCE, EntryGrantRecord, RemovedChoiceRewards, RewardIssuer, voucher_payload
from .metrics import MetricsAggregator
from .policy import RequestContext


def recorded_choice_key(claim: CalendarClaim) -> str | None:
    choice = (claim.payload or {}).get("choice")
    if isinstance(choice, dict):
        return choice.get("key") or choice.get("slug")
    if isinstance(choice, str) and choice:
        return choice
    return None


@dataclass
class ChoiceOutcome:
    status: str
    claim: CalendarClaim
    choice: dict[str, Any] | None = None
    vouchers: list[CalendarVoucher] = field(default_factory=list)
    raffle_entries: list[EntryGrantRecord] = field(default_factory=list)
    removed: RemovedChoiceRewards = field(default_factory=lambda: RemovedChoiceRewards(vouchers=0, entries=0))

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "claim": claim_payload(self.claim),
            "choice": self.choice,
            "vouchers": [voucher_payload(voucher) for voucher in self.vouchers],
            "raffle_entries": [entry.as_dict() for entry in self.raffle_entries],
            "removed_vouchers": self.removed.vouchers,
            "removed_entries": self.removed.entries,
        }


class ChoiceService:
    def __init__(self, session: AsyncSession) -> None:
        self._db = session
        self._catalog = EventCatalog(session)
        self._issuer = RewardIssuer(session)
        self._audit = CalendarAuditLog(session)
        self._metrics = MetricsAggregator(session)

    async def select_choice(
        self,
        user_id: UUID,
        event_date: date,
        choice_key: str,
        *,
        ctx: RequestContext,
        tz_offset_minutes: int = 0,
    ) -> ChoiceOutcome:
        now = ctx.current_time()
        event = await self._catalog.require_published(event_date)
        ensure_within_window(event.record, now, tz_offset_minutes)
        claim = await require_claim(self._db, user_id, event_date)

        option = event.config.choice(choice_key)
        if option is None:
            raise CalendarValidationError(
                "invalid_choice",
                "Choice is not offered for this day",
                details={"choice": choice_key},
            )
        option_document = option.model_dump(mode="json", exclude_none=True)

        previous_key = recorded_choice_key(claim)
        if previous_key == choice_key:
            await self._audit.record(
                "choice_unchanged",
                user_id=user_id,
                event_date=event_date,
                ctx=ctx,
                payload={"choice": choice_key},
            )
            return ChoiceOutcome(status="unchanged", claim=claim, choice=option_document)

        removed = RemovedChoiceRewards(vouchers=0, entries=0)
        if previous_key is not None:
            await self._ensure_unlocked(user_id, event_date, previous_key)
            removed = await self._issuer.remove_choice_rewards(user_id, event_date)

        claim.payload = {
            **(claim.payload or {}),
            "choice": {"key": option.key, "title": option.title, "selected_at": now.isoformat()},
        }
        granted = await self._issuer.issue_reward_set(
            user_id,
            event_date,
            option.rewards,
            source=CHOICE_SOURCE,
            allow_source_override=False,
        )
        await self._db.flush()

        await self._audit.record(
            "choice",
            user_id=user_id,
            event_date=event_date,
            ctx=ctx,
            payload={
                "choice": choice_key,
                "previous_choice": previous_key,
                "removed_vouchers": removed.vouchers,
                "removed_entries": removed.entries,
            },
        )
        await self._metrics.apply(event_date, granted.metrics_delta() + removed.metrics_delta())
        logger.info(
            "Calendar choice recorded",
            user_id=str(user_id),
            event_date=str(event_date),
            choice=choice_key,
            previous_choice=previous_key,
        )
        return ChoiceOutcome(
            status="recorded",
            claim=claim,
            choice=option_document,
            vouchers=granted.vouchers,
            raffle_entries=granted.entries,
            removed=removed,
        )

    async def reset_choice(
        self,
        user_id: UUID,
        event_date: date,
        *,
        ctx: RequestContext,
        tz_offset_minutes: int = 0,
    ) -> ChoiceOutcome:
        now = ctx.current_time()
        event = await self._catalog.require_published(event_date)
        ensure_within_window(event.record, now, tz_offset_minutes)
        claim = await require_claim(self._db, user_id, event_date)

        previous_key = recorded_choice_key(claim)
        if previous_key is None:
            await self._audit.record("choice_reset_noop", user_id=user_id, event_date=event_date, ctx=ctx)
            return ChoiceOutcome(status="noop", claim=claim)

        await self._ensure_unlocked(user_id, event_date, previous_key)
        removed = await self._issuer.remove_choice_rewards(user_id, event_date)
        claim.payload = {key: value for key, value in (claim.payload or {}).items() if key != "choice"}
        await self._db.flush()

        await self._audit.record(
            "choice_reset",
            user_id=user_id,
            event_date=event_date,
            ctx=ctx,
            payload={
                "previous_choice": previous_key,
                "removed_vouchers": removed.vouchers,
                "removed_entries": removed.entries,
            },
        )
        await self._metrics.apply(event_date, removed.metrics_delta())
        logger.info("Calendar choice reset", user_id=str(user_id), event_date=str(event_date), choice=previous_key)
        return ChoiceOutcome(status="reset", claim=claim, removed=removed)

    async def _ensure_unlocked(self, user_id: UUID, event_date: date, choice_key: str) -> None:
        if await self._issuer.choice_rewards_locked(user_id, event_date):
            raise CalendarConflictError(
                "choice_locked",
                "Choice rewards were already used",
                details={"choice": choice_key},
            )


__all__ = ["ChoiceOutcome", "ChoiceService", "recorded_choice_key"]
