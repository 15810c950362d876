"""Conditional voucher upgrades driven by same-day referral activity."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.models.calendar import CalendarVoucher, CalendarVoucherStatus
from campaign_api.schemas.calendar import ConditionalUpgrade
from .audit import CalendarAuditLog
from .catalog import EventCatalog
from .issuer import voucher_payload
from .policy import RequestContext
from .referrals import ReferralActivity, SqlReferralActivity

UPGRADE_APPLIED = "applied"


@dataclass
class UpgradeOutcome:
    status: str
    referrals_today: int = 0
    upgrades: list[CalendarVoucher] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "referrals_today": self.referrals_today,
            "upgrades": [voucher_payload(voucher) for voucher in self.upgrades],
        }


class UpgradeEvaluator:
    """Applies each configured upgrade at most once per voucher."""

    def __init__(self, session: AsyncSession, *, referrals: ReferralActivity | None = None) -> None:
        self._db = session
        self._catalog = EventCatalog(session)
        self._audit = CalendarAuditLog(session)
        self._referrals = referrals or SqlReferralActivity(session)

    async def evaluate(self, user_id: UUID, event_date: date, *, ctx: RequestContext) -> UpgradeOutcome:
        event = await self._catalog.require_published(event_date)
        rules = event.config.conditional_upgrades
        if not rules:
            await self._audit.record("validate_upgrade_noop", user_id=user_id, event_date=event_date, ctx=ctx)
            return UpgradeOutcome(status="noop")

        referrals_today = await self._referrals.completed_on(user_id, event_date)
        upgraded: list[CalendarVoucher] = []
        for rule in rules:
            if referrals_today < rule.condition.referrals_today_gte:
                continue
            voucher = await self._apply(user_id, event_date, rule, referrals_today, ctx.current_time())
            if voucher is not None:
                upgraded.append(voucher)

        await self._audit.record(
            "validate_upgrade",
            user_id=user_id,
            event_date=event_date,
            ctx=ctx,
            payload={"upgrades": len(upgraded), "referrals_today": referrals_today},
        )
        if upgraded:
            logger.info(
                "Calendar vouchers upgraded",
                user_id=str(user_id),
                event_date=str(event_date),
                upgrades=len(upgraded),
                referrals_today=referrals_today,
            )
        return UpgradeOutcome(status="processed", referrals_today=referrals_today, upgrades=upgraded)

    async def _apply(
        self,
        user_id: UUID,
        event_date: date,
        rule: ConditionalUpgrade,
        referrals_today: int,
        now: datetime,
    ) -> CalendarVoucher | None:
        stmt = (
            select(CalendarVoucher)
            .where(
                CalendarVoucher.user_id == user_id,
                CalendarVoucher.event_date == event_date,
                CalendarVoucher.voucher_type == rule.target.voucher_type,
                CalendarVoucher.scope == rule.target.scope,
                CalendarVoucher.status == CalendarVoucherStatus.ISSUED,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        voucher = (await self._db.execute(stmt)).scalar_one_or_none()
        if voucher is None:
            return None
        metadata = dict(voucher.metadata_json or {})
        if metadata.get("upgrade_status") == UPGRADE_APPLIED:
            return None

        replacement = rule.replace
        new_type = replacement.voucher_type or voucher.voucher_type
        new_scope = replacement.scope or voucher.scope
        if (new_type, new_scope) != (voucher.voucher_type, voucher.scope) and await self._occupied(
            user_id, event_date, new_type, new_scope
        ):
            logger.warning(
                "Calendar upgrade target already held",
                user_id=str(user_id),
                event_date=str(event_date),
                voucher_type=new_type,
                scope=new_scope,
            )
            return None

        voucher.voucher_type = new_type
        voucher.scope = new_scope
        if replacement.amount is not None:
            voucher.amount = replacement.amount
        voucher.metadata_json = {
            **metadata,
            **replacement.metadata,
            "upgrade_status": UPGRADE_APPLIED,
            "upgraded_at": now.isoformat(),
            "referrals_today": referrals_today,
        }
        await self._db.flush()
        return voucher

    async def _occupied(self, user_id: UUID, event_date: date, voucher_type: str, scope: str) -> bool:
        stmt = select(CalendarVoucher.id).where(
            CalendarVoucher.user_id == user_id,
            CalendarVoucher.event_date == event_date,
            CalendarVoucher.voucher_type == voucher_type,
            CalendarVoucher.scope == scope,
        )
        return (await self._db.execute(stmt)).first() is not None


__all__ = ["UPGRADE_APPLIED", "UpgradeEvaluator", "UpgradeOutcome"]
