"""Voucher and raffle-entry issuance.

Vouchers are idempotent per (user, day, type, scope): a second grant of the
same voucher is silently skipped. Raffle entries are an additive counter per
(raffle, user, source, day) and every grant increases the count.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.db.dialect import dialect_insert
from campaign_api.models.calendar import (
    CalendarRaffle,
    CalendarRaffleEntry,
    CalendarRaffleStatus,
    CalendarVoucher,
    CalendarVoucherStatus,
)
from campaign_api.schemas.calendar import RaffleEntryGrant, RewardSet, VoucherGrant
from .errors import CalendarConflictError, CalendarNotFoundError
from .metrics import MetricsDelta

CHOICE_SOURCE = "choice"


@dataclass(frozen=True, slots=True)
class EntryGrantRecord:
    """Entries added to one accumulator row by a single grant."""

    raffle_id: str
    source: str
    event_date: date
    added: int
    total: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "raffle_id": self.raffle_id,
            "source": self.source,
            "event_date": self.event_date.isoformat(),
            "count": self.added,
            "total": self.total,
        }


@dataclass(slots=True)
class IssuanceResult:
    vouchers: list[CalendarVoucher] = field(default_factory=list)
    entries: list[EntryGrantRecord] = field(default_factory=list)

    def extend(self, other: "IssuanceResult") -> None:
        self.vouchers.extend(other.vouchers)
        self.entries.extend(other.entries)

    def add_entry(self, entry: EntryGrantRecord | None) -> None:
        if entry is not None:
            self.entries.append(entry)

    @property
    def entries_added(self) -> int:
        return sum(entry.added for entry in self.entries)

    def metrics_delta(self) -> MetricsDelta:
        return MetricsDelta(vouchers_issued=len(self.vouchers), raffle_entries=self.entries_added)


@dataclass(frozen=True, slots=True)
class RemovedChoiceRewards:
    vouchers: int
    entries: int

    def metrics_delta(self) -> MetricsDelta:
        return MetricsDelta(vouchers_issued=-self.vouchers, raffle_entries=-self.entries)


class RewardIssuer:
    """Writes reward grants for a user and calendar day."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def issue_voucher(
        self,
        user_id: UUID,
        event_date: date,
        grant: VoucherGrant,
        *,
        source: str,
    ) -> CalendarVoucher | None:
        """Create the voucher unless an identical (type, scope) one exists; return it only when created."""

        stmt = (
            dialect_insert(self._db, CalendarVoucher)
            .values(
                user_id=user_id,
                event_date=event_date,
                voucher_type=grant.voucher_type,
                scope=grant.scope,
                amount=grant.amount,
                source=source,
                metadata_json={**grant.metadata, "source": source},
                status=CalendarVoucherStatus.ISSUED,
            )
            .on_conflict_do_nothing(
                index_elements=[
                    CalendarVoucher.user_id,
                    CalendarVoucher.event_date,
                    CalendarVoucher.voucher_type,
                    CalendarVoucher.scope,
                ]
            )
            .returning(CalendarVoucher)
        )
        result = await self._db.execute(stmt)
        voucher = result.scalar_one_or_none()
        if voucher is None:
            logger.debug(
                "Calendar voucher already issued",
                user_id=str(user_id),
                event_date=str(event_date),
                voucher_type=grant.voucher_type,
                scope=grant.scope,
            )
        return voucher

    async def issue_raffle_entries(
        self,
        user_id: UUID,
        event_date: date,
        grant: RaffleEntryGrant,
        *,
        source: str,
        allow_source_override: bool = True,
    ) -> EntryGrantRecord | None:
        entry_source = grant.source if allow_source_override and grant.source else source
        return await self.add_entries(
            user_id,
            event_date,
            raffle_id=grant.raffle_id,
            count=grant.count,
            source=entry_source,
            metadata=grant.metadata,
        )

    async def add_entries(
        self,
        user_id: UUID,
        event_date: date,
        *,
        raffle_id: str,
        count: int,
        source: str,
        metadata: dict[str, Any] | None = None,
    ) -> EntryGrantRecord | None:
        """Atomically add ``count`` tickets to the accumulator row; drawn raffles accept nothing."""

        if await self.raffle_drawn(raffle_id):
            logger.warning(
                "Raffle already drawn; entries not granted",
                raffle_id=raffle_id,
                user_id=str(user_id),
                event_date=str(event_date),
                source=source,
                count=count,
            )
            return None

        stmt = dialect_insert(self._db, CalendarRaffleEntry).values(
            raffle_id=raffle_id,
            user_id=user_id,
            source=source,
            event_date=event_date,
            count=count,
            metadata_json=metadata or {},
        )
        stmt = (
            stmt.on_conflict_do_update(
                index_elements=[
                    CalendarRaffleEntry.raffle_id,
                    CalendarRaffleEntry.user_id,
                    CalendarRaffleEntry.source,
                    CalendarRaffleEntry.event_date,
                ],
                set_={
                    "count": CalendarRaffleEntry.count + stmt.excluded["count"],
                    "updated_at": func.now(),
                },
            )
            .returning(CalendarRaffleEntry)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        row = result.scalar_one()
        return EntryGrantRecord(
            raffle_id=raffle_id,
            source=source,
            event_date=event_date,
            added=count,
            total=int(row.count),
        )

    async def issue_reward_set(
        self,
        user_id: UUID,
        event_date: date,
        rewards: RewardSet,
        *,
        source: str,
        allow_source_override: bool = True,
    ) -> IssuanceResult:
        issued = IssuanceResult()
        for voucher_grant in rewards.vouchers:
            voucher = await self.issue_voucher(user_id, event_date, voucher_grant, source=source)
            if voucher is not None:
                issued.vouchers.append(voucher)
        for entry_grant in rewards.raffle_entries:
            issued.add_entry(
                await self.issue_raffle_entries(
                    user_id,
                    event_date,
                    entry_grant,
                    source=source,
                    allow_source_override=allow_source_override,
                )
            )
        return issued

    async def raffle_drawn(self, raffle_id: str) -> bool:
        status = await self._db.scalar(select(CalendarRaffle.status).where(CalendarRaffle.id == raffle_id))
        return status == CalendarRaffleStatus.DRAWN

    async def choice_rewards_locked(self, user_id: UUID, event_date: date) -> bool:
        """True once any choice voucher for the day has left the ``issued`` state."""

        stmt = (
            select(CalendarVoucher.id)
            .where(
                CalendarVoucher.user_id == user_id,
                CalendarVoucher.event_date == event_date,
                CalendarVoucher.source == CHOICE_SOURCE,
                CalendarVoucher.status != CalendarVoucherStatus.ISSUED,
            )
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def remove_choice_rewards(self, user_id: UUID, event_date: date) -> RemovedChoiceRewards:
        entries_stmt = select(func.coalesce(func.sum(CalendarRaffleEntry.count), 0)).where(
            CalendarRaffleEntry.user_id == user_id,
            CalendarRaffleEntry.event_date == event_date,
            CalendarRaffleEntry.source == CHOICE_SOURCE,
        )
        removed_entries = int((await self._db.execute(entries_stmt)).scalar_one())

        voucher_result = await self._db.execute(
            delete(CalendarVoucher)
            .where(
                CalendarVoucher.user_id == user_id,
                CalendarVoucher.event_date == event_date,
                CalendarVoucher.source == CHOICE_SOURCE,
            )
            .execution_options(synchronize_session="fetch")
        )
        await self._db.execute(
            delete(CalendarRaffleEntry)
            .where(
                CalendarRaffleEntry.user_id == user_id,
                CalendarRaffleEntry.event_date == event_date,
                CalendarRaffleEntry.source == CHOICE_SOURCE,
            )
            .execution_options(synchronize_session="fetch")
        )
        removed = RemovedChoiceRewards(vouchers=int(voucher_result.rowcount or 0), entries=removed_entries)
        logger.info(
            "Calendar choice rewards removed",
            user_id=str(user_id),
            event_date=str(event_date),
            vouchers=removed.vouchers,
            entries=removed.entries,
        )
        return removed

    async def redeem_voucher(self, voucher_id: UUID, *, now: datetime | None = None) -> CalendarVoucher:
        stmt = (
            select(CalendarVoucher)
            .where(CalendarVoucher.id == voucher_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        voucher = (await self._db.execute(stmt)).scalar_one_or_none()
        if voucher is None:
            raise CalendarNotFoundError("voucher_not_found", "Voucher not found")
        if voucher.status != CalendarVoucherStatus.ISSUED:
            raise CalendarConflictError(
                "voucher_not_redeemable",
                "Voucher is not in the issued state",
                details={"status": voucher.status.value},
            )
        voucher.status = CalendarVoucherStatus.REDEEMED
        voucher.redeemed_at = now or datetime.now(timezone.utc)
        await self._db.flush()
        return voucher

    async def list_vouchers(self, user_id: UUID, *, event_date: date | None = None) -> Sequence[CalendarVoucher]:
        stmt = select(CalendarVoucher).where(CalendarVoucher.user_id == user_id)
        if event_date is not None:
            stmt = stmt.where(CalendarVoucher.event_date == event_date)
        result = await self._db.execute(stmt.order_by(CalendarVoucher.event_date.asc(), CalendarVoucher.issued_at.asc()))
        return result.scalars().all()

    async def entry_totals(self, user_id: UUID) -> dict[str, int]:
        stmt = (
            select(CalendarRaffleEntry.raffle_id, func.sum(CalendarRaffleEntry.count))
            .where(CalendarRaffleEntry.user_id == user_id)
            .group_by(CalendarRaffleEntry.raffle_id)
        )
        result = await self._db.execute(stmt)
        return {raffle_id: int(total or 0) for raffle_id, total in result.all()}


def voucher_payload(voucher: CalendarVoucher) -> dict[str, Any]:
    return {
        "id": str(voucher.id),
        "event_date": voucher.event_date.isoformat(),
        "voucher_type": voucher.voucher_type,
        "scope": voucher.scope,
        "amount": str(voucher.amount) if voucher.amount is not None else None,
        "source": voucher.source,
        "status": voucher.status.value if voucher.status else None,
        "metadata": dict(voucher.metadata_json or {}),
    }


__all__ = [
    "CHOICE_SOURCE",
    "EntryGrantRecord",
    "IssuanceResult",
    "RemovedChoiceRewards",
    "RewardIssuer",
    "voucher_payload",
]
