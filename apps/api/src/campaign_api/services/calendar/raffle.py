"""Deterministic weighted raffle draw.

Winners are chosen by weighted sampling without replacement: every entrant
draws ``U`` in (0, 1] from a generator seeded by ``sha256(seed:raffle_id)`` and
is scored ``ln(U) / weight``; the highest scores win. Entrants are visited in
user-id order so the same seed and entries always reproduce the same winners.
"""

from __future__ import annotations

import hashlib
import math
import random
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.models.calendar import (
    CalendarRaffle,
    CalendarRaffleEntry,
    CalendarRaffleEntryControl,
    CalendarRaffleStatus,
    CalendarRaffleWinner,
)
from .audit import CalendarAuditLog
from .errors import CalendarConflictError, CalendarNotFoundError, CalendarValidationError
from .policy import RequestContext, require_service_role


def derive_seed(seed: str, raffle_id: str) -> int:
    digest = hashlib.sha256(f"{seed}:{raffle_id}".encode("utf-8")).hexdigest()
    return int(digest[:16], 16)


def audit_hash(seed: str, user_id: str, position: int) -> str:
    return hashlib.sha256(f"{seed}:{user_id}:{position}".encode("utf-8")).hexdigest()


def rank_entrants(weights: Mapping[str, float], seed: str, raffle_id: str, winners_count: int) -> list[str]:
    """Return up to ``winners_count`` user ids, best first."""

    rng = random.Random(derive_seed(seed, raffle_id))
    scored: list[tuple[float, str]] = []
    for user_id in sorted(weights):
        weight = weights[user_id]
        u = 1.0 - rng.random()
        if weight <= 0:
            continue
        scored.append((math.log(u) / weight, user_id))
    scored.sort(key=lambda item: (-item[0], item[1]))
    return [user_id for _, user_id in scored[: max(winners_count, 1)]]


def winners_count_for(raffle: CalendarRaffle) -> int:
    try:
        return max(int((raffle.rules or {}).get("winners_count") or 1), 1)
    except (TypeError, ValueError):
        return 1


@dataclass
class DrawOutcome:
    status: str
    raffle_id: str
    seed: str
    winners: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"status": self.status, "raffle_id": self.raffle_id, "seed": self.seed, "winners": self.winners}


@dataclass
class DrawVerification:
    raffle_id: str
    seed: str
    matches: bool
    hashes_valid: bool
    expected: list[dict[str, Any]]
    recorded: list[dict[str, Any]]
    entrants: int = 0
    total_weight: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "raffle_id": self.raffle_id,
            "seed": self.seed,
            "matches": self.matches,
            "hashes_valid": self.hashes_valid,
            "expected": self.expected,
            "recorded": self.recorded,
            "entrants": self.entrants,
            "total_weight": self.total_weight,
        }


class RaffleDrawService:
    def __init__(self, session: AsyncSession) -> None:
        self._db = session
        self._audit = CalendarAuditLog(session)

    async def draw(self, raffle_id: str, *, ctx: RequestContext, seed: str | None = None) -> DrawOutcome:
        require_service_role(ctx)
        stmt = (
            select(CalendarRaffle)
            .where(CalendarRaffle.id == raffle_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        raffle = (await self._db.execute(stmt)).scalar_one_or_none()
        if raffle is None:
            raise CalendarNotFoundError("raffle_not_found", "Raffle not found", details={"raffle_id": raffle_id})
        if raffle.status == CalendarRaffleStatus.DRAWN:
            raise CalendarConflictError(
                "raffle_already_drawn",
                "Raffle has already been drawn",
                details={
                    "raffle_id": raffle_id,
                    "seed": raffle.draw_seed,
                    "winners": (raffle.draw_result or {}).get("winners", []),
                },
            )

        weights = await self.weighted_entries(raffle_id)
        if sum(weights.values()) <= 0:
            raise CalendarValidationError(
                "raffle_no_entries",
                "Raffle has no eligible entries",
                details={"raffle_id": raffle_id},
            )

        draw_seed = seed or secrets.token_hex(16)
        ranked = rank_entrants(weights, draw_seed, raffle_id, winners_count_for(raffle))
        winners: list[dict[str, Any]] = []
        for position, user_id in enumerate(ranked, start=1):
            digest = audit_hash(draw_seed, user_id, position)
            self._db.add(
                CalendarRaffleWinner(
                    raffle_id=raffle_id,
                    user_id=UUID(user_id),
                    position=position,
                    seed_used=draw_seed,
                    audit_hash=digest,
                    metadata_json={"weight": weights[user_id]},
                )
            )
            winners.append({"raffle_id": raffle_id, "user_id": user_id, "position": position, "audit_hash": digest})

        raffle.status = CalendarRaffleStatus.DRAWN
        raffle.draw_seed = draw_seed
        raffle.draw_result = {
            "winners": winners,
            "weights": weights,
            "entrants": len(weights),
            "total_weight": sum(weights.values()),
        }
        await self._db.flush()

        await self._audit.record(
            "raffle_draw",
            user_id=None,
            event_date=None,
            ctx=ctx,
            payload={"raffle_id": raffle_id, "seed": draw_seed, "winners": winners, "entrants": len(weights)},
        )
        logger.info("Calendar raffle drawn", raffle_id=raffle_id, winners=len(winners), entrants=len(weights))
        return DrawOutcome(status="drawn", raffle_id=raffle_id, seed=draw_seed, winners=winners)

    async def verify(self, raffle_id: str) -> DrawVerification:
        raffle = await self._db.get(CalendarRaffle, raffle_id)
        if raffle is None:
            raise CalendarNotFoundError("raffle_not_found", "Raffle not found", details={"raffle_id": raffle_id})
        if raffle.status != CalendarRaffleStatus.DRAWN or not raffle.draw_seed:
            raise CalendarValidationError("raffle_not_drawn", "Raffle has not been drawn yet")

        seed = raffle.draw_seed
        snapshot = raffle.draw_result or {}
        weights = {str(user_id): float(weight) for user_id, weight in (snapshot.get("weights") or {}).items()}
        expected = [
            {"user_id": user_id, "position": position, "audit_hash": audit_hash(seed, user_id, position)}
            for position, user_id in enumerate(
                rank_entrants(weights, seed, raffle_id, winners_count_for(raffle)), start=1
            )
        ]
        result = await self._db.execute(
            select(CalendarRaffleWinner)
            .where(CalendarRaffleWinner.raffle_id == raffle_id)
            .order_by(CalendarRaffleWinner.position.asc())
        )
        recorded = [
            {"user_id": str(winner.user_id), "position": winner.position, "audit_hash": winner.audit_hash}
            for winner in result.scalars().all()
        ]
        hashes_valid = all(
            row["audit_hash"] == audit_hash(seed, row["user_id"], row["position"]) for row in recorded
        )
        return DrawVerification(
            raffle_id=raffle_id,
            seed=seed,
            matches=expected == recorded,
            hashes_valid=hashes_valid,
            expected=expected,
            recorded=recorded,
            entrants=len(weights),
            total_weight=sum(weights.values()),
        )

    async def weighted_entries(self, raffle_id: str) -> dict[str, float]:
        """Per-user ticket totals scaled by operator controls; excluded users dropped."""

        totals = await self._db.execute(
            select(CalendarRaffleEntry.user_id, func.sum(CalendarRaffleEntry.count))
            .where(CalendarRaffleEntry.raffle_id == raffle_id)
            .group_by(CalendarRaffleEntry.user_id)
        )
        controls_result = await self._db.execute(
            select(CalendarRaffleEntryControl).where(CalendarRaffleEntryControl.raffle_id == raffle_id)
        )
        controls = {control.user_id: control for control in controls_result.scalars().all()}

        weights: dict[str, float] = {}
        for user_id, raw_count in totals.all():
            raw = int(raw_count or 0)
            control = controls.get(user_id)
            if raw <= 0 or (control is not None and control.excluded):
                continue
            multiplier = Decimal(str(control.weight_multiplier)) if control is not None else Decimal(1)
            weight = float(raw * multiplier)
            if weight > 0:
                weights[str(user_id)] = weight
        return weights


__all__ = [
    "DrawOutcome",
    "DrawVerification",
    "RaffleDrawService",
    "audit_hash",
    "derive_seed",
    "rank_entrants",
    "winners_count_for",
]
