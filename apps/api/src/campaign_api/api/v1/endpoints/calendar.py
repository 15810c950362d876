"""API endpoints for the daily calendar campaign."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, List, NoReturn, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_api.api.dependencies.security import require_calendar_admin_key
from campaign_api.api.dependencies.session import (
    member_context,
    require_member_session,
    service_context,
    timezone_offset_header,
)
from campaign_api.db.session import get_session
from campaign_api.services.calendar import (
    CalendarAuthorizationError,
    CalendarConflictError,
    CalendarEngine,
    CalendarError,
    CalendarNotFoundError,
    CalendarValidationError,
    TransientStoreError,
    local_today,
)
from campaign_api.services.calendar.catalog import validate_timezone_offset


router = APIRouter(prefix="/calendar", tags=["calendar"])


class VoucherResponse(BaseModel):
    id: UUID
    eventDate: date
    voucherType: str
    scope: str
    amount: Optional[float]
    source: str
    status: str
    metadata: dict[str, Any]


class RaffleEntryResponse(BaseModel):
    raffleId: str
    source: str
    eventDate: date
    count: int
    total: int


class ClaimRecordResponse(BaseModel):
    id: UUID
    userId: UUID
    eventDate: date
    status: str
    payload: dict[str, Any]
    claimedAt: Optional[datetime]


class StreakResponse(BaseModel):
    current: int
    max: int


class AchievementResponse(BaseModel):
    key: str
    threshold: int


class ClaimRequest(BaseModel):
    eventDate: Optional[date] = Field(None, description="Calendar day to claim; defaults to the caller's local today")
    payload: Optional[dict[str, Any]] = Field(None, description="Client context stored with the claim")
    timezoneOffsetMinutes: Optional[int] = Field(None, description="Minutes east of UTC")


class ClaimResponse(BaseModel):
    status: str
    claim: ClaimRecordResponse
    streak: StreakResponse
    vouchers: List[VoucherResponse]
    raffleEntries: List[RaffleEntryResponse]
    achievements: List[AchievementResponse]


class ChoiceRequest(BaseModel):
    eventDate: date
    choiceKey: str = Field(..., min_length=1)
    timezoneOffsetMinutes: Optional[int] = None


class ChoiceResetRequest(BaseModel):
    eventDate: date
    timezoneOffsetMinutes: Optional[int] = None


class ChoiceResponse(BaseModel):
    status: str
    claim: ClaimRecordResponse
    choice: Optional[dict[str, Any]]
    vouchers: List[VoucherResponse]
    raffleEntries: List[RaffleEntryResponse]
    removedVouchers: int
    removedEntries: int


class DayRequest(BaseModel):
    eventDate: Optional[date] = None
    timezoneOffsetMinutes: Optional[int] = None


class SpinResultResponse(BaseModel):
    id: UUID
    eventDate: date
    itemIndex: int
    item: dict[str, Any]
    spunAt: Optional[datetime]


class SpinResponse(BaseModel):
    status: str
    result: SpinResultResponse
    vouchers: List[VoucherResponse]
    raffleEntries: List[RaffleEntryResponse]


class UpgradeResponse(BaseModel):
    status: str
    referralsToday: int
    upgrades: List[VoucherResponse]


class OverviewAchievementResponse(BaseModel):
    key: str
    eventDate: date


class OverviewResponse(BaseModel):
    userId: UUID
    streak: StreakResponse
    lastClaimedDate: Optional[date]
    claims: List[ClaimRecordResponse]
    vouchers: List[VoucherResponse]
    raffleEntries: dict[str, int]
    achievements: List[OverviewAchievementResponse]


class DrawRequest(BaseModel):
    seed: Optional[str] = Field(None, min_length=1, description="Public seed; generated when omitted")


class WinnerResponse(BaseModel):
    userId: UUID
    position: int
    auditHash: str


class DrawResponse(BaseModel):
    status: str
    raffleId: str
    seed: str
    winners: List[WinnerResponse]


class VerificationResponse(BaseModel):
    raffleId: str
    seed: str
    matches: bool
    hashesValid: bool
    entrants: int
    totalWeight: float
    expected: List[WinnerResponse]
    recorded: List[WinnerResponse]


class RedeemResponse(BaseModel):
    status: str
    voucher: VoucherResponse


async def get_calendar_engine(db: AsyncSession = Depends(get_session)) -> CalendarEngine:
    return CalendarEngine(db)


def _raise_http(error: CalendarError) -> NoReturn:
    if isinstance(error, CalendarAuthorizationError):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, CalendarNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, CalendarValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, CalendarConflictError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(error, TransientStoreError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    raise HTTPException(status_code=status_code, detail=error.as_dict()) from error


def _resolve_offset(body_offset: Optional[int], header_offset: Optional[int]) -> int:
    if body_offset is not None:
        return body_offset
    return header_offset or 0


def _voucher(data: dict[str, Any]) -> VoucherResponse:
    return VoucherResponse(
        id=data["id"],
        eventDate=data["event_date"],
        voucherType=data["voucher_type"],
        scope=data["scope"],
        amount=float(data["amount"]) if data.get("amount") is not None else None,
        source=data["source"],
        status=data["status"],
        metadata=data.get("metadata") or {},
    )


def _entry(data: dict[str, Any]) -> RaffleEntryResponse:
    return RaffleEntryResponse(
        raffleId=data["raffle_id"],
        source=data["source"],
        eventDate=data["event_date"],
        count=data["count"],
        total=data["total"],
    )


def _claim(data: dict[str, Any]) -> ClaimRecordResponse:
    return ClaimRecordResponse(
        id=data["id"],
        userId=data["user_id"],
        eventDate=data["event_date"],
        status=data["status"],
        payload=data.get("payload") or {},
        claimedAt=data.get("claimed_at"),
    )


def _winner(data: dict[str, Any]) -> WinnerResponse:
    return WinnerResponse(userId=data["user_id"], position=data["position"], auditHash=data["audit_hash"])


@router.post("/claims", response_model=ClaimResponse)
async def claim_day(
    payload: ClaimRequest,
    request: Request,
    user_id: UUID = Depends(require_member_session),
    header_offset: Optional[int] = Depends(timezone_offset_header),
    engine: CalendarEngine = Depends(get_calendar_engine),
) -> ClaimResponse:
    try:
        outcome = await engine.claim(
            user_id,
            ctx=member_context(request, user_id),
            event_date=payload.eventDate,
            payload=payload.payload,
            tz_offset_minutes=_resolve_offset(payload.timezoneOffsetMinutes, header_offset),
        )
    except CalendarError as error:
        _raise_http(error)

    data = outcome.as_dict()
    return ClaimResponse(
        status=data["status"],
        claim=_claim(data["claim"]),
        streak=StreakResponse(**data["streak"]),
        vouchers=[_voucher(item) for item in data["vouchers"]],
        raffleEntries=[_entry(item) for item in data["raffle_entries"]],
        achievements=[AchievementResponse(**item) for item in data["achievements"]],
    )


def _choice_response(data: dict[str, Any]) -> ChoiceResponse:
    return ChoiceResponse(
        status=data["status"],
        claim=_claim(data["claim"]),
        choice=data.get("choice"),
        vouchers=[_voucher(item) for item in data["vouchers"]],
        raffleEntries=[_entry(item) for item in data["raffle_entries"]],
        removedVouchers=data["removed_vouchers"],
        removedEntries=data["removed_entries"],
    )


@router.post("/choices", response_model=ChoiceResponse)
async def select_choice(
    payload: ChoiceRequest,
    request: Request,
    user_id: UUID = Depends(require_member_session),
    header_offset: Optional[int] = Depends(timezone_offset_header),
    engine: CalendarEngine = Depends(get_calendar_engine),
) -> ChoiceResponse:
    try:
        outcome = await engine.select_choice(
            user_id,
            payload.eventDate,
            payload.choiceKey,
            ctx=member_context(request, user_id),
            tz_offset_minutes=_resolve_offset(payload.timezoneOffsetMinutes, header_offset),
        )
    except CalendarError as error:
        _raise_http(error)
    return _choice_response(outcome.as_dict())


@router.post("/choices/reset", response_model=ChoiceResponse)
async def reset_choice(
    payload: ChoiceResetRequest,
    request: Request,
    user_id: UUID = Depends(require_member_session),
    header_offset: Optional[int] = Depends(timezone_offset_header),
    engine: CalendarEngine = Depends(get_calendar_engine),
) -> ChoiceResponse:
    try:
        outcome = await engine.reset_choice(
            user_id,
            payload.eventDate,
            ctx=member_context(request, user_id),
            tz_offset_minutes=_resolve_offset(payload.timezoneOffsetMinutes, header_offset),
        )
    except CalendarError as error:
        _raise_http(error)
    return _choice_response(outcome.as_dict())


def _target_date(payload: DayRequest, header_offset: Optional[int]) -> date:
    if payload.eventDate is not None:
        return payload.eventDate
    offset = validate_timezone_offset(_resolve_offset(payload.timezoneOffsetMinutes, header_offset))
    return local_today(datetime.now(timezone.utc), offset)


@router.post("/spins", response_model=SpinResponse)
async def spin_wheel(
    payload: DayRequest,
    request: Request,
    user_id: UUID = Depends(require_member_session),
    header_offset: Optional[int] = Depends(timezone_offset_header),
    engine: CalendarEngine = Depends(get_calendar_engine),
) -> SpinResponse:
    try:
        outcome = await engine.spin(
            user_id,
            _target_date(payload, header_offset),
            ctx=member_context(request, user_id),
        )
    except CalendarError as error:
        _raise_http(error)

    data = outcome.as_dict()
    result = data["result"]
    return SpinResponse(
        status=data["status"],
        result=SpinResultResponse(
            id=result["id"],
            eventDate=result["event_date"],
            itemIndex=result["item_index"],
            item=result["item"],
            spunAt=result.get("spun_at"),
        ),
        vouchers=[_voucher(item) for item in data["vouchers"]],
        raffleEntries=[_entry(item) for item in data["raffle_entries"]],
    )


@router.post("/upgrades/evaluate", response_model=UpgradeResponse)
async def evaluate_upgrades(
    payload: DayRequest,
    request: Request,
    user_id: UUID = Depends(require_member_session),
    header_offset: Optional[int] = Depends(timezone_offset_header),
    engine: CalendarEngine = Depends(get_calendar_engine),
) -> UpgradeResponse:
    try:
        outcome = await engine.evaluate_upgrades(
            user_id,
            _target_date(payload, header_offset),
            ctx=member_context(request, user_id),
        )
    except CalendarError as error:
        _raise_http(error)

    data = outcome.as_dict()
    return UpgradeResponse(
        status=data["status"],
        referralsToday=data["referrals_today"],
        upgrades=[_voucher(item) for item in data["upgrades"]],
    )


@router.get("/me", response_model=OverviewResponse)
async def calendar_overview(
    request: Request,
    user_id: UUID = Depends(require_member_session),
    engine: CalendarEngine = Depends(get_calendar_engine),
) -> OverviewResponse:
    try:
        data = await engine.user_overview(user_id, ctx=member_context(request, user_id))
    except CalendarError as error:
        _raise_http(error)

    return OverviewResponse(
        userId=data["user_id"],
        streak=StreakResponse(**data["streak"]),
        lastClaimedDate=data["last_claimed_date"],
        claims=[_claim(item) for item in data["claims"]],
        vouchers=[_voucher(item) for item in data["vouchers"]],
        raffleEntries=data["raffle_entries"],
        achievements=[
            OverviewAchievementResponse(key=item["key"], eventDate=item["event_date"])
            for item in data["achievements"]
        ],
    )


@router.post(
    "/raffles/{raffle_id}/draw",
    response_model=DrawResponse,
    dependencies=[Depends(require_calendar_admin_key)],
)
async def draw_raffle(
    raffle_id: str,
    request: Request,
    payload: DrawRequest | None = None,
    engine: CalendarEngine = Depends(get_calendar_engine),
) -> DrawResponse:
    try:
        outcome = await engine.draw_raffle(
            raffle_id,
            ctx=service_context(request),
            seed=payload.seed if payload else None,
        )
    except CalendarError as error:
        _raise_http(error)

    return DrawResponse(
        status=outcome.status,
        raffleId=outcome.raffle_id,
        seed=outcome.seed,
        winners=[_winner(item) for item in outcome.winners],
    )


@router.get("/raffles/{raffle_id}/verification", response_model=VerificationResponse)
async def verify_raffle(
    raffle_id: str,
    engine: CalendarEngine = Depends(get_calendar_engine),
) -> VerificationResponse:
    try:
        verification = await engine.verify_draw(raffle_id)
    except CalendarError as error:
        _raise_http(error)

    return VerificationResponse(
        raffleId=verification.raffle_id,
        seed=verification.seed,
        matches=verification.matches,
        hashesValid=verification.hashes_valid,
        entrants=verification.entrants,
        totalWeight=verification.total_weight,
        expected=[_winner(item) for item in verification.expected],
        recorded=[_winner(item) for item in verification.recorded],
    )


@router.post(
    "/vouchers/{voucher_id}/redeem",
    response_model=RedeemResponse,
    dependencies=[Depends(require_calendar_admin_key)],
)
async def redeem_voucher(
    voucher_id: UUID,
    request: Request,
    engine: CalendarEngine = Depends(get_calendar_engine),
) -> RedeemResponse:
    try:
        data = await engine.redeem_voucher(voucher_id, ctx=service_context(request))
    except CalendarError as error:
        _raise_http(error)
    return RedeemResponse(status=data["status"], voucher=_voucher(data["voucher"]))
