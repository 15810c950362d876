"""SQLAlchemy models package."""

# Import all models
from .calendar import (  # noqa: F401
    CalendarAchievement,
    CalendarClaim,
    CalendarClaimStatus,
    CalendarEvent,
    CalendarEventLog,
    CalendarMetricsDaily,
    CalendarRaffle,
    CalendarRaffleEntry,
    CalendarRaffleEntryControl,
    CalendarRaffleStatus,
    CalendarRaffleWinner,
    CalendarReferralMultiplier,
    CalendarSetting,
    CalendarSpinResult,
    CalendarSpinWheel,
    CalendarStreak,
    CalendarVoucher,
    CalendarVoucherStatus,
)
from .referral import Referral, ReferralStatus  # noqa: F401
