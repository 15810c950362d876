"""Daily calendar campaign service exports."""

from .catalog import CatalogEvent, EventCatalog, local_claim_window, local_today  # noqa: F401
from .engine import CalendarEngine  # noqa: F401
from .errors import (  # noqa: F401
    CalendarAuthorizationError,
    CalendarConflictError,
    CalendarError,
    CalendarNotFoundError,
    CalendarValidationError,
    TransientStoreError,
)
from .metrics import MetricsAggregator, MetricsDelta  # noqa: F401
from .policy import (  # noqa: F401
    RequestContext,
    SessionAuthorizer,
    StaticFeatureFlag,
    StoredFeatureFlag,
)
from .raffle import audit_hash, derive_seed, rank_entrants  # noqa: F401
from .referrals import (  # noqa: F401
    ReferralCompleted,
    ReferralEventHub,
    ReferralMultiplierListener,
    SqlReferralActivity,
    get_referral_hub,
    register_calendar_listeners,
)
from .spin import select_weighted_index  # noqa: F401
from .streaks import StreakSnapshot, advance_streak  # noqa: F401
