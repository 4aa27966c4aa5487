"""Domain layer - Pure business entities and logic"""

from .models import (
    BillingRate,
    CaseContext,
    MultiplierContext,
    RateLookup,
    RateMultiplierConfig,
    RateScope,
    RateType,
    StartTimerRequest,
    StopAllResult,
    TimeEntry,
    TimeEntryStatus,
    Timer,
    TimerState,
    TimerView,
)

__all__ = [
    "BillingRate",
    "CaseContext",
    "MultiplierContext",
    "RateLookup",
    "RateMultiplierConfig",
    "RateScope",
    "RateType",
    "StartTimerRequest",
    "StopAllResult",
    "TimeEntry",
    "TimeEntryStatus",
    "Timer",
    "TimerState",
    "TimerView",
]
