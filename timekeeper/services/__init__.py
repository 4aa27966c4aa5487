"""Services layer - Business logic"""

from .billing_rate_service import BillingRateService
from .calendar_service import CalendarService
from .entry_converter import TimeEntryConverter
from .rate_multiplier import RateMultiplierCalculator
from .rate_resolution import RateResolution, RateResolutionEngine
from .timer_service import TimerService
from .timer_store import TimerStateStore

__all__ = [
    "BillingRateService",
    "CalendarService",
    "TimeEntryConverter",
    "RateMultiplierCalculator",
    "RateResolution",
    "RateResolutionEngine",
    "TimerService",
    "TimerStateStore",
]
