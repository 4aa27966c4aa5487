"""Infrastructure layer - Remote API, configuration and reference-data cache"""

from .api_client import TimerApiClient
from .config import BillingPreferences, Settings, get_settings
from .db import DatabaseEngine, get_engine, init_db
from .repository import BillingRateRepository, RateConfigRepository

__all__ = [
    "TimerApiClient",
    "BillingPreferences",
    "Settings",
    "get_settings",
    "DatabaseEngine",
    "get_engine",
    "init_db",
    "BillingRateRepository",
    "RateConfigRepository",
]
