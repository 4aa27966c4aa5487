"""
Timekeeper application wiring.

Follows Clean Architecture: callers use the services, services use the API
client and repositories. This module is the one place that knows how they fit
together.
"""

import logging
from typing import Optional

from timekeeper.infra.api_client import TimerApiClient
from timekeeper.infra.config import Settings, configure_logging, get_settings
from timekeeper.infra.db import DatabaseEngine, init_db
from timekeeper.services.billing_rate_service import BillingRateService
from timekeeper.services.calendar_service import CalendarService
from timekeeper.services.entry_converter import TimeEntryConverter
from timekeeper.services.rate_multiplier import RateMultiplierCalculator
from timekeeper.services.timer_service import TimerService
from timekeeper.services.timer_store import TimerStateStore

logger = logging.getLogger(__name__)


class TimekeeperApp:
    """
    Owns the API client, the reference-data cache and the services built on them.

    Usage:
        async with TimekeeperApp() as app:
            timer = await app.timers.start_timer(user_id, case_id)
    """

    def __init__(self, settings: Optional[Settings] = None,
                 api: Optional[TimerApiClient] = None):
        self.settings = settings or get_settings()
        prefs = self.settings.billing

        self.api = api or TimerApiClient.from_settings(self.settings)
        self.calendar = CalendarService.from_preferences(prefs)
        self.calculator = RateMultiplierCalculator(self.calendar)
        self.rates = BillingRateService(api=self.api, calculator=self.calculator)
        self.converter = TimeEntryConverter(
            rate_service=self.rates,
            calculator=self.calculator,
            preferences=prefs,
            tz=self.settings.get_timezone(),
        )
        self.timers = TimerService(
            self.api,
            store=TimerStateStore(tick_interval=self.settings.tick_interval_seconds),
            converter=self.converter,
        )

    async def start(self) -> None:
        """Configure logging and make sure the cache tables exist"""
        configure_logging(self.settings)
        await init_db(self.settings.get_db_url())
        logger.info(f"Timekeeper ready (server {self.settings.api_base_url}, "
                    f"timezone {self.settings.timezone})")

    async def sync(self, user_id: int) -> None:
        """Load a user's active timers and billing rates from the server"""
        await self.timers.refresh(user_id)
        await self.rates.sync_user_rates(user_id)

    async def close(self) -> None:
        await self.timers.close()
        await self.api.close()
        await DatabaseEngine.reset()

    async def __aenter__(self) -> "TimekeeperApp":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
