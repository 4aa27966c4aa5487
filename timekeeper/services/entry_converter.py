"""
Time Entry Converter - turns a finished timer into a draft TimeEntry.

Rate precedence:
1. Explicit rate passed by the caller
2. Rate the server locked on the timer at start
3. Most specific billing rate, with multipliers
4. The case's default rate, with multipliers
5. The firm-wide default rate, with multipliers
Nothing resolvable rejects the conversion before any write.
"""

import datetime
import logging
from decimal import Decimal
from typing import Optional

from timekeeper.domain.duration import elapsed_seconds, hours_from_seconds
from timekeeper.domain.errors import InvalidConversion
from timekeeper.domain.models import (
    CaseContext,
    MultiplierContext,
    RateLookup,
    RateMultiplierConfig,
    TimeEntry,
    TimeEntryStatus,
    Timer,
    quantize_money,
)
from timekeeper.infra.config import BillingPreferences
from timekeeper.services.rate_multiplier import RateMultiplierCalculator

logger = logging.getLogger(__name__)


class TimeEntryConverter:

    def __init__(self, rate_service=None, calculator: Optional[RateMultiplierCalculator] = None,
                 preferences: Optional[BillingPreferences] = None,
                 tz: Optional[datetime.tzinfo] = None):
        self.rate_service = rate_service
        self.calculator = calculator or RateMultiplierCalculator()
        self.preferences = preferences or BillingPreferences()
        self.tz = tz

    def build(self, timer: Timer, seconds: int, rate: Decimal, *,
              entry_date: datetime.date, description: Optional[str] = None,
              billable: bool = True) -> TimeEntry:
        """
        Build a draft entry from authoritative worked seconds and a final rate.

        Raises:
            InvalidConversion: zero duration or negative rate
        """
        if seconds <= 0:
            raise InvalidConversion(f"Timer {timer.id} has no recorded time to convert")
        if rate < 0:
            raise InvalidConversion(f"Rate must not be negative (got {rate})")

        hours = hours_from_seconds(seconds, places=self.preferences.hours_places,
                                   increment=self.preferences.hours_increment)
        if hours <= 0:
            raise InvalidConversion(f"Timer {timer.id} rounds to zero hours")

        return TimeEntry(
            user_id=timer.user_id,
            case_id=timer.case_id,
            timer_id=timer.id,
            date=entry_date,
            hours=hours,
            rate=quantize_money(rate, self.preferences.currency_places),
            billable=billable,
            status=TimeEntryStatus.DRAFT,
            description=description if description is not None else timer.description,
            currency_places=self.preferences.currency_places,
        )

    async def convert(self, timer: Timer, *, now: datetime.datetime,
                      description: Optional[str] = None, billable: bool = True,
                      rate: Optional[Decimal] = None, case: Optional[CaseContext] = None,
                      worked_at: Optional[datetime.datetime] = None) -> TimeEntry:
        """
        Convert a server-confirmed timer.

        Args:
            timer: Authoritative timer state
            now: Stop instant used for the running session
            rate: Explicit rate; skips resolution and multipliers
            case: Client/matter-type scope and multiplier config for the case
            worked_at: When the work happened; defaults to now. Entry date,
                weekend and after-hours checks all derive from this one instant.
        """
        seconds = elapsed_seconds(timer, now)
        if seconds <= 0:
            raise InvalidConversion(f"Timer {timer.id} has no recorded time to convert")

        context = MultiplierContext.at(worked_at or now, self.tz, is_emergency=timer.is_emergency)
        if rate is None:
            rate = timer.hourly_rate
            if rate is not None:
                logger.debug(f"Timer {timer.id}: using rate locked at start {rate}")
        if rate is None:
            rate = await self._resolve_rate(timer, case, context)

        entry = self.build(timer, seconds, rate, entry_date=context.date,
                           description=description, billable=billable)
        logger.info(f"Timer {timer.id} -> entry: {entry.hours}h x {entry.rate} = {entry.amount}")
        return entry

    async def _resolve_rate(self, timer: Timer, case: Optional[CaseContext],
                            context: MultiplierContext) -> Decimal:
        config = await self._multiplier_config(timer.case_id, case)

        base = None
        if self.rate_service is not None:
            lookup = RateLookup(
                user_id=timer.user_id,
                case_id=timer.case_id,
                client_id=case.client_id if case else None,
                matter_type_id=case.matter_type_id if case else None,
                as_of=context.date,
            )
            resolved = await self.rate_service.resolve_rate(lookup)
            if resolved is not None:
                base = resolved.amount
                logger.debug(f"Timer {timer.id}: resolved {resolved.scope.name} rate {resolved.id} = {base}")

        if base is None and config.default_rate is not None:
            base = config.default_rate
            logger.debug(f"Timer {timer.id}: using case default rate {base}")
        if base is None and self.preferences.default_hourly_rate is not None:
            base = self.preferences.default_hourly_rate
            logger.debug(f"Timer {timer.id}: using system default rate {base}")
        if base is None:
            raise InvalidConversion(
                f"No billing rate for user {timer.user_id} on case {timer.case_id} "
                f"and no default rate configured"
            )
        return self.calculator.apply(base, config, context)

    async def _multiplier_config(self, case_id: int,
                                 case: Optional[CaseContext]) -> RateMultiplierConfig:
        if case is not None and case.multipliers is not None:
            return case.multipliers
        if self.rate_service is not None:
            config = await self.rate_service.get_multiplier_config(case_id)
            if config is not None:
                return config
        return self.preferences.default_multipliers()
