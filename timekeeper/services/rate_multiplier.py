"""
Rate multipliers for weekend, after-hours and emergency work.

Emergency work is billed at the emergency multiplier alone. Otherwise the
weekend multiplier and then the after-hours multiplier stack. Results are not
rounded here; rounding happens once, when a TimeEntry is built.
"""

import logging
from decimal import Decimal
from typing import Optional

from timekeeper.domain.models import MultiplierContext, RateMultiplierConfig
from timekeeper.services.calendar_service import CalendarService

logger = logging.getLogger(__name__)

ONE = Decimal(1)


class RateMultiplierCalculator:

    def __init__(self, calendar: Optional[CalendarService] = None):
        self.calendar = calendar or CalendarService()

    def multiplier_for(self, config: RateMultiplierConfig, context: MultiplierContext) -> Decimal:
        """Combined multiplier for one piece of work"""
        if not config.allow_multipliers:
            return ONE

        if context.is_emergency and config.emergency_multiplier is not None:
            return config.emergency_multiplier

        multiplier = ONE
        if config.weekend_multiplier is not None and self.calendar.is_premium_day(context.date):
            multiplier *= config.weekend_multiplier
        if config.after_hours_multiplier is not None and self.calendar.is_after_hours(
                context.time_of_day, config.business_start, config.business_end):
            multiplier *= config.after_hours_multiplier
        return multiplier

    def apply(self, base_rate: Decimal, config: RateMultiplierConfig,
              context: MultiplierContext) -> Decimal:
        multiplier = self.multiplier_for(config, context)
        rate = base_rate * multiplier
        if multiplier != ONE:
            logger.debug(f"Applied multiplier {multiplier}x to {base_rate}: {rate} "
                         f"(date={context.date}, {context.time_of_day}, emergency={context.is_emergency})")
        return rate
