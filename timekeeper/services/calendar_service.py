"""
Calendar Service - Weekend, holiday and business-hours logic for billing.

Architecture Decision: Strategy Pattern
Weekend and after-hours rules live here so the multiplier calculator never
hard-codes a working week or a business window.
"""

import datetime
from typing import Optional

import holidays


class CalendarService:
    """
    Decides whether work falls on a premium day or outside business hours.
    """

    def __init__(self, country: Optional[str] = None, subdivision: Optional[str] = None,
                 holidays_as_weekend: bool = False):
        """
        Initialize with an optional public-holiday calendar.

        Args:
            country: ISO country code (e.g. 'US'); None disables holiday lookups
            subdivision: State/province code within the country
            holidays_as_weekend: Whether public holidays are billed like weekends
        """
        self.country = country
        self.subdivision = subdivision
        self.holidays_as_weekend = holidays_as_weekend
        self._holidays = (
            holidays.country_holidays(country, subdiv=subdivision) if country else {}
        )

    @classmethod
    def from_preferences(cls, prefs) -> "CalendarService":
        return cls(
            country=prefs.holiday_country,
            subdivision=prefs.holiday_subdivision,
            holidays_as_weekend=prefs.holidays_as_weekend,
        )

    def is_weekend(self, date_obj: datetime.date) -> bool:
        """Check if date is a weekend (Saturday=5, Sunday=6)"""
        return date_obj.weekday() > 4

    def is_holiday(self, date_obj: datetime.date) -> bool:
        """Check if date is a public holiday in the configured calendar"""
        return date_obj in self._holidays

    def get_holiday_name(self, date_obj: datetime.date) -> str:
        """
        Get the name of the holiday for a given date.

        Returns:
            Holiday name or empty string if not a holiday
        """
        return self._holidays.get(date_obj, "")

    def is_premium_day(self, date_obj: datetime.date) -> bool:
        """Weekend, or a public holiday when holidays bill like weekends"""
        if self.is_weekend(date_obj):
            return True
        return self.holidays_as_weekend and self.is_holiday(date_obj)

    def is_after_hours(self, time_of_day: datetime.time,
                       business_start: datetime.time = datetime.time(8, 0),
                       business_end: datetime.time = datetime.time(18, 0)) -> bool:
        """
        Check if a time falls outside the business window.

        The window is [business_start, business_end): 08:00 is business hours,
        18:00 is already after hours.
        """
        return time_of_day < business_start or time_of_day >= business_end
