"""
Tests for timer -> TimeEntry conversion and rate precedence.
"""

import datetime
from decimal import Decimal
from typing import Optional

import pytest
import pytz

from timekeeper.domain.errors import InvalidConversion
from timekeeper.domain.models import (
    BillingRate,
    CaseContext,
    RateLookup,
    RateMultiplierConfig,
    TimeEntryStatus,
    Timer,
)
from timekeeper.infra.config import BillingPreferences
from timekeeper.services.entry_converter import TimeEntryConverter

# Monday 10:00 UTC
T0 = datetime.datetime(2026, 10, 19, 10, 0, tzinfo=pytz.UTC)
SATURDAY_NOON = datetime.datetime(2026, 10, 17, 12, 0, tzinfo=pytz.UTC)


class StubRateService:
    """Answers rate lookups from a fixed rate and records what was asked"""

    def __init__(self, rate: Optional[Decimal] = None,
                 config: Optional[RateMultiplierConfig] = None):
        self.rate = rate
        self.config = config
        self.lookups = []

    async def resolve_rate(self, lookup: RateLookup) -> Optional[BillingRate]:
        self.lookups.append(lookup)
        if self.rate is None:
            return None
        return BillingRate(id=11, user_id=lookup.user_id, case_id=lookup.case_id,
                           amount=self.rate, effective_date=datetime.date(2026, 1, 1))

    async def get_multiplier_config(self, case_id: int) -> Optional[RateMultiplierConfig]:
        return self.config


def paused_timer(seconds: int, **fields) -> Timer:
    return Timer(id=5, user_id=1, case_id=7, is_active=False, accumulated_seconds=seconds,
                 description="Draft motion", **fields)


class TestBuild:

    def test_ninety_minutes_at_300(self):
        entry = TimeEntryConverter().build(paused_timer(5400), 5400, Decimal("300"),
                                           entry_date=T0.date())
        assert entry.hours == Decimal("1.5000")
        assert entry.rate == Decimal("300.00")
        assert entry.amount == Decimal("450.00")
        assert entry.status == TimeEntryStatus.DRAFT
        assert entry.timer_id == 5
        assert entry.description == "Draft motion"

    def test_zero_seconds_rejected(self):
        with pytest.raises(InvalidConversion):
            TimeEntryConverter().build(paused_timer(0), 0, Decimal("300"), entry_date=T0.date())

    def test_negative_rate_rejected(self):
        with pytest.raises(InvalidConversion):
            TimeEntryConverter().build(paused_timer(60), 60, Decimal("-1"), entry_date=T0.date())

    def test_rounds_to_zero_hours_rejected(self):
        converter = TimeEntryConverter(preferences=BillingPreferences(hours_places=2))
        with pytest.raises(InvalidConversion):
            converter.build(paused_timer(10), 10, Decimal("300"), entry_date=T0.date())

    def test_billing_increment(self):
        converter = TimeEntryConverter(preferences=BillingPreferences(hours_increment=Decimal("0.1")))
        entry = converter.build(paused_timer(400), 400, Decimal("300"), entry_date=T0.date())
        assert entry.hours == Decimal("0.2")
        assert entry.amount == Decimal("60.00")

    def test_rate_rounded_to_currency(self):
        entry = TimeEntryConverter().build(paused_timer(3600), 3600, Decimal("133.31333"),
                                           entry_date=T0.date())
        assert entry.rate == Decimal("133.31")

    def test_amount_uses_currency_places(self):
        converter = TimeEntryConverter(preferences=BillingPreferences(currency_places=0))
        entry = converter.build(paused_timer(5400), 5400, Decimal("301"), entry_date=T0.date())
        assert entry.rate == Decimal("301")
        assert entry.amount == Decimal("452")
        assert str(entry.amount) == "452"
        assert "currencyPlaces" not in entry.to_wire()


@pytest.mark.asyncio
class TestConvert:

    async def test_running_timer_counts_up_to_now(self):
        timer = Timer(id=5, user_id=1, case_id=7, start_time=T0, accumulated_seconds=1800)
        now = T0 + datetime.timedelta(hours=1)
        entry = await TimeEntryConverter().convert(timer, now=now, rate=Decimal("200"))
        assert entry.hours == Decimal("1.5000")
        assert entry.amount == Decimal("300.00")
        assert entry.date == now.date()

    async def test_zero_duration_rejected_before_rate_lookup(self):
        service = StubRateService(rate=Decimal("300"))
        converter = TimeEntryConverter(rate_service=service)
        with pytest.raises(InvalidConversion):
            await converter.convert(paused_timer(0), now=T0)
        assert service.lookups == []

    async def test_explicit_rate_skips_multipliers(self):
        converter = TimeEntryConverter(rate_service=StubRateService(rate=Decimal("999")))
        entry = await converter.convert(paused_timer(3600), now=SATURDAY_NOON, rate=Decimal("300"))
        assert entry.rate == Decimal("300.00")

    async def test_rate_locked_on_timer_wins_over_lookup(self):
        converter = TimeEntryConverter(rate_service=StubRateService(rate=Decimal("999")))
        timer = paused_timer(3600, hourly_rate=Decimal("275"))
        entry = await converter.convert(timer, now=SATURDAY_NOON)
        assert entry.rate == Decimal("275.00")

    async def test_resolved_rate_gets_weekend_multiplier(self):
        service = StubRateService(rate=Decimal("300"))
        converter = TimeEntryConverter(rate_service=service)
        entry = await converter.convert(paused_timer(3600), now=SATURDAY_NOON)
        assert entry.rate == Decimal("450.00")
        assert service.lookups[0].as_of == SATURDAY_NOON.date()

    async def test_emergency_timer(self):
        converter = TimeEntryConverter(rate_service=StubRateService(rate=Decimal("300")))
        entry = await converter.convert(paused_timer(3600, is_emergency=True), now=SATURDAY_NOON)
        assert entry.rate == Decimal("600.00")

    async def test_case_context_narrows_lookup_and_supplies_config(self):
        service = StubRateService(rate=Decimal("300"))
        converter = TimeEntryConverter(rate_service=service)
        case = CaseContext(case_id=7, client_id=9, matter_type_id=4,
                           multipliers=RateMultiplierConfig(allow_multipliers=False))
        entry = await converter.convert(paused_timer(3600), now=SATURDAY_NOON, case=case)
        assert entry.rate == Decimal("300.00")
        assert (service.lookups[0].client_id, service.lookups[0].matter_type_id) == (9, 4)

    async def test_case_default_rate_when_nothing_resolves(self):
        config = RateMultiplierConfig(default_rate=Decimal("180"))
        converter = TimeEntryConverter(rate_service=StubRateService(config=config))
        entry = await converter.convert(paused_timer(3600), now=T0)
        assert entry.rate == Decimal("180.00")

    async def test_system_default_rate(self):
        prefs = BillingPreferences(default_hourly_rate=Decimal("250"))
        converter = TimeEntryConverter(preferences=prefs)
        entry = await converter.convert(paused_timer(7200), now=T0)
        assert entry.rate == Decimal("250.00")
        assert entry.amount == Decimal("500.00")

    async def test_no_rate_anywhere_is_rejected(self):
        with pytest.raises(InvalidConversion):
            await TimeEntryConverter().convert(paused_timer(3600), now=T0)

    async def test_non_billable(self):
        entry = await TimeEntryConverter().convert(paused_timer(3600), now=T0,
                                                   rate=Decimal("300"), billable=False)
        assert entry.hours == Decimal("1.0000")
        assert entry.amount == Decimal("0.00")

    async def test_worked_at_sets_date_and_hour_in_firm_timezone(self):
        """23:30 UTC on Monday is 19:30 in New York: same date, after hours"""
        converter = TimeEntryConverter(rate_service=StubRateService(rate=Decimal("300")),
                                       tz=pytz.timezone("America/New_York"))
        late = datetime.datetime(2026, 10, 19, 23, 30, tzinfo=pytz.UTC)
        entry = await converter.convert(paused_timer(3600), now=late + datetime.timedelta(days=2),
                                        worked_at=late)
        assert entry.date == datetime.date(2026, 10, 19)
        assert entry.rate == Decimal("375.00")

    async def test_description_override(self):
        entry = await TimeEntryConverter().convert(paused_timer(3600), now=T0,
                                                   rate=Decimal("300"), description="Court prep")
        assert entry.description == "Court prep"
