"""
Pytest configuration and fixtures.
"""

import asyncio
import datetime
import sys
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
import pytz
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Add project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from timekeeper.domain.errors import StateConflict, TimerNotFound
from timekeeper.domain.models import (
    BillingRate,
    RateLookup,
    RateMultiplierConfig,
    StartTimerRequest,
    TimeEntry,
    Timer,
)
from timekeeper.infra.db import Base
from timekeeper.services.entry_converter import TimeEntryConverter
from timekeeper.services.rate_resolution import RateResolutionEngine
from timekeeper.services.timer_service import TimerService
from timekeeper.services.timer_store import TimerStateStore

# Monday, business hours
T0 = datetime.datetime(2026, 10, 19, 10, 0, tzinfo=pytz.UTC)


@pytest_asyncio.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing"""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Create a new session for a test"""
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


class FrozenClock:
    """A clock that only moves when told to"""

    def __init__(self, now: datetime.datetime = T0):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime.datetime:
        self.now = self.now + datetime.timedelta(seconds=seconds, **kwargs)
        return self.now


class FakeTimerApi:
    """
    In-memory stand-in for the remote timer service.

    Mirrors the server's rules: pausing a paused timer or resuming a running one
    is a conflict, unknown ids are not found. Failures can be queued per method
    (optionally for one timer id) and every call is recorded.
    """

    def __init__(self, clock: FrozenClock):
        self.clock = clock
        self.timers: Dict[int, Timer] = {}
        self.entries: List[TimeEntry] = []
        self.rates: List[BillingRate] = []
        self.configs: Dict[int, RateMultiplierConfig] = {}
        self.calls: List[tuple] = []
        self._failures = defaultdict(list)
        self._gates: Dict[str, asyncio.Event] = {}
        self._next_id = 1

    # Test helpers

    def fail(self, method: str, exc: Exception, times: int = 1, timer_id: Optional[int] = None):
        self._failures[method].extend([(timer_id, exc)] * times)

    def hold(self, method: str) -> asyncio.Event:
        """Block calls to method until the returned event is set"""
        gate = asyncio.Event()
        self._gates[method] = gate
        return gate

    def seed(self, user_id: int, case_id: int, *, running: bool = True,
             accumulated: int = 0, **fields) -> Timer:
        """Put a timer on the server without going through the client"""
        timer = Timer(
            id=self._next_id, user_id=user_id, case_id=case_id,
            start_time=self.clock() if running else None, is_active=running,
            accumulated_seconds=accumulated, **fields,
        )
        self._next_id += 1
        self.timers[timer.id] = timer
        return timer

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def close(self):
        self.calls.append(("close", None))

    async def _enter(self, method: str, timer_id: Optional[int] = None):
        self.calls.append((method, timer_id))
        await asyncio.sleep(0)
        gate = self._gates.get(method)
        if gate is not None:
            await gate.wait()
        queue = self._failures.get(method)
        if queue:
            for i, (target, exc) in enumerate(queue):
                if target is None or target == timer_id:
                    del queue[i]
                    raise exc

    def _owned(self, user_id: int, timer_id: int) -> Timer:
        timer = self.timers.get(timer_id)
        if timer is None or timer.user_id != user_id:
            raise TimerNotFound(timer_id, "Timer not found")
        return timer

    # Timer endpoints

    async def start_timer(self, user_id: int, request: StartTimerRequest) -> Timer:
        await self._enter("start_timer")
        timer = Timer(
            id=self._next_id, user_id=user_id, case_id=request.case_id,
            start_time=self.clock(), is_active=True, description=request.description,
            hourly_rate=request.rate, apply_multipliers=request.apply_multipliers,
            is_emergency=request.is_emergency, created_at=self.clock(),
        )
        self._next_id += 1
        self.timers[timer.id] = timer
        return timer

    async def pause_timer(self, user_id: int, timer_id: int) -> Timer:
        await self._enter("pause_timer", timer_id)
        timer = self._owned(user_id, timer_id)
        if not timer.is_active:
            raise StateConflict("Timer is already paused", timer_id=timer_id)
        worked = int((self.clock() - timer.start_time).total_seconds())
        timer = timer.model_copy(update={
            "is_active": False, "start_time": None,
            "accumulated_seconds": timer.accumulated_seconds + max(0, worked),
        })
        self.timers[timer_id] = timer
        return timer

    async def resume_timer(self, user_id: int, timer_id: int) -> Timer:
        await self._enter("resume_timer", timer_id)
        timer = self._owned(user_id, timer_id)
        if timer.is_active:
            raise StateConflict("Timer is already running", timer_id=timer_id)
        timer = timer.model_copy(update={"is_active": True, "start_time": self.clock()})
        self.timers[timer_id] = timer
        return timer

    async def convert_timer(self, user_id: int, timer_id: int, entry: TimeEntry) -> TimeEntry:
        await self._enter("convert_timer", timer_id)
        self._owned(user_id, timer_id)
        del self.timers[timer_id]
        saved = entry.model_copy(update={"id": len(self.entries) + 1})
        self.entries.append(saved)
        return saved

    async def discard_timer(self, user_id: int, timer_id: int) -> None:
        await self._enter("discard_timer", timer_id)
        self._owned(user_id, timer_id)
        del self.timers[timer_id]

    async def update_description(self, user_id: int, timer_id: int, description: str) -> Timer:
        await self._enter("update_description", timer_id)
        timer = self._owned(user_id, timer_id).model_copy(update={"description": description})
        self.timers[timer_id] = timer
        return timer

    async def get_active_timers(self, user_id: int) -> List[Timer]:
        # Snapshot taken before any hold: a held call is a reply still in transit
        owned = [t for t in self.timers.values() if t.user_id == user_id]
        await self._enter("get_active_timers")
        return sorted(owned, key=lambda t: t.id, reverse=True)

    # Rate endpoints

    async def create_billing_rate(self, rate: BillingRate) -> BillingRate:
        await self._enter("create_billing_rate")
        created = rate.model_copy(update={"id": 100 + len(self.rates)})
        self.rates.append(created)
        return created

    async def get_most_specific_rate(self, lookup: RateLookup) -> Optional[BillingRate]:
        await self._enter("get_most_specific_rate")
        return RateResolutionEngine().most_specific(self.rates, lookup)

    async def get_active_rates_for_user(self, user_id: int) -> List[BillingRate]:
        await self._enter("get_active_rates_for_user")
        return [r for r in self.rates if r.user_id == user_id and r.is_active]

    async def get_case_rate_config(self, case_id: int) -> Optional[RateMultiplierConfig]:
        await self._enter("get_case_rate_config")
        return self.configs.get(case_id)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def fake_api(clock):
    return FakeTimerApi(clock)


@pytest.fixture
def converter():
    return TimeEntryConverter()


@pytest_asyncio.fixture
async def timer_service(fake_api, clock, converter):
    """TimerService wired to the fake API; the store clock is closed on teardown"""
    service = TimerService(
        fake_api,
        store=TimerStateStore(clock=clock, tick_interval=0.01),
        converter=converter,
        clock=clock,
    )
    yield service
    await service.close()