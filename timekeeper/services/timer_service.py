"""
Timer Service - Timer lifecycle against the remote service.

Architecture Decision: Server-authoritative, optimistic cache
The server owns timer state. Pause/resume show their effect in the store
immediately, but the store only trusts the server's answer: a conflict triggers
a re-fetch, a failure rolls the edit back and resyncs.

Commands for the same timer are serialized with a per-timer asyncio.Lock, so a
pause issued while a resume is in flight waits for it instead of racing it.
"""

import asyncio
import contextlib
import datetime
import logging
from decimal import Decimal
from typing import AsyncIterator, Callable, Dict, List, Optional

from timekeeper.domain.duration import utc_now
from timekeeper.domain.errors import (
    StateConflict,
    TimekeeperError,
    TimerNotFound,
)
from timekeeper.domain.models import (
    CaseContext,
    StartTimerRequest,
    StopAllResult,
    TimeEntry,
    Timer,
)
from timekeeper.services.entry_converter import TimeEntryConverter
from timekeeper.services.timer_store import TimerStateStore

logger = logging.getLogger(__name__)


class TimerService:
    """
    The timer lifecycle: start, pause, resume, convert, discard, stop-all.
    Knows nothing about the UI; views subscribe to the store.
    """

    def __init__(self, api, store: Optional[TimerStateStore] = None,
                 converter: Optional[TimeEntryConverter] = None,
                 clock: Callable[[], datetime.datetime] = utc_now):
        self.api = api
        self.clock = clock
        self.store = store if store is not None else TimerStateStore(clock=clock)
        self.converter = converter or TimeEntryConverter()
        self._locks: Dict[int, asyncio.Lock] = {}
        # Commands holding or queued on each lock
        self._queued: Dict[int, int] = {}

    @contextlib.asynccontextmanager
    async def _serialized(self, timer_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(timer_id, asyncio.Lock())
        if lock.locked():
            logger.debug(f"Timer {timer_id}: waiting for the previous command to finish")
        self._queued[timer_id] = self._queued.get(timer_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._queued[timer_id] -= 1
            if not self._queued[timer_id]:
                del self._queued[timer_id]
                del self._locks[timer_id]

    # Authoritative refresh

    async def refresh(self, user_id: int) -> List[Timer]:
        """Fetch the user's active timers and make the store match them"""
        since = self.store.generation
        timers = await self.api.get_active_timers(user_id)
        # Results confirmed while the snapshot was in transit win over it
        self.store.reconcile(timers, since=since)
        return timers

    async def _resync(self, user_id: int, timer_id: Optional[int] = None) -> bool:
        """Best-effort refresh after a failure; flags the cache stale if it fails too"""
        try:
            await self.refresh(user_id)
            return True
        except TimekeeperError as e:
            logger.warning(f"Resync for user {user_id} failed: {e}")
            self.store.mark_stale(timer_id)
            return False

    async def _authoritative_timer(self, user_id: int, timer_id: int) -> Timer:
        timers = await self.refresh(user_id)
        for timer in timers:
            if timer.id == timer_id:
                return timer
        raise TimerNotFound(timer_id)

    # Lifecycle

    async def start_timer(self, user_id: int, case_id: int, description: Optional[str] = None,
                          *, rate: Optional[Decimal] = None, apply_multipliers: bool = False,
                          is_emergency: bool = False, work_type: Optional[str] = None,
                          tags: Optional[str] = None) -> Timer:
        """
        Start a new timer. Several timers may run at once, one per case or not.
        """
        request = StartTimerRequest(
            case_id=case_id, description=description, rate=rate,
            apply_multipliers=apply_multipliers, is_emergency=is_emergency,
            work_type=work_type, tags=tags,
        )
        logger.info(f"Starting timer for user {user_id} on case {case_id}")
        try:
            timer = await self.api.start_timer(user_id, request)
        except TimekeeperError as e:
            if e.recoverable:
                # The timer may exist on the server even though we never saw the reply
                await self._resync(user_id)
            raise
        self.store.add(timer)
        return timer

    async def pause_timer(self, user_id: int, timer_id: int) -> Timer:
        async with self._serialized(timer_id):
            return await self._toggle(user_id, timer_id, pause=True)

    async def resume_timer(self, user_id: int, timer_id: int) -> Timer:
        async with self._serialized(timer_id):
            return await self._toggle(user_id, timer_id, pause=False)

    async def _toggle(self, user_id: int, timer_id: int, pause: bool, retry: bool = True) -> Timer:
        verb = "pause" if pause else "resume"
        command = self.api.pause_timer if pause else self.api.resume_timer
        if pause:
            self.store.begin_pause(timer_id, self.clock())
        else:
            self.store.begin_resume(timer_id, self.clock())

        logger.info(f"{verb.capitalize()} timer {timer_id} for user {user_id}")
        try:
            timer = await command(user_id, timer_id)
        except StateConflict as e:
            logger.warning(f"Timer {timer_id}: {verb} conflicted ({e}); re-fetching state")
            return await self._after_conflict(user_id, timer_id, pause, retry, e)
        except TimerNotFound:
            logger.warning(f"Timer {timer_id}: cannot {verb}, timer no longer exists")
            self.store.remove(timer_id)
            raise
        except TimekeeperError as e:
            self.store.rollback(timer_id)
            if e.recoverable:
                await self._resync(user_id, timer_id)
            raise
        self.store.apply(timer)
        return timer

    async def _after_conflict(self, user_id: int, timer_id: int, pause: bool, retry: bool,
                              conflict: StateConflict) -> Timer:
        try:
            timer = await self._authoritative_timer(user_id, timer_id)
        except TimerNotFound:
            self.store.remove(timer_id)
            raise
        except TimekeeperError as e:
            self.store.rollback(timer_id)
            self.store.mark_stale(timer_id)
            raise conflict from e

        wanted_active = not pause
        if timer.is_active == wanted_active:
            # Already in the state the command wanted
            return timer
        if retry:
            logger.info(f"Timer {timer_id}: server state changed underneath, retrying once")
            return await self._toggle(user_id, timer_id, pause, retry=False)
        raise conflict

    async def convert_timer(self, user_id: int, timer_id: int, description: Optional[str] = None,
                            *, rate: Optional[Decimal] = None, billable: bool = True,
                            case: Optional[CaseContext] = None,
                            worked_at: Optional[datetime.datetime] = None) -> TimeEntry:
        """
        Stop a timer and turn it into a draft TimeEntry.

        Hours come from the server-confirmed timer state fetched right before
        the conversion; invalid conversions are rejected before anything is sent.
        """
        async with self._serialized(timer_id):
            try:
                timer = await self._authoritative_timer(user_id, timer_id)
            except TimerNotFound:
                self.store.remove(timer_id)
                raise

            draft = await self.converter.convert(
                timer, now=self.clock(), description=description, billable=billable,
                rate=rate, case=case, worked_at=worked_at,
            )
            logger.info(f"Converting timer {timer_id} for user {user_id}")
            try:
                entry = await self.api.convert_timer(user_id, timer_id, draft)
            except TimerNotFound:
                self.store.remove(timer_id)
                raise
            except TimekeeperError:
                await self._resync(user_id, timer_id)
                raise
            self.store.remove(timer_id)
            return entry

    async def discard_timer(self, user_id: int, timer_id: int) -> None:
        """Delete a timer without producing an entry. Already gone counts as done."""
        async with self._serialized(timer_id):
            logger.info(f"Discarding timer {timer_id} for user {user_id}")
            try:
                await self.api.discard_timer(user_id, timer_id)
            except TimerNotFound:
                logger.info(f"Timer {timer_id} was already gone")
            except TimekeeperError as e:
                if e.recoverable:
                    await self._resync(user_id, timer_id)
                raise
            self.store.remove(timer_id)

    async def stop_all_timers(self, user_id: int) -> StopAllResult:
        """
        Discard every active timer of a user, one by one.

        Not atomic: failures are collected, the rest still proceeds, and the
        store is reconciled with the server afterwards.
        """
        result = StopAllResult()
        for timer in await self.refresh(user_id):
            try:
                await self.discard_timer(user_id, timer.id)
                result.discarded.append(timer.id)
            except TimekeeperError as e:
                logger.warning(f"Stop-all: timer {timer.id} could not be discarded: {e}")
                result.failed.append(timer.id)
        await self._resync(user_id)
        return result

    async def update_description(self, user_id: int, timer_id: int, description: str) -> Timer:
        async with self._serialized(timer_id):
            try:
                timer = await self.api.update_description(user_id, timer_id, description)
            except TimerNotFound:
                self.store.remove(timer_id)
                raise
            self.store.apply(timer)
            return timer

    async def close(self) -> None:
        await self.store.close()
