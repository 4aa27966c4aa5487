"""
Timer State Store - client-side cache of a user's active timers.

Architecture Decision: Explicit store instead of a shared observable
Every change goes through one of three paths:
- apply()/add()/remove(): a single server-confirmed result
- reconcile(): the authoritative snapshot, replacing everything the store has
  not heard about since the snapshot was requested
- begin_pause()/begin_resume() + rollback(): optimistic local edits

Listeners are notified on every change and on every clock tick, much like Qt
signals. The clock is an asyncio task owned by the store: it starts when the
first running timer appears, stops when none remain, and close() tears it down.
"""

import asyncio
import contextlib
import datetime
import logging
from typing import Callable, Dict, List, Optional, Set

from timekeeper.domain.duration import elapsed_seconds, format_duration, utc_now
from timekeeper.domain.models import Timer, TimerView

logger = logging.getLogger(__name__)

Listener = Callable[[List[TimerView]], None]


class TimerStateStore:

    def __init__(self, clock: Callable[[], datetime.datetime] = utc_now,
                 tick_interval: float = 1.0):
        self.clock = clock
        self.tick_interval = tick_interval

        # Newest first, like the timer list in the UI
        self._timers: Dict[int, Timer] = {}
        # Pre-edit copies for timers with an optimistic change in flight
        self._rollback: Dict[int, Timer] = {}
        self._stale: Set[int] = set()
        # Bumped on every per-timer change; ids map to the generation that last touched them.
        # Removed ids stay in _touched so an older snapshot cannot bring them back.
        self._generation = 0
        self._touched: Dict[int, int] = {}

        self._listeners: List[Listener] = []
        self._tick_task: Optional[asyncio.Task] = None
        self._closed = False

    # Queries

    def snapshot(self) -> List[Timer]:
        return list(self._timers.values())

    def get(self, timer_id: int) -> Optional[Timer]:
        return self._timers.get(timer_id)

    def __contains__(self, timer_id: int) -> bool:
        return timer_id in self._timers

    def __len__(self) -> int:
        return len(self._timers)

    def has_running(self) -> bool:
        return any(t.is_active for t in self._timers.values())

    def is_stale(self, timer_id: int) -> bool:
        return timer_id in self._stale

    def is_pending(self, timer_id: int) -> bool:
        return timer_id in self._rollback

    @property
    def generation(self) -> int:
        """Capture before requesting a snapshot; pass it to reconcile(since=...)"""
        return self._generation

    def running_for_case(self, user_id: int, case_id: int) -> Optional[Timer]:
        for timer in self._timers.values():
            if timer.user_id == user_id and timer.case_id == case_id and timer.is_active:
                return timer
        return None

    def views(self, now: Optional[datetime.datetime] = None) -> List[TimerView]:
        now = now or self.clock()
        result = []
        for timer in self._timers.values():
            seconds = elapsed_seconds(timer, now)
            result.append(TimerView(
                timer=timer,
                elapsed_seconds=seconds,
                formatted=format_duration(seconds),
                stale=timer.id in self._stale,
            ))
        return result

    # Authoritative updates

    def add(self, timer: Timer) -> None:
        """Register a server-confirmed timer (new timers go to the front)"""
        if timer.id is None:
            raise ValueError("Only server-confirmed timers (with an id) can be stored")
        self._clear_pending(timer.id)
        self._touch(timer.id)
        others = {k: v for k, v in self._timers.items() if k != timer.id}
        self._timers = {timer.id: timer, **others}
        self._changed()

    def apply(self, timer: Timer) -> None:
        """Replace one timer with the server's version of it"""
        if timer.id is None:
            raise ValueError("Only server-confirmed timers (with an id) can be stored")
        if timer.id not in self._timers:
            self.add(timer)
            return
        self._clear_pending(timer.id)
        self._touch(timer.id)
        self._timers[timer.id] = timer
        self._changed()

    def remove(self, timer_id: int) -> Optional[Timer]:
        self._clear_pending(timer_id)
        self._touch(timer_id)
        removed = self._timers.pop(timer_id, None)
        if removed is not None:
            self._changed()
        return removed

    def reconcile(self, timers: List[Timer], since: Optional[int] = None) -> None:
        """
        Adopt the server's full active-timer set.

        Local-only timers disappear, optimistic edits are discarded and stale
        flags are cleared.

        Args:
            timers: The server's snapshot
            since: Store generation captured before the snapshot was requested.
                Timers changed or removed after that point keep their local
                state, since the snapshot may predate those results. None
                trusts the snapshot for every timer.
        """
        fresh = {t.id: t for t in timers if t.id is not None}
        newer = set()
        if since is not None:
            newer = {tid for tid, gen in self._touched.items() if gen > since}

        # Timers started after the snapshot was requested go first
        merged = {tid: t for tid, t in self._timers.items() if tid in newer and tid not in fresh}
        for tid, timer in fresh.items():
            if tid not in newer:
                merged[tid] = timer
            elif tid in self._timers:
                merged[tid] = self._timers[tid]
            # else: removed locally after the snapshot was requested

        if newer:
            logger.debug(f"Reconcile kept local state for timers changed since the "
                         f"snapshot was requested: {sorted(newer)}")
        dropped = set(self._timers) - set(merged)
        if dropped:
            logger.info(f"Reconcile dropped timers no longer on the server: {sorted(dropped)}")
        pending = set(self._rollback) - newer
        if pending:
            logger.debug(f"Reconcile discarded optimistic edits for timers {sorted(pending)}")

        self._timers = merged
        self._rollback = {tid: t for tid, t in self._rollback.items() if tid in newer}
        self._stale &= newer
        if since is None:
            self._touched.clear()
        self._changed()

    # Optimistic updates

    def begin_pause(self, timer_id: int, now: Optional[datetime.datetime] = None) -> bool:
        """Show a timer as paused before the server confirms. Returns False if not applicable."""
        timer = self._timers.get(timer_id)
        if timer is None or not timer.is_active:
            return False
        now = now or self.clock()
        self._rollback.setdefault(timer_id, timer)
        self._touch(timer_id)
        self._timers[timer_id] = timer.model_copy(update={
            "is_active": False,
            "start_time": None,
            "accumulated_seconds": elapsed_seconds(timer, now),
        })
        self._changed()
        return True

    def begin_resume(self, timer_id: int, now: Optional[datetime.datetime] = None) -> bool:
        """Show a timer as running before the server confirms. Returns False if not applicable."""
        timer = self._timers.get(timer_id)
        if timer is None or timer.is_active:
            return False
        now = now or self.clock()
        self._rollback.setdefault(timer_id, timer)
        self._touch(timer_id)
        self._timers[timer_id] = timer.model_copy(update={"is_active": True, "start_time": now})
        self._changed()
        return True

    def rollback(self, timer_id: int) -> bool:
        """Undo an optimistic edit. Returns True if something was restored."""
        original = self._rollback.pop(timer_id, None)
        if original is None or timer_id not in self._timers:
            return False
        self._touch(timer_id)
        self._timers[timer_id] = original
        self._changed()
        return True

    def mark_stale(self, timer_id: Optional[int] = None) -> None:
        """Flag one timer (or all) as possibly out of date with the server"""
        if timer_id is None:
            self._stale.update(self._timers)
        elif timer_id in self._timers:
            self._stale.add(timer_id)
        self._changed()

    def _clear_pending(self, timer_id: int) -> None:
        self._rollback.pop(timer_id, None)
        self._stale.discard(timer_id)

    def _touch(self, timer_id: int) -> None:
        self._generation += 1
        self._touched[timer_id] = self._generation

    # Listeners and clock

    def connect(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def disconnect(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def tick(self, now: Optional[datetime.datetime] = None) -> List[TimerView]:
        """Recompute display values for every timer and notify listeners"""
        views = self.views(now)
        for listener in list(self._listeners):
            try:
                listener(views)
            except Exception:
                logger.exception("Timer listener failed")
        return views

    @property
    def is_ticking(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def _changed(self) -> None:
        self.tick()
        self._sync_clock()

    def _sync_clock(self) -> None:
        if self._closed:
            return
        if self.has_running():
            if self.is_ticking:
                return
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No event loop (synchronous use); ticks are driven manually
                return
            self._tick_task = loop.create_task(self._run_clock())
            logger.debug("Timer clock started")
        elif self.is_ticking:
            self._tick_task.cancel()
            self._tick_task = None
            logger.debug("Timer clock stopped: no running timers")

    async def _run_clock(self) -> None:
        while self.has_running():
            await asyncio.sleep(self.tick_interval)
            self.tick()
        if self._tick_task is asyncio.current_task():
            self._tick_task = None
            logger.debug("Timer clock stopped: no running timers")

    async def close(self) -> None:
        """Stop the clock and drop listeners; the store stops ticking for good."""
        self._closed = True
        task, self._tick_task = self._tick_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._listeners.clear()
