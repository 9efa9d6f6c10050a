"""
Automation — Countdown Sub-Machine

Single-flight, cancellable countdown used for ``validated`` policies:
the operation runs when the countdown reaches zero unless someone
cancels first.

The countdown owns its own one-second tick, scheduled through an
injected Clock:
  - ThreadingClock: threading.Timer, for real use
  - VirtualClock:   advanced by hand, for tests

Listeners subscribe to ``tick`` (every decrement), ``elapsed`` (reached
zero; the pending policy key is passed along) and ``cancelled``.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Protocol

from automation.types import PolicyKey

logger = logging.getLogger("automation.countdown")

DEFAULT_COUNTDOWN_SECONDS = 3
TICK_SECONDS = 1.0


# ═══════════════════════════════════════════════════════════════════
# Clocks
# ═══════════════════════════════════════════════════════════════════

class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Clock(Protocol):
    def call_later(self, delay: float, fn: Callable[[], None]) -> TimerHandle:
        ...


class ThreadingClock:
    """Schedules callbacks on daemon threading.Timer threads."""

    def call_later(self, delay: float, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.start()
        return timer


class _VirtualHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualClock:
    """
    Deterministic clock: nothing fires until ``advance`` is called.

    Callbacks scheduled while advancing still fire within the same call
    if they fall due before the new time.
    """

    def __init__(self, start: float = 0.0):
        self.now = start
        self._queue: list[tuple[float, int, Callable[[], None], _VirtualHandle]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, fn: Callable[[], None]) -> _VirtualHandle:
        handle = _VirtualHandle()
        heapq.heappush(self._queue, (self.now + delay, next(self._seq), fn, handle))
        return handle

    def advance(self, seconds: float):
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, fn, handle = heapq.heappop(self._queue)
            self.now = due
            if not handle.cancelled:
                fn()
        self.now = target

    @property
    def pending(self) -> int:
        return sum(1 for *_, h in self._queue if not h.cancelled)


# ═══════════════════════════════════════════════════════════════════
# Countdown
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CountdownState:
    active: bool = False
    seconds_remaining: int = DEFAULT_COUNTDOWN_SECONDS
    pending_policy_key: PolicyKey | None = None


TickListener = Callable[[CountdownState], None]
ElapsedListener = Callable[[PolicyKey], None]
CancelledListener = Callable[[CountdownState], None]


class Countdown:
    """
    One countdown at a time. Starting a new one cancels the old one.

    States: inactive → active(n) → active(n-1) … → inactive (elapsed)
            active(any) → inactive (cancelled)
    """

    def __init__(self, clock: Clock | None = None, seconds: int = DEFAULT_COUNTDOWN_SECONDS):
        self._clock = clock or ThreadingClock()
        self._seconds = seconds
        self._state = CountdownState(seconds_remaining=seconds)
        self._handle: TimerHandle | None = None
        # Bumped on every start/cancel so a timer that already fired can tell it is stale
        self._generation = 0
        self._lock = threading.RLock()
        self._tick_listeners: list[TickListener] = []
        self._elapsed_listeners: list[ElapsedListener] = []
        self._cancelled_listeners: list[CancelledListener] = []

    @property
    def state(self) -> CountdownState:
        with self._lock:
            return self._state

    @property
    def seconds(self) -> int:
        return self._seconds

    @property
    def clock(self) -> Clock:
        return self._clock

    def subscribe_tick(self, fn: TickListener) -> Callable[[], None]:
        """Register a tick listener; returns an unsubscribe function."""
        self._tick_listeners.append(fn)
        return lambda: self._tick_listeners.remove(fn) if fn in self._tick_listeners else None

    def subscribe_elapsed(self, fn: ElapsedListener) -> Callable[[], None]:
        """Register an elapsed listener; returns an unsubscribe function."""
        self._elapsed_listeners.append(fn)
        return lambda: self._elapsed_listeners.remove(fn) if fn in self._elapsed_listeners else None

    def subscribe_cancelled(self, fn: CancelledListener) -> Callable[[], None]:
        """Register a listener for cancellation of an active countdown."""
        self._cancelled_listeners.append(fn)
        return lambda: self._cancelled_listeners.remove(fn) if fn in self._cancelled_listeners else None

    def start(self, key: PolicyKey) -> CountdownState:
        with self._lock:
            if self._state.active:
                logger.info(
                    "Countdown for %s replaced by %s", self._state.pending_policy_key, key,
                )
            self._cancel_timer()
            self._generation += 1
            self._state = CountdownState(
                active=True,
                seconds_remaining=self._seconds,
                pending_policy_key=key,
            )
            self._schedule(self._generation)
            logger.debug("Countdown started for %s (%ds)", key, self._seconds)
            return self._state

    def cancel(self) -> CountdownState:
        """Stop any active countdown. Safe to call when nothing is running."""
        with self._lock:
            was = self._state
            self._cancel_timer()
            self._generation += 1
            self._state = CountdownState(seconds_remaining=self._seconds)
        if was.active:
            logger.info("Countdown for %s cancelled at %ds", was.pending_policy_key, was.seconds_remaining)
            for fn in list(self._cancelled_listeners):
                fn(was)
        return self._state

    def decrement(self) -> CountdownState:
        """
        Take one second off an active countdown.

        At zero the countdown goes inactive and elapsed listeners fire
        with the pending key.
        """
        with self._lock:
            if not self._state.active:
                return self._state
            remaining = self._state.seconds_remaining - 1
            key = self._state.pending_policy_key
            if remaining > 0:
                self._state = CountdownState(
                    active=True, seconds_remaining=remaining, pending_policy_key=key,
                )
                elapsed = False
            else:
                self._cancel_timer()
                self._generation += 1
                self._state = CountdownState(seconds_remaining=0)
                elapsed = True
            state = self._state

        for fn in list(self._tick_listeners):
            fn(state)
        if elapsed:
            logger.debug("Countdown elapsed for %s", key)
            for fn in list(self._elapsed_listeners):
                fn(key)
        return state

    # ── Scheduling ────────────────────────────────────────────

    def _schedule(self, generation: int):
        self._handle = self._clock.call_later(TICK_SECONDS, lambda: self._on_tick(generation))

    def _on_tick(self, generation: int):
        with self._lock:
            if generation != self._generation or not self._state.active:
                return
        state = self.decrement()
        with self._lock:
            if state.active and generation == self._generation:
                self._schedule(generation)

    def _cancel_timer(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
