"""
Timeline Clock - the single source of truth for "now"

================================================================================
POSITION FROM TIME OF DAY
================================================================================
Every listener, wherever and whenever it tunes in, must hear the same moment
of the route. The cycle position is therefore derived from the wall clock,
not from when this process started:

    position = seconds_since_midnight mod total_duration

A 4 hour route loops six times a day, and two viewers started an hour apart
land on the same position.

================================================================================
LOCAL ADVANCE + DRIFT GUARD
================================================================================
Between derivations the position advances on the monotonic clock:

    position(t) = (start_position + (t - reference)) mod total_duration

Event-loop stalls, suspended laptops or wall-clock steps make the local
position wander from the time-of-day mapping. A drift guard re-derives the
expected position every SYNC_INTERVAL seconds and resyncs when the
shortest-arc distance exceeds DRIFT_THRESHOLD:

    d     = |expected - local| mod total
    drift = min(d, total - d)

The shortest arc matters near the loop point: 0.1 s and total - 0.1 s are
0.2 s apart, not a whole cycle.

================================================================================
STATE MACHINE
================================================================================
    STOPPED ──start()──▶ RUNNING ──stop()──▶ STOPPED (position frozen)
"""

from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, List, Optional
import asyncio
import logging
import math
import time

from ..interfaces.events import PositionUpdate

logger = logging.getLogger(__name__)


class ClockState(Enum):
    """State of the timeline clock."""
    STOPPED = "stopped"
    RUNNING = "running"


def seconds_since_midnight(utc: bool = False) -> float:
    """Wall-clock seconds elapsed since midnight (local time unless ``utc``)."""
    now = datetime.now(timezone.utc) if utc else datetime.now()
    return (now.hour * 3600 + now.minute * 60 + now.second +
            now.microsecond / 1_000_000)


def circular_distance(a: float, b: float, period: float) -> float:
    """Shortest distance between two positions on a loop of length ``period``."""
    d = math.fmod(abs(a - b), period)
    return min(d, period - d)


def _wrap(position: float, period: float) -> float:
    wrapped = math.fmod(position, period)
    if wrapped < 0:
        wrapped += period
    return 0.0 if wrapped >= period else wrapped


class TimelineClock:
    """
    Derives and broadcasts the cycle position.

    Time sources are injected so the clock can be driven by synthetic time in
    tests; by default they are the local time of day and ``time.monotonic``.
    """

    def __init__(
        self,
        total_duration: float,
        broadcast_hz: float = 60.0,
        sync_interval: float = 5.0,
        drift_threshold: float = 2.0,
        time_of_day: Optional[Callable[[], float]] = None,
        monotonic: Optional[Callable[[], float]] = None,
        utc: bool = False,
    ):
        """
        Initialize the clock.

        Args:
            total_duration: Cycle length in seconds (loop point)
            broadcast_hz: PositionUpdate rate while running
            sync_interval: Seconds between drift checks
            drift_threshold: Resync when drift exceeds this many seconds
            time_of_day: Returns seconds since midnight
            monotonic: Returns a monotonic instant in seconds
            utc: Use UTC rather than local time of day (default source only)
        """
        if total_duration <= 0:
            raise ValueError(f"total_duration must be positive, got {total_duration}")

        self.total_duration = total_duration
        self.broadcast_interval = 1.0 / broadcast_hz
        self.sync_interval = sync_interval
        self.drift_threshold = drift_threshold
        self._time_of_day = time_of_day or (lambda: seconds_since_midnight(utc))
        self._monotonic = monotonic or time.monotonic

        self.state = ClockState.STOPPED
        self.start_position = 0.0
        self.reference: Optional[float] = None
        self._frozen_position = 0.0

        self.resync_count = 0
        self.drift_history: Deque[float] = deque(maxlen=60)
        self.last_drift = 0.0

        self._listeners: List[Callable[[PositionUpdate], None]] = []
        self._broadcast_task: Optional[asyncio.Task] = None
        self._drift_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------ derivation
    def position_from_time_of_day(self) -> float:
        """Where the broadcast should be right now, from the wall clock."""
        return _wrap(self._time_of_day(), self.total_duration)

    @property
    def is_running(self) -> bool:
        return self.state == ClockState.RUNNING

    def get_current_position(self) -> float:
        """Locally advanced position; frozen while stopped."""
        if not self.is_running:
            return self._frozen_position
        elapsed = self._monotonic() - self.reference
        return _wrap(self.start_position + elapsed, self.total_duration)

    def get_current_progress(self) -> float:
        return self.get_current_position() / self.total_duration

    # ------------------------------------------------------------- lifecycle
    def start(self) -> None:
        """
        Derive the entry point and begin broadcasting.

        Must be called from a running asyncio loop; the broadcast and the
        drift guard run as tasks on it.
        """
        if self.is_running:
            return

        loop = asyncio.get_running_loop()

        self.start_position = self.position_from_time_of_day()
        self.reference = self._monotonic()
        self.state = ClockState.RUNNING
        logger.info(f"Timeline started at position {self.start_position:.2f}s")

        self.emit_update()

        self._broadcast_task = loop.create_task(self._broadcast_loop(), name="ClockBroadcast")
        self._drift_task = loop.create_task(self._drift_loop(), name="ClockDriftGuard")

    def stop(self) -> None:
        """Cancel the broadcast; the position freezes at its last value."""
        if not self.is_running:
            return

        self._frozen_position = self.get_current_position()
        self.state = ClockState.STOPPED

        for task in (self._broadcast_task, self._drift_task):
            if task and not task.done():
                task.cancel()
        self._broadcast_task = None
        self._drift_task = None

        logger.info(f"Timeline stopped at position {self._frozen_position:.2f}s")

    def resync(self) -> None:
        """Re-derive the position from the time of day and reset the reference."""
        self.start_position = self.position_from_time_of_day()
        self.reference = self._monotonic()
        self.resync_count += 1
        if not self.is_running:
            self._frozen_position = self.start_position

        logger.info(f"Timeline resynced to position {self.start_position:.2f}s")
        self.emit_update()

    def seek(self, position: float) -> None:
        """Force an arbitrary position (debug only; bypasses time of day)."""
        self.start_position = _wrap(position, self.total_duration)
        self.reference = self._monotonic()
        if not self.is_running:
            self._frozen_position = self.start_position

        logger.info(f"Timeline seeked to position {self.start_position:.2f}s")
        self.emit_update()

    # ----------------------------------------------------------- drift guard
    def measure_drift(self) -> float:
        """Shortest-arc distance between local and time-of-day position."""
        return circular_distance(
            self.position_from_time_of_day(),
            self.get_current_position(),
            self.total_duration,
        )

    def check_drift(self) -> bool:
        """
        Compare local position with the wall clock and resync if needed.

        Returns:
            True if a resync was performed
        """
        if not self.is_running:
            return False

        drift = self.measure_drift()
        self.last_drift = drift
        self.drift_history.append(drift)

        if drift > self.drift_threshold:
            logger.info(f"Timeline drift {drift:.2f}s exceeds "
                        f"{self.drift_threshold:.1f}s - resyncing")
            self.resync()
            return True

        logger.debug(f"Timeline drift {drift:.3f}s")
        return False

    # ------------------------------------------------------------ broadcast
    def subscribe(self, callback: Callable[[PositionUpdate], None]) -> Callable[[], None]:
        """
        Register a listener for position updates.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def emit_update(self) -> PositionUpdate:
        """Build one PositionUpdate and deliver it to every listener."""
        position = self.get_current_position()
        update = PositionUpdate(
            position=position,
            progress=position / self.total_duration,
            total_duration=self.total_duration,
            emitted_at=self._monotonic(),
        )
        for callback in list(self._listeners):
            try:
                callback(update)
            except Exception as e:
                logger.exception(f"Error in timeline listener: {e}")
        return update

    async def _broadcast_loop(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.broadcast_interval)
            if not self.is_running:
                break
            self.emit_update()

    async def _drift_loop(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.sync_interval)
            if not self.is_running:
                break
            try:
                self.check_drift()
            except Exception as e:
                logger.exception(f"Drift check error: {e}")

    # ----------------------------------------------------------- diagnostics
    def get_diagnostics(self) -> dict:
        return {
            'state': self.state.value,
            'current_position': self.get_current_position(),
            'current_progress': self.get_current_progress(),
            'total_duration': self.total_duration,
            'start_position': self.start_position,
            'time_of_day_position': self.position_from_time_of_day(),
            'drift': self.measure_drift(),
            'last_drift': self.last_drift,
            'resync_count': self.resync_count,
        }
