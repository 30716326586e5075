"""
Radio Coordinator - wires the timeline to its consumers

Architecture:
    ┌─────────────────┐  PositionUpdate (60 Hz)
    │  TimelineClock  │──────────────────────┐
    └─────────────────┘                      ▼
                                   ┌───────────────────┐
                                   │ RadioCoordinator  │── ContextUpdate ──────────▶ renderers
                                   │   derive_tick()   │── SegmentBoundaryCrossed ─▶ renderers
                                   └─────────┬─────────┘
                         ┌───────────────────┼────────────────────┐
                         ▼                   ▼                    ▼
                  ┌─────────────┐    ┌───────────────┐   ┌──────────────────┐
                  │ RouteMapper │    │AudioSyncEngine│   │MediaPoolSelector │── MediaChange ─▶
                  └─────────────┘    └───────────────┘   └──────────────────┘

Every clock tick is turned into a batch of events by derive_tick(), which
depends only on the previous segment id and the position; the batch is then
applied (segment bookkeeping, media pool switch) and published once.

Session:
    IDLE ──begin_session()──▶ READY ──start()──▶ RUNNING ⇄ PAUSED
                                                    │
                                                  stop()──▶ STOPPED

begin_session() stands for the user gesture that unlocks audio output; every
other command before it raises SessionNotStarted and changes nothing.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging
import random
import signal
import time

from .audio_sync import AudioSyncEngine, DecoderFactory
from .decoders import make_decoder_factory
from ..interfaces.errors import DebugCommandDisabled, SessionNotStarted
from ..interfaces.events import (
    ContextUpdate, EventBus, MediaItem, PositionUpdate, SegmentBoundaryCrossed,
)
from ..media.selector import MediaPoolSelector
from ..route.config import RouteConfiguration
from ..route.mapper import Context, RouteMapper
from ..timing.clock import TimelineClock

logger = logging.getLogger('route-radio.engine')


RADIO_DEFAULTS: Dict[str, Any] = {
    'broadcast_hz': 60.0,
    'clock_sync_interval': 5.0,
    'clock_drift_threshold': 2.0,
    'audio_sync_interval': 5.0,
    'audio_drift_threshold': 0.5,
    'image_duration': 10.0,
    'prefetch_capacity': 3,
    'utc': False,
    'audio_backend': 'silent',
    'debug': False,
}


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class SessionState(Enum):
    IDLE = "IDLE"          # Waiting for the user gesture
    READY = "READY"        # Session begun, not yet playing
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"


class RadioCoordinator:
    """
    Owns the clock, mapper, audio engine and media selector of one radio.

    Args:
        route: Validated route configuration
        settings: ``[radio]`` table; missing keys fall back to RADIO_DEFAULTS
        decoder_factory: Overrides the backend named in settings
        debug: Enables seek(); defaults to settings['debug']
        time_of_day, monotonic: Injected time sources (tests)
        rng: Random source for the media selector
        prefetcher: Called for every speculative media candidate
    """

    def __init__(
        self,
        route: RouteConfiguration,
        settings: Optional[Dict[str, Any]] = None,
        decoder_factory: Optional[DecoderFactory] = None,
        debug: Optional[bool] = None,
        time_of_day: Optional[Callable[[], float]] = None,
        monotonic: Optional[Callable[[], float]] = None,
        rng: Optional[random.Random] = None,
        prefetcher: Optional[Callable[[MediaItem], None]] = None,
    ):
        self.settings = dict(RADIO_DEFAULTS)
        self.settings.update(settings or {})
        self.debug = self.settings['debug'] if debug is None else debug

        self.mapper = RouteMapper(route)
        self.clock = TimelineClock(
            self.mapper.total_duration,
            broadcast_hz=self.settings['broadcast_hz'],
            sync_interval=self.settings['clock_sync_interval'],
            drift_threshold=self.settings['clock_drift_threshold'],
            time_of_day=time_of_day,
            monotonic=monotonic,
            utc=self.settings['utc'],
        )
        if decoder_factory is None:
            decoder_factory = make_decoder_factory(self.settings['audio_backend'], monotonic)
        self.audio = AudioSyncEngine(
            self.mapper,
            decoder_factory,
            position_source=self.clock.get_current_position,
            sync_interval=self.settings['audio_sync_interval'],
            drift_threshold=self.settings['audio_drift_threshold'],
        )
        self.media = MediaPoolSelector(
            self.mapper.segments,
            rng=rng,
            prefetch_capacity=self.settings['prefetch_capacity'],
            image_duration=self.settings['image_duration'],
            prefetcher=prefetcher,
        )

        self.bus = EventBus()
        self.media.subscribe(self.bus.publish)
        self.clock.subscribe(self._on_position)

        self.state = SessionState.IDLE
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.last_segment_id: Optional[str] = None
        self.last_context: Optional[ContextUpdate] = None

        self.stats = {
            'start_time': None,
            'ticks': 0,
            'boundaries': 0,
        }

    # ------------------------------------------------------------ session
    @property
    def session_started(self) -> bool:
        return self.state != SessionState.IDLE

    def _require_session(self, command: str) -> None:
        if not self.session_started:
            raise SessionNotStarted(f"{command}() called before begin_session()")

    def begin_session(self) -> None:
        """Record the user gesture that allows audio output."""
        if self.session_started:
            return
        self.state = SessionState.READY
        logger.info("Session begun")

    async def start(self) -> None:
        """Derive the position from the time of day and start every consumer."""
        self._require_session('start')
        if self.state == SessionState.RUNNING:
            logger.warning("Radio already running")
            return

        logger.info("Starting route radio...")
        self.loop = asyncio.get_running_loop()
        self.stats['start_time'] = time.time()

        position = self.clock.position_from_time_of_day()
        context = self.mapper.context_at(position)
        self.last_segment_id = context.segment.id
        self.media.start(context.segment.id)

        self.state = SessionState.RUNNING
        self.clock.start()
        await self.audio.start_at(self.clock.get_current_position())
        self.audio.start_sync_loop()

        logger.info("Route radio started")
        logger.info(f"  Segment: {context.segment.name} ({context.segment.id})")
        logger.info(f"  Position: {position:.1f}s of {self.mapper.total_duration:.1f}s")

    async def stop(self) -> None:
        """Stop the clock, halt audio and release every resource."""
        self._require_session('stop')
        if self.state == SessionState.STOPPED:
            return

        logger.info("Stopping route radio...")
        self.clock.stop()
        self.audio.close()
        self.media.close()
        self.state = SessionState.STOPPED

        uptime = time.time() - (self.stats['start_time'] or time.time())
        logger.info("Route radio stopped")
        logger.info(f"  Uptime: {uptime:.1f}s")
        logger.info(f"  Ticks: {self.stats['ticks']}")
        logger.info(f"  Segment boundaries: {self.stats['boundaries']}")
        logger.info(f"  Clock resyncs: {self.clock.resync_count}")

    def pause(self) -> None:
        self._require_session('pause')
        if self.state != SessionState.RUNNING:
            return
        self.clock.stop()
        self.audio.pause()
        self.media.pause()
        self.state = SessionState.PAUSED
        logger.info("Route radio paused")

    async def resume(self) -> None:
        """Resume after pause; the timeline re-derives from the time of day."""
        self._require_session('resume')
        if self.state != SessionState.PAUSED:
            return
        self.state = SessionState.RUNNING
        self.clock.start()
        self.media.resume()
        await self.audio.resume()
        logger.info("Route radio resumed")

    def set_volume(self, level: float) -> None:
        self._require_session('set_volume')
        self.audio.set_volume(level)

    async def seek(self, position: float) -> None:
        """Jump to an arbitrary cycle position (debug builds only)."""
        if not self.debug:
            raise DebugCommandDisabled("seek() requires debug mode")
        self._require_session('seek')

        position = self.mapper.normalize(position)
        logger.info(f"Debug seek to {position:.1f}s")
        self.clock.seek(position)
        if self.state == SessionState.RUNNING:
            await self.audio.start_at(position)

    # --------------------------------------------------------------- ticks
    def derive_tick(self, update: PositionUpdate,
                    last_segment_id: Optional[str] = None) -> List[Any]:
        """
        Events produced by one clock update.

        Pure: depends only on ``update.position`` and ``last_segment_id``.

        Returns:
            [ContextUpdate] or [SegmentBoundaryCrossed, ContextUpdate]
        """
        context = self.mapper.context_at(self.mapper.normalize(update.position))
        events: List[Any] = []
        if last_segment_id is not None and context.segment.id != last_segment_id:
            events.append(SegmentBoundaryCrossed(
                previous_segment_id=last_segment_id,
                new_segment_id=context.segment.id,
            ))
        events.append(context.to_event())
        return events

    def _on_position(self, update: PositionUpdate) -> None:
        if self.state != SessionState.RUNNING:
            return

        events = self.derive_tick(update, self.last_segment_id)
        self.stats['ticks'] += 1

        for event in events:
            if isinstance(event, SegmentBoundaryCrossed):
                self.last_segment_id = event.new_segment_id
                self.stats['boundaries'] += 1
                logger.info(f"Segment boundary: {event.previous_segment_id} -> "
                            f"{event.new_segment_id}")
                self.media.on_segment_boundary(event.new_segment_id)
            elif isinstance(event, ContextUpdate):
                self.last_context = event

        self.bus.publish(update)
        for event in events:
            self.bus.publish(event)

    # ------------------------------------------------------------- queries
    def subscribe(self, event_type, callback: Callable[[Any], None]) -> Callable[[], None]:
        """
        Subscribe to PositionUpdate, ContextUpdate, SegmentBoundaryCrossed
        or MediaChange.
        """
        return self.bus.subscribe(event_type, callback)

    def context_now(self) -> Context:
        return self.mapper.context_at(self.clock.get_current_position())

    def get_state(self) -> Dict[str, Any]:
        context = self.context_now()
        uptime = (time.time() - self.stats['start_time']) if self.stats['start_time'] else 0.0
        return {
            'state': self.state.value,
            'debug': self.debug,
            'uptime_seconds': uptime,
            'position': context.position,
            'progress': context.overall_progress,
            'total_duration': self.mapper.total_duration,
            'total_distance_km': self.mapper.total_distance,
            'segment': {
                'id': context.segment.id,
                'name': context.segment.name,
                'index': context.segment.index,
                'progress': context.progress_in_segment,
            },
            'resource': {
                'url': context.resource.url,
                'index': context.resource.index,
                'offset': context.offset_in_file,
            },
            'coordinate': {'lat': context.coordinate[0], 'lon': context.coordinate[1]},
            'upcoming': self.mapper.describe_upcoming(context),
            'clock': self.clock.get_diagnostics(),
            'audio': self.audio.get_state(),
            'media': self.media.get_state(),
            'ticks': self.stats['ticks'],
            'boundaries': self.stats['boundaries'],
        }

    def snapshot(self, timeout: float = 2.0) -> Dict[str, Any]:
        """
        get_state() for callers on other threads (the status server).

        The state is assembled on the radio's event loop so no pool, cache
        or stats dict is read while the loop is changing it.
        """
        loop = self.loop
        if loop is None or not loop.is_running() or _running_loop() is loop:
            return self.get_state()
        future = asyncio.run_coroutine_threadsafe(self._state_on_loop(), loop)
        return future.result(timeout)

    async def _state_on_loop(self) -> Dict[str, Any]:
        return self.get_state()

    # ---------------------------------------------------------------- daemon
    def run(self, seek_to: Optional[float] = None) -> None:
        """
        Run the radio until SIGINT/SIGTERM (blocking).

        Args:
            seek_to: Debug start position instead of the time of day
        """
        asyncio.run(self._run_until_signalled(seek_to))

    async def _run_until_signalled(self, seek_to: Optional[float] = None) -> None:
        loop = asyncio.get_running_loop()
        stop_requested = asyncio.Event()

        def handle_signal(signum):
            logger.info(f"Received signal {signum}")
            stop_requested.set()

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, handle_signal, signum)

        self.begin_session()
        await self.start()
        if seek_to is not None:
            await self.seek(seek_to)
        try:
            await stop_requested.wait()
        finally:
            await self.stop()
