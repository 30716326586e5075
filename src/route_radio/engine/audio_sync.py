"""
Audio Synchronization Engine

================================================================================
TWO SLOTS
================================================================================
Playback uses a "current" slot and a "next" slot. Whenever a resource starts,
the resource that follows it (RouteMapper.next_resource) is preloaded into the
next slot. On natural end the next slot is promoted and played from 0 with no
audible gap; if the preload is missing, failed, or is not the expected
resource, the engine falls back to a cold reload at the clock's position.

================================================================================
TWO-TIER SYNC
================================================================================
Every SYNC_INTERVAL seconds the playing slot is compared with the timeline:

    expected resource != playing resource      → RELOAD (full start_at)
    |offset_in_file - decoder.elapsed| > 0.5 s → SEEK within the file
    otherwise                                  → NONE

A seek is cheap and nearly inaudible; a reload restarts buffering, so it is
reserved for identity mismatches.

================================================================================
FAILURES AND RE-ENTRANCY
================================================================================
Load and decode failures are logged and never raised out of playback, whether
they surface in load() or in play(); the failed decoder is released and the
engine stays active so the next sync tick cold-reloads. A sync that fires
while a reload is in flight does nothing, and a newer start_at supersedes an
older one still waiting on its load.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Set
import asyncio
import logging

from .decoders import AudioDecoder
from ..route.mapper import ProcessedResource, RouteMapper

logger = logging.getLogger(__name__)

DecoderFactory = Callable[[ProcessedResource], AudioDecoder]


class SlotState(Enum):
    IDLE = "idle"           # Empty, or loaded and waiting to play
    LOADING = "loading"
    PLAYING = "playing"
    ENDED = "ended"


class SyncAction(Enum):
    """Correction applied by a sync check."""
    NONE = "none"
    SEEK = "seek"
    RELOAD = "reload"


@dataclass
class AudioSlot:
    resource: ProcessedResource
    decoder: AudioDecoder
    state: SlotState = SlotState.LOADING

    def to_dict(self) -> dict:
        return {
            'url': self.resource.url,
            'segment_index': self.resource.segment_index,
            'resource_index': self.resource.index,
            'state': self.state.value,
        }


class AudioSyncEngine:
    """
    Keeps one audio decoder playing the resource the timeline expects.

    Decoders are created by an injected factory so the engine can drive
    pygame, a silent timing decoder, or a test double the same way.
    """

    def __init__(
        self,
        mapper: RouteMapper,
        decoder_factory: DecoderFactory,
        position_source: Callable[[], float],
        sync_interval: float = 5.0,
        drift_threshold: float = 0.5,
    ):
        """
        Args:
            mapper: Route timeline
            decoder_factory: Creates an unloaded decoder for a resource
            position_source: Returns the current cycle position
            sync_interval: Seconds between periodic sync checks
            drift_threshold: Seek when playback is off by more than this
        """
        self.mapper = mapper
        self.decoder_factory = decoder_factory
        self.position_source = position_source
        self.sync_interval = sync_interval
        self.drift_threshold = drift_threshold

        self.current: Optional[AudioSlot] = None
        self.next: Optional[AudioSlot] = None
        self.active = False
        self.volume = 1.0
        self.last_drift = 0.0

        self._reloading = False
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()
        self._sync_task: Optional[asyncio.Task] = None

        self.stats = {
            'loads': 0,
            'load_failures': 0,
            'handoffs': 0,
            'cold_reloads': 0,
            'sync_seeks': 0,
            'sync_reloads': 0,
        }

    @property
    def reloading(self) -> bool:
        return self._reloading

    # -------------------------------------------------------------- playback
    async def start_at(self, position: float) -> bool:
        """
        Play the resource containing ``position`` from the matching offset.

        Returns:
            True if playback started; False on load failure or when a newer
            start_at superseded this one
        """
        context = self.mapper.context_at(position)
        resource = context.resource

        self.active = True
        self._generation += 1
        generation = self._generation
        self._reloading = True

        try:
            self._release_slot(self.current)
            slot = self._make_slot(resource)
            self.current = slot
            self.stats['loads'] += 1

            try:
                await slot.decoder.load()
            except Exception as e:
                self._discard_failed(slot, e)
                return False

            if generation != self._generation:
                logger.debug(f"Load of {resource.url} superseded")
                slot.decoder.release()
                return False

            try:
                slot.decoder.set_volume(self.volume)
                slot.decoder.seek(context.offset_in_file)
                slot.decoder.play()
            except Exception as e:
                self._discard_failed(slot, e)
                return False
            slot.state = SlotState.PLAYING
            logger.info(f"Playing {resource.url} from {context.offset_in_file:.1f}s")
        finally:
            if generation == self._generation:
                self._reloading = False

        self._schedule_preload(resource)
        return True

    def _make_slot(self, resource: ProcessedResource) -> AudioSlot:
        slot = AudioSlot(resource=resource, decoder=self.decoder_factory(resource))
        slot.decoder.set_end_callback(lambda: self._on_ended(slot))
        return slot

    def _discard_failed(self, slot: AudioSlot, error: Exception) -> None:
        """Count, log and release a slot whose resource would not load or play."""
        self.stats['load_failures'] += 1
        logger.error(f"Failed to play {slot.resource.url}: {error}")
        self._release_slot(slot)

    def _release_slot(self, slot: Optional[AudioSlot]) -> None:
        if slot is None:
            return
        slot.decoder.release()
        slot.state = SlotState.IDLE
        if self.current is slot:
            self.current = None
        if self.next is slot:
            self.next = None

    # --------------------------------------------------------------- preload
    def _schedule_preload(self, resource: ProcessedResource) -> None:
        following = self.mapper.next_resource(resource)
        if self.next is not None and self.next.resource.key == following.key:
            if self.next.state == SlotState.IDLE:
                self.next.decoder.queue()
            return
        self._release_slot(self.next)
        slot = self._make_slot(following)
        self.next = slot
        self._spawn(self._preload(slot))

    async def _preload(self, slot: AudioSlot) -> None:
        try:
            await slot.decoder.load()
        except Exception as e:
            logger.warning(f"Preload of {slot.resource.url} failed: {e}")
            if self.next is slot:
                self.next = None
            slot.decoder.release()
            return

        if self.next is not slot:
            slot.decoder.release()
            return
        slot.state = SlotState.IDLE
        logger.debug(f"Preloaded {slot.resource.url}")

        current = self.current
        if current is not None and current.state == SlotState.PLAYING:
            slot.decoder.queue()

    # --------------------------------------------------------------- handoff
    def _on_ended(self, slot: AudioSlot) -> None:
        if slot is not self.current:
            return
        slot.state = SlotState.ENDED
        if not self.active:
            return

        expected = self.mapper.next_resource(slot.resource)
        candidate = self.next
        if (candidate is not None and candidate.state == SlotState.IDLE
                and candidate.resource.key == expected.key):
            self._promote(candidate)
            return

        self.stats['cold_reloads'] += 1
        logger.info(f"No preloaded successor for {slot.resource.url} - cold reload")
        self._spawn(self.start_at(self.position_source()))

    def _promote(self, slot: AudioSlot) -> None:
        previous = self.current
        self.current = slot
        self.next = None
        if previous is not None:
            previous.decoder.release()

        try:
            slot.decoder.set_volume(self.volume)
            slot.decoder.seek(0.0)
            slot.decoder.play()
        except Exception as e:
            self._discard_failed(slot, e)
            self.stats['cold_reloads'] += 1
            self._spawn(self.start_at(self.position_source()))
            return
        slot.state = SlotState.PLAYING
        self.stats['handoffs'] += 1
        logger.info(f"Gapless handoff to {slot.resource.url}")

        self._schedule_preload(slot.resource)

    # ------------------------------------------------------------------ sync
    async def sync(self, position: float) -> SyncAction:
        """Compare playback with ``position`` and correct it if needed."""
        if not self.active or self._reloading:
            return SyncAction.NONE

        context = self.mapper.context_at(position)
        slot = self.current

        if (slot is None or slot.state != SlotState.PLAYING
                or slot.resource.key != context.resource.key):
            playing = slot.resource.url if slot else None
            logger.info(f"Audio resource mismatch (playing {playing}, "
                        f"expected {context.resource.url}) - reloading")
            self.stats['sync_reloads'] += 1
            await self.start_at(position)
            return SyncAction.RELOAD

        expected = context.offset_in_file
        actual = slot.decoder.elapsed
        self.last_drift = expected - actual

        if abs(self.last_drift) > self.drift_threshold:
            logger.debug(f"Audio drift {self.last_drift:+.2f}s - seeking to {expected:.2f}s")
            slot.decoder.seek(expected)
            self.stats['sync_seeks'] += 1
            return SyncAction.SEEK

        return SyncAction.NONE

    def start_sync_loop(self) -> None:
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = asyncio.get_running_loop().create_task(
                self._sync_loop(), name="AudioSync")

    def stop_sync_loop(self) -> None:
        if self._sync_task and not self._sync_task.done():
            self._sync_task.cancel()
        self._sync_task = None

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            try:
                await self.sync(self.position_source())
            except Exception as e:
                logger.exception(f"Audio sync error: {e}")

    # -------------------------------------------------------------- commands
    def pause(self) -> None:
        self.active = False
        if self.current is not None and self.current.state == SlotState.PLAYING:
            self.current.decoder.pause()

    async def resume(self) -> SyncAction:
        """Resume playback and realign it with the timeline."""
        self.active = True
        if self.current is not None and self.current.state == SlotState.PLAYING:
            self.current.decoder.play()
        return await self.sync(self.position_source())

    def set_volume(self, level: float) -> None:
        self.volume = max(0.0, min(1.0, level))
        for slot in (self.current, self.next):
            if slot is not None:
                slot.decoder.set_volume(self.volume)

    def close(self) -> None:
        """Halt playback, cancel background work and release every decoder."""
        self.active = False
        self._generation += 1
        self._reloading = False
        self.stop_sync_loop()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._release_slot(self.current)
        self._release_slot(self.next)
        logger.info("Audio engine closed")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def get_state(self) -> dict:
        return {
            'active': self.active,
            'reloading': self._reloading,
            'volume': self.volume,
            'last_drift': self.last_drift,
            'current': self.current.to_dict() if self.current else None,
            'next': self.next.to_dict() if self.next else None,
            'stats': dict(self.stats),
        }
