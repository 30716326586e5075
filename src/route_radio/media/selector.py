"""
Media Pool Selector - no-repeat random visuals per segment

Each segment owns a draw state over its combined pool (videos, then images):

    available  items not yet shown in this pass
    shown      items already shown in this pass

pick_next() moves one uniformly random item from available to shown; when
available is empty, shown is reshuffled back first. So within a pass every
item appears exactly once, and available + shown is always a permutation of
the pool.

Display policy: an image stays up for IMAGE_DURATION seconds, a video until
the renderer reports its end. Crossing a segment boundary never cuts the
current item short; the next draw simply comes from the new segment's pool.

A small prefetch cache (oldest evicted first) holds speculative candidates
for the renderer to warm up. It is advisory: a draw never depends on it.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional
import asyncio
import logging
import random

from ..interfaces.events import MediaChange, MediaItem, MediaKind
from ..route.mapper import ProcessedSegment

logger = logging.getLogger(__name__)

IMAGE_DURATION = 10.0
PREFETCH_CAPACITY = 3


@dataclass
class SectionDrawState:
    available: List[MediaItem] = field(default_factory=list)
    shown: List[MediaItem] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.available) + len(self.shown)


class MediaPoolSelector:
    """Draws visual media for the active segment and paces their display."""

    def __init__(
        self,
        segments: Optional[Iterable[ProcessedSegment]] = None,
        rng: Optional[random.Random] = None,
        prefetch_capacity: int = PREFETCH_CAPACITY,
        image_duration: float = IMAGE_DURATION,
        prefetcher: Optional[Callable[[MediaItem], None]] = None,
    ):
        """
        Args:
            segments: Processed segments; may also be given to initialize()
            rng: Random source (seeded in tests)
            prefetch_capacity: Maximum speculative candidates kept
            image_duration: Seconds an image stays on screen
            prefetcher: Called with each item entering the prefetch cache
        """
        self.rng = rng or random.Random()
        self.prefetch_capacity = prefetch_capacity
        self.image_duration = image_duration
        self.prefetcher = prefetcher

        self.states: Dict[str, SectionDrawState] = {}
        self._pools: Dict[str, List[MediaItem]] = {}
        self.prefetch_cache: "OrderedDict[MediaItem, None]" = OrderedDict()

        self.current_segment_id: Optional[str] = None
        self.current_item: Optional[MediaItem] = None
        self._image_timer: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Callable[[MediaChange], None]] = []

        self.stats = {'draws': 0, 'passes': 0, 'failures': 0}

        if segments is not None:
            self.initialize(segments)

    def initialize(self, segments: Iterable[ProcessedSegment]) -> None:
        """Give every segment an independently shuffled copy of its pool."""
        self.states.clear()
        self._pools.clear()
        for segment in segments:
            pool = list(segment.combined_pool)
            self._pools[segment.id] = pool
            available = list(pool)
            self.rng.shuffle(available)
            self.states[segment.id] = SectionDrawState(available=available)
        logger.debug(f"Media pools initialized for {len(self.states)} segments")

    # -------------------------------------------------------------- drawing
    def pick_next(self, segment_id: str) -> Optional[MediaItem]:
        """
        Draw the next item for a segment.

        Returns:
            MediaItem, or None when the segment has no visual media
        """
        state = self.states.get(segment_id)
        if state is None:
            logger.warning(f"No media pool for segment {segment_id!r}")
            return None
        if len(state) == 0:
            return None

        if not state.available:
            state.available = state.shown
            state.shown = []
            self.rng.shuffle(state.available)
            self.stats['passes'] += 1
            logger.debug(f"Media pool for {segment_id} reshuffled")

        item = state.available.pop(self.rng.randrange(len(state.available)))
        state.shown.append(item)
        self.stats['draws'] += 1
        return item

    # -------------------------------------------------------------- display
    def start(self, segment_id: str) -> Optional[MediaItem]:
        """Begin displaying media for ``segment_id``."""
        self.current_segment_id = segment_id
        self.prefetch_cache.clear()
        return self.advance()

    def advance(self) -> Optional[MediaItem]:
        """Replace the current item with a fresh draw and announce it."""
        self._cancel_image_timer()
        if self.current_segment_id is None:
            return None

        item = self.pick_next(self.current_segment_id)
        self.current_item = item
        if item is None:
            return None

        self.prefetch_cache.pop(item, None)
        self._emit(MediaChange(url=item.url, kind=item.kind,
                               segment_id=self.current_segment_id))

        if item.kind == MediaKind.IMAGE:
            loop = asyncio.get_running_loop()
            self._image_timer = loop.call_later(self.image_duration, self._on_image_timer)

        self.refill_prefetch()
        return item

    def on_video_ended(self) -> None:
        """Renderer callback: the current video finished playing."""
        if self.current_item is not None and self.current_item.kind == MediaKind.VIDEO:
            self.advance()

    def _on_image_timer(self) -> None:
        self._image_timer = None
        self.advance()

    def _cancel_image_timer(self) -> None:
        if self._image_timer:
            self._image_timer.cancel()
            self._image_timer = None

    def on_segment_boundary(self, new_segment_id: str) -> None:
        """
        Switch pools without interrupting what is on screen; the next
        advance draws from the new segment.
        """
        previous = self.current_segment_id
        self.current_segment_id = new_segment_id
        self.prefetch_cache.clear()
        logger.debug(f"Media pool switched {previous} -> {new_segment_id}")

        if self.current_item is None:
            self.advance()
        else:
            self.refill_prefetch()

    def report_failure(self, item: MediaItem) -> None:
        """Renderer callback: ``item`` could not be loaded or decoded."""
        self.stats['failures'] += 1
        logger.warning(f"Media failed to load: {item.url}")
        self.prefetch_cache.pop(item, None)
        if item == self.current_item:
            self.advance()

    def force_next(self) -> Optional[MediaItem]:
        """Debug helper: skip the current item."""
        return self.advance()

    # ------------------------------------------------------------- prefetch
    def prefetch(self, item: MediaItem) -> None:
        """Add a candidate, evicting the oldest entry when full."""
        if item in self.prefetch_cache:
            self.prefetch_cache.move_to_end(item)
            return
        while len(self.prefetch_cache) >= self.prefetch_capacity:
            self.prefetch_cache.popitem(last=False)
        self.prefetch_cache[item] = None

        if self.prefetcher:
            try:
                self.prefetcher(item)
            except Exception as e:
                logger.warning(f"Prefetch of {item.url} failed: {e}")

    def refill_prefetch(self) -> None:
        """Queue likely upcoming items of the current segment."""
        if self.prefetch_capacity <= 0 or self.current_segment_id is None:
            return
        state = self.states.get(self.current_segment_id)
        if state is None:
            return
        candidates = [i for i in state.available if i not in self.prefetch_cache]
        count = min(len(candidates), self.prefetch_capacity)
        for item in self.rng.sample(candidates, count):
            self.prefetch(item)

    # ------------------------------------------------------------ lifecycle
    def subscribe(self, callback: Callable[[MediaChange], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, change: MediaChange) -> None:
        logger.debug(f"Media: {change.kind.value} {change.url}")
        for callback in list(self._listeners):
            try:
                callback(change)
            except Exception as e:
                logger.exception(f"Error in media listener: {e}")

    def reset(self) -> None:
        """Forget display state and reshuffle every pool."""
        self._cancel_image_timer()
        self.current_segment_id = None
        self.current_item = None
        self.prefetch_cache.clear()
        for segment_id, pool in self._pools.items():
            available = list(pool)
            self.rng.shuffle(available)
            self.states[segment_id] = SectionDrawState(available=available)

    def pause(self) -> None:
        """Hold the current item on screen."""
        self._cancel_image_timer()

    def resume(self) -> None:
        if self.current_item is not None and self.current_item.kind == MediaKind.IMAGE:
            loop = asyncio.get_running_loop()
            self._image_timer = loop.call_later(self.image_duration, self._on_image_timer)

    def close(self) -> None:
        self._cancel_image_timer()

    def get_state(self) -> dict:
        return {
            'segment_id': self.current_segment_id,
            'current': self.current_item.to_dict() if self.current_item else None,
            'prefetch': [item.url for item in self.prefetch_cache],
            'pools': {
                segment_id: {'available': len(s.available), 'shown': len(s.shown)}
                for segment_id, s in self.states.items()
            },
            'stats': dict(self.stats),
        }
