"""
Event Records

These dataclasses define the contract between the route-radio core and its
collaborators (map/terrain renderers, the media display, the UI). Every
record is immutable and can be flattened with ``to_dict()`` for JSON
transport (status server, logging).

Event flow:
    TimelineClock ──PositionUpdate──▶ RadioCoordinator
    RadioCoordinator ──ContextUpdate / SegmentBoundaryCrossed──▶ collaborators
    MediaPoolSelector ──MediaChange──▶ rendering collaborator
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type
import logging

logger = logging.getLogger(__name__)


class MediaKind(str, Enum):
    """Kind of visual pool entry."""
    VIDEO = "video"
    IMAGE = "image"


@dataclass(frozen=True)
class MediaItem:
    """One entry of a segment's combined visual pool."""
    url: str
    kind: MediaKind
    index: int = 0           # Position in the combined pool; tells repeated URLs apart

    def to_dict(self) -> dict:
        return {'url': self.url, 'kind': self.kind.value}


@dataclass(frozen=True)
class PositionUpdate:
    """Clock broadcast, emitted at ~60 Hz while the clock runs."""
    position: float          # Seconds into the cycle
    progress: float          # position / total_duration
    total_duration: float
    emitted_at: float        # Monotonic instant of emission

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ContextUpdate:
    """Everything a renderer needs to know about "now"."""
    position: float
    overall_progress: float
    segment_id: str
    segment_index: int
    segment_name: str
    progress_in_segment: float
    resource_url: str
    resource_index: int
    offset_in_file: float
    latitude: float
    longitude: float
    pool: Tuple[MediaItem, ...] = ()

    def to_dict(self) -> dict:
        data = asdict(self)
        data['pool'] = [item.to_dict() for item in self.pool]
        return data


@dataclass(frozen=True)
class MediaChange:
    """The selector drew a new visual item."""
    url: str
    kind: MediaKind
    segment_id: str

    def to_dict(self) -> dict:
        return {'url': self.url, 'kind': self.kind.value, 'segment_id': self.segment_id}


@dataclass(frozen=True)
class SegmentBoundaryCrossed:
    """The position moved into a different segment."""
    previous_segment_id: Optional[str]
    new_segment_id: str

    def to_dict(self) -> dict:
        return asdict(self)


Listener = Callable[[Any], None]


class EventBus:
    """
    Minimal synchronous publish/subscribe hub keyed by event type.

    Listeners run in the publisher's context (the asyncio loop thread). A
    failing listener is logged and skipped so one broken collaborator cannot
    stall the broadcast.
    """

    def __init__(self):
        self._listeners: Dict[Type, List[Listener]] = {}

    def subscribe(self, event_type: Type, callback: Listener) -> Callable[[], None]:
        """
        Register ``callback`` for ``event_type``.

        Returns:
            A function that removes the subscription.
        """
        self._listeners.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event_type, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def publish(self, event: Any) -> None:
        for callback in list(self._listeners.get(type(event), [])):
            try:
                callback(event)
            except Exception as e:
                logger.exception(f"Listener error for {type(event).__name__}: {e}")

    def listener_count(self, event_type: Type) -> int:
        return len(self._listeners.get(event_type, []))
