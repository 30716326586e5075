"""
Segment/Resource Mapper - continuous cycle position → discrete resources

================================================================================
OFFSET TABLES
================================================================================
The route is flattened once into cumulative tables:

    seg_start[i]  = Σ duration(seg[j])  for j < i
    seg_end[i]    = seg_start[i] + duration(seg[i])  (== seg_start[i+1])
    res_start[k]  = seg_start[i] + Σ duration(res[m]) for m < k within seg i

Segment ends are taken from the same cumulative array as the next segment's
start, so the ranges partition [0, total_duration) exactly, without floating
point gaps. Lookup is a binary search (O(log n)) over the start tables with
half-open [start, end) semantics: a position equal to a boundary belongs to
the later segment.

================================================================================
CONTEXT
================================================================================
context_at(position) answers "what is happening now":

    segment      → containing [start, end)
    resource     → containing [start, end) inside that segment
    offset       = position - resource.start_time
    progress     = (position - segment.start_time) / segment.duration
    coordinate   = interpolate(segment.path, progress)
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging
import math

import numpy as np

from .config import RouteConfiguration, Segment, VisualPool
from .geo import Coordinate, interpolate, path_distance
from ..interfaces.errors import PositionOutOfRange
from ..interfaces.events import ContextUpdate, MediaItem, MediaKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessedResource:
    """Audio resource with its absolute place in the cycle."""
    url: str
    duration: float
    segment_index: int
    index: int                   # Position within its segment
    start_time: float
    end_time: float
    offset_in_segment: float

    @property
    def key(self) -> Tuple[int, int]:
        """Identity of the resource within the route (urls may repeat)."""
        return (self.segment_index, self.index)


@dataclass(frozen=True)
class ProcessedSegment:
    id: str
    name: str
    index: int
    path: Tuple[Coordinate, ...]
    duration: float
    start_time: float
    end_time: float
    distance: float
    start_distance: float
    end_distance: float
    resources: Tuple[ProcessedResource, ...]
    pool: VisualPool
    combined_pool: Tuple[MediaItem, ...]


@dataclass(frozen=True)
class Context:
    """Position-addressed snapshot; recomputed on demand, never stored."""
    position: float
    overall_progress: float
    segment: ProcessedSegment
    progress_in_segment: float
    resource: ProcessedResource
    offset_in_file: float
    coordinate: Coordinate

    @property
    def pool(self) -> Tuple[MediaItem, ...]:
        return self.segment.combined_pool

    def to_event(self) -> ContextUpdate:
        return ContextUpdate(
            position=self.position,
            overall_progress=self.overall_progress,
            segment_id=self.segment.id,
            segment_index=self.segment.index,
            segment_name=self.segment.name,
            progress_in_segment=self.progress_in_segment,
            resource_url=self.resource.url,
            resource_index=self.resource.index,
            offset_in_file=self.offset_in_file,
            latitude=self.coordinate[0],
            longitude=self.coordinate[1],
            pool=self.segment.combined_pool,
        )


def combine_pool(pool: VisualPool) -> Tuple[MediaItem, ...]:
    """Tag and merge a visual pool: videos first, then images."""
    tagged = ([(url, MediaKind.VIDEO) for url in pool.videos] +
              [(url, MediaKind.IMAGE) for url in pool.images])
    return tuple(MediaItem(url, kind, i) for i, (url, kind) in enumerate(tagged))


def process(config: RouteConfiguration) -> Tuple[List[ProcessedSegment], float, float]:
    """
    Flatten a route into absolute time and distance tables.

    Returns:
        (processed_segments, total_duration, total_distance)
    """
    durations = np.array(
        [sum(r.duration for r in s.audio) for s in config.segments], dtype=float
    )
    distances = np.array([path_distance(s.path) for s in config.segments], dtype=float)

    time_bounds = np.concatenate(([0.0], np.cumsum(durations)))
    distance_bounds = np.concatenate(([0.0], np.cumsum(distances)))

    processed = []
    for i, segment in enumerate(config.segments):
        start = float(time_bounds[i])
        processed.append(ProcessedSegment(
            id=segment.id,
            name=segment.name,
            index=i,
            path=tuple(segment.path),
            duration=float(durations[i]),
            start_time=start,
            end_time=float(time_bounds[i + 1]),
            distance=float(distances[i]),
            start_distance=float(distance_bounds[i]),
            end_distance=float(distance_bounds[i + 1]),
            resources=_process_resources(segment, i, start),
            pool=segment.pool,
            combined_pool=combine_pool(segment.pool),
        ))

    return processed, float(time_bounds[-1]), float(distance_bounds[-1])


def _process_resources(segment: Segment, segment_index: int,
                       segment_start: float) -> Tuple[ProcessedResource, ...]:
    resources = []
    offset = 0.0
    for k, resource in enumerate(segment.audio):
        resources.append(ProcessedResource(
            url=resource.url,
            duration=resource.duration,
            segment_index=segment_index,
            index=k,
            start_time=segment_start + offset,
            end_time=segment_start + offset + resource.duration,
            offset_in_segment=offset,
        ))
        offset += resource.duration
    return tuple(resources)


class RouteMapper:
    """
    Answers timeline queries for a processed route.

    The mapper is pure after construction: every query is a function of the
    position argument only, so it can be unit-tested with synthetic positions
    and shared freely between the audio engine, the selector and renderers.
    """

    def __init__(self, config: RouteConfiguration):
        self.config = config
        self.segments, self.total_duration, self.total_distance = process(config)

        self._segment_starts = np.array([s.start_time for s in self.segments])
        self._resource_starts = [
            np.array([r.start_time for r in s.resources]) for s in self.segments
        ]
        self._by_id: Dict[str, ProcessedSegment] = {s.id: s for s in self.segments}

        logger.info("Route mapping initialized:")
        logger.info(f"  Total duration: {self.total_duration:.0f}s "
                    f"({self.total_duration / 60:.1f} min)")
        logger.info(f"  Total distance: {self.total_distance:.2f} km")
        logger.info(f"  Segments: {len(self.segments)}")

    # ------------------------------------------------------------- lookups
    def segment_by_id(self, segment_id: str) -> Optional[ProcessedSegment]:
        return self._by_id.get(segment_id)

    def segment_by_index(self, index: int) -> ProcessedSegment:
        return self.segments[index]

    def normalize(self, position: float) -> float:
        """Reduce any real position into [0, total_duration)."""
        reduced = math.fmod(position, self.total_duration)
        if reduced < 0:
            reduced += self.total_duration
        # fmod of a value a hair below a multiple can round up to total
        if reduced >= self.total_duration:
            reduced = 0.0
        return reduced

    def segment_at(self, position: float) -> ProcessedSegment:
        self._check_range(position)
        i = int(np.searchsorted(self._segment_starts, position, side='right')) - 1
        return self.segments[i]

    def resource_at(self, position: float,
                    segment: Optional[ProcessedSegment] = None) -> ProcessedResource:
        if segment is None:
            segment = self.segment_at(position)
        else:
            self._check_range(position)
        starts = self._resource_starts[segment.index]
        k = int(np.searchsorted(starts, position, side='right')) - 1
        # Per-resource sums can land a rounding error past the segment end
        k = max(0, min(k, len(segment.resources) - 1))
        return segment.resources[k]

    def context_at(self, position: float) -> Context:
        """
        Full context for a cycle position.

        Raises:
            PositionOutOfRange: position is not in [0, total_duration)
        """
        segment = self.segment_at(position)
        resource = self.resource_at(position, segment)

        progress_in_segment = (position - segment.start_time) / segment.duration
        coordinate = interpolate(segment.path, progress_in_segment)

        return Context(
            position=position,
            overall_progress=position / self.total_duration,
            segment=segment,
            progress_in_segment=progress_in_segment,
            resource=resource,
            offset_in_file=position - resource.start_time,
            coordinate=coordinate,
        )

    def next_resource(self, resource: ProcessedResource) -> ProcessedResource:
        """
        Resource that plays after ``resource``: next in its segment, else the
        first of the next segment, wrapping to the very first after the last.
        """
        segment = self.segments[resource.segment_index]
        if resource.index + 1 < len(segment.resources):
            return segment.resources[resource.index + 1]
        next_segment = self.segments[(segment.index + 1) % len(self.segments)]
        return next_segment.resources[0]

    def describe_upcoming(self, context: Context) -> Dict[str, str]:
        """Now-playing and up-next labels for displays."""
        segment = context.segment
        resource = context.resource
        summary = {
            'segment': segment.name,
            'track': f"Track {resource.index + 1} of {len(segment.resources)}",
            'file': _basename(resource.url),
        }
        if resource.index + 1 < len(segment.resources):
            summary['next'] = _basename(segment.resources[resource.index + 1].url)
        elif segment.index + 1 < len(self.segments):
            summary['next'] = self.segments[segment.index + 1].name
        else:
            summary['next'] = "Back to start"
        return summary

    def _check_range(self, position: float) -> None:
        if not (0.0 <= position < self.total_duration):
            raise PositionOutOfRange(position, self.total_duration)


def _basename(url: str) -> str:
    name = url.rstrip('/').rsplit('/', 1)[-1]
    return name.rsplit('.', 1)[0] if '.' in name else name
