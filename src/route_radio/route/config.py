"""
Route Configuration Model

The route is the static input of the radio: an ordered list of segments,
each with a geographic path, an ordered audio sequence and a visual pool.
The shape is validated exactly once, when the configuration is loaded, so the
rest of the system can trust it.

TOML layout:

    [[segments]]
    id = "section_1"
    name = "Reykjavik to Selfoss"
    path = [[64.1466, -21.9426], [63.9333, -20.9833]]

    [[segments.audio]]
    url = "audio/section1/track_01.mp3"
    duration = 198

    [segments.pool]
    videos = ["media/section1/videos/video_01.mp4"]
    images = ["media/section1/images/image_01.jpg"]
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple
import logging
import math

import toml

from ..interfaces.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioResource:
    """One audio file; ``duration`` is authoritative, never measured."""
    url: str
    duration: float


@dataclass(frozen=True)
class VisualPool:
    videos: Tuple[str, ...] = ()
    images: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.videos) + len(self.images)


@dataclass(frozen=True)
class Segment:
    """One leg of the journey."""
    id: str
    name: str
    path: Tuple[Tuple[float, float], ...]
    audio: Tuple[AudioResource, ...]
    pool: VisualPool = field(default_factory=VisualPool)


@dataclass(frozen=True)
class RouteConfiguration:
    segments: Tuple[Segment, ...]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RouteConfiguration":
        """
        Build and validate a route from a parsed TOML/JSON dictionary.

        Raises:
            ConfigurationError: on any shape violation
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Route configuration must be a table")

        raw_segments = data.get('segments')
        if not isinstance(raw_segments, list) or not raw_segments:
            raise ConfigurationError("Route configuration has no segments")

        segments = [_parse_segment(raw, i) for i, raw in enumerate(raw_segments)]

        seen = set()
        for segment in segments:
            if segment.id in seen:
                raise ConfigurationError(f"Duplicate segment id: {segment.id!r}")
            seen.add(segment.id)

        return cls(segments=tuple(segments))


def _parse_segment(raw: Any, index: int) -> Segment:
    where = f"segments[{index}]"
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: expected a table")

    segment_id = raw.get('id')
    if not isinstance(segment_id, str) or not segment_id:
        raise ConfigurationError(f"{where}: missing id")
    where = f"segment {segment_id!r}"

    name = raw.get('name', segment_id)
    if not isinstance(name, str):
        raise ConfigurationError(f"{where}: name must be a string")

    path = _parse_path(raw.get('path'), where)
    audio = _parse_audio(raw.get('audio'), where)
    pool = _parse_pool(raw.get('pool', {}), where)

    return Segment(id=segment_id, name=name, path=path, audio=audio, pool=pool)


def _parse_path(raw: Any, where: str) -> Tuple[Tuple[float, float], ...]:
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        raise ConfigurationError(f"{where}: path needs at least 2 points")

    points = []
    for point in raw:
        try:
            lat, lon = (float(v) for v in point)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{where}: bad path point {point!r}")
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            raise ConfigurationError(f"{where}: path point out of range {point!r}")
        points.append((lat, lon))
    return tuple(points)


def _parse_audio(raw: Any, where: str) -> Tuple[AudioResource, ...]:
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ConfigurationError(f"{where}: needs at least one audio resource")

    resources = []
    for entry in raw:
        if not isinstance(entry, dict) or not isinstance(entry.get('url'), str):
            raise ConfigurationError(f"{where}: audio entry needs a url")
        try:
            duration = float(entry.get('duration'))
        except (TypeError, ValueError):
            raise ConfigurationError(f"{where}: bad duration for {entry['url']}")
        if not math.isfinite(duration) or duration <= 0:
            raise ConfigurationError(
                f"{where}: duration must be positive for {entry['url']} (got {duration})"
            )
        resources.append(AudioResource(url=entry['url'], duration=duration))
    return tuple(resources)


def _parse_pool(raw: Any, where: str) -> VisualPool:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: pool must be a table")

    def _urls(key: str) -> Tuple[str, ...]:
        values = raw.get(key, [])
        if not isinstance(values, (list, tuple)) or not all(isinstance(v, str) for v in values):
            raise ConfigurationError(f"{where}: pool.{key} must be a list of urls")
        return tuple(values)

    return VisualPool(videos=_urls('videos'), images=_urls('images'))


def load_route(config: Dict[str, Any]) -> RouteConfiguration:
    """Validate the ``segments`` part of a loaded configuration."""
    route = RouteConfiguration.from_dict(config)
    empty = [s.id for s in route.segments if len(s.pool) == 0]
    if empty:
        logger.warning(f"Segments without visual media: {', '.join(empty)}")
    return route


def load_route_file(path: Path) -> RouteConfiguration:
    """Load and validate a route from a TOML file."""
    try:
        with open(path, 'r') as f:
            data = toml.load(f)
    except toml.TomlDecodeError as e:
        raise ConfigurationError(f"{path}: invalid TOML: {e}")
    except OSError as e:
        raise ConfigurationError(f"{path}: cannot read route file: {e}")
    return load_route(data)

