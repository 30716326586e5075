"""
route-radio: an always-on journey radio

This package turns a recorded journey (a geographic route, an audio sequence
and a pool of pictures and clips per leg) into a continuous broadcast. The
playback position is derived from the time of day, so everyone tuning in at
the same moment hears and sees the same part of the route.

Architecture:
    time of day → TimelineClock → RouteMapper → audio / map position / visuals

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.errors import (
    RadioError,
    ConfigurationError,
    PositionOutOfRange,
    ResourceLoadFailure,
    SessionNotStarted,
    DebugCommandDisabled,
)
from .interfaces.events import (
    MediaItem,
    MediaKind,
    PositionUpdate,
    ContextUpdate,
    MediaChange,
    SegmentBoundaryCrossed,
)

__all__ = [
    "RadioError",
    "ConfigurationError",
    "PositionOutOfRange",
    "ResourceLoadFailure",
    "SessionNotStarted",
    "DebugCommandDisabled",
    "MediaItem",
    "MediaKind",
    "PositionUpdate",
    "ContextUpdate",
    "MediaChange",
    "SegmentBoundaryCrossed",
    "__version__",
]
