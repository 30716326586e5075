"""
Route model for route-radio.

Configuration loading and validation, path geometry, and the mapping from a
cycle position to segment, audio resource and coordinate.
"""

from .config import RouteConfiguration, Segment, AudioResource, VisualPool, load_route, load_route_file
from .mapper import RouteMapper, Context, ProcessedSegment, ProcessedResource

__all__ = [
    'RouteConfiguration', 'Segment', 'AudioResource', 'VisualPool',
    'load_route', 'load_route_file',
    'RouteMapper', 'Context', 'ProcessedSegment', 'ProcessedResource',
]
