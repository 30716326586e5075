"""Timeline clock - derives the shared cycle position from the time of day."""

from .clock import TimelineClock, ClockState, circular_distance

__all__ = ['TimelineClock', 'ClockState', 'circular_distance']
