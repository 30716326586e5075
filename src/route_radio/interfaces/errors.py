"""
Error taxonomy for route-radio.

Only configuration-shape errors are fatal. Everything that can go wrong while
the radio is on air (a missing asset, a decoder hiccup) is caught and logged
by the component that owns the resource, so one bad file never halts the
broadcast.
"""

from typing import Optional


class RadioError(Exception):
    """Base class for all route-radio errors."""


class ConfigurationError(RadioError, ValueError):
    """Route configuration is malformed (fatal at startup)."""


class PositionOutOfRange(RadioError):
    """The mapper was queried outside [0, total_duration)."""

    def __init__(self, position: float, total_duration: float):
        self.position = position
        self.total_duration = total_duration
        super().__init__(
            f"Position {position!r} outside cycle [0, {total_duration})"
        )


class ResourceLoadFailure(RadioError):
    """An audio or visual asset could not be loaded or decoded."""

    def __init__(self, url: str, reason: Optional[str] = None):
        self.url = url
        self.reason = reason
        message = f"Failed to load {url}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class SessionNotStarted(RadioError):
    """A playback command arrived before begin_session()."""


class DebugCommandDisabled(RadioError):
    """A debug-only command was issued on a production coordinator."""
