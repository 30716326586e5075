"""
Pytest configuration and fixtures for route-radio tests.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from route_radio.interfaces.errors import ResourceLoadFailure


@pytest.fixture
def route_dict():
    """
    Two-segment route, 600 s per cycle.

    coast  [0, 300):   a1 [0, 100), a2 [100, 300)
    valley [300, 600): b1 [300, 450), b2 [450, 600)
    """
    return {
        'segments': [
            {
                'id': 'coast',
                'name': 'Coastal Road',
                'path': [[64.0, -22.0], [64.0, -21.0]],
                'audio': [
                    {'url': 'audio/a1.mp3', 'duration': 100},
                    {'url': 'audio/a2.mp3', 'duration': 200},
                ],
                'pool': {
                    'videos': ['media/v1.mp4', 'media/v2.mp4'],
                    'images': ['media/i1.jpg', 'media/i2.jpg', 'media/i3.jpg'],
                },
            },
            {
                'id': 'valley',
                'name': 'River Valley',
                'path': [[64.0, -21.0], [63.5, -20.5], [63.0, -20.0]],
                'audio': [
                    {'url': 'audio/b1.mp3', 'duration': 150},
                    {'url': 'audio/b2.mp3', 'duration': 150},
                ],
                'pool': {
                    'videos': ['media/w1.mp4'],
                    'images': ['media/j1.jpg'],
                },
            },
        ]
    }


@pytest.fixture
def route_config(route_dict):
    from route_radio.route.config import RouteConfiguration
    return RouteConfiguration.from_dict(route_dict)


@pytest.fixture
def mapper(route_config):
    from route_radio.route.mapper import RouteMapper
    return RouteMapper(route_config)


class SyntheticTime:
    """Hand-driven time of day and monotonic clock."""

    def __init__(self, time_of_day: float = 0.0, monotonic: float = 1000.0):
        self.tod = time_of_day
        self.mono = monotonic

    def time_of_day(self) -> float:
        return self.tod

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float):
        self.tod += seconds
        self.mono += seconds


@pytest.fixture
def synthetic_time():
    return SyntheticTime()


class FakeDecoder:
    """Decoder double: records commands, elapsed is set by the test."""

    def __init__(self, resource, fail=False, gate=None, play_fail=False):
        self.url = resource.url
        self.duration = resource.duration
        self.fail = fail
        self.play_fail = play_fail
        self.gate = gate
        self.loaded = False
        self.playing = False
        self.released = False
        self.offset = 0.0
        self.seeks = []
        self.plays = 0
        self.volume = 1.0
        self.queued = False
        self._on_ended = None

    def set_end_callback(self, callback):
        self._on_ended = callback

    async def load(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ResourceLoadFailure(self.url, "test failure")
        self.loaded = True

    def seek(self, offset):
        self.seeks.append(offset)
        self.offset = offset

    def play(self):
        if self.play_fail:
            raise ResourceLoadFailure(self.url, "corrupt data")
        self.playing = True
        self.plays += 1

    def pause(self):
        self.playing = False

    def set_volume(self, level):
        self.volume = level

    @property
    def elapsed(self):
        return self.offset

    def queue(self):
        self.queued = True

    def release(self):
        self.released = True
        self.playing = False

    def finish(self):
        """Simulate natural end of the resource."""
        self.playing = False
        self.offset = self.duration
        if self._on_ended:
            self._on_ended()


class FakeDecoderFactory:
    """Creates FakeDecoders and keeps every one it made."""

    def __init__(self):
        self.created = []
        self.fail_urls = set()
        self.play_fail_urls = set()
        self.gates = {}

    def __call__(self, resource):
        decoder = FakeDecoder(
            resource,
            fail=resource.url in self.fail_urls,
            gate=self.gates.get(resource.url),
            play_fail=resource.url in self.play_fail_urls,
        )
        self.created.append(decoder)
        return decoder

    def for_url(self, url):
        return [d for d in self.created if d.url == url]


@pytest.fixture
def decoder_factory():
    return FakeDecoderFactory()
