"""
Audio decoder interface and the headless timing decoder.

The sync engine never touches an audio API directly. It drives decoders
through this small interface:

    await load()        fetch/buffer the resource (raises ResourceLoadFailure)
    seek(offset)        jump to ``offset`` seconds into the resource
    play() / pause()
    set_volume(level)   0.0 - 1.0
    queue()             line up behind the stream now playing (optional)
    elapsed             seconds into the resource right now
    release()           drop every handle; the decoder is dead afterwards

Natural end of a resource is reported through the callback registered with
``set_end_callback``; it is invoked on the asyncio loop thread.
"""

from pathlib import Path
from typing import Callable, Optional
import asyncio
import io
import logging
import time
import urllib.request

from ..interfaces.errors import ConfigurationError, ResourceLoadFailure

logger = logging.getLogger(__name__)


class AudioDecoder:
    """Base class for decoder backends."""

    def __init__(self, url: str, duration: float):
        self.url = url
        self.duration = duration
        self._on_ended: Optional[Callable[[], None]] = None

    def set_end_callback(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_ended = callback

    def _notify_ended(self) -> None:
        if self._on_ended:
            self._on_ended()

    async def load(self) -> None:
        raise NotImplementedError

    def seek(self, offset: float) -> None:
        raise NotImplementedError

    def play(self) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def set_volume(self, level: float) -> None:
        raise NotImplementedError

    @property
    def elapsed(self) -> float:
        raise NotImplementedError

    def release(self) -> None:
        raise NotImplementedError

    def queue(self) -> None:
        """Start right when the stream now playing ends; no-op where unsupported."""


class SilentDecoder(AudioDecoder):
    """
    Timing-only decoder: produces no sound but advances and ends exactly like
    a real one would, using the configured duration.

    Used for headless deployments (a display-only node next to a separate
    audio node) and for dry runs of a route configuration.
    """

    def __init__(self, url: str, duration: float,
                 monotonic: Optional[Callable[[], float]] = None):
        super().__init__(url, duration)
        self._monotonic = monotonic or time.monotonic
        self._offset = 0.0
        self._started_at: Optional[float] = None
        self._end_handle: Optional[asyncio.TimerHandle] = None
        self._loaded = False
        self._released = False
        self.volume = 1.0

    async def load(self) -> None:
        if self._released:
            raise ResourceLoadFailure(self.url, "decoder released")
        await asyncio.sleep(0)
        self._loaded = True

    @property
    def playing(self) -> bool:
        return self._started_at is not None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return self._offset
        return min(self.duration, self._offset + self._monotonic() - self._started_at)

    def seek(self, offset: float) -> None:
        was_playing = self.playing
        self._offset = max(0.0, min(offset, self.duration))
        if was_playing:
            self._started_at = self._monotonic()
            self._schedule_end()

    def play(self) -> None:
        if not self._loaded or self.playing:
            return
        self._started_at = self._monotonic()
        self._schedule_end()

    def pause(self) -> None:
        if not self.playing:
            return
        self._offset = self.elapsed
        self._started_at = None
        self._cancel_end()

    def set_volume(self, level: float) -> None:
        self.volume = max(0.0, min(1.0, level))

    def release(self) -> None:
        self._cancel_end()
        self._started_at = None
        self._loaded = False
        self._released = True
        self._on_ended = None

    def _schedule_end(self) -> None:
        self._cancel_end()
        remaining = max(0.0, self.duration - self._offset)
        loop = asyncio.get_running_loop()
        self._end_handle = loop.call_later(remaining, self._finish)

    def _cancel_end(self) -> None:
        if self._end_handle:
            self._end_handle.cancel()
            self._end_handle = None

    def _finish(self) -> None:
        self._end_handle = None
        self._offset = self.duration
        self._started_at = None
        logger.debug(f"Silent playback ended: {self.url}")
        self._notify_ended()


def _read_bytes(url: str) -> bytes:
    """Fetch a resource from an http(s) URL or the local filesystem."""
    if url.startswith(('http://', 'https://')):
        with urllib.request.urlopen(url, timeout=30) as response:
            return response.read()
    return Path(url).read_bytes()


class PygameDecoder(AudioDecoder):
    """
    Decoder backed by ``pygame.mixer.music`` (install the ``audio`` extra).

    The mixer has a single music stream, so at most one decoder owns it at a
    time. Preloading only buffers the file bytes; the stream is claimed by the
    first ``play()`` and handed over when the next decoder starts.

    A preloaded successor can be lined up with ``queue()``: the mixer then
    starts it the instant the owner's track runs out, and the successor takes
    the stream over without reloading it. The switch shows up as get_pos()
    falling back to zero while the mixer stays busy.
    """

    _owner: Optional["PygameDecoder"] = None
    _queued: Optional["PygameDecoder"] = None
    END_POLL_INTERVAL = 0.1
    SEEK_TOLERANCE = 0.25

    def __init__(self, url: str, duration: float):
        super().__init__(url, duration)
        import pygame
        self._pygame = pygame
        self._data: Optional[bytes] = None
        self._offset = 0.0
        self._volume = 1.0
        self._paused = False
        self._started = False
        self._last_pos = -1
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def _music(self):
        return self._pygame.mixer.music

    @property
    def owns_stream(self) -> bool:
        return PygameDecoder._owner is self

    async def load(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self._data = await loop.run_in_executor(None, _read_bytes, self.url)
        except (OSError, ValueError) as e:
            raise ResourceLoadFailure(self.url, str(e))

    def _claim_stream(self) -> None:
        if not self._pygame.mixer.get_init():
            self._pygame.mixer.init()
        previous = PygameDecoder._owner
        if previous is not None and previous is not self:
            previous._stop_watch()
            previous._started = False
        if PygameDecoder._queued is self:
            PygameDecoder._queued = None
        try:
            self._music.load(io.BytesIO(self._data))
        except self._pygame.error as e:
            raise ResourceLoadFailure(self.url, str(e))
        PygameDecoder._owner = self

    def queue(self) -> None:
        owner = PygameDecoder._owner
        if self._data is None or owner is None or owner is self or not owner._started:
            return
        try:
            self._music.queue(io.BytesIO(self._data))
        except self._pygame.error as e:
            logger.warning(f"Could not queue {self.url}: {e}")
            return
        PygameDecoder._queued = self
        logger.debug(f"Queued {self.url} behind {owner.url}")

    def _requeue(self) -> None:
        # Restarting the stream drops whatever the mixer had queued
        queued = PygameDecoder._queued
        if queued is not None and queued is not self:
            queued.queue()

    @property
    def elapsed(self) -> float:
        if not self.owns_stream or not self._started:
            return self._offset
        pos_ms = self._music.get_pos()
        if pos_ms < 0:
            return self._offset
        return self._offset + pos_ms / 1000.0

    def seek(self, offset: float) -> None:
        offset = max(0.0, min(offset, self.duration))
        if self.owns_stream and self._started:
            if abs(offset - self.elapsed) < self.SEEK_TOLERANCE:
                return
            self._offset = offset
            self._last_pos = -1
            self._music.play(start=self._offset)
            if self._paused:
                self._music.pause()
            self._requeue()
        else:
            self._offset = offset

    def play(self) -> None:
        if self._data is None:
            raise ResourceLoadFailure(self.url, "not loaded")
        if self.owns_stream and self._started:
            if self._paused:
                self._music.unpause()
                self._paused = False
            return

        self._claim_stream()
        self._music.set_volume(self._volume)
        self._music.play(start=self._offset)
        self._started = True
        self._paused = False
        self._start_watch()

    def pause(self) -> None:
        if self.owns_stream and self._started and not self._paused:
            self._music.pause()
            self._paused = True

    def set_volume(self, level: float) -> None:
        self._volume = max(0.0, min(1.0, level))
        if self.owns_stream:
            self._music.set_volume(self._volume)

    def release(self) -> None:
        self._stop_watch()
        if self.owns_stream:
            self._music.stop()
            PygameDecoder._owner = None
        if PygameDecoder._queued is self:
            PygameDecoder._queued = None
        self._started = False
        self._data = None
        self._on_ended = None

    def _start_watch(self) -> None:
        self._last_pos = -1
        self._watch_task = asyncio.get_running_loop().create_task(self._watch_end())

    def _stop_watch(self) -> None:
        if self._watch_task and not self._watch_task.done():
            self._watch_task.cancel()
        self._watch_task = None

    def _take_over(self) -> None:
        """The mixer has started this decoder's queued data."""
        PygameDecoder._queued = None
        PygameDecoder._owner = self
        self._offset = 0.0
        self._started = True
        self._paused = False
        self._music.set_volume(self._volume)
        self._start_watch()

    async def _watch_end(self) -> None:
        while self.owns_stream and self._started:
            await asyncio.sleep(self.END_POLL_INTERVAL)
            if self._paused:
                continue
            if not self._music.get_busy():
                self._ended()
                return

            pos = self._music.get_pos()
            if 0 <= pos < self._last_pos:
                successor = PygameDecoder._queued
                if successor is None:
                    # Whatever the mixer moved on to is not ours
                    self._music.stop()
                else:
                    successor._take_over()
                self._ended()
                return
            self._last_pos = pos

    def _ended(self) -> None:
        self._started = False
        self._watch_task = None
        logger.debug(f"Playback ended: {self.url}")
        self._notify_ended()


DECODER_BACKENDS = ('silent', 'pygame')


def make_decoder_factory(backend: str = 'silent',
                         monotonic: Optional[Callable[[], float]] = None):
    """
    Build a decoder factory for the audio engine.

    Args:
        backend: 'silent' (timing only) or 'pygame'
        monotonic: Time source for the silent backend

    Returns:
        Callable taking a ProcessedResource and returning an unloaded decoder
    """
    if backend == 'silent':
        return lambda resource: SilentDecoder(resource.url, resource.duration, monotonic)
    if backend == 'pygame':
        return lambda resource: PygameDecoder(resource.url, resource.duration)
    raise ConfigurationError(
        f"Unknown audio backend {backend!r} (expected one of {', '.join(DECODER_BACKENDS)})"
    )
