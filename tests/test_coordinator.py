"""
Tests for the radio coordinator.
"""

import asyncio
import json
import random
import threading
import pytest


def make_coordinator(route_config, decoder_factory, synthetic_time, **kwargs):
    from route_radio.engine.coordinator import RadioCoordinator
    return RadioCoordinator(
        route_config,
        decoder_factory=decoder_factory,
        time_of_day=synthetic_time.time_of_day,
        monotonic=synthetic_time.monotonic,
        rng=random.Random(5),
        **kwargs
    )


def update_at(position, total=600.0):
    from route_radio.interfaces.events import PositionUpdate
    return PositionUpdate(position=position, progress=position / total,
                          total_duration=total, emitted_at=0.0)


class TestSession:
    """Commands before begin_session() are rejected without side effects."""

    @pytest.mark.asyncio
    async def test_commands_require_session(self, route_config, decoder_factory, synthetic_time):
        from route_radio.engine.coordinator import SessionState
        from route_radio.interfaces.errors import SessionNotStarted

        radio = make_coordinator(route_config, decoder_factory, synthetic_time)

        with pytest.raises(SessionNotStarted):
            await radio.start()
        with pytest.raises(SessionNotStarted):
            radio.pause()
        with pytest.raises(SessionNotStarted):
            await radio.resume()
        with pytest.raises(SessionNotStarted):
            radio.set_volume(0.5)
        with pytest.raises(SessionNotStarted):
            await radio.stop()

        assert radio.state == SessionState.IDLE
        assert not radio.clock.is_running
        assert decoder_factory.created == []
        assert radio.audio.volume == 1.0

    def test_begin_session_is_idempotent(self, route_config, decoder_factory, synthetic_time):
        from route_radio.engine.coordinator import SessionState

        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        radio.begin_session()
        assert radio.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_seek_requires_debug(self, route_config, decoder_factory, synthetic_time):
        from route_radio.interfaces.errors import DebugCommandDisabled

        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        with pytest.raises(DebugCommandDisabled):
            await radio.seek(100.0)

    def test_settings_fall_back_to_defaults(self, route_config, decoder_factory, synthetic_time):
        radio = make_coordinator(route_config, decoder_factory, synthetic_time,
                                 settings={'audio_drift_threshold': 0.25})
        assert radio.audio.drift_threshold == 0.25
        assert radio.clock.drift_threshold == 2.0
        assert radio.media.image_duration == 10.0
        assert radio.debug is False


class TestDeriveTick:
    """derive_tick depends only on the position and the previous segment."""

    def test_within_segment(self, route_config, decoder_factory, synthetic_time):
        from route_radio.interfaces.events import ContextUpdate

        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        events = radio.derive_tick(update_at(299.9), 'coast')

        assert len(events) == 1
        assert isinstance(events[0], ContextUpdate)
        assert events[0].segment_id == 'coast'

    def test_boundary_crossing(self, route_config, decoder_factory, synthetic_time):
        from route_radio.interfaces.events import ContextUpdate, SegmentBoundaryCrossed

        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        events = radio.derive_tick(update_at(300.0), 'coast')

        assert events[0] == SegmentBoundaryCrossed(previous_segment_id='coast',
                                                   new_segment_id='valley')
        assert isinstance(events[1], ContextUpdate)
        assert events[1].resource_url == 'audio/b1.mp3'
        assert radio.last_segment_id is None

    def test_first_tick_has_no_boundary(self, route_config, decoder_factory, synthetic_time):
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        assert len(radio.derive_tick(update_at(450.0), None)) == 1


class TestRunningRadio:
    """End-to-end behaviour with synthetic time and fake decoders."""

    @pytest.mark.asyncio
    async def test_start_aligns_everything(self, route_config, decoder_factory, synthetic_time):
        from route_radio.engine.coordinator import SessionState

        synthetic_time.tod = 290.0
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        await radio.start()
        try:
            assert radio.state == SessionState.RUNNING
            assert radio.clock.get_current_position() == 290.0
            assert radio.audio.current.resource.url == 'audio/a2.mp3'
            assert radio.audio.current.decoder.seeks == [190.0]
            assert radio.media.current_segment_id == 'coast'
            assert radio.last_segment_id == 'coast'
        finally:
            await radio.stop()

    @pytest.mark.asyncio
    async def test_boundary_is_published_once(self, route_config, decoder_factory, synthetic_time):
        from route_radio.interfaces.events import ContextUpdate, SegmentBoundaryCrossed

        synthetic_time.tod = 290.0
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        boundaries = []
        contexts = []
        radio.subscribe(SegmentBoundaryCrossed, boundaries.append)
        radio.subscribe(ContextUpdate, contexts.append)

        radio.begin_session()
        await radio.start()
        try:
            synthetic_time.advance(15.0)
            radio.clock.emit_update()
            synthetic_time.advance(1.0)
            radio.clock.emit_update()

            assert boundaries == [SegmentBoundaryCrossed('coast', 'valley')]
            assert contexts[-1].segment_id == 'valley'
            assert radio.media.current_segment_id == 'valley'
            assert radio.last_segment_id == 'valley'
            assert radio.stats['boundaries'] == 1
        finally:
            await radio.stop()

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, route_config, decoder_factory, synthetic_time):
        from route_radio.engine.coordinator import SessionState

        synthetic_time.tod = 290.0
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        await radio.start()
        try:
            decoder = radio.audio.current.decoder
            radio.pause()
            assert radio.state == SessionState.PAUSED
            assert not radio.clock.is_running
            assert not decoder.playing

            # Resume re-derives the position from the time of day
            synthetic_time.tod = 100.0
            await radio.resume()
            assert radio.state == SessionState.RUNNING
            assert radio.clock.get_current_position() == 100.0
            assert decoder.playing
            assert decoder.seeks[-1] == 0.0
        finally:
            await radio.stop()

    @pytest.mark.asyncio
    async def test_debug_seek(self, route_config, decoder_factory, synthetic_time):
        from route_radio.interfaces.events import SegmentBoundaryCrossed

        synthetic_time.tod = 290.0
        radio = make_coordinator(route_config, decoder_factory, synthetic_time, debug=True)
        boundaries = []
        radio.subscribe(SegmentBoundaryCrossed, boundaries.append)
        radio.begin_session()
        await radio.start()
        try:
            await radio.seek(1050.0)
            assert radio.clock.get_current_position() == pytest.approx(450.0)
            assert radio.audio.current.resource.url == 'audio/b2.mp3'
            assert radio.audio.current.decoder.seeks == [0.0]
            assert boundaries == [SegmentBoundaryCrossed('coast', 'valley')]
        finally:
            await radio.stop()

    @pytest.mark.asyncio
    async def test_set_volume(self, route_config, decoder_factory, synthetic_time):
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        await radio.start()
        try:
            radio.set_volume(0.3)
            assert radio.audio.current.decoder.volume == 0.3
        finally:
            await radio.stop()

    @pytest.mark.asyncio
    async def test_stop_releases_audio(self, route_config, decoder_factory, synthetic_time):
        from route_radio.engine.coordinator import SessionState

        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        await radio.start()
        await radio.stop()

        assert radio.state == SessionState.STOPPED
        assert not radio.clock.is_running
        assert all(d.released for d in decoder_factory.created)

        await radio.stop()

    @pytest.mark.asyncio
    async def test_state_is_json_serializable(self, route_config, decoder_factory, synthetic_time):
        synthetic_time.tod = 50.0
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        await radio.start()
        try:
            state = json.loads(json.dumps(radio.get_state()))
            assert state['state'] == 'RUNNING'
            assert state['segment']['id'] == 'coast'
            assert state['resource']['url'] == 'audio/a1.mp3'
            assert state['upcoming']['next'] == 'a2'
            assert state['clock']['state'] == 'running'
            assert state['audio']['current']['url'] == 'audio/a1.mp3'
        finally:
            await radio.stop()

    @pytest.mark.asyncio
    async def test_context_now(self, route_config, decoder_factory, synthetic_time):
        synthetic_time.tod = 320.0
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        await radio.start()
        try:
            context = radio.context_now()
            assert context.segment.id == 'valley'
            assert context.offset_in_file == pytest.approx(20.0)
        finally:
            await radio.stop()

    @pytest.mark.asyncio
    async def test_start_survives_undecodable_audio(self, route_config, decoder_factory, synthetic_time):
        from route_radio.engine.audio_sync import SyncAction
        from route_radio.engine.coordinator import SessionState

        synthetic_time.tod = 150.0
        decoder_factory.play_fail_urls.add('audio/a2.mp3')
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        await radio.start()
        try:
            assert radio.state == SessionState.RUNNING
            assert radio.clock.is_running
            assert radio.audio.current is None
            assert radio.audio.stats['load_failures'] == 1
            assert decoder_factory.for_url('audio/a2.mp3')[0].released

            decoder_factory.play_fail_urls.clear()
            action = await radio.audio.sync(radio.clock.get_current_position())
            assert action == SyncAction.RELOAD
            assert radio.audio.current.decoder.playing
        finally:
            await radio.stop()


class TestSnapshot:
    """State read from another thread is assembled on the radio's loop."""

    def test_snapshot_without_loop(self, route_config, decoder_factory, synthetic_time):
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        assert radio.snapshot()['state'] == 'IDLE'

    @pytest.mark.asyncio
    async def test_snapshot_from_another_thread(self, route_config, decoder_factory, synthetic_time):
        loop_thread = threading.get_ident()
        radio = make_coordinator(route_config, decoder_factory, synthetic_time)
        radio.begin_session()
        await radio.start()

        threads = []
        get_state = radio.get_state

        def recording_get_state():
            threads.append(threading.get_ident())
            return get_state()

        radio.get_state = recording_get_state
        try:
            loop = asyncio.get_running_loop()
            state = await loop.run_in_executor(None, radio.snapshot)
            assert state['state'] == 'RUNNING'
            assert threads == [loop_thread]
        finally:
            await radio.stop()
