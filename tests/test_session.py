"""Tests for the asyncio capture session."""

import asyncio
from dataclasses import replace

from capture_service.core.session import CaptureSession
from capture_service.core.state_machine import CaptureState

from conftest import BlockingCounter, FakeFrameSource, RaisingCounter, ScriptedCounter, wait_for


class Recorder:
    """Collects everything a session reports."""

    def __init__(self):
        self.events = []
        self.snapshots = []
        self.photos = []
        self.cancels = 0

    def on_state(self, snapshot, event):
        self.snapshots.append(snapshot)
        if event is not None:
            self.events.append(event)

    def on_capture(self, photo):
        self.photos.append(photo)

    def on_cancel(self):
        self.cancels += 1

    @property
    def event_types(self):
        return [e.event_type for e in self.events]


def make_session(config, classifier=None, source=None, enabled=True):
    recorder = Recorder()
    session = CaptureSession(
        frame_source=source or FakeFrameSource(),
        classifier=classifier or ScriptedCounter(),
        config=config,
        on_capture=recorder.on_capture,
        on_cancel=recorder.on_cancel,
        enabled=enabled
    )
    session.register_callback(recorder.on_state)
    return session, recorder


class TestGestureCapture:
    """Test suite for gesture-triggered capture cycles."""

    def test_one_two_three_takes_one_photo(self, fast_config):
        async def scenario():
            counter = ScriptedCounter([None, 1, 1, 2, 3])
            session, rec = make_session(fast_config, classifier=counter)
            calls = {}

            def track(snapshot, event):
                if event is not None and event.event_type in ("trigger", "capture"):
                    calls[event.event_type] = counter.calls

            session.register_callback(track)
            session.start()

            assert await wait_for(lambda: rec.photos)
            session.close()
            return rec, calls

        rec, calls = asyncio.run(scenario())

        types = rec.event_types
        assert types[:4] == ["trigger", "tick", "tick", "capture"]
        assert [e.countdown for e in rec.events[:3]] == [3, 2, 1]
        assert rec.events[0].meta["source"] == "gesture"
        assert len(rec.photos) == 1
        assert rec.photos[0].jpeg[:2] == b"\xff\xd8"
        # Polling is suspended for the whole countdown
        assert calls["trigger"] == calls["capture"] == 5
        assert rec.cancels == 0

    def test_inline_session_rearms_and_polls_again(self, fast_config):
        async def scenario():
            counter = ScriptedCounter([1, 2, 3])
            session, rec = make_session(fast_config, classifier=counter)
            session.start()

            assert await wait_for(lambda: rec.photos)
            after_capture = counter.calls

            assert await wait_for(
                lambda: session.state == CaptureState.DETECTING and counter.calls > after_capture
            )
            session.close()
            return session, rec

        session, rec = asyncio.run(scenario())

        assert "rearm" in rec.event_types
        assert session.photos_taken == 1
        assert rec.cancels == 0

    def test_classifier_errors_are_neutral(self, fast_config):
        async def scenario():
            counter = RaisingCounter()
            session, rec = make_session(fast_config, classifier=counter)
            session.start()

            assert await wait_for(lambda: counter.calls >= 3)
            state = session.state
            closed = session.closed
            session.close()
            return state, closed, rec

        state, closed, rec = asyncio.run(scenario())

        assert state == CaptureState.DETECTING
        assert closed is False
        assert rec.events == []

    def test_missing_frames_do_not_reach_classifier(self, fast_config):
        async def scenario():
            counter = ScriptedCounter()
            session, rec = make_session(
                fast_config,
                classifier=counter,
                source=FakeFrameSource(empty=True)
            )
            session.start()
            await asyncio.sleep(0.05)
            session.close()
            return counter, rec

        counter, rec = asyncio.run(scenario())

        assert counter.calls == 0
        assert len(rec.snapshots) > 1


class TestManualCapture:
    """Test suite for the manual capture path."""

    def test_manual_capture_runs_countdown(self, fast_config):
        async def scenario():
            session, rec = make_session(fast_config)
            session.start()

            assert session.manual_capture() is True
            assert session.state == CaptureState.COUNTING_DOWN
            assert session.manual_capture() is False

            assert await wait_for(lambda: rec.photos)
            session.close()
            return rec

        rec = asyncio.run(scenario())

        assert rec.event_types[:4] == ["trigger", "tick", "tick", "capture"]
        assert rec.events[0].meta["source"] == "manual"
        assert len(rec.photos) == 1

    def test_manual_capture_requires_started_session(self, fast_config):
        session, _ = make_session(fast_config)
        assert session.manual_capture() is False

    def test_capture_without_frame_fails_back_to_detecting(self, fast_config):
        async def scenario():
            session, rec = make_session(fast_config, source=FakeFrameSource(empty=True))
            session.start()
            session.manual_capture()

            assert await wait_for(lambda: "capture_failed" in rec.event_types)
            state = session.state
            session.close()
            return state, rec

        state, rec = asyncio.run(scenario())

        assert state == CaptureState.DETECTING
        assert rec.photos == []

    def test_on_capture_errors_do_not_stop_session(self, fast_config):
        async def scenario():
            session = CaptureSession(
                frame_source=FakeFrameSource(),
                classifier=ScriptedCounter(),
                config=fast_config,
                on_capture=lambda photo: 1 / 0
            )
            session.start()
            session.manual_capture()

            assert await wait_for(lambda: session.photos_taken == 1)
            assert await wait_for(lambda: session.state == CaptureState.DETECTING)
            session.close()

        asyncio.run(scenario())


class TestEnabledToggle:
    """Test suite for switching gesture detection on and off."""

    def test_disabled_session_does_not_poll(self, fast_config):
        async def scenario():
            counter = ScriptedCounter()
            session, rec = make_session(fast_config, classifier=counter, enabled=False)
            session.start()

            await asyncio.sleep(0.05)
            assert counter.calls == 0
            assert session.has_timer is False

            # Manual capture still works with gestures off
            assert session.manual_capture() is True
            assert await wait_for(lambda: rec.photos)
            assert await wait_for(lambda: session.state == CaptureState.DETECTING)
            await asyncio.sleep(0.03)
            assert counter.calls == 0

            session.set_enabled(True)
            assert await wait_for(lambda: counter.calls > 0)
            session.close()

        asyncio.run(scenario())

    def test_disabling_stops_polling(self, fast_config):
        async def scenario():
            counter = ScriptedCounter()
            session, rec = make_session(fast_config, classifier=counter)
            session.start()

            assert await wait_for(lambda: counter.calls >= 2)
            session.set_enabled(False)
            await asyncio.sleep(0.02)
            calls = counter.calls
            await asyncio.sleep(0.05)

            assert counter.calls == calls
            assert session.snapshot.enabled is False
            session.close()

        asyncio.run(scenario())


class TestTeardown:
    """Test suite for cancel and close."""

    def test_cancel_during_countdown(self, fast_config):
        async def scenario():
            config = replace(fast_config, tick_interval_ms=40)
            session, rec = make_session(config)
            session.start()
            session.manual_capture()

            assert await wait_for(lambda: session.trigger.countdown == 2)
            assert session.cancel() is True
            assert session.has_timer is False
            seen = len(rec.events)

            await asyncio.sleep(0.2)
            assert len(rec.events) == seen
            assert session.cancel() is False
            return session, rec

        session, rec = asyncio.run(scenario())

        assert rec.photos == []
        assert rec.cancels == 1
        assert rec.event_types[-1] == "cancel"
        assert session.state == CaptureState.TERMINATED

    def test_modal_session_closes_after_capture(self, fast_config):
        async def scenario():
            config = replace(fast_config, close_on_capture=True)
            session, rec = make_session(config)
            session.start()
            session.manual_capture()

            assert await wait_for(lambda: session.closed)
            return session, rec

        session, rec = asyncio.run(scenario())

        assert len(rec.photos) == 1
        assert rec.cancels == 0
        assert session.has_timer is False

    def test_close_is_silent(self, fast_config):
        async def scenario():
            session, rec = make_session(fast_config)
            session.start()
            session.close()
            session.close()
            return session, rec

        session, rec = asyncio.run(scenario())

        assert session.closed
        assert rec.cancels == 0
        assert "cancel" not in rec.event_types


def spy_on_observe(session):
    """Record every reading that reaches the state machine."""
    observed = []
    original = session.trigger.observe

    def observe(finger_count, timestamp):
        observed.append(finger_count)
        return original(finger_count, timestamp)

    session.trigger.observe = observe
    return observed


class TestInFlightClassification:
    """Test suite for results that arrive after the session moved on."""

    def test_close_drops_pending_result(self, fast_config):
        async def scenario():
            counter = BlockingCounter(value=1)
            session, rec = make_session(fast_config, classifier=counter)
            observed = spy_on_observe(session)
            session.start()

            try:
                assert await wait_for(counter.entered.is_set)
                session.close()
                assert session.has_timer is False
            finally:
                counter.release.set()

            await asyncio.sleep(0.05)
            return session, rec, counter, observed

        session, rec, counter, observed = asyncio.run(scenario())

        assert observed == []
        assert counter.calls == 1
        assert session.has_timer is False
        assert "trigger" not in rec.event_types

    def test_manual_capture_drops_pending_result(self, fast_config):
        async def scenario():
            config = replace(fast_config, tick_interval_ms=1000)
            counter = BlockingCounter(value=1)
            session, rec = make_session(config, classifier=counter)
            observed = spy_on_observe(session)
            session.start()

            try:
                assert await wait_for(counter.entered.is_set)
                assert session.manual_capture() is True
            finally:
                counter.release.set()

            await asyncio.sleep(0.05)
            state = session.state
            countdown = session.trigger.countdown
            session.close()
            return state, countdown, rec, counter, observed

        state, countdown, rec, counter, observed = asyncio.run(scenario())

        assert observed == []
        assert counter.calls == 1
        assert state == CaptureState.COUNTING_DOWN
        assert countdown == 3
        assert rec.event_types == ["trigger"]
        assert rec.events[0].meta["source"] == "manual"
