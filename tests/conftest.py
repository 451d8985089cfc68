"""Shared fakes for the capture service tests."""

import asyncio
import threading

import numpy as np
import pytest

from capture_service.config.settings import CaptureConfig
from capture_service.core.capture import Frame
from capture_service.core.gesture import FingerCounter


class FakeFrameSource:
    """Frame source that always hands out the same image (or nothing)."""

    def __init__(self, image=None, empty: bool = False):
        if image is None and not empty:
            image = np.full((48, 64, 3), 128, dtype=np.uint8)
        self.image = image
        self.frame_id = 0
        self.started = False

    def latest(self):
        if self.image is None:
            return None
        self.frame_id += 1
        return Frame(
            image=self.image,
            frame_id=self.frame_id,
            timestamp=0.0,
            width=self.image.shape[1],
            height=self.image.shape[0]
        )

    def start(self) -> bool:
        self.started = True
        return True

    def stop(self):
        self.started = False


class ScriptedCounter(FingerCounter):
    """Returns pre-recorded finger counts, then a default value forever."""

    name = "scripted"

    def __init__(self, readings=(), default=None):
        self._readings = list(readings)
        self._default = default
        self._lock = threading.Lock()
        self.calls = 0
        self.closed = False

    def classify(self, image):
        with self._lock:
            self.calls += 1
            if self._readings:
                return self._readings.pop(0)
            return self._default

    def close(self):
        self.closed = True


class RaisingCounter(FingerCounter):
    """Classifier that always fails."""

    name = "raising"

    def __init__(self):
        self.calls = 0

    def classify(self, image):
        self.calls += 1
        raise RuntimeError("model crashed")


class BlockingCounter(FingerCounter):
    """Holds every classification until release is set."""

    name = "blocking"

    def __init__(self, value=1):
        self.value = value
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def classify(self, image):
        self.calls += 1
        self.entered.set()
        self.release.wait(timeout=2.0)
        return self.value


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll predicate on the running loop until it holds or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def fast_config() -> CaptureConfig:
    return CaptureConfig(
        poll_interval_ms=5,
        tick_interval_ms=20,
        rearm_delay_ms=20
    )
