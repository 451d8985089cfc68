"""Tests for photo encoding and the camera wrapper."""

import base64

import numpy as np

from capture_service.core.capture import CameraCapture, CapturedPhoto, encode_photo


class TestEncodePhoto:
    """Test suite for still-frame JPEG encoding."""

    def test_encodes_jpeg(self):
        image = np.full((48, 64, 3), 200, dtype=np.uint8)

        photo = encode_photo(image, 1234.0)

        assert photo is not None
        assert photo.jpeg[:2] == b"\xff\xd8"
        assert (photo.width, photo.height) == (64, 48)
        assert photo.timestamp == 1234.0

    def test_missing_image(self):
        assert encode_photo(None, 0.0) is None

    def test_empty_image(self):
        assert encode_photo(np.zeros((0, 0, 3), dtype=np.uint8), 0.0) is None

    def test_lower_quality_is_smaller(self):
        rng = np.random.default_rng(7)
        image = rng.integers(0, 256, size=(120, 160, 3), dtype=np.uint8)

        high = encode_photo(image, 0.0, quality=95)
        low = encode_photo(image, 0.0, quality=20)

        assert len(low.jpeg) < len(high.jpeg)


class TestCapturedPhoto:
    """Test suite for photo serialisation."""

    def test_data_url(self):
        photo = CapturedPhoto(jpeg=b"\xff\xd8abc", timestamp=1.0, width=2, height=1)

        assert photo.data_url.startswith("data:image/jpeg;base64,")
        encoded = photo.data_url.split(",", 1)[1]
        assert base64.b64decode(encoded) == b"\xff\xd8abc"

    def test_to_dict(self):
        photo = CapturedPhoto(jpeg=b"x", timestamp=5.0, width=640, height=480)

        data = photo.to_dict()

        assert data["image"] == photo.data_url
        assert data["timestamp"] == 5.0
        assert (data["width"], data["height"]) == (640, 480)


class TestCameraCapture:
    """Test suite for the camera wrapper without a device."""

    def test_no_frame_before_start(self):
        camera = CameraCapture(device_id=99)

        assert camera.latest() is None
        assert camera.is_running is False
        assert camera.actual_fps == 0.0

    def test_read_times_out_when_not_running(self):
        camera = CameraCapture(device_id=99)
        assert camera.read(timeout=0.01) is None
