"""Tests for the webcam adapter and frame capture."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from facescope.errors import ImageDecodeError, ImageTooLargeError, NoFrameError
from facescope.media.capture import capture_live, capture_static, load_upload
from facescope.media.source import MediaSource
from facescope.render.surface import DrawingSurface


def _camera(frame: np.ndarray | None = None, opened: bool = True) -> MagicMock:
    capture = MagicMock()
    capture.isOpened.return_value = opened
    if frame is None:
        capture.read.return_value = (False, None)
    else:
        capture.read.return_value = (True, frame)
    return capture


@pytest.fixture()
def frame() -> np.ndarray:
    image = np.zeros((48, 64, 3), dtype=np.uint8)
    image[:, :, 1] = 180
    return image


@pytest.fixture()
def no_device_node() -> Iterator[None]:
    with patch("facescope.media.source.Path.exists", return_value=False):
        yield


@pytest.mark.usefixtures("no_device_node")
class TestMediaSource:
    def test_start_opens_camera_and_plays(self, frame: np.ndarray) -> None:
        camera = _camera(frame)
        with patch("facescope.media.source.cv2.VideoCapture", return_value=camera) as video_capture:
            source = MediaSource(device=2)
            source.start()
            try:
                video_capture.assert_called_once_with(2)
                assert source.is_active
                assert source.video_size == (64, 48)
                np.testing.assert_array_equal(source.read_frame(), frame)
            finally:
                source.stop()

    def test_stop_releases_camera(self, frame: np.ndarray) -> None:
        camera = _camera(frame)
        with patch("facescope.media.source.cv2.VideoCapture", return_value=camera):
            source = MediaSource()
            source.start()
            source.stop()

        assert not source.is_active
        assert source.read_frame() is None
        camera.release.assert_called_once()

    def test_stop_is_idempotent(self, frame: np.ndarray) -> None:
        camera = _camera(frame)
        with patch("facescope.media.source.cv2.VideoCapture", return_value=camera):
            source = MediaSource()
            source.start()
            source.stop()
            source.stop()

        assert not source.is_active
        camera.release.assert_called_once()

    def test_stop_without_stream_is_noop(self) -> None:
        source = MediaSource()
        source.stop()
        assert not source.is_active

    def test_restart_releases_previous_stream(self, frame: np.ndarray) -> None:
        first, second = _camera(frame), _camera(frame)
        with patch("facescope.media.source.cv2.VideoCapture", side_effect=[first, second]):
            source = MediaSource()
            source.start()
            source.start()
            try:
                first.release.assert_called_once()
                second.release.assert_not_called()
                assert source.is_active
            finally:
                source.stop()
        second.release.assert_called_once()

    async def test_stream_ends_on_stop_even_after_restart(self, frame: np.ndarray) -> None:
        with patch("facescope.media.source.cv2.VideoCapture", side_effect=[_camera(frame), _camera(frame)]):
            source = MediaSource()
            source.start()
            stream = source.mjpeg_frames(fps=1000.0)
            try:
                chunk = await anext(stream)
                assert chunk.startswith(b"--frame\r\nContent-Type: image/jpeg")

                source.stop()
                source.start()
                assert source.is_active
                with pytest.raises(StopAsyncIteration):
                    await anext(stream)
            finally:
                await stream.aclose()
                source.stop()

    async def test_stream_of_inactive_source_is_empty(self) -> None:
        chunks = [chunk async for chunk in MediaSource().mjpeg_frames()]
        assert chunks == []

    def test_missing_device_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        camera = _camera(opened=False)
        with patch("facescope.media.source.cv2.VideoCapture", return_value=camera):
            source = MediaSource(device=7)
            with caplog.at_level(logging.ERROR, logger="facescope.media.source"):
                source.start()

        assert not source.is_active
        assert "Cannot open camera 7" in caplog.text
        camera.release.assert_called_once()

    def test_playback_without_first_frame_still_active(self, caplog: pytest.LogCaptureFixture) -> None:
        camera = _camera(frame=None)
        with patch("facescope.media.source.cv2.VideoCapture", return_value=camera):
            source = MediaSource()
            with caplog.at_level(logging.WARNING, logger="facescope.media.source"):
                source.start()
            try:
                assert source.is_active
                assert source.read_frame() is None
                assert "no first frame" in caplog.text
            finally:
                source.stop()


def test_permission_denied_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    with (
        patch("facescope.media.source.Path.exists", return_value=True),
        patch("facescope.media.source.os.access", return_value=False),
        patch("facescope.media.source.cv2.VideoCapture") as video_capture,
        caplog.at_level(logging.ERROR, logger="facescope.media.source"),
    ):
        source = MediaSource()
        source.start()

    assert not source.is_active
    assert "No read access" in caplog.text
    video_capture.assert_not_called()


class TestCapture:
    def test_live_capture_matches_frame_size(self, frame: np.ndarray) -> None:
        source = MagicMock()
        source.read_frame.return_value = frame
        surface = DrawingSurface(640, 480)

        capture_live(surface, source)

        assert surface.size == (64, 48)
        # The loading placeholder is fully covered by the frame.
        np.testing.assert_array_equal(surface.pixels, frame)

    def test_live_capture_without_frame(self) -> None:
        source = MagicMock()
        source.read_frame.return_value = None
        with pytest.raises(NoFrameError):
            capture_live(DrawingSurface(10, 10), source)

    def test_static_capture_matches_image_size(self) -> None:
        image = np.full((23, 37, 3), 60, dtype=np.uint8)
        ok, encoded = cv2.imencode(".png", image)
        assert ok
        surface = DrawingSurface(640, 480)
        surface.pixels[:] = 255

        capture_static(surface, load_upload(encoded.tobytes(), max_file_size=1 << 20, max_pixels=1 << 20))

        assert surface.size == (37, 23)
        np.testing.assert_array_equal(surface.pixels, image)

    def test_undecodable_upload(self) -> None:
        with pytest.raises(ImageDecodeError):
            load_upload(b"definitely not an image", max_file_size=1 << 20, max_pixels=1 << 20)

    def test_empty_upload(self) -> None:
        with pytest.raises(ImageDecodeError):
            load_upload(b"", max_file_size=1 << 20, max_pixels=1 << 20)

    def test_upload_over_byte_limit(self) -> None:
        with pytest.raises(ImageTooLargeError):
            load_upload(b"x" * 11, max_file_size=10, max_pixels=1 << 20)

    def test_upload_over_pixel_limit(self) -> None:
        ok, encoded = cv2.imencode(".png", np.zeros((20, 20, 3), dtype=np.uint8))
        assert ok
        with pytest.raises(ImageTooLargeError):
            load_upload(encoded.tobytes(), max_file_size=1 << 20, max_pixels=100)
