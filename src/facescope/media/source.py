"""Media source adapter: webcam acquisition, live playback and release."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING

import cv2

from facescope.errors import CameraError, NoDeviceError, PermissionDeniedError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import numpy as np
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

MJPEG_BOUNDARY = "frame"


class MediaSource:
    """Holds at most one open camera and a thread that keeps its latest frame.

    ``start`` and ``stop`` never raise: acquisition failures are logged.
    """

    def __init__(self, device: int = 0) -> None:
        self.device = device
        self._lock = threading.Lock()
        self._frame_lock = threading.Lock()
        self._capture: cv2.VideoCapture | None = None
        self._reader: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._latest: NDArray[np.uint8] | None = None

    @property
    def is_active(self) -> bool:
        return self._capture is not None

    @property
    def video_size(self) -> tuple[int, int] | None:
        """Intrinsic (width, height) of the live video, once a frame arrived."""
        frame = self._latest
        if frame is None:
            return None
        return int(frame.shape[1]), int(frame.shape[0])

    def start(self) -> None:
        """Open the camera and begin playback, replacing any active stream."""
        with self._lock:
            if self._capture is not None:
                self._release()
            try:
                capture = self._open()
            except CameraError as exc:
                logger.error("Cannot start webcam: %s", exc)
                return
            self._capture = capture
            logger.info("Webcam %d opened", self.device)
            try:
                self._start_playback(capture)
            except RuntimeError:
                logger.exception("Webcam playback failed to start")

    def stop(self) -> None:
        """Stop playback and release the camera; no-op when nothing is active."""
        with self._lock:
            self._release()

    def read_frame(self) -> NDArray[np.uint8] | None:
        """Copy of the latest live frame, or None."""
        with self._frame_lock:
            return None if self._latest is None else self._latest.copy()

    async def mjpeg_frames(self, fps: float = 30.0) -> AsyncIterator[bytes]:
        """Multipart JPEG chunks of the live video until the stream stops.

        A generator is bound to the playback it started on: a stop ends it
        even if the camera is started again afterwards.
        """
        if not self.is_active:
            return
        stop_event = self._stop_event
        while not stop_event.is_set():
            frame = self.read_frame()
            if frame is not None:
                ok, buffer = cv2.imencode(".jpg", frame)
                if ok:
                    yield (
                        f"--{MJPEG_BOUNDARY}\r\nContent-Type: image/jpeg\r\n\r\n".encode()
                        + buffer.tobytes()
                        + b"\r\n"
                    )
            await asyncio.sleep(1.0 / fps)

    # -- Internal -----------------------------------------------------------

    def _open(self) -> cv2.VideoCapture:
        node = Path(f"/dev/video{self.device}")
        if node.exists() and not os.access(node, os.R_OK):
            raise PermissionDeniedError(f"No read access to {node}")

        capture = cv2.VideoCapture(self.device)
        if not capture.isOpened():
            capture.release()
            raise NoDeviceError(f"Cannot open camera {self.device}")
        return capture

    def _start_playback(self, capture: cv2.VideoCapture) -> None:
        ok, frame = capture.read()
        if ok:
            with self._frame_lock:
                self._latest = frame
        else:
            logger.warning("Webcam %d opened but returned no first frame", self.device)

        self._stop_event = threading.Event()
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(capture, self._stop_event),
            name="camera-reader",
            daemon=True,
        )
        self._reader.start()

    def _read_loop(self, capture: cv2.VideoCapture, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            ok, frame = capture.read()
            if not ok:
                stop_event.wait(0.05)
                continue
            with self._frame_lock:
                self._latest = frame

    def _release(self) -> None:
        if self._capture is None:
            return
        self._stop_event.set()
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join()
        self._reader = None
        self._capture.release()
        self._capture = None
        with self._frame_lock:
            self._latest = None
        logger.info("Webcam %d released", self.device)
