"""Frame capture: put a live frame or an uploaded image on the surface."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from facescope.errors import ImageTooLargeError, NoFrameError
from facescope.ml.preprocessing import decode_image
from facescope.render.overlay import draw_loading

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from facescope.media.source import MediaSource
    from facescope.render.surface import DrawingSurface

logger = logging.getLogger(__name__)


def capture_live(surface: DrawingSurface, source: MediaSource) -> None:
    """Snapshot the current video frame at its native resolution.

    The loading placeholder is painted first and then covered by the frame.
    """
    frame = source.read_frame()
    if frame is None:
        raise NoFrameError("Webcam is not streaming")

    height, width = frame.shape[:2]
    surface.resize(width, height)
    draw_loading(surface)
    surface.draw_image(frame)
    logger.debug("Captured live frame %dx%d", width, height)


def load_upload(data: bytes, max_file_size: int, max_pixels: int) -> NDArray[np.uint8]:
    """Check the upload size and decode it to a BGR image."""
    if len(data) > max_file_size:
        raise ImageTooLargeError(f"File has {len(data)} bytes, limit is {max_file_size}")
    return decode_image(data, max_pixels)


def capture_static(surface: DrawingSurface, image: NDArray[np.uint8]) -> None:
    """Draw a decoded image at its native resolution on a cleared surface."""
    height, width = image.shape[:2]
    surface.resize(width, height)
    surface.clear()
    surface.draw_image(image)
    logger.debug("Captured static image %dx%d", width, height)
