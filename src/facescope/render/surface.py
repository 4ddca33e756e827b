"""The shared drawing surface: a BGR pixel buffer mutated in place."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

Color = tuple[int, int, int]

FONT = cv2.FONT_HERSHEY_SIMPLEX


class DrawingSurface:
    """Fixed-size pixel buffer that capture and overlay rendering draw into.

    Resizing discards the contents, like a canvas whose width or height is
    assigned.
    """

    def __init__(self, width: int, height: int) -> None:
        self.pixels: NDArray[np.uint8] = np.zeros((height, width, 3), dtype=np.uint8)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def resize(self, width: int, height: int) -> None:
        self.pixels = np.zeros((height, width, 3), dtype=np.uint8)

    def clear(self) -> None:
        self.pixels[:] = 0

    def draw_image(self, image: NDArray[np.uint8], x: int = 0, y: int = 0) -> None:
        """Copy an image onto the surface at (x, y), clipped to the bounds."""
        if x >= self.width or y >= self.height:
            return
        h = min(image.shape[0], self.height - y)
        w = min(image.shape[1], self.width - x)
        self.pixels[y : y + h, x : x + w] = image[:h, :w]

    def fill_overlay(self, color: Color, alpha: float, rect: tuple[int, int, int, int] | None = None) -> None:
        """Blend a translucent rectangle (whole surface when ``rect`` is None)."""
        if rect is None:
            x1, y1, x2, y2 = 0, 0, self.width, self.height
        else:
            x1, y1, x2, y2 = rect
            x1, x2 = max(x1, 0), min(x2, self.width)
            y1, y2 = max(y1, 0), min(y2, self.height)
            if x1 >= x2 or y1 >= y2:
                return
        region = self.pixels[y1:y2, x1:x2].astype(np.float32)
        tint = np.array(color, dtype=np.float32)
        self.pixels[y1:y2, x1:x2] = (region * (1.0 - alpha) + tint * alpha).round().astype(np.uint8)

    def draw_text(self, text: str, origin: tuple[int, int], color: Color, scale: float, thickness: int = 1) -> None:
        """Draw text with its baseline starting at ``origin``."""
        cv2.putText(self.pixels, text, origin, FONT, scale, color, thickness, cv2.LINE_AA)

    def draw_text_centered(self, text: str, color: Color, scale: float, thickness: int = 1) -> None:
        (text_w, text_h), _ = cv2.getTextSize(text, FONT, scale, thickness)
        origin = ((self.width - text_w) // 2, (self.height + text_h) // 2)
        self.draw_text(text, origin, color, scale, thickness)

    def snapshot(self) -> NDArray[np.uint8]:
        """Copy of the current contents, safe to hand to another thread."""
        return self.pixels.copy()

    def encode_png(self) -> bytes:
        ok, buffer = cv2.imencode(".png", self.pixels)
        if not ok:
            raise ValueError("PNG encoding failed")
        return buffer.tobytes()
