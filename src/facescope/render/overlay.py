"""Overlay renderer: boxes, labels, landmarks, expressions and placeholders."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import TYPE_CHECKING

import cv2
import numpy as np

from facescope.render.surface import FONT, Color

if TYPE_CHECKING:
    from facescope.ml.pipeline import Box, Detection
    from facescope.render.surface import DrawingSurface

# Colors are BGR.
BOX_COLOR: Color = (255, 0, 0)
BOX_LINE_WIDTH = 2
LABEL_TEXT_COLOR: Color = (255, 255, 255)
LABEL_BACKGROUND: Color = (0, 0, 0)
LABEL_BACKGROUND_ALPHA = 0.5
LABEL_FONT_SCALE = 0.5
LABEL_PADDING = 4

LANDMARK_LINE_COLOR: Color = (255, 255, 1)
LANDMARK_POINT_COLOR: Color = (255, 0, 255)
LANDMARK_POINT_SIZE = 2

PLACEHOLDER_FONT_SCALE = 0.7
LOADING_TEXT = "Loading..."
LOADING_ALPHA = 0.5
ERROR_TEXT = "Error processing the image"
ERROR_ALPHA = 0.7
ERROR_TEXT_COLOR: Color = (0, 0, 255)

DEFAULT_MIN_CONFIDENCE = 0.5

# (start, end, closed) index ranges of the 68-point layout.
LANDMARK_CONTOURS: tuple[tuple[int, int, bool], ...] = (
    (0, 17, False),  # jaw
    (17, 22, False),  # left brow
    (22, 27, False),  # right brow
    (27, 36, False),  # nose
    (36, 42, True),  # left eye
    (42, 48, True),  # right eye
    (48, 68, True),  # mouth
)


def round_to(num: float, prec: int = 2) -> float:
    """Round half up to ``prec`` decimals."""
    factor = 10**prec
    return math.floor(num * factor + 0.5) / factor


def format_number(num: float) -> str:
    return f"{num:g}"


def box_label(detection: Detection) -> str:
    """``"<age> years <gender> (<probability>)"``."""
    age = format_number(round_to(detection.age, 0))
    probability = format_number(round_to(detection.gender_probability))
    return f"{age} years {detection.gender} ({probability})"


def expression_lines(detection: Detection, min_confidence: float) -> list[str]:
    return [
        f"{name} ({format_number(round_to(prob))})" for name, prob in detection.top_expressions(min_confidence)
    ]


def draw_text_field(surface: DrawingSurface, lines: Sequence[str], anchor: tuple[float, float]) -> None:
    """Draw lines of text on a translucent field whose top-left is ``anchor``.

    The field is shifted back inside the surface when it would overflow.
    """
    if not lines:
        return
    sizes = [cv2.getTextSize(line, FONT, LABEL_FONT_SCALE, 1) for line in lines]
    line_height = max(h + baseline for (_, h), baseline in sizes)
    field_w = max(w for (w, _), _ in sizes) + 2 * LABEL_PADDING
    field_h = line_height * len(lines) + 2 * LABEL_PADDING

    x = int(min(max(anchor[0], 0), max(surface.width - field_w, 0)))
    y = int(min(max(anchor[1], 0), max(surface.height - field_h, 0)))

    surface.fill_overlay(LABEL_BACKGROUND, LABEL_BACKGROUND_ALPHA, (x, y, x + field_w, y + field_h))
    for i, ((_, text_h), _) in enumerate(sizes):
        origin = (x + LABEL_PADDING, y + LABEL_PADDING + i * line_height + text_h)
        surface.draw_text(lines[i], origin, LABEL_TEXT_COLOR, LABEL_FONT_SCALE)


def draw_box(surface: DrawingSurface, box: Box, label: str | None = None) -> None:
    top_left = (round(box.x), round(box.y))
    bottom_right = (round(box.right), round(box.bottom))
    cv2.rectangle(surface.pixels, top_left, bottom_right, BOX_COLOR, BOX_LINE_WIDTH)
    if label:
        draw_text_field(surface, [label], (box.x - BOX_LINE_WIDTH / 2, box.y))


def draw_landmarks(surface: DrawingSurface, landmarks: Sequence[tuple[float, float]]) -> None:
    points = np.round(np.asarray(landmarks, dtype=np.float32)).astype(np.int32)
    if len(points) == 68:
        for start, end, closed in LANDMARK_CONTOURS:
            cv2.polylines(surface.pixels, [points[start:end]], closed, LANDMARK_LINE_COLOR, 1, cv2.LINE_AA)
    for x, y in points:
        cv2.circle(surface.pixels, (int(x), int(y)), LANDMARK_POINT_SIZE // 2 or 1, LANDMARK_POINT_COLOR, -1)


def draw_expressions(
    surface: DrawingSurface,
    detections: Sequence[Detection],
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> None:
    """Label each face with its expressions above ``min_confidence``."""
    for detection in detections:
        draw_text_field(surface, expression_lines(detection, min_confidence), detection.box.bottom_left)


def draw_detections(
    surface: DrawingSurface,
    detections: Sequence[Detection],
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> None:
    """Paint every detection: labelled box, landmarks, then expressions.

    Expressions are redrawn for the whole list on every iteration.
    """
    for detection in detections:
        draw_box(surface, detection.box, box_label(detection))
        draw_landmarks(surface, detection.landmarks)
        draw_expressions(surface, detections, min_confidence)


def draw_loading(surface: DrawingSurface) -> None:
    surface.fill_overlay((0, 0, 0), LOADING_ALPHA)
    surface.draw_text_centered(LOADING_TEXT, (255, 255, 255), PLACEHOLDER_FONT_SCALE)


def draw_error(surface: DrawingSurface) -> None:
    surface.fill_overlay((0, 0, 0), ERROR_ALPHA)
    surface.draw_text_centered(ERROR_TEXT, ERROR_TEXT_COLOR, PLACEHOLDER_FONT_SCALE)
