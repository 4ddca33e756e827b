"""Tests for the drawing surface and the overlay renderer."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from fakes import make_detection

from facescope.ml.pipeline import Box
from facescope.render import overlay
from facescope.render.surface import DrawingSurface


def _has_color(surface: DrawingSurface, bgr: tuple[int, int, int]) -> bool:
    return bool(np.any(np.all(surface.pixels == np.array(bgr, dtype=np.uint8), axis=-1)))


class TestDrawingSurface:
    def test_resize_discards_contents(self) -> None:
        surface = DrawingSurface(10, 10)
        surface.pixels[:] = 200
        surface.resize(30, 20)
        assert surface.size == (30, 20)
        assert surface.pixels.shape == (20, 30, 3)
        assert int(surface.pixels.max()) == 0

    def test_fill_overlay_blends(self) -> None:
        surface = DrawingSurface(4, 4)
        surface.pixels[:] = 200
        surface.fill_overlay((0, 0, 0), 0.5)
        assert int(surface.pixels[0, 0, 0]) == 100

    def test_fill_overlay_clips_rect(self) -> None:
        surface = DrawingSurface(4, 4)
        surface.pixels[:] = 200
        surface.fill_overlay((0, 0, 0), 0.5, (-5, -5, 2, 2))
        assert int(surface.pixels[0, 0, 0]) == 100
        assert int(surface.pixels[3, 3, 0]) == 200

    def test_draw_image_clips_to_bounds(self) -> None:
        surface = DrawingSurface(5, 5)
        surface.draw_image(np.full((10, 10, 3), 7, dtype=np.uint8))
        assert int(surface.pixels.min()) == 7

    def test_encode_png_roundtrips_size(self) -> None:
        import cv2

        surface = DrawingSurface(33, 21)
        decoded = cv2.imdecode(np.frombuffer(surface.encode_png(), np.uint8), cv2.IMREAD_COLOR)
        assert decoded.shape == (21, 33, 3)


class TestLabels:
    @pytest.mark.parametrize(
        ("num", "prec", "expected"),
        [(29.6, 0, 30.0), (29.4, 0, 29.0), (0.8734, 2, 0.87), (0.875, 2, 0.88), (1.0, 2, 1.0)],
    )
    def test_round_to(self, num: float, prec: int, expected: float) -> None:
        assert overlay.round_to(num, prec) == pytest.approx(expected)

    def test_box_label(self) -> None:
        detection = make_detection(age=29.6, gender_probability=0.8734)
        assert overlay.box_label(detection) == "30 years male (0.87)"

    def test_box_label_drops_trailing_zeros(self) -> None:
        detection = make_detection(age=41.2, gender_probability=0.9)
        assert overlay.box_label(detection) == "41 years male (0.9)"

    def test_expression_lines_above_threshold_only(self) -> None:
        detection = make_detection(expressions={"happy": 0.7, "surprised": 0.2, "neutral": 0.1})
        assert overlay.expression_lines(detection, 0.5) == ["happy (0.7)"]

    def test_threshold_is_exclusive(self) -> None:
        detection = make_detection(expressions={"happy": 0.5, "neutral": 0.5})
        assert overlay.expression_lines(detection, 0.5) == []


class TestRenderer:
    def test_draws_blue_box(self) -> None:
        surface = DrawingSurface(200, 200)
        overlay.draw_detections(surface, [make_detection(box=Box(40, 30, 80, 100))])
        assert _has_color(surface, overlay.BOX_COLOR)
        assert _has_color(surface, overlay.LANDMARK_POINT_COLOR)

    def test_no_expression_label_below_threshold(self) -> None:
        box = Box(40, 30, 80, 100)
        quiet = make_detection(box=box, expressions={"neutral": 0.4, "happy": 0.35, "sad": 0.25})
        loud = make_detection(box=box, expressions={"happy": 0.9, "neutral": 0.1})

        quiet_surface = DrawingSurface(200, 200)
        overlay.draw_detections(quiet_surface, [quiet])
        loud_surface = DrawingSurface(200, 200)
        overlay.draw_detections(loud_surface, [loud])

        below = (slice(int(box.bottom) + 2, 200), slice(0, 200))
        assert int(quiet_surface.pixels[below].max()) == 0
        assert int(loud_surface.pixels[below].max()) > 0

    def test_expressions_redrawn_for_whole_list_each_iteration(self) -> None:
        surface = DrawingSurface(300, 300)
        detections = [make_detection(box=Box(10, 10, 60, 60)), make_detection(box=Box(150, 150, 60, 60))]

        with patch("facescope.render.overlay.draw_expressions") as mock_draw:
            overlay.draw_detections(surface, detections, 0.5)

        assert mock_draw.call_count == 2
        for call in mock_draw.call_args_list:
            assert list(call.args[1]) == detections

    def test_empty_detections_leave_surface_untouched(self) -> None:
        surface = DrawingSurface(50, 50)
        surface.pixels[:] = 90
        overlay.draw_detections(surface, [])
        assert int(surface.pixels.min()) == 90 and int(surface.pixels.max()) == 90

    def test_text_field_stays_inside_surface(self) -> None:
        surface = DrawingSurface(120, 60)
        overlay.draw_text_field(surface, ["a rather long label line"], (110, 55))
        assert int(surface.pixels.max()) > 0

    def test_error_overlay(self) -> None:
        surface = DrawingSurface(320, 240)
        surface.pixels[:] = 255
        overlay.draw_error(surface)
        # Corners are darkened to 30% and the centre carries red text.
        assert int(surface.pixels[0, 0, 0]) == 76 or int(surface.pixels[0, 0, 0]) == 77
        centre = surface.pixels[100:140, :]
        assert bool(np.any((centre[..., 2] > 200) & (centre[..., 0] < 120)))

    def test_loading_overlay(self) -> None:
        surface = DrawingSurface(320, 240)
        surface.pixels[:] = 200
        overlay.draw_loading(surface)
        assert int(surface.pixels[0, 0, 0]) == 100
        assert _has_color(surface, (255, 255, 255)) or int(surface.pixels[100:140].max()) > 200

    def test_landmarks_without_68_points_draw_points_only(self) -> None:
        surface = DrawingSurface(50, 50)
        overlay.draw_landmarks(surface, [(10.0, 10.0), (40.0, 40.0)])
        assert _has_color(surface, overlay.LANDMARK_POINT_COLOR)
        assert not _has_color(surface, overlay.LANDMARK_LINE_COLOR)


def test_draw_box_without_label() -> None:
    surface = DrawingSurface(100, 100)
    overlay.draw_box(surface, Box(10, 10, 50, 50))
    assert _has_color(surface, overlay.BOX_COLOR)
    assert not _has_color(surface, overlay.LABEL_TEXT_COLOR)


def test_draw_expressions_uses_box_bottom_left() -> None:
    surface = DrawingSurface(200, 200)
    text_field = MagicMock()
    with patch("facescope.render.overlay.draw_text_field", text_field):
        overlay.draw_expressions(surface, [make_detection(box=Box(20, 30, 50, 60))], 0.5)
    text_field.assert_called_once_with(surface, ["happy (0.9)"], (20, 90))
