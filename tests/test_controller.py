"""Tests for capture-detect-render cycles."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest
from fakes import FakePipeline, make_detection, make_settings

from facescope.controller import Controller, CycleOutcome, CycleState
from facescope.errors import InferenceError, NoFrameError, NotReadyError
from facescope.ml.pipeline import Box
from facescope.render.overlay import BOX_COLOR


def _png(width: int, height: int, value: int = 255) -> bytes:
    ok, encoded = cv2.imencode(".png", np.full((height, width, 3), value, dtype=np.uint8))
    assert ok
    return encoded.tobytes()


def _has_color(pixels: np.ndarray, bgr: tuple[int, int, int]) -> bool:
    return bool(np.any(np.all(pixels == np.array(bgr, dtype=np.uint8), axis=-1)))


def _controller(pipeline: FakePipeline, media: MagicMock | None = None) -> Controller:
    return Controller(pipeline, media or MagicMock(), make_settings())  # type: ignore[arg-type]


class TestCycles:
    def test_initial_state(self) -> None:
        controller = _controller(FakePipeline())
        assert controller.state is CycleState.IDLE
        assert controller.surface.size == (640, 480)
        assert controller.current_cycle == 0

    async def test_upload_renders_detections(self) -> None:
        pipeline = FakePipeline([make_detection(box=Box(40, 30, 80, 100))])
        controller = _controller(pipeline)

        result = await controller.capture_upload(_png(200, 180, value=0))

        assert result.outcome is CycleOutcome.RENDERED
        assert (result.width, result.height) == (200, 180)
        assert len(result.detections) == 1
        assert controller.state is CycleState.RENDERED
        assert _has_color(controller.surface.pixels, BOX_COLOR)

    async def test_live_capture_renders(self) -> None:
        media = MagicMock()
        media.read_frame.return_value = np.zeros((120, 160, 3), dtype=np.uint8)
        controller = _controller(FakePipeline([make_detection(box=Box(20, 10, 60, 80))]), media)

        result = await controller.capture_live()

        assert result.outcome is CycleOutcome.RENDERED
        assert controller.surface.size == (160, 120)

    async def test_live_capture_without_stream(self) -> None:
        media = MagicMock()
        media.read_frame.return_value = None
        pipeline = FakePipeline()
        controller = _controller(pipeline, media)

        with pytest.raises(NoFrameError):
            await controller.capture_live()
        assert controller.state is CycleState.IDLE
        assert pipeline.calls == 0

    async def test_failed_detection_paints_error_overlay(self) -> None:
        controller = _controller(FakePipeline(error=InferenceError("boom")))

        result = await controller.capture_upload(_png(320, 240))

        assert result.outcome is CycleOutcome.ERRORED
        assert controller.state is CycleState.ERRORED
        pixels = controller.surface.pixels
        assert controller.surface.size == (320, 240)
        # Darkened image, red label, no box from this cycle.
        assert int(pixels[0, 0, 0]) in (76, 77)
        assert bool(np.any((pixels[..., 2] > 200) & (pixels[..., 0] < 120)))
        assert not _has_color(pixels, BOX_COLOR)

    async def test_not_ready_propagates_without_painting(self) -> None:
        controller = _controller(FakePipeline(error=NotReadyError("loading")))

        with pytest.raises(NotReadyError):
            await controller.capture_upload(_png(50, 40, value=10))

        assert controller.state is CycleState.IDLE
        assert int(controller.surface.pixels.max()) == 10

    async def test_stale_cycle_does_not_paint(self) -> None:
        pipeline = FakePipeline([make_detection(box=Box(10, 10, 60, 60))])
        controller = _controller(pipeline)
        gate = asyncio.Event()
        pipeline.gate = gate

        first = asyncio.create_task(controller.capture_upload(_png(300, 300, value=0)))
        while pipeline.calls == 0:
            await asyncio.sleep(0)

        pipeline.detections = []
        second = await controller.capture_upload(_png(90, 70, value=50))
        gate.set()
        first_result = await first

        assert second.outcome is CycleOutcome.RENDERED
        assert first_result.outcome is CycleOutcome.SUPERSEDED
        assert first_result.cycle_id < second.cycle_id
        assert controller.surface.size == (90, 70)
        assert not _has_color(controller.surface.pixels, BOX_COLOR)

    async def test_stale_error_does_not_paint(self) -> None:
        pipeline = FakePipeline(error=InferenceError("late failure"))
        controller = _controller(pipeline)
        gate = asyncio.Event()
        pipeline.gate = gate

        first = asyncio.create_task(controller.capture_upload(_png(300, 300)))
        while pipeline.calls == 0:
            await asyncio.sleep(0)

        pipeline.error = None
        await controller.capture_upload(_png(90, 70, value=50))
        gate.set()
        first_result = await first

        assert first_result.outcome is CycleOutcome.SUPERSEDED
        assert int(controller.surface.pixels.min()) == 50

    async def test_cycle_ids_increase(self) -> None:
        controller = _controller(FakePipeline())
        first = await controller.capture_upload(_png(10, 10))
        second = await controller.capture_upload(_png(10, 10))
        assert second.cycle_id == first.cycle_id + 1

    def test_shutdown_stops_media(self) -> None:
        media = MagicMock()
        controller = _controller(FakePipeline(), media)
        controller.shutdown()
        media.stop.assert_called_once()
