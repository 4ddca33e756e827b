"""Capture-detect-render cycles over the shared surface.

Every cycle takes the next cycle id. Whenever a cycle resumes after a
suspension it checks that no newer cycle has started; a stale cycle
drops its result instead of painting over the newer one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from facescope.errors import InferenceError, NotReadyError
from facescope.media.capture import capture_live, capture_static, load_upload
from facescope.render.overlay import draw_detections, draw_error
from facescope.render.surface import DrawingSurface

if TYPE_CHECKING:
    from facescope.config import Settings
    from facescope.media.source import MediaSource
    from facescope.ml.pipeline import Detection, DetectionPipeline

logger = logging.getLogger(__name__)


class CycleState(StrEnum):
    IDLE = "idle"
    CAPTURING = "capturing"
    DETECTING = "detecting"
    RENDERED = "rendered"
    ERRORED = "errored"


class CycleOutcome(StrEnum):
    RENDERED = "rendered"
    ERRORED = "errored"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class CycleResult:
    cycle_id: int
    outcome: CycleOutcome
    width: int
    height: int
    detections: list[Detection] = field(default_factory=list)


class Controller:
    """Owns the drawing surface and the media source; runs cycles."""

    def __init__(self, pipeline: DetectionPipeline, media: MediaSource, settings: Settings) -> None:
        self._pipeline = pipeline
        self._settings = settings
        self.media = media
        self.surface = DrawingSurface(settings.surface_width, settings.surface_height)
        self.state = CycleState.IDLE
        self._current_cycle = 0

    @property
    def current_cycle(self) -> int:
        return self._current_cycle

    async def capture_live(self) -> CycleResult:
        """Snapshot the webcam and run detection on it."""
        cycle_id = self._begin()
        try:
            capture_live(self.surface, self.media)
        except Exception:
            self.state = CycleState.IDLE
            raise
        return await self._detect_and_render(cycle_id)

    async def capture_upload(self, data: bytes) -> CycleResult:
        """Decode an uploaded image, draw it and run detection on it."""
        cycle_id = self._begin()
        try:
            image = await asyncio.to_thread(
                load_upload,
                data,
                self._settings.max_file_size,
                self._settings.max_image_pixels,
            )
        except Exception:
            if self._is_current(cycle_id):
                self.state = CycleState.IDLE
            raise
        if not self._is_current(cycle_id):
            return self._superseded(cycle_id)
        capture_static(self.surface, image)
        return await self._detect_and_render(cycle_id)

    def shutdown(self) -> None:
        self.media.stop()

    # -- Internal -----------------------------------------------------------

    def _begin(self) -> int:
        self._current_cycle += 1
        self.state = CycleState.CAPTURING
        logger.debug("Cycle %d started", self._current_cycle)
        return self._current_cycle

    def _is_current(self, cycle_id: int) -> bool:
        return cycle_id == self._current_cycle

    def _superseded(self, cycle_id: int) -> CycleResult:
        logger.debug("Cycle %d superseded by %d, result dropped", cycle_id, self._current_cycle)
        return CycleResult(
            cycle_id=cycle_id,
            outcome=CycleOutcome.SUPERSEDED,
            width=self.surface.width,
            height=self.surface.height,
        )

    async def _detect_and_render(self, cycle_id: int) -> CycleResult:
        self.state = CycleState.DETECTING
        try:
            detections = await self._pipeline.detect(self.surface)
        except NotReadyError:
            if self._is_current(cycle_id):
                self.state = CycleState.IDLE
            raise
        except InferenceError as exc:
            if not self._is_current(cycle_id):
                return self._superseded(cycle_id)
            logger.error("Error during face detection: %s", exc)
            draw_error(self.surface)
            self.state = CycleState.ERRORED
            return CycleResult(
                cycle_id=cycle_id,
                outcome=CycleOutcome.ERRORED,
                width=self.surface.width,
                height=self.surface.height,
            )

        if not self._is_current(cycle_id):
            return self._superseded(cycle_id)

        draw_detections(self.surface, detections, self._settings.expression_min_confidence)
        self.state = CycleState.RENDERED
        logger.info("Cycle %d rendered %d face(s)", cycle_id, len(detections))
        return CycleResult(
            cycle_id=cycle_id,
            outcome=CycleOutcome.RENDERED,
            width=self.surface.width,
            height=self.surface.height,
            detections=detections,
        )
