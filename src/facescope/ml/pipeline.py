"""Detection pipeline: tiny detector + landmarks + expressions + age/gender.

One call runs the detector over the current surface contents and
annotates every face it finds. Sessions come from the injected engine;
nothing runs before the engine reports ready.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from facescope.errors import InferenceError, NotReadyError
from facescope.ml.face_attributes import AgeGenderEstimator, ExpressionClassifier, Gender
from facescope.ml.face_detector import TinyFaceDetector
from facescope.ml.face_landmarks import FaceLandmarker
from facescope.ml.face_recognizer import FaceRecognizer
from facescope.ml.model_manager import (
    AGE_GENDER,
    FACE_EXPRESSION,
    FACE_LANDMARK_68,
    FACE_RECOGNITION,
    TINY_FACE_DETECTOR,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    import numpy as np
    from numpy.typing import NDArray

    from facescope.config import Settings
    from facescope.ml.inference import InferencePool
    from facescope.ml.model_manager import ModelEngine
    from facescope.render.surface import DrawingSurface

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Box:
    """Axis-aligned box in source image pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)

    @property
    def bottom_left(self) -> tuple[float, float]:
        return self.x, self.bottom

    def iou(self, other: Box) -> float:
        """Intersection over union with another box."""
        inter_w = min(self.right, other.right) - max(self.x, other.x)
        inter_h = min(self.bottom, other.bottom) - max(self.y, other.y)
        if inter_w <= 0 or inter_h <= 0:
            return 0.0
        inter = inter_w * inter_h
        return inter / (self.area + other.area - inter)

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> Box:
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)


@dataclass(frozen=True)
class Detection:
    """One recognized face and its derived attributes."""

    box: Box
    score: float
    landmarks: tuple[tuple[float, float], ...]
    expressions: Mapping[str, float] = field(hash=False)
    age: float
    gender: Gender
    gender_probability: float
    descriptor: tuple[float, ...] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "expressions", MappingProxyType(dict(self.expressions)))

    def top_expressions(self, min_confidence: float) -> list[tuple[str, float]]:
        """Expressions above ``min_confidence``, most likely first."""
        ranked = sorted(self.expressions.items(), key=lambda item: item[1], reverse=True)
        return [(name, prob) for name, prob in ranked if prob > min_confidence]


class DetectionPipeline:
    """Runs the annotated-detection request against a drawing surface."""

    def __init__(self, engine: ModelEngine, pool: InferencePool, settings: Settings) -> None:
        self._engine = engine
        self._pool = pool
        self._settings = settings

    @property
    def ready(self) -> bool:
        return self._engine.ready

    async def detect(self, surface: DrawingSurface) -> list[Detection]:
        """Detect and annotate every face currently on the surface.

        Raises:
            NotReadyError: If the engine has not finished loading.
            InferenceError: If any model session fails.
        """
        if not self._engine.ready:
            raise NotReadyError("Models are still loading")

        image = surface.snapshot()
        try:
            return await self._pool.run(self.detect_image, image)
        except (NotReadyError, InferenceError):
            raise
        except Exception as exc:
            raise InferenceError(str(exc)) from exc

    def detect_image(self, image: NDArray[np.uint8]) -> list[Detection]:
        """Synchronous detection over a BGR image."""
        detector = TinyFaceDetector(
            self._engine.session(TINY_FACE_DETECTOR),
            score_threshold=self._settings.detector_score_threshold,
            iou_threshold=self._settings.detector_iou_threshold,
        )
        landmarker = FaceLandmarker(self._engine.session(FACE_LANDMARK_68))
        expressions = ExpressionClassifier(self._engine.session(FACE_EXPRESSION))
        age_gender = AgeGenderEstimator(self._engine.session(AGE_GENDER))
        recognizer = (
            FaceRecognizer(self._engine.session(FACE_RECOGNITION)) if self._settings.compute_descriptors else None
        )

        results: list[Detection] = []
        for raw in detector.detect(image):
            points = landmarker.landmarks(image, raw.bbox)
            age, gender, gender_probability = age_gender.estimate(image, raw.bbox)
            descriptor = None
            if recognizer is not None:
                descriptor = tuple(float(v) for v in recognizer.descriptor(image, points))
            results.append(
                Detection(
                    box=Box.from_corners(*(float(v) for v in raw.bbox[:4])),
                    score=raw.score,
                    landmarks=tuple((float(x), float(y)) for x, y in points),
                    expressions=expressions.classify(image, raw.bbox),
                    age=age,
                    gender=gender,
                    gender_probability=gender_probability,
                    descriptor=descriptor,
                )
            )
        logger.debug("Detected %d face(s)", len(results))
        return results
