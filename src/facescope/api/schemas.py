"""Pydantic request/response schemas for the FaceScope API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from facescope.controller import CycleResult
    from facescope.ml.pipeline import Detection


class BoundingBox(BaseModel):
    """Face box in pixels of the captured image."""

    x: float
    y: float
    width: float
    height: float


class DetectedFace(BaseModel):
    """A single detected face with its annotations."""

    box: BoundingBox
    score: float = Field(description="Detector confidence (0.0-1.0)")
    landmarks: list[tuple[float, float]] = Field(description="68 landmark points in pixels")
    expressions: dict[str, float] = Field(description="Expression name to probability")
    age: float = Field(description="Estimated age in years")
    gender: str = Field(description="'male' or 'female'")
    gender_probability: float = Field(ge=0.0, le=1.0)
    descriptor: list[float] | None = Field(default=None, description="Face descriptor, when enabled")

    @classmethod
    def from_detection(cls, detection: Detection) -> DetectedFace:
        box = detection.box
        return cls(
            box=BoundingBox(x=box.x, y=box.y, width=box.width, height=box.height),
            score=detection.score,
            landmarks=list(detection.landmarks),
            expressions=dict(detection.expressions),
            age=detection.age,
            gender=detection.gender,
            gender_probability=detection.gender_probability,
            descriptor=list(detection.descriptor) if detection.descriptor is not None else None,
        )


class CycleResponse(BaseModel):
    """Outcome of one capture-detect-render cycle."""

    cycle_id: int
    status: str = Field(description="'rendered', 'errored' or 'superseded'")
    width: int
    height: int
    faces: list[DetectedFace]

    @classmethod
    def from_result(cls, result: CycleResult) -> CycleResponse:
        return cls(
            cycle_id=result.cycle_id,
            status=result.outcome.value,
            width=result.width,
            height=result.height,
            faces=[DetectedFace.from_detection(d) for d in result.detections],
        )


class WebcamResponse(BaseModel):
    """Webcam state after a start or stop request."""

    active: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    ready: bool
    backend: str | None
    models_loaded: list[str]
    load_error: str | None = None
    webcam_active: bool
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about a model bundle."""

    name: str
    task: str
    status: str = Field(description="Model status: 'loaded', 'available', or 'requires_license'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
