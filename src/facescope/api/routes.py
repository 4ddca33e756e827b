"""API route definitions."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status
from fastapi.responses import HTMLResponse, Response, StreamingResponse

from facescope.api.middleware import verify_api_key
from facescope.api.schemas import (
    CycleResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    WebcamResponse,
)
from facescope.errors import ImageDecodeError, ImageTooLargeError, NoFrameError, NotReadyError
from facescope.media.source import MJPEG_BOUNDARY
from facescope.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from facescope.config import Settings
    from facescope.controller import Controller, CycleResult
    from facescope.ml.inference import InferencePool
    from facescope.ml.model_manager import Engine

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])
page_router = APIRouter()

_INDEX_HTML = Path(__file__).parent / "static" / "index.html"

_CYCLE_ERRORS = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_engine(request: Request) -> Engine:
    engine: Engine = request.app.state.engine
    return engine


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_controller(request: Request) -> Controller:
    controller: Controller = request.app.state.controller
    return controller


async def _run_cycle(cycle: Awaitable[CycleResult]) -> CycleResponse:
    try:
        result = await cycle
    except NotReadyError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except NoFrameError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ImageTooLargeError as exc:
        raise HTTPException(status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail=str(exc)) from exc
    except ImageDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CycleResponse.from_result(result)


@page_router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def index() -> HTMLResponse:
    """Serve the single-page UI."""
    return HTMLResponse(_INDEX_HTML.read_text(encoding="utf-8"))


@router.post("/webcam/start", response_model=WebcamResponse, summary="Start the webcam")
async def start_webcam(request: Request) -> WebcamResponse:
    """Open the camera; failures are logged and reported as inactive."""
    controller = _get_controller(request)
    await asyncio.to_thread(controller.media.start)
    return WebcamResponse(active=controller.media.is_active)


@router.post("/webcam/stop", response_model=WebcamResponse, summary="Stop the webcam")
async def stop_webcam(request: Request) -> WebcamResponse:
    """Release the camera. Safe to call when nothing is running."""
    controller = _get_controller(request)
    await asyncio.to_thread(controller.media.stop)
    return WebcamResponse(active=controller.media.is_active)


@router.get("/webcam/stream", summary="Live webcam view (MJPEG)")
async def webcam_stream(request: Request) -> StreamingResponse:
    controller = _get_controller(request)
    if not controller.media.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Webcam is not streaming")
    return StreamingResponse(
        controller.media.mjpeg_frames(),
        media_type=f"multipart/x-mixed-replace; boundary={MJPEG_BOUNDARY}",
    )


@router.post("/capture", response_model=CycleResponse, responses=_CYCLE_ERRORS, summary="Capture and detect")
async def capture(request: Request) -> CycleResponse:
    """Snapshot the live webcam frame, detect faces and draw the overlay."""
    controller = _get_controller(request)
    return await _run_cycle(controller.capture_live())


@router.post("/upload", response_model=CycleResponse, responses=_CYCLE_ERRORS, summary="Detect faces in a file")
async def upload(request: Request, file: UploadFile) -> CycleResponse:
    """Draw an uploaded image, detect faces and draw the overlay."""
    controller = _get_controller(request)
    data = await file.read()
    return await _run_cycle(controller.capture_upload(data))


@router.get(
    "/surface",
    response_class=Response,
    responses={status.HTTP_200_OK: {"content": {"image/png": {}}}},
    summary="Current drawing surface",
)
async def surface(request: Request) -> Response:
    controller = _get_controller(request)
    return Response(
        content=controller.surface.encode_png(),
        media_type="image/png",
        headers={"Cache-Control": "no-store"},
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health and model readiness."""
    engine = _get_engine(request)
    pool = _get_inference_pool(request)
    controller = _get_controller(request)
    readiness = engine.readiness
    return HealthResponse(
        status="ok" if readiness is not None else "loading",
        ready=readiness is not None,
        backend=readiness.backend.value if readiness is not None else None,
        models_loaded=engine.get_loaded_models(),
        load_error=str(engine.load_error) if engine.load_error is not None else None,
        webcam_active=controller.media.is_active,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List model bundles",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the model bundles and their status based on current configuration."""
    settings = _get_settings(request)
    loaded = set(_get_engine(request).get_loaded_models())

    models: list[ModelInfo] = []
    for spec in MODEL_REGISTRY.values():
        if spec.name in loaded:
            model_status = "loaded"
        elif spec.insightface and not settings.accept_insightface_license:
            model_status = "requires_license"
        else:
            model_status = "available"

        models.append(
            ModelInfo(
                name=spec.name,
                task=spec.task.value,
                status=model_status,
                license=spec.license,
            )
        )

    return ModelsResponse(models=models)
