"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facescope.api.routes import page_router, router
from facescope.config import Settings, get_settings
from facescope.controller import Controller
from facescope.errors import ModelLoadError
from facescope.media.source import MediaSource
from facescope.ml.inference import InferencePool
from facescope.ml.model_manager import Engine
from facescope.ml.pipeline import DetectionPipeline

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Build the engine, pool and controller and attach them to the app."""
    engine = Engine(settings)
    pool = InferencePool(settings)
    pipeline = DetectionPipeline(engine, pool, settings)
    media = MediaSource(settings.camera_device)

    app.state.settings = settings
    app.state.engine = engine
    app.state.inference_pool = pool
    app.state.controller = Controller(pipeline, media, settings)


def _log_load_result(task: asyncio.Task[object]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if isinstance(exc, ModelLoadError):
        logger.error("Model loading failed, detection is unavailable: %s", exc)
    elif exc is not None:
        logger.error("Unexpected error while loading models", exc_info=exc)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: start model loading, release the camera on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceScope (device=%s, models_dir=%s, camera=%s)",
        settings.device,
        settings.models_dir,
        settings.camera_device,
    )

    init_state(app, settings)
    engine: Engine = app.state.engine

    # The UI is served while the models load in the background.
    load_task = asyncio.create_task(engine.initialize(), name="model-loader")
    load_task.add_done_callback(_log_load_result)

    logger.info("FaceScope serving")
    yield

    logger.info("Shutting down FaceScope")
    if not load_task.done():
        load_task.cancel()
    app.state.controller.shutdown()
    app.state.inference_pool.shutdown()
    engine.shutdown()
    logger.info("FaceScope shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceScope",
        description="Webcam and image face analysis: boxes, landmarks, expressions, age and gender",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(page_router)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("facescope.main:app", host=settings.host, port=settings.port)
