"""Environment-based configuration for FaceScope."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FACESCOPE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACESCOPE_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: str = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # Preferred backend; falls back to cpu when unavailable
    device: Literal["cpu", "cuda", "openvino"] = "cuda"

    # Model assets
    models_dir: str = "assets/models"
    accept_insightface_license: bool = False

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=1, ge=1)

    # Camera
    camera_device: int = Field(default=0, ge=0)

    # Drawing surface size before the first capture
    surface_width: int = Field(default=640, ge=1)
    surface_height: int = Field(default=480, ge=1)

    # Detection
    detector_score_threshold: float = Field(default=0.7, gt=0.0, lt=1.0)
    detector_iou_threshold: float = Field(default=0.3, gt=0.0, le=1.0)
    expression_min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    compute_descriptors: bool = False

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
