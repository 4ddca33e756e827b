"""Model engine: fetch the five model bundles, pick a backend, hold sessions.

The engine is created once in the application lifespan and injected into
every component that needs inference. Bundles are looked up in the local
asset directory first and downloaded from HuggingFace when missing. After
all bundles are present the preferred accelerated backend is activated,
falling back to the portable CPU backend, and one ONNX InferenceSession
is created per bundle.

The detector and FER+ bundles are fetched from the project model
repository (`facescope/facescope-models`). Deployments without access to
it must place `version-RFB-320.onnx` and `emotion-ferplus-8.onnx` directly
under `models_dir`; the local copy is always preferred.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions, get_available_providers
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from facescope.errors import ModelLoadError, NotReadyError

if TYPE_CHECKING:
    from facescope.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelEngine(Protocol):
    """What the detection pipeline needs from the engine."""

    @property
    def ready(self) -> bool:
        """True once every bundle is loaded and a backend is running."""
        ...

    def session(self, model_name: str) -> InferenceSession:
        """Return the loaded session for a registry entry."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    FACE_DETECTION = "face_detection"
    FACE_LANDMARKS = "face_landmarks"
    FACE_RECOGNITION = "face_recognition"
    AGE_GENDER = "age_gender"
    FACE_EXPRESSION = "face_expression"


class Backend(StrEnum):
    CPU = "cpu"
    CUDA = "cuda"
    OPENVINO = "openvino"


_BACKEND_PROVIDERS: dict[Backend, str] = {
    Backend.CPU: "CPUExecutionProvider",
    Backend.CUDA: "CUDAExecutionProvider",
    Backend.OPENVINO: "OpenVINOExecutionProvider",
}


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX model bundle."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    task: ModelTask
    license: str
    insightface: bool

    @property
    def relative_path(self) -> Path:
        if self.subfolder:
            return Path(self.subfolder) / self.filename
        return Path(self.filename)


TINY_FACE_DETECTOR = "tiny_face_detector"
FACE_LANDMARK_68 = "face_landmark_68"
FACE_RECOGNITION = "face_recognition"
AGE_GENDER = "age_gender"
FACE_EXPRESSION = "face_expression"

MODEL_REGISTRY: dict[str, ModelSpec] = {
    TINY_FACE_DETECTOR: ModelSpec(
        name=TINY_FACE_DETECTOR,
        repo_id="facescope/facescope-models",
        filename="version-RFB-320.onnx",
        subfolder=None,
        task=ModelTask.FACE_DETECTION,
        license="MIT",
        insightface=False,
    ),
    FACE_LANDMARK_68: ModelSpec(
        name=FACE_LANDMARK_68,
        repo_id="public-data/insightface",
        filename="1k3d68.onnx",
        subfolder="models/buffalo_l",
        task=ModelTask.FACE_LANDMARKS,
        license="Non-commercial (InsightFace)",
        insightface=True,
    ),
    FACE_RECOGNITION: ModelSpec(
        name=FACE_RECOGNITION,
        repo_id="fal/AuraFace-v1",
        filename="glintr100.onnx",
        subfolder=None,
        task=ModelTask.FACE_RECOGNITION,
        license="Apache-2.0",
        insightface=False,
    ),
    AGE_GENDER: ModelSpec(
        name=AGE_GENDER,
        repo_id="public-data/insightface",
        filename="genderage.onnx",
        subfolder="models/buffalo_l",
        task=ModelTask.AGE_GENDER,
        license="Non-commercial (InsightFace)",
        insightface=True,
    ),
    FACE_EXPRESSION: ModelSpec(
        name=FACE_EXPRESSION,
        repo_id="facescope/facescope-models",
        filename="emotion-ferplus-8.onnx",
        subfolder=None,
        task=ModelTask.FACE_EXPRESSION,
        license="MIT",
        insightface=False,
    ),
}


@dataclass(frozen=True)
class Readiness:
    """Snapshot of a successfully initialized engine."""

    backend: Backend
    providers: tuple[str, ...]
    models: tuple[str, ...]


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class Engine:
    """Loads the model bundles once and serves their inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._init_lock = asyncio.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._readiness: Readiness | None = None
        self._load_error: ModelLoadError | None = None

    # -- Public API ---------------------------------------------------------

    @property
    def ready(self) -> bool:
        return self._readiness is not None

    @property
    def readiness(self) -> Readiness | None:
        return self._readiness

    @property
    def load_error(self) -> ModelLoadError | None:
        """The failure of the last initialize() attempt, if any."""
        return self._load_error

    async def initialize(self) -> Readiness:
        """Fetch all five bundles, select a backend and create the sessions.

        Concurrent and repeated calls share a single load.

        Raises:
            ModelLoadError: If any bundle cannot be fetched or loaded.
        """
        async with self._init_lock:
            if self._readiness is not None:
                return self._readiness
            try:
                readiness = await self._load()
            except ModelLoadError as exc:
                self._load_error = exc
                raise
            self._load_error = None
            self._readiness = readiness
            logger.info(
                "Engine ready (backend=%s, models=%s)",
                readiness.backend,
                ", ".join(readiness.models),
            )
            return readiness

    def session(self, model_name: str) -> InferenceSession:
        """Return the session for a model; fails fast before readiness."""
        if self._readiness is None:
            raise NotReadyError("Models are still loading")
        self._get_spec(model_name)
        return self._sessions[model_name]

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        return list(self._sessions.keys())

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local path of a bundle, downloading it if missing."""
        spec = self._get_spec(model_name)
        self._check_license(spec)

        local = self._models_dir / spec.relative_path
        if local.exists():
            return local

        try:
            self._models_dir.mkdir(parents=True, exist_ok=True)
            downloaded = Path(
                hf_hub_download(
                    repo_id=spec.repo_id,
                    filename=spec.filename,
                    subfolder=spec.subfolder,
                    local_dir=str(self._models_dir),
                )
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to fetch {model_name}: {exc}") from exc
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def select_backend(self) -> Backend:
        """Activate the preferred backend, or fall back to CPU."""
        preferred = Backend(self._settings.device)
        if preferred is Backend.CPU:
            return Backend.CPU
        try:
            self._activate_backend(preferred)
        except RuntimeError:
            logger.warning("%s backend not available, falling back to cpu", preferred)
            return Backend.CPU
        return preferred

    def shutdown(self) -> None:
        """Drop all sessions; the engine is no longer ready."""
        self._sessions.clear()
        self._readiness = None
        logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    async def _load(self) -> Readiness:
        names = list(MODEL_REGISTRY)
        try:
            paths = await asyncio.gather(*(asyncio.to_thread(self.ensure_downloaded, name) for name in names))
        except OSError as exc:
            raise ModelLoadError(f"Cannot prepare model directory {self._models_dir}: {exc}") from exc

        backend = self.select_backend()
        providers = self._build_providers(backend)
        options = self._build_session_options(backend)

        try:
            sessions = await asyncio.gather(
                *(asyncio.to_thread(self._create_session, path, options, providers) for path in paths)
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to create sessions: {exc}") from exc

        self._sessions = dict(zip(names, sessions, strict=True))
        for name in names:
            logger.info("Loaded session for %s", name)
        return Readiness(
            backend=backend,
            providers=tuple(p if isinstance(p, str) else p[0] for p in providers),
            models=tuple(names),
        )

    @staticmethod
    def _create_session(
        path: Path,
        options: SessionOptions,
        providers: list[str | tuple[str, dict[str, object]]],
    ) -> InferenceSession:
        return InferenceSession(str(path), sess_options=options, providers=providers)

    @staticmethod
    def _get_spec(model_name: str) -> ModelSpec:
        try:
            return MODEL_REGISTRY[model_name]
        except KeyError:
            raise KeyError(f"Unknown model: {model_name}") from None

    def _check_license(self, spec: ModelSpec) -> None:
        if spec.insightface and not self._settings.accept_insightface_license:
            raise ModelLoadError(f"Model '{spec.name}' requires FACESCOPE_ACCEPT_INSIGHTFACE_LICENSE=true")

    @staticmethod
    def _activate_backend(backend: Backend) -> None:
        provider = _BACKEND_PROVIDERS[backend]
        if provider not in get_available_providers():
            raise RuntimeError(f"{provider} is not available in this onnxruntime build")

    def _build_providers(self, backend: Backend) -> list[str | tuple[str, dict[str, object]]]:
        if backend is Backend.CUDA:
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if backend is Backend.OPENVINO:
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self, backend: Backend) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if backend is Backend.OPENVINO:
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
