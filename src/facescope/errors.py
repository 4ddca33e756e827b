"""Exception hierarchy shared by the capture, model and detection layers."""

from __future__ import annotations


class FaceScopeError(Exception):
    """Base class for all FaceScope errors."""


# -- Camera -----------------------------------------------------------------


class CameraError(FaceScopeError):
    """The camera could not be acquired."""


class PermissionDeniedError(CameraError):
    """The process is not allowed to open the camera device."""


class NoDeviceError(CameraError):
    """No camera device answered at the configured index."""


# -- Models -----------------------------------------------------------------


class ModelLoadError(FaceScopeError):
    """A model bundle could not be fetched or loaded, or no backend could start."""


class NotReadyError(FaceScopeError):
    """Detection was requested before the engine finished loading."""


class InferenceError(FaceScopeError):
    """A model session failed while running detection."""


# -- Capture ----------------------------------------------------------------


class CaptureError(FaceScopeError):
    """Base class for frame capture failures."""


class NoFrameError(CaptureError):
    """No live frame is available to capture."""


class ImageDecodeError(CaptureError):
    """Uploaded bytes could not be decoded as an image."""


class ImageTooLargeError(CaptureError):
    """Uploaded image exceeds the configured byte or pixel limit."""
