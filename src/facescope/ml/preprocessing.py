"""Image decoding and face-crop helpers shared by the model wrappers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

from facescope.errors import ImageDecodeError, ImageTooLargeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

# ArcFace reference points for a 112x112 aligned crop.
ARCFACE_TEMPLATE: NDArray[np.float32] = np.array(
    [
        [38.2946, 51.6963],
        [73.5318, 51.5014],
        [56.0252, 71.7366],
        [41.5493, 92.3655],
        [70.7299, 92.2041],
    ],
    dtype=np.float32,
)


def decode_image(image_bytes: bytes, max_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an HxWx3 BGR uint8 array.

    Raises:
        ImageDecodeError: If the bytes are not an image OpenCV can read.
        ImageTooLargeError: If the decoded image exceeds ``max_pixels``.
    """
    if not image_bytes:
        raise ImageDecodeError("Empty file")
    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ImageDecodeError("File is not a supported image")
    height, width = image.shape[:2]
    if height * width > max_pixels:
        raise ImageTooLargeError(f"Image has {width}x{height} pixels, limit is {max_pixels}")
    return image


def square_crop(
    image: NDArray[np.uint8],
    bbox: NDArray[np.float32],
    size: int,
    scale: float = 1.5,
) -> tuple[NDArray[np.uint8], NDArray[np.float64]]:
    """Crop a square around a face box, resized to ``size`` x ``size``.

    The crop is centered on the box and spans ``scale`` times its longer
    side. Returns the crop and the 2x3 affine matrix that maps image
    coordinates into crop coordinates.
    """
    x1, y1, x2, y2 = (float(v) for v in bbox[:4])
    center_x, center_y = (x1 + x2) / 2.0, (y1 + y2) / 2.0
    side = max(x2 - x1, y2 - y1) * scale
    ratio = size / max(side, 1.0)
    matrix = np.array(
        [
            [ratio, 0.0, size / 2.0 - center_x * ratio],
            [0.0, ratio, size / 2.0 - center_y * ratio],
        ],
        dtype=np.float64,
    )
    crop = cv2.warpAffine(image, matrix, (size, size), borderValue=0.0)
    return crop, matrix


def transform_points(points: NDArray[np.float32], matrix: NDArray[np.float64]) -> NDArray[np.float32]:
    """Apply a 2x3 affine matrix to an Nx2 point array."""
    pts = np.asarray(points, dtype=np.float64)
    out = pts @ matrix[:, :2].T + matrix[:, 2]
    return out.astype(np.float32)


def to_blob(crop: NDArray[np.uint8], mean: float, std: float, swap_rb: bool = True) -> NDArray[np.float32]:
    """Convert an HxWx3 BGR crop to a 1x3xHxW float tensor."""
    height, width = crop.shape[:2]
    blob: NDArray[np.float32] = cv2.dnn.blobFromImage(
        crop,
        1.0 / std,
        (width, height),
        (mean, mean, mean),
        swapRB=swap_rb,
    )
    return blob


def align_face(image: NDArray[np.uint8], five_points: NDArray[np.float32], size: int = 112) -> NDArray[np.uint8]:
    """Warp a face so its five key points land on the ArcFace template."""
    template = ARCFACE_TEMPLATE * (size / 112.0)
    matrix, _ = cv2.estimateAffinePartial2D(five_points.astype(np.float32), template, method=cv2.LMEDS)
    if matrix is None:
        raise ValueError("Cannot align face: degenerate key points")
    return cv2.warpAffine(image, matrix, (size, size), borderValue=0.0)


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    result: NDArray[np.float32] = (exp / np.sum(exp)).astype(np.float32)
    return result
