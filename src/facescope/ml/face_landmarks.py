"""68-point facial landmark model."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

from facescope.ml.preprocessing import square_crop, to_blob, transform_points

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

NUM_LANDMARKS = 68


class FaceLandmarker:
    """Predicts 68 landmarks for a face box.

    The model sees a square crop around the box and returns coordinates in
    [-1, 1] crop space, either as (x, y) pairs or as (x, y, z) triples when
    the output is a dense 3D mesh; only the trailing 68 points are kept.
    """

    def __init__(self, session: InferenceSession, mean: float = 0.0, std: float = 1.0) -> None:
        self._session = session
        inp = session.get_inputs()[0]
        self._input_name = inp.name
        self._input_size = int(inp.shape[2]) if isinstance(inp.shape[2], int) else 192
        self._mean = mean
        self._std = std

    def landmarks(self, image: NDArray[np.uint8], bbox: NDArray[np.float32]) -> NDArray[np.float32]:
        """Return a 68x2 array of landmark points in image pixels."""
        crop, matrix = square_crop(image, bbox, self._input_size)
        blob = to_blob(crop, self._mean, self._std)
        pred = np.asarray(self._session.run(None, {self._input_name: blob})[0][0], dtype=np.float32)

        if pred.shape[0] >= 3000:
            pred = pred.reshape((-1, 3))
        else:
            pred = pred.reshape((-1, 2))
        if pred.shape[0] > NUM_LANDMARKS:
            pred = pred[-NUM_LANDMARKS:, :]

        points = (pred[:, :2] + 1.0) * (self._input_size // 2)
        inverse = cv2.invertAffineTransform(matrix)
        return transform_points(points, inverse)


def five_point(landmarks: NDArray[np.float32]) -> NDArray[np.float32]:
    """Reduce 68 landmarks to eye centers, nose tip and mouth corners."""
    left_eye = landmarks[36:42].mean(axis=0)
    right_eye = landmarks[42:48].mean(axis=0)
    return np.stack([left_eye, right_eye, landmarks[30], landmarks[48], landmarks[54]]).astype(np.float32)
