"""Face recognition (descriptor) model.

Only used when descriptor computation is enabled; the bundle is still
loaded at startup because readiness requires all five.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from facescope.ml.face_landmarks import five_point
from facescope.ml.preprocessing import align_face, to_blob

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

EMBEDDING_DIM = 512
_INPUT_SIZE = 112


class FaceRecognizer:
    """Produces L2-normalized face descriptors from aligned crops."""

    def __init__(self, session: InferenceSession) -> None:
        self._session = session
        self._input_name = session.get_inputs()[0].name

    def descriptor(self, image: NDArray[np.uint8], landmarks: NDArray[np.float32]) -> NDArray[np.float32]:
        """Return the descriptor of one face given its 68 landmarks."""
        aligned = align_face(image, five_point(landmarks), _INPUT_SIZE)
        blob = to_blob(aligned, 127.5, 127.5)
        vector = np.asarray(self._session.run(None, {self._input_name: blob})[0][0], dtype=np.float32)
        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector = vector / norm
        return vector.astype(np.float32)
