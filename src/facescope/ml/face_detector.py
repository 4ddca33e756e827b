"""Tiny face detector (RFB-320, 320x240 input) tuned for speed."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

INPUT_WIDTH = 320
INPUT_HEIGHT = 240
_MEAN = 127.0
_STD = 128.0


@dataclass(frozen=True)
class RawDetection:
    """Face box before annotation.

    ``bbox`` is (x1, y1, x2, y2) in pixel space of the input image.
    """

    bbox: NDArray[np.float32]
    score: float


class TinyFaceDetector:
    """Runs the tiny detector session and decodes its boxes."""

    def __init__(
        self,
        session: InferenceSession,
        score_threshold: float = 0.7,
        iou_threshold: float = 0.3,
    ) -> None:
        self._session = session
        self._input_name = session.get_inputs()[0].name
        self.score_threshold = score_threshold
        self.iou_threshold = iou_threshold

    def detect(self, image: NDArray[np.uint8]) -> list[RawDetection]:
        """Detect faces in an HxWx3 BGR image, highest score first."""
        height, width = image.shape[:2]
        resized = cv2.resize(image, (INPUT_WIDTH, INPUT_HEIGHT))
        blob = cv2.dnn.blobFromImage(resized, 1.0 / _STD, (INPUT_WIDTH, INPUT_HEIGHT), (_MEAN, _MEAN, _MEAN), swapRB=True)

        scores, boxes = self._session.run(None, {self._input_name: blob})[:2]
        return self._decode(scores[0], boxes[0], width, height)

    def _decode(
        self,
        scores: NDArray[np.float32],
        boxes: NDArray[np.float32],
        width: int,
        height: int,
    ) -> list[RawDetection]:
        probs = scores[:, 1]
        mask = probs > self.score_threshold
        if not np.any(mask):
            return []

        # Boxes are normalized corners.
        kept_boxes = boxes[mask] * np.array([width, height, width, height], dtype=np.float32)
        kept_boxes[:, [0, 2]] = np.clip(kept_boxes[:, [0, 2]], 0, width)
        kept_boxes[:, [1, 3]] = np.clip(kept_boxes[:, [1, 3]], 0, height)
        kept_probs = probs[mask]

        rects = [[float(b[0]), float(b[1]), float(b[2] - b[0]), float(b[3] - b[1])] for b in kept_boxes]
        indices = cv2.dnn.NMSBoxes(rects, kept_probs.tolist(), self.score_threshold, self.iou_threshold)
        order = sorted(np.asarray(indices).reshape(-1).tolist(), key=lambda i: -float(kept_probs[i]))
        return [RawDetection(bbox=kept_boxes[i].astype(np.float32), score=float(kept_probs[i])) for i in order]
