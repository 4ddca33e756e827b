"""Per-face attribute models: age/gender and expressions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

import cv2
import numpy as np

from facescope.ml.preprocessing import softmax, square_crop, to_blob

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

Gender = Literal["male", "female"]

# Output order of the FER+ expression model.
EXPRESSIONS: tuple[str, ...] = (
    "neutral",
    "happy",
    "surprised",
    "sad",
    "angry",
    "disgusted",
    "fearful",
    "contempt",
)

_EXPRESSION_INPUT = 64


class AgeGenderEstimator:
    """Predicts age in years and a gender label with its probability.

    The model output is ``[female_score, male_score, age / 100]``.
    """

    def __init__(self, session: InferenceSession, mean: float = 0.0, std: float = 1.0) -> None:
        self._session = session
        inp = session.get_inputs()[0]
        self._input_name = inp.name
        self._input_size = int(inp.shape[2]) if isinstance(inp.shape[2], int) else 96
        self._mean = mean
        self._std = std

    def estimate(self, image: NDArray[np.uint8], bbox: NDArray[np.float32]) -> tuple[float, Gender, float]:
        crop, _ = square_crop(image, bbox, self._input_size)
        blob = to_blob(crop, self._mean, self._std)
        pred = np.asarray(self._session.run(None, {self._input_name: blob})[0][0], dtype=np.float32)

        gender_probs = softmax(pred[:2])
        is_male = int(np.argmax(gender_probs)) == 1
        gender: Gender = "male" if is_male else "female"
        age = max(float(pred[2]) * 100.0, 0.0)
        return age, gender, float(gender_probs[1] if is_male else gender_probs[0])


class ExpressionClassifier:
    """Classifies a grayscale 64x64 face crop into expression probabilities."""

    def __init__(self, session: InferenceSession) -> None:
        self._session = session
        self._input_name = session.get_inputs()[0].name

    def classify(self, image: NDArray[np.uint8], bbox: NDArray[np.float32]) -> dict[str, float]:
        crop, _ = square_crop(image, bbox, _EXPRESSION_INPUT, scale=1.0)
        gray = cv2.cvtColor(crop, cv2.COLOR_BGR2GRAY).astype(np.float32)
        blob = gray[np.newaxis, np.newaxis, :, :]

        logits = np.asarray(self._session.run(None, {self._input_name: blob})[0][0], dtype=np.float32)
        probs = softmax(logits[: len(EXPRESSIONS)])
        return {name: float(p) for name, p in zip(EXPRESSIONS, probs, strict=True)}
