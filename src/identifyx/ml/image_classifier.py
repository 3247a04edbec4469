"""Image classification over an ONNX Runtime session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from identifyx.ml.model_manager import ModelSpec
    from identifyx.ml.preprocessing import PillowPreprocessor


@dataclass(frozen=True)
class Prediction:
    """A single classification prediction."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        """Classify an image and return ranked predictions.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            List of predictions sorted by confidence (descending).
        """
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / exp.sum()


class OnnxImageClassifier:
    """Runs a registry model and maps its outputs onto labels."""

    def __init__(
        self,
        spec: ModelSpec,
        session: InferenceSession,
        labels: list[str],
        preprocessor: PillowPreprocessor,
        top_k: int,
    ) -> None:
        self._spec = spec
        self._session = session
        self._labels = labels
        self._preprocessor = preprocessor
        self._top_k = top_k
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._spec.name

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        tensor = self._preprocessor.preprocess_for_classification(image, self._spec)
        outputs = self._session.run(None, {self._input_name: tensor})
        probs = softmax(np.asarray(outputs[0], dtype=np.float32).reshape(-1))

        # Stable sort keeps the lower class index first on ties.
        ranked = np.argsort(-probs, kind="stable")[: self._top_k]
        return [
            Prediction(label=self._label_for(int(idx)), confidence=float(probs[idx]))
            for idx in ranked
        ]

    def _label_for(self, index: int) -> str:
        if index < len(self._labels):
            return self._labels[index]
        return ""
