"""Image classification: the classifier protocol and its ONNX implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np
from onnxruntime.capi import onnxruntime_pybind11_state as ort_errors

from photoclassify.errors import InferenceError
from photoclassify.ml.preprocessing import Orientation, apply_orientation, preprocess_for_classification

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from photoclassify.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

# ONNX Runtime raises its own exception types, which derive from Exception only.
_RUNTIME_ERRORS: tuple[type[Exception], ...] = (
    OSError,
    RuntimeError,
    ValueError,
    ort_errors.Fail,
    ort_errors.InvalidArgument,
    ort_errors.InvalidGraph,
    ort_errors.InvalidProtobuf,
    ort_errors.NoSuchFile,
    ort_errors.RuntimeException,
)


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8], orientation: Orientation) -> list[ClassificationResult]:
        """Classify an image and return ranked tags.

        Args:
            image: HxWx4 RGBA uint8 array, as stored.
            orientation: How to rotate/flip ``image`` to make it upright.

        Returns:
            List of classification results sorted by confidence (descending).
            An empty list means nothing was recognized.

        Raises:
            InferenceError: If the model could not be run.
        """
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return (exp / exp.sum()).astype(np.float32)


class OnnxImageClassifier:
    """Classifies images with an ONNX model served by a :class:`ModelManager`."""

    def __init__(self, model_manager: ModelManager, model_name: str) -> None:
        self._model_manager = model_manager
        self._model_name = model_name
        self._input_size = model_manager.get_spec(model_name).input_size

    @property
    def model_name(self) -> str:
        return self._model_name

    def classify(
        self, image: NDArray[np.uint8], orientation: Orientation = Orientation.UP
    ) -> list[ClassificationResult]:
        tensor = preprocess_for_classification(apply_orientation(image, orientation), self._input_size)

        try:
            session = self._model_manager.get_session(self._model_name)
            labels = self._model_manager.get_labels(self._model_name)
            input_name = session.get_inputs()[0].name
            outputs = session.run(None, {input_name: tensor})
        except _RUNTIME_ERRORS as exc:
            logger.warning("Inference with %s failed: %s", self._model_name, exc)
            raise InferenceError(f"Model '{self._model_name}' failed: {exc}") from exc

        if not outputs:
            raise InferenceError(f"Model '{self._model_name}' returned no outputs")

        logits = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if logits.size != len(labels):
            raise InferenceError(
                f"Model '{self._model_name}' produced {logits.size} scores for {len(labels)} labels"
            )
        if logits.size == 0:
            return []

        scores = softmax(logits)
        order = np.argsort(scores)[::-1]
        return [ClassificationResult(label=labels[i], confidence=float(scores[i])) for i in order]
