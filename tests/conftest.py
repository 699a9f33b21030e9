"""Shared fixtures: encoded test photos and a controllable classifier."""

from __future__ import annotations

import io
import threading
from typing import TYPE_CHECKING

import pytest
from PIL import Image

from photoclassify.errors import InferenceError
from photoclassify.ml.image_classifier import ClassificationResult

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np

    from photoclassify.ml.preprocessing import Orientation


class FakeClassifier:
    """Classifier double keyed on the red channel of the top-left pixel.

    ``gates`` lets a test hold a classification on the worker thread until
    it sets the event; ``started`` is set once a gated call has begun.
    """

    model_name = "fake"

    def __init__(self) -> None:
        self.results: dict[int, list[ClassificationResult]] = {}
        self.errors: dict[int, Exception] = {}
        self.gates: dict[int, threading.Event] = {}
        self.started: dict[int, threading.Event] = {}
        self.calls: list[tuple[int, Orientation]] = []

    def hold(self, red: int) -> threading.Event:
        self.gates[red] = threading.Event()
        self.started[red] = threading.Event()
        return self.gates[red]

    def classify(self, image: np.ndarray, orientation: Orientation) -> list[ClassificationResult]:
        red = int(image[0, 0, 0])
        self.calls.append((red, orientation))
        if red in self.gates:
            self.started[red].set()
            self.gates[red].wait(timeout=5)
        if red in self.errors:
            raise self.errors[red]
        return list(self.results.get(red, []))


@pytest.fixture()
def fake_classifier() -> FakeClassifier:
    classifier = FakeClassifier()
    classifier.results[10] = [
        ClassificationResult("tabby", 0.8),
        ClassificationResult("tiger cat", 0.15),
        ClassificationResult("lynx", 0.05),
    ]
    classifier.results[200] = [
        ClassificationResult("crash helmet", 0.6),
        ClassificationResult("football helmet", 0.3),
    ]
    classifier.errors[66] = InferenceError("model unavailable")
    return classifier


@pytest.fixture()
def make_png() -> Callable[..., bytes]:
    def encode(rgba: tuple[int, int, int, int], size: tuple[int, int] = (4, 3)) -> bytes:
        buffer = io.BytesIO()
        Image.new("RGBA", size, rgba).save(buffer, format="PNG")
        return buffer.getvalue()

    return encode
