"""Tests for the classification screen."""

from __future__ import annotations

import asyncio
import io
from typing import TYPE_CHECKING
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

from photoclassify.config import Settings
from photoclassify.errors import ComputeError
from photoclassify.ml.average_color import Color
from photoclassify.ml.image_classifier import ClassificationResult
from photoclassify.ml.inference import InferencePool
from photoclassify.ml.preprocessing import DecodedImage, Orientation
from photoclassify.screen import (
    CLASSIFYING_TEXT,
    NOTHING_RECOGNIZED_TEXT,
    TARGET_FOUND_ALERT,
    ClassificationScreen,
    ScreenState,
    ScreenStatus,
    analyze,
    format_result_text,
    render_swatch,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from conftest import FakeClassifier


@pytest.fixture()
def settings() -> Settings:
    return Settings(max_concurrent=4, queue_timeout=5.0, top_k=2, target_label="crash helmet")


@pytest.fixture()
def pool(settings: Settings) -> Iterator[InferencePool]:
    inference_pool = InferencePool(settings)
    yield inference_pool
    inference_pool.shutdown()


@pytest.fixture()
def screen(fake_classifier: FakeClassifier, pool: InferencePool, settings: Settings) -> Iterator[ClassificationScreen]:
    classification_screen = ClassificationScreen(fake_classifier, pool, settings)
    yield classification_screen
    classification_screen.close()


class TestFormatResultText:
    def test_lists_color_and_classifications(self) -> None:
        text = format_result_text(
            Color(10, 20, 30, 255),
            [ClassificationResult("tabby", 0.8), ClassificationResult("tiger cat", 0.154)],
        )
        assert text == "Color: #0A141E\nClassification:\n  (0.80) tabby\n  (0.15) tiger cat"

    def test_nothing_recognized(self) -> None:
        assert format_result_text(Color(0, 0, 0, 0), []) == NOTHING_RECOGNIZED_TEXT


class TestRenderSwatch:
    def test_png_is_solid_color(self) -> None:
        png = render_swatch(Color(1, 2, 3, 200), size=8)

        with Image.open(io.BytesIO(png)) as img:
            assert img.format == "PNG"
            assert img.size == (8, 8)
            pixels = np.asarray(img.convert("RGBA")).reshape(-1, 4)
        assert {tuple(int(v) for v in p) for p in pixels} == {(1, 2, 3, 200)}


class TestAnalyze:
    async def test_returns_color_and_results(self, pool: InferencePool, fake_classifier: FakeClassifier) -> None:
        image = DecodedImage(pixels=np.full((2, 2, 4), 10, dtype=np.uint8), orientation=Orientation.LEFT)

        color, results = await analyze(pool, fake_classifier, image)

        assert color.rgba == (10, 10, 10, 10)
        assert results[0].label == "tabby"
        assert fake_classifier.calls == [(10, Orientation.LEFT)]

    async def test_compute_error_waits_for_classification(
        self, pool: InferencePool, fake_classifier: FakeClassifier
    ) -> None:
        image = DecodedImage(pixels=np.full((2, 2, 3), 10, dtype=np.uint8), orientation=Orientation.UP)

        with pytest.raises(ComputeError):
            await analyze(pool, fake_classifier, image)
        assert fake_classifier.calls == [(10, Orientation.UP)]


class TestClassificationScreen:
    def test_starts_idle(self, screen: ClassificationScreen) -> None:
        assert screen.state == ScreenState(token=0, status=ScreenStatus.IDLE, text="")

    async def test_submit_shows_classifying(self, screen: ClassificationScreen, make_png: Callable[..., bytes]) -> None:
        token = screen.submit(make_png((10, 20, 30, 255)))

        assert token == 1
        assert screen.state.status is ScreenStatus.CLASSIFYING
        assert screen.state.text == CLASSIFYING_TEXT
        assert screen.state.color is None
        await screen.wait()

    async def test_shows_top_results_and_color(
        self, screen: ClassificationScreen, make_png: Callable[..., bytes]
    ) -> None:
        screen.submit(make_png((10, 20, 30, 255)))

        state = await screen.wait()

        assert state.status is ScreenStatus.DONE
        assert state.color == Color(10, 20, 30, 255)
        assert [c.label for c in state.classifications] == ["tabby", "tiger cat"]
        assert state.text == "Color: #0A141E\nClassification:\n  (0.80) tabby\n  (0.15) tiger cat"
        assert state.alert is None

    async def test_nothing_recognized(self, screen: ClassificationScreen, make_png: Callable[..., bytes]) -> None:
        screen.submit(make_png((99, 99, 99, 255)))

        state = await screen.wait()

        assert state.status is ScreenStatus.DONE
        assert state.text == NOTHING_RECOGNIZED_TEXT
        assert state.classifications == ()
        assert state.color == Color(99, 99, 99, 255)

    async def test_inference_error_is_reported(
        self, screen: ClassificationScreen, make_png: Callable[..., bytes]
    ) -> None:
        screen.submit(make_png((66, 0, 0, 255)))

        state = await screen.wait()

        assert state.status is ScreenStatus.FAILED
        assert state.text == "Unable to classify image.\nmodel unavailable"
        assert state.color is None

    async def test_unexpected_classifier_error_is_reported(
        self,
        screen: ClassificationScreen,
        fake_classifier: FakeClassifier,
        make_png: Callable[..., bytes],
    ) -> None:
        fake_classifier.errors[77] = ValueError("session lost")
        screen.submit(make_png((77, 0, 0, 255)))

        state = await screen.wait()

        assert state.status is ScreenStatus.FAILED
        assert state.text == "Unable to classify image.\nsession lost"
        assert state.color is None

    async def test_shut_down_pool_is_reported(
        self, screen: ClassificationScreen, pool: InferencePool, make_png: Callable[..., bytes]
    ) -> None:
        pool.shutdown()
        screen.submit(make_png((10, 20, 30, 255)))

        state = await screen.wait()

        assert state.status is ScreenStatus.FAILED
        assert state.text == "Unable to classify image.\nInference pool is shut down"

    async def test_invalid_image_is_reported(self, screen: ClassificationScreen) -> None:
        screen.submit(b"not a photo")

        state = await screen.wait()

        assert state.status is ScreenStatus.FAILED
        assert state.text.startswith("Unable to read image.\n")

    async def test_compute_error_is_reported(
        self, screen: ClassificationScreen, make_png: Callable[..., bytes]
    ) -> None:
        with patch("photoclassify.screen.area_average", side_effect=ComputeError("bad pixels")):
            screen.submit(make_png((10, 20, 30, 255)))
            state = await screen.wait()

        assert state.status is ScreenStatus.FAILED
        assert state.text == "Unable to compute average color.\nbad pixels"

    async def test_failed_request_does_not_break_the_next(
        self, screen: ClassificationScreen, make_png: Callable[..., bytes]
    ) -> None:
        screen.submit(b"")
        await screen.wait()
        screen.submit(make_png((10, 20, 30, 255)))

        state = await screen.wait()

        assert state.token == 2
        assert state.status is ScreenStatus.DONE

    async def test_alert_when_target_label_shown(
        self, screen: ClassificationScreen, make_png: Callable[..., bytes]
    ) -> None:
        screen.submit(make_png((200, 0, 0, 255)))

        state = await screen.wait()

        assert state.alert == TARGET_FOUND_ALERT

    async def test_no_alert_when_target_label_disabled(
        self,
        fake_classifier: FakeClassifier,
        pool: InferencePool,
        make_png: Callable[..., bytes],
    ) -> None:
        screen = ClassificationScreen(fake_classifier, pool, Settings(max_concurrent=4, target_label=""))
        screen.submit(make_png((200, 0, 0, 255)))

        state = await screen.wait()

        assert state.alert is None

    async def test_newer_photo_wins_over_slower_older_one(
        self,
        screen: ClassificationScreen,
        fake_classifier: FakeClassifier,
        make_png: Callable[..., bytes],
    ) -> None:
        release_a = fake_classifier.hold(10)
        token_a = screen.submit(make_png((10, 20, 30, 255)))
        await asyncio.to_thread(fake_classifier.started[10].wait, 5)

        token_b = screen.submit(make_png((200, 100, 50, 255)))
        state = await screen.wait()
        release_a.set()
        await asyncio.sleep(0.05)

        assert token_b == token_a + 1
        assert screen.current_token == token_b
        assert screen.state is state
        assert state.token == token_b
        assert state.color == Color(200, 100, 50, 255)
        assert [c.label for c in state.classifications] == ["crash helmet", "football helmet"]

    async def test_stale_result_is_discarded(
        self, screen: ClassificationScreen, make_png: Callable[..., bytes]
    ) -> None:
        screen.submit(make_png((10, 20, 30, 255)))
        screen.submit(make_png((200, 100, 50, 255)))
        current = await screen.wait()

        # A late completion for the first photo must not replace the second.
        await screen._process(1, make_png((10, 20, 30, 255)))

        assert screen.state is current
        assert screen.state.color == Color(200, 100, 50, 255)
