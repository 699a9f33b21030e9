"""The classification screen: one displayed image, its color and its labels.

All state lives on the event loop. Decoding, color extraction and inference
run on the :class:`InferencePool`; their results are joined and applied in a
single update, and only if the request is still the current one.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from PIL import Image

from photoclassify.errors import ComputeError, InferenceError, InvalidImageError
from photoclassify.ml.average_color import area_average
from photoclassify.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from photoclassify.config import Settings
    from photoclassify.ml.average_color import Color
    from photoclassify.ml.image_classifier import ClassificationResult, ImageClassifier
    from photoclassify.ml.inference import InferencePool
    from photoclassify.ml.preprocessing import DecodedImage

logger = logging.getLogger(__name__)

CLASSIFYING_TEXT = "Classifying..."
NOTHING_RECOGNIZED_TEXT = "Nothing recognized."


class ScreenStatus(StrEnum):
    IDLE = "idle"
    CLASSIFYING = "classifying"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Alert:
    title: str
    message: str


TARGET_FOUND_ALERT = Alert(title="WOW Congrats", message="You searched it..")


@dataclass(frozen=True)
class ScreenState:
    """What the screen currently shows."""

    token: int
    status: ScreenStatus
    text: str
    color: Color | None = None
    classifications: tuple[ClassificationResult, ...] = ()
    alert: Alert | None = None


def format_result_text(color: Color, results: list[ClassificationResult]) -> str:
    """Render the text block shown under the photo."""
    if not results:
        return NOTHING_RECOGNIZED_TEXT
    lines = [f"  ({result.confidence:.2f}) {result.label}" for result in results]
    return f"Color: {color.hex}\nClassification:\n" + "\n".join(lines)


def render_swatch(color: Color, size: int) -> bytes:
    """Render a solid square of ``color`` as PNG bytes."""
    buffer = io.BytesIO()
    Image.new("RGBA", (size, size), color.rgba).save(buffer, format="PNG")
    return buffer.getvalue()


async def analyze(
    pool: InferencePool, classifier: ImageClassifier, image: DecodedImage
) -> tuple[Color, list[ClassificationResult]]:
    """Compute the average color and the classifications of an image.

    Both jobs run concurrently on the pool; this returns (or raises) only
    after both have finished. Color errors take precedence over inference
    errors.
    """
    color, results = await asyncio.gather(
        pool.run(area_average, image.pixels),
        pool.run(classifier.classify, image.pixels, image.orientation),
        return_exceptions=True,
    )
    if isinstance(color, BaseException):
        raise color
    if isinstance(results, BaseException):
        raise results
    return color, results


class ClassificationScreen:
    """Holds the current screen state and processes submitted photos."""

    def __init__(self, classifier: ImageClassifier, pool: InferencePool, settings: Settings) -> None:
        self._classifier = classifier
        self._pool = pool
        self._settings = settings
        self._token = 0
        self._state = ScreenState(token=0, status=ScreenStatus.IDLE, text="")
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ScreenState:
        return self._state

    @property
    def current_token(self) -> int:
        return self._token

    def submit(self, image_bytes: bytes) -> int:
        """Replace the displayed photo and start classifying it.

        Must be called from the event loop. Any pending request is cancelled,
        and its results will never be shown.

        Returns:
            The token identifying this request.
        """
        self._token += 1
        token = self._token
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("Cancelled pending request %d", token - 1)

        self._state = ScreenState(token=token, status=ScreenStatus.CLASSIFYING, text=CLASSIFYING_TEXT)
        self._task = asyncio.get_running_loop().create_task(self._process(token, image_bytes))
        logger.info("Submitted photo %d (%d bytes)", token, len(image_bytes))
        return token

    async def wait(self) -> ScreenState:
        """Wait until no request is pending and return the resulting state."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        return self._state

    def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _process(self, token: int, image_bytes: bytes) -> None:
        try:
            image = await self._pool.run(decode_image, image_bytes, self._settings.max_image_pixels)
            color, results = await analyze(self._pool, self._classifier, image)
        except InvalidImageError as exc:
            state = self._failed(token, f"Unable to read image.\n{exc}")
        except ComputeError as exc:
            state = self._failed(token, f"Unable to compute average color.\n{exc}")
        except InferenceError as exc:
            state = self._failed(token, f"Unable to classify image.\n{exc}")
        except TimeoutError:
            state = self._failed(token, "Unable to classify image.\nAll workers are busy, try again later.")
        except Exception as exc:
            logger.exception("Unexpected failure processing request %d", token)
            state = self._failed(token, f"Unable to classify image.\n{exc}")
        else:
            state = self._present(token, color, results)
        self._apply(state)

    def _present(self, token: int, color: Color, results: list[ClassificationResult]) -> ScreenState:
        top = results[: self._settings.top_k]
        alert = None
        target = self._settings.target_label
        if target and any(result.label == target for result in top):
            alert = TARGET_FOUND_ALERT
        return ScreenState(
            token=token,
            status=ScreenStatus.DONE,
            text=format_result_text(color, top),
            color=color,
            classifications=tuple(top),
            alert=alert,
        )

    @staticmethod
    def _failed(token: int, text: str) -> ScreenState:
        logger.warning("Request %d failed: %s", token, text.replace("\n", " "))
        return ScreenState(token=token, status=ScreenStatus.FAILED, text=text)

    def _apply(self, state: ScreenState) -> None:
        if state.token != self._token:
            logger.debug("Discarding stale result for request %d (current %d)", state.token, self._token)
            return
        self._state = state
