"""Pydantic request/response schemas for the PhotoClassify API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from photoclassify.ml.average_color import Color
    from photoclassify.screen import ScreenState


class ColorSchema(BaseModel):
    """An RGBA color, as bytes and as normalized components."""

    hex: str = Field(description="#RRGGBB")
    rgba: list[int] = Field(description="Red, green, blue, alpha bytes (0-255)")
    components: list[float] = Field(description="Red, green, blue, alpha normalized (0.0-1.0)")

    @classmethod
    def from_color(cls, color: Color) -> ColorSchema:
        return cls(hex=color.hex, rgba=list(color.rgba), components=list(color.components))


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    tags: list[ImageTag]
    color: ColorSchema
    text: str


class AlertSchema(BaseModel):
    title: str
    message: str


class ScreenResponse(BaseModel):
    """The current state of the classification screen."""

    token: int
    status: str = Field(description="'idle', 'classifying', 'done', or 'failed'")
    text: str
    color: ColorSchema | None = None
    tags: list[ImageTag] = Field(default_factory=list)
    alert: AlertSchema | None = None

    @classmethod
    def from_state(cls, state: ScreenState) -> ScreenResponse:
        return cls(
            token=state.token,
            status=state.status.value,
            text=state.text,
            color=ColorSchema.from_color(state.color) if state.color is not None else None,
            tags=[ImageTag(label=c.label, confidence=c.confidence) for c in state.classifications],
            alert=AlertSchema(title=state.alert.title, message=state.alert.message) if state.alert else None,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    status: str = Field(description="Model status: 'active' or 'available'")
    input_size: int
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
