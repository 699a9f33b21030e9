"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, Response, UploadFile, status

from photoclassify.api.middleware import verify_api_key
from photoclassify.api.schemas import (
    ClassifyImageResponse,
    ColorSchema,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
    ScreenResponse,
)
from photoclassify.errors import ComputeError, InferenceError, InvalidImageError
from photoclassify.ml.average_color import area_average
from photoclassify.ml.model_manager import MODEL_REGISTRY
from photoclassify.ml.preprocessing import decode_image
from photoclassify.screen import analyze, format_result_text, render_swatch

if TYPE_CHECKING:
    from photoclassify.config import Settings
    from photoclassify.ml.image_classifier import ImageClassifier
    from photoclassify.ml.inference import InferencePool
    from photoclassify.ml.model_manager import ModelManager
    from photoclassify.screen import ClassificationScreen

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_IMAGE_ERRORS = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> ImageClassifier:
    classifier: ImageClassifier = request.app.state.classifier
    return classifier


def _get_screen(request: Request) -> ClassificationScreen:
    screen: ClassificationScreen = request.app.state.screen
    return screen


async def _read_upload(file: UploadFile, settings: Settings) -> bytes:
    data = await file.read()
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    return data


def _raise_http(exc: Exception) -> NoReturn:
    detail = str(exc)
    if isinstance(exc, InvalidImageError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, ComputeError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, InferenceError):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, TimeoutError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
        detail = "Inference workers are busy, try again later"
    else:
        raise exc
    raise HTTPException(status_code=code, detail=detail) from exc


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={**_IMAGE_ERRORS, status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse}},
    summary="Classify an image and compute its average color",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Classify an uploaded image and return its top tags and average color."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    data = await _read_upload(file, settings)

    try:
        image = await pool.run(decode_image, data, settings.max_image_pixels)
        color, results = await analyze(pool, _get_classifier(request), image)
    except (InvalidImageError, ComputeError, InferenceError, TimeoutError) as exc:
        _raise_http(exc)

    top = results[: settings.top_k]
    return ClassifyImageResponse(
        tags=[ImageTag(label=r.label, confidence=r.confidence) for r in top],
        color=ColorSchema.from_color(color),
        text=format_result_text(color, top),
    )


@router.post(
    "/average-color",
    response_model=ColorSchema,
    responses=_IMAGE_ERRORS,
    summary="Compute the average color of an image",
)
async def average_color(request: Request, file: UploadFile) -> ColorSchema:
    """Return the per-channel mean color of an uploaded image."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    data = await _read_upload(file, settings)

    try:
        image = await pool.run(decode_image, data, settings.max_image_pixels)
        color = await pool.run(area_average, image.pixels)
    except (InvalidImageError, ComputeError, TimeoutError) as exc:
        _raise_http(exc)
    return ColorSchema.from_color(color)


@router.post(
    "/screen/photo",
    response_model=ScreenResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse}},
    summary="Show a new photo on the screen and start classifying it",
)
async def submit_photo(request: Request, file: UploadFile) -> ScreenResponse:
    """Replace the displayed photo. Poll GET /screen for the result."""
    data = await _read_upload(file, _get_settings(request))
    screen = _get_screen(request)
    screen.submit(data)
    return ScreenResponse.from_state(screen.state)


@router.get(
    "/screen",
    response_model=ScreenResponse,
    summary="Current screen state",
)
async def get_screen(request: Request) -> ScreenResponse:
    """Return the text, color and tags currently shown."""
    return ScreenResponse.from_state(_get_screen(request).state)


@router.get(
    "/screen/swatch.png",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/png": {}}},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    },
    summary="Swatch of the current average color",
)
async def get_swatch(request: Request) -> Response:
    """Render the displayed average color as a PNG square."""
    color = _get_screen(request).state.color
    if color is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No color to show")
    png = render_swatch(color, _get_settings(request).swatch_size)
    return Response(content=png, media_type="image/png")


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    model_manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=model_manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and whether each is the active one."""
    settings = _get_settings(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                status="active" if spec.name == settings.classification_model else "available",
                input_size=spec.input_size,
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
