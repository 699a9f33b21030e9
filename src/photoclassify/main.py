"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from photoclassify.ml.model_manager import ModelManager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from photoclassify.api.routes import router
from photoclassify.config import get_settings
from photoclassify.ml.image_classifier import OnnxImageClassifier
from photoclassify.ml.inference import InferencePool
from photoclassify.ml.model_manager import OnnxModelManager
from photoclassify.screen import ClassificationScreen

logger = logging.getLogger(__name__)


async def evict_idle_models(model_manager: ModelManager, interval: float) -> None:
    """Unload idle model sessions every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        model_manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting PhotoClassify (device=%s, max_concurrent=%s, model=%s, top_k=%s)",
        settings.device,
        settings.max_concurrent,
        settings.classification_model,
        settings.top_k,
    )

    model_manager = OnnxModelManager(settings)
    inference_pool = InferencePool(settings)
    classifier = OnnxImageClassifier(model_manager, settings.classification_model)
    app.state.model_manager = model_manager
    app.state.inference_pool = inference_pool
    app.state.classifier = classifier
    app.state.screen = ClassificationScreen(classifier, inference_pool, settings)

    eviction_task: asyncio.Task[None] | None = None
    if settings.model_ttl > 0:
        eviction_task = asyncio.create_task(evict_idle_models(model_manager, settings.eviction_interval))
    app.state.eviction_task = eviction_task

    logger.info("PhotoClassify ready")
    yield

    logger.info("Shutting down PhotoClassify")
    if eviction_task is not None:
        eviction_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await eviction_task
    app.state.screen.close()
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("PhotoClassify shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PhotoClassify",
        description="Photo classification with average color swatch",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run("photoclassify.main:app", host=settings.host, port=settings.port)
