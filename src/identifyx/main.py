"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from identifyx.api.routes import router as api_router
from identifyx.config import get_settings
from identifyx.ml.inference import InferencePool
from identifyx.ml.model_manager import OnnxModelManager
from identifyx.pipeline.controller import PipelineController
from identifyx.pipeline.lookup_gateway import LookupGateway
from identifyx.pipeline.model_gateway import ModelGateway
from identifyx.web.pages import router as pages_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: wire the pipeline, load the model in the background."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting IdentifyX (device=%s, model=%s, top_k=%s)",
        settings.device,
        settings.model_name,
        settings.top_k,
    )

    inference_pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    http_client = httpx.AsyncClient(headers={"User-Agent": settings.user_agent})
    controller = PipelineController(
        ModelGateway(settings, model_manager, inference_pool, http_client),
        LookupGateway(http_client, settings),
    )
    app.state.inference_pool = inference_pool
    app.state.model_manager = model_manager
    app.state.controller = controller

    # Pages show the loading screen until this finishes.
    load_task = asyncio.create_task(controller.load_model(), name="model-load")

    logger.info("IdentifyX ready")
    yield

    logger.info("Shutting down IdentifyX")
    load_task.cancel()
    with suppress(asyncio.CancelledError):
        await load_task
    await http_client.aclose()
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("IdentifyX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="IdentifyX",
        description="Identify images with an on-device classifier and look up the best guess on Wikipedia",
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

    application.include_router(api_router)
    application.include_router(pages_router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("identifyx.main:app", host=settings.host, port=settings.port)
