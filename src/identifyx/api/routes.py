"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from identifyx.api.middleware import verify_api_key
from identifyx.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    SessionResponse,
    UrlSelection,
)
from identifyx.ml.model_manager import MODEL_REGISTRY
from identifyx.web.pages import read_upload

if TYPE_CHECKING:
    from identifyx.config import Settings
    from identifyx.ml.inference import InferencePool
    from identifyx.ml.model_manager import ModelManager
    from identifyx.pipeline.controller import PipelineController

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def _get_controller(request: Request) -> PipelineController:
    controller: PipelineController = request.app.state.controller
    return controller


@router.get("/session", response_model=SessionResponse, summary="Current session state")
async def get_session(request: Request) -> SessionResponse:
    """Return the current image, history, predictions and lookup results."""
    return SessionResponse.from_snapshot(_get_controller(request).snapshot())


@router.post(
    "/image/upload",
    response_model=SessionResponse,
    responses={status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse}},
    summary="Select an uploaded image",
)
async def upload_image(request: Request, file: UploadFile) -> SessionResponse:
    """Make the uploaded file the current image. An empty file clears the selection."""
    data = await read_upload(file, _get_settings(request))
    snapshot = _get_controller(request).select_upload(file.filename, file.content_type, data)
    return SessionResponse.from_snapshot(snapshot)


@router.post("/image/url", response_model=SessionResponse, summary="Select an image by URL")
async def select_image_url(request: Request, body: UrlSelection) -> SessionResponse:
    """Make the given URL the current image. The URL is not checked until identification."""
    snapshot = _get_controller(request).select_url(body.url)
    return SessionResponse.from_snapshot(snapshot)


@router.post(
    "/history/{index}/select",
    response_model=SessionResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Re-select an image from history",
)
async def select_history(request: Request, index: int) -> SessionResponse:
    """Make a history entry the current image without adding it to history again."""
    try:
        snapshot = _get_controller(request).select_history(index)
    except IndexError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No such history entry") from None
    return SessionResponse.from_snapshot(snapshot)


@router.post("/identify", response_model=SessionResponse, summary="Identify the current image")
async def identify(request: Request) -> SessionResponse:
    """Classify the current image and look up its best guess.

    Failures are reported in the ``error`` and ``notice`` fields, not as HTTP errors.
    """
    snapshot = await _get_controller(request).identify()
    return SessionResponse.from_snapshot(snapshot)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model_status=str(_get_controller(request).snapshot().model_status),
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the model registry, marking the configured model as active."""
    settings = _get_settings(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                repo_id=spec.repo_id,
                status="active" if spec.name == settings.model_name else "available",
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
