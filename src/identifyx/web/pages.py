"""HTML routes: render the page and turn form posts into controller intents."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from identifyx.pipeline.controller import ModelStatus
from identifyx.web.views import render_loading, render_page

if TYPE_CHECKING:
    from identifyx.config import Settings
    from identifyx.pipeline.controller import PipelineController

router = APIRouter(include_in_schema=False)


def _get_controller(request: Request) -> PipelineController:
    controller: PipelineController = request.app.state.controller
    return controller


def _back_to_page() -> RedirectResponse:
    return RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)


async def read_upload(file: UploadFile, settings: Settings) -> bytes:
    """Read an upload, enforcing the configured size limit."""
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    return data


@router.get("/", response_class=HTMLResponse)
async def index(request: Request) -> HTMLResponse:
    snapshot = _get_controller(request).snapshot()
    if snapshot.model_status == ModelStatus.LOADING:
        return HTMLResponse(render_loading())
    return HTMLResponse(render_page(snapshot))


@router.post("/upload")
async def upload(request: Request, file: UploadFile | None = None) -> RedirectResponse:
    controller = _get_controller(request)
    if file is None or not file.filename:
        controller.select_upload(None, None, b"")
    else:
        data = await read_upload(file, request.app.state.settings)
        controller.select_upload(file.filename, file.content_type, data)
    return _back_to_page()


@router.post("/url")
async def select_url(request: Request, url: Annotated[str, Form()] = "") -> RedirectResponse:
    _get_controller(request).select_url(url)
    return _back_to_page()


@router.post("/identify")
async def identify(request: Request) -> RedirectResponse:
    await _get_controller(request).identify()
    return _back_to_page()


@router.post("/history/{index}")
async def select_history(request: Request, index: int) -> RedirectResponse:
    try:
        _get_controller(request).select_history(index)
    except IndexError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No such history entry") from None
    return _back_to_page()


@router.get("/images/{image_id}")
async def image(request: Request, image_id: str) -> Response:
    ref = _get_controller(request).images.get(image_id)
    if ref is None or ref.data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No such image")
    return Response(content=ref.data, media_type=ref.content_type or "application/octet-stream")
