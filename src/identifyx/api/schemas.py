"""Pydantic request/response schemas for the IdentifyX API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from identifyx.web.views import image_src

if TYPE_CHECKING:
    from identifyx.pipeline.controller import SessionSnapshot
    from identifyx.pipeline.images import ImageReference


class UrlSelection(BaseModel):
    """An image URL typed or pasted by the user."""

    url: str


class ImageInfo(BaseModel):
    """An image reference as shown to clients."""

    id: str
    source: str = Field(description="'upload' or 'url'")
    name: str
    src: str = Field(description="Where a client can load the image from")

    @classmethod
    def from_reference(cls, ref: ImageReference) -> ImageInfo:
        return cls(id=ref.id, source=ref.source, name=ref.display_name, src=image_src(ref))


class PredictionOut(BaseModel):
    """A single ranked prediction."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class LookupResultOut(BaseModel):
    """A single encyclopedia search hit."""

    title: str
    page_id: int
    snippet: str
    url: str


class SessionResponse(BaseModel):
    """The whole session as seen by the presentation layer."""

    model_config = ConfigDict(protected_namespaces=())

    state: str
    model_status: str
    model_name: str | None
    can_identify: bool
    current: ImageInfo | None
    history: list[ImageInfo]
    predictions: list[PredictionOut]
    lookup_term: str | None
    lookup_results: list[LookupResultOut]
    error: str | None
    notice: str | None

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> SessionResponse:
        return cls(
            state=str(snapshot.state),
            model_status=str(snapshot.model_status),
            model_name=snapshot.model_name,
            can_identify=snapshot.can_identify,
            current=ImageInfo.from_reference(snapshot.current) if snapshot.current else None,
            history=[ImageInfo.from_reference(ref) for ref in snapshot.history],
            predictions=[PredictionOut(label=p.label, confidence=p.confidence) for p in snapshot.predictions],
            lookup_term=snapshot.lookup_term,
            lookup_results=[
                LookupResultOut(title=r.title, page_id=r.page_id, snippet=r.snippet, url=r.url)
                for r in snapshot.lookup_results
            ],
            error=snapshot.error,
            notice=snapshot.notice,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(protected_namespaces=())

    status: str = "ok"
    gpu: bool
    model_status: str
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    repo_id: str
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
