"""Pipeline controller: session state and the classify -> lookup round.

The controller owns the session state and is the only place where results of
asynchronous work are applied. Each classification round captures the image it
targets and a round number; anything that completes after the image changed
or a newer round started is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from identifyx.errors import ClassificationError, LookupFailedError, ModelLoadError
from identifyx.pipeline.images import ImageSourceManager

if TYPE_CHECKING:
    from identifyx.ml.image_classifier import Prediction
    from identifyx.pipeline.images import ImageReference
    from identifyx.pipeline.lookup_gateway import LookupGateway, LookupResult
    from identifyx.pipeline.model_gateway import ModelGateway, ModelHandle

logger = logging.getLogger(__name__)


class PipelineState(StrEnum):
    IDLE = "idle"
    IMAGE_SELECTED = "image_selected"
    CLASSIFYING = "classifying"
    CLASSIFIED = "classified"
    LOOKING_UP = "looking_up"
    COMPLETE = "complete"


class ModelStatus(StrEnum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


_IDENTIFY_FROM = frozenset(
    {
        PipelineState.IMAGE_SELECTED,
        PipelineState.CLASSIFIED,
        PipelineState.LOOKING_UP,
        PipelineState.COMPLETE,
    }
)


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of the session handed to the presentation layer."""

    state: PipelineState
    model_status: ModelStatus
    model_name: str | None
    current: ImageReference | None
    history: tuple[ImageReference, ...]
    predictions: tuple[Prediction, ...]
    lookup_term: str | None
    lookup_results: tuple[LookupResult, ...]
    error: str | None
    notice: str | None

    @property
    def can_identify(self) -> bool:
        return self.current is not None and self.model_status == ModelStatus.READY


class PipelineController:
    """Runs identification rounds and keeps the session state consistent."""

    def __init__(
        self,
        model_gateway: ModelGateway,
        lookup_gateway: LookupGateway,
        images: ImageSourceManager | None = None,
    ) -> None:
        self._model_gateway = model_gateway
        self._lookup_gateway = lookup_gateway
        self._images = images or ImageSourceManager()
        self._images.set_listener(self.clear_results)

        self._handle: ModelHandle | None = None
        self._model_status = ModelStatus.LOADING
        self._state = PipelineState.IDLE
        self._round = 0
        self._predictions: tuple[Prediction, ...] = ()
        self._lookup_term: str | None = None
        self._lookup_results: tuple[LookupResult, ...] = ()
        self._error: str | None = None
        self._notice: str | None = None

    # -- Queries -------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def images(self) -> ImageSourceManager:
        return self._images

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            model_status=self._model_status,
            model_name=self._handle.model_name if self._handle else None,
            current=self._images.current,
            history=self._images.history,
            predictions=self._predictions,
            lookup_term=self._lookup_term,
            lookup_results=self._lookup_results,
            error=self._error,
            notice=self._notice,
        )

    # -- Commands ------------------------------------------------------------

    async def load_model(self) -> None:
        """Load the model once; a failure is kept as visible state."""
        self._model_status = ModelStatus.LOADING
        try:
            self._handle = await self._model_gateway.load()
        except ModelLoadError as exc:
            logger.error("Model load failed: %s", exc)
            self._model_status = ModelStatus.FAILED
            self._error = str(exc)
            return
        self._model_status = ModelStatus.READY

    def select_upload(self, filename: str | None, content_type: str | None, data: bytes) -> SessionSnapshot:
        self._images.select_from_upload(filename, content_type, data)
        return self.snapshot()

    def select_url(self, url: str) -> SessionSnapshot:
        self._images.select_from_text(url)
        return self.snapshot()

    def select_history(self, index: int) -> SessionSnapshot:
        self._images.select_from_history(index)
        return self.snapshot()

    def clear_results(self, current: ImageReference | None) -> None:
        """Drop results of the previous image and invalidate in-flight rounds."""
        self._round += 1
        self._predictions = ()
        self._lookup_term = None
        self._lookup_results = ()
        self._error = None
        self._notice = None
        self._state = PipelineState.IDLE if current is None else PipelineState.IMAGE_SELECTED

    async def identify(self) -> SessionSnapshot:
        """Classify the current image, then look up its best guess."""
        target = self._images.current
        if target is None:
            self._error = "Select an image first"
            return self.snapshot()
        if self._model_status != ModelStatus.READY:
            self._error = "The model is not ready yet"
            return self.snapshot()
        if self._state not in _IDENTIFY_FROM:
            logger.info("Ignoring identify request while %s", self._state)
            return self.snapshot()

        self._round += 1
        round_id = self._round
        self._state = PipelineState.CLASSIFYING
        self._predictions = ()
        self._lookup_term = None
        self._lookup_results = ()
        self._error = None
        self._notice = None

        try:
            predictions = await self._model_gateway.classify(self._handle, target)
        except ClassificationError as exc:
            if self._is_current(round_id, target):
                logger.warning("Classification of %s failed: %s", target.id, exc)
                self._state = PipelineState.IMAGE_SELECTED
                self._error = f"Could not identify this image: {exc}"
            return self.snapshot()
        except Exception as exc:
            # Unexpected failures still end the round so the image can be retried.
            if self._is_current(round_id, target):
                logger.exception("Unexpected error while classifying %s", target.id)
                self._state = PipelineState.IMAGE_SELECTED
                self._error = f"Could not identify this image: {exc}"
            return self.snapshot()

        if not self._is_current(round_id, target):
            logger.info("Discarding stale predictions for image %s", target.id)
            return self.snapshot()

        self._predictions = tuple(predictions)
        self._state = PipelineState.CLASSIFIED
        term = search_term(self._predictions)
        if term is None:
            return self.snapshot()

        await self._lookup(round_id, target, term)
        return self.snapshot()

    # -- Internal ------------------------------------------------------------

    async def _lookup(self, round_id: int, target: ImageReference, term: str) -> None:
        self._state = PipelineState.LOOKING_UP
        self._lookup_term = term
        try:
            results = await self._lookup_gateway.search(term)
        except LookupFailedError as exc:
            if self._is_current(round_id, target):
                logger.warning("Lookup for %r failed: %s", term, exc)
                self._lookup_results = ()
                self._notice = f"Background information is unavailable: {exc}"
                self._state = PipelineState.COMPLETE
            return
        except Exception as exc:
            if self._is_current(round_id, target):
                logger.exception("Unexpected error while looking up %r", term)
                self._lookup_results = ()
                self._notice = f"Background information is unavailable: {exc}"
                self._state = PipelineState.COMPLETE
            return

        if not self._is_current(round_id, target):
            logger.info("Discarding stale lookup results for %r", term)
            return
        self._lookup_results = tuple(results)
        self._state = PipelineState.COMPLETE

    def _is_current(self, round_id: int, target: ImageReference) -> bool:
        return round_id == self._round and self._images.current is target


def search_term(predictions: tuple[Prediction, ...] | list[Prediction]) -> str | None:
    """Label of the highest-confidence prediction, or None when there is nothing to search."""
    if not predictions:
        return None
    best = max(predictions, key=lambda p: p.confidence)
    return best.label or None
