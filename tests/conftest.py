"""Shared fakes for pipeline and API tests."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from identifyx.errors import ModelLoadError
from identifyx.ml.image_classifier import Prediction
from identifyx.pipeline.lookup_gateway import LookupResult
from identifyx.pipeline.model_gateway import ModelHandle

if TYPE_CHECKING:
    from identifyx.pipeline.images import ImageReference


class FakeModelGateway:
    """Stands in for ModelGateway; results are scripted per test."""

    def __init__(self, predictions: list[Prediction] | None = None) -> None:
        self.predictions = predictions if predictions is not None else []
        self.error: Exception | None = None
        self.load_error: ModelLoadError | None = None
        self.calls: list[ImageReference] = []
        self.gate: asyncio.Event | None = None

    async def load(self) -> ModelHandle:
        if self.load_error is not None:
            raise self.load_error
        return ModelHandle(model_name="fake", classifier=None)  # type: ignore[arg-type]

    async def classify(self, handle: ModelHandle | None, image: ImageReference) -> list[Prediction]:
        self.calls.append(image)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.predictions)


class FakeLookupGateway:
    """Stands in for LookupGateway; records search terms."""

    def __init__(self, results: list[LookupResult] | None = None) -> None:
        self.results = results if results is not None else []
        self.error: Exception | None = None
        self.terms: list[str] = []
        self.gate: asyncio.Event | None = None

    async def search(self, term: str) -> list[LookupResult]:
        self.terms.append(term)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.results)


CAT_PREDICTIONS = [Prediction(label="cat", confidence=0.91), Prediction(label="dog", confidence=0.05)]

CAT_RESULTS = [
    LookupResult(title="Cat", page_id=6678, snippet='The <span class="searchmatch">cat</span> is a small mammal'),
    LookupResult(title="Cats (musical)", page_id=197220, snippet="A musical"),
]
