"""Model gateway: one-time model load and per-image classification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from identifyx.errors import ClassificationError, ModelLoadError
from identifyx.ml.image_classifier import OnnxImageClassifier
from identifyx.ml.model_manager import get_spec
from identifyx.ml.preprocessing import PillowPreprocessor

if TYPE_CHECKING:
    from identifyx.config import Settings
    from identifyx.ml.image_classifier import ImageClassifier, Prediction
    from identifyx.ml.inference import InferencePool
    from identifyx.ml.model_manager import ModelManager
    from identifyx.pipeline.images import ImageReference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelHandle:
    """A loaded classifier, ready for inference."""

    model_name: str
    classifier: ImageClassifier


class ModelGateway:
    """Loads the configured classifier and runs it on image references."""

    def __init__(
        self,
        settings: Settings,
        model_manager: ModelManager,
        pool: InferencePool,
        client: httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._model_manager = model_manager
        self._pool = pool
        self._client = client
        self._preprocessor = PillowPreprocessor(settings.max_image_pixels)

    async def load(self) -> ModelHandle:
        """Download and initialize the configured model.

        Raises:
            ModelLoadError: On any failure. Not retried.
        """
        name = self._settings.model_name
        logger.info("Loading model %s (device=%s)", name, self._settings.device)
        try:
            classifier = await self._pool.run(self._build_classifier, name)
        except Exception as exc:
            raise ModelLoadError(f"Failed to load model '{name}': {exc}") from exc
        logger.info("Model %s ready", name)
        return ModelHandle(model_name=name, classifier=classifier)

    async def classify(self, handle: ModelHandle | None, image: ImageReference) -> list[Prediction]:
        """Classify an image and return predictions in descending confidence.

        Raises:
            ClassificationError: If the model is not loaded, the image cannot be
                fetched or decoded, or inference fails.
        """
        if handle is None:
            raise ClassificationError("Model is not loaded yet")

        data = await self._read_bytes(image)
        try:
            return await self._pool.run(self._infer, handle.classifier, data)
        except ValueError as exc:
            raise ClassificationError(str(exc)) from exc
        except Exception as exc:
            raise ClassificationError(f"Inference failed: {exc!r}") from exc

    def _build_classifier(self, name: str) -> OnnxImageClassifier:
        spec = get_spec(name)
        session = self._model_manager.get_session(name)
        labels = self._model_manager.load_labels(name)
        return OnnxImageClassifier(spec, session, labels, self._preprocessor, self._settings.top_k)

    def _infer(self, classifier: ImageClassifier, data: bytes) -> list[Prediction]:
        return classifier.classify(self._preprocessor.decode_image(data))

    async def _read_bytes(self, image: ImageReference) -> bytes:
        if image.source == "upload":
            return image.data or b""

        url = image.url or ""
        limit = self._settings.max_file_size
        body = bytearray()
        try:
            async with self._client.stream("GET", url, follow_redirects=True) as response:
                if not response.is_success:
                    raise ClassificationError(f"Cannot fetch image from {url}: HTTP {response.status_code}")
                declared = response.headers.get("Content-Length", "")
                if declared.isdigit() and int(declared) > limit:
                    raise ClassificationError(f"Image at {url} exceeds {limit} bytes")
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > limit:
                        raise ClassificationError(f"Image at {url} exceeds {limit} bytes")
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ClassificationError(f"Cannot fetch image from {url}: {exc}") from exc
        return bytes(body)
