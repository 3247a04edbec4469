"""Image preprocessing pipeline.

Decodes raw bytes with Pillow (EXIF orientation, RGB conversion, size
validation) and turns the result into a normalized NCHW tensor for the
classification model.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from identifyx.ml.model_manager import ModelSpec


class PillowPreprocessor:
    """Decodes images and prepares classifier input tensors."""

    def __init__(self, max_image_pixels: int) -> None:
        self._max_image_pixels = max_image_pixels

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Args:
            image_bytes: Raw file bytes (any format Pillow can read).

        Returns:
            HxWx3 RGB uint8 numpy array.

        Raises:
            ValueError: If the image cannot be decoded or exceeds size limits.
        """
        if not image_bytes:
            raise ValueError("Empty image data")
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if width * height > self._max_image_pixels:
                    raise ValueError(f"Image too large: {width}x{height} exceeds {self._max_image_pixels} pixels")
                img.load()
                rgb = ImageOps.exif_transpose(img).convert("RGB")
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            raise ValueError(f"Cannot decode image: {exc}") from exc
        return np.asarray(rgb, dtype=np.uint8)

    @staticmethod
    def preprocess_for_classification(image: NDArray[np.uint8], spec: ModelSpec) -> NDArray[np.float32]:
        """Crop and resize an image for a classification model, then normalize it.

        Cropping models take the center square that a shortest-edge resize to
        ``resize_size`` followed by an ``input_size`` crop would keep. The box is
        computed in source pixels so only the crop is ever resampled.

        Args:
            image: HxWx3 RGB uint8 array.
            spec: Registry entry carrying the model's input size and normalization.

        Returns:
            Float32 tensor of shape (1, 3, input_size, input_size).
        """
        pil = Image.fromarray(image)
        size = (spec.input_size, spec.input_size)
        if spec.crop:
            side = min(pil.size) * spec.input_size / spec.resize_size
            left = (pil.width - side) / 2
            top = (pil.height - side) / 2
            resized = pil.resize(size, Image.Resampling.BILINEAR, box=(left, top, left + side, top + side))
        else:
            resized = pil.resize(size, Image.Resampling.BILINEAR)

        pixels = np.asarray(resized, dtype=np.float32) / 255.0
        pixels = (pixels - np.array(spec.mean, dtype=np.float32)) / np.array(spec.std, dtype=np.float32)
        return pixels.transpose(2, 0, 1)[np.newaxis, ...].astype(np.float32)
