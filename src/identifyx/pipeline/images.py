"""Image source management: the current image and the history of selections."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ImageReference:
    """Handle to an uploaded image or a remote image URL.

    References compare by identity: two uploads of the same file are two
    distinct history entries.
    """

    source: Literal["upload", "url"]
    url: str | None = None
    data: bytes | None = field(default=None, repr=False)
    filename: str | None = None
    content_type: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def display_name(self) -> str:
        if self.source == "upload":
            return self.filename or "upload"
        return self.url or ""


class ImageSourceManager:
    """Tracks the current image and keeps a most-recent-first history.

    The manager is the only writer of the history. Every change of the current
    image is reported to the ``on_change`` listener.
    """

    def __init__(self, on_change: Callable[[ImageReference | None], None] | None = None) -> None:
        self._current: ImageReference | None = None
        self._history: list[ImageReference] = []
        self._on_change = on_change

    @property
    def current(self) -> ImageReference | None:
        return self._current

    @property
    def history(self) -> tuple[ImageReference, ...]:
        return tuple(self._history)

    def set_listener(self, on_change: Callable[[ImageReference | None], None]) -> None:
        self._on_change = on_change

    def select_from_upload(
        self,
        filename: str | None,
        content_type: str | None,
        data: bytes,
    ) -> ImageReference | None:
        """Make uploaded bytes the current image; an empty selection clears it."""
        if not data:
            self._set_current(None)
            return None
        ref = ImageReference(source="upload", data=data, filename=filename, content_type=content_type)
        self._set_current(ref)
        self.record_current(ref)
        return ref

    def select_from_text(self, url: str) -> ImageReference | None:
        """Make a typed or pasted URL the current image, without validating it."""
        url = url.strip()
        if not url:
            self._set_current(None)
            return None
        ref = ImageReference(source="url", url=url)
        self._set_current(ref)
        self.record_current(ref)
        return ref

    def select_from_history(self, index: int) -> ImageReference:
        """Make a history entry current again; the history itself is left untouched.

        Raises:
            IndexError: If ``index`` is outside the history.
        """
        if not 0 <= index < len(self._history):
            raise IndexError(f"No history entry at index {index}")
        ref = self._history[index]
        self._set_current(ref)
        return ref

    def record_current(self, ref: ImageReference | None) -> None:
        """Prepend a freshly selected reference to the history."""
        if ref is None or any(entry is ref for entry in self._history):
            return
        self._history.insert(0, ref)
        logger.debug("History now holds %d images", len(self._history))

    def get(self, image_id: str) -> ImageReference | None:
        """Find a reference by id among the current image and the history."""
        if self._current is not None and self._current.id == image_id:
            return self._current
        return next((ref for ref in self._history if ref.id == image_id), None)

    def _set_current(self, ref: ImageReference | None) -> None:
        self._current = ref
        if self._on_change is not None:
            self._on_change(ref)
