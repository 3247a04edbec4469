"""Error taxonomy for the identification pipeline."""

from __future__ import annotations


class IdentifyXError(Exception):
    """Base class for pipeline errors."""


class ModelLoadError(IdentifyXError):
    """The classification model could not be initialized."""


class ClassificationError(IdentifyXError):
    """An image could not be read, decoded or classified."""


class LookupFailedError(IdentifyXError):
    """The encyclopedia search request failed or returned malformed data."""
