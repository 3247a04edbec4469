"""HTML rendering. Every function here maps a snapshot to markup and nothing else."""

from __future__ import annotations

from html import escape
from typing import TYPE_CHECKING

from identifyx.pipeline.controller import ModelStatus, PipelineState

if TYPE_CHECKING:
    from identifyx.ml.image_classifier import Prediction
    from identifyx.pipeline.controller import SessionSnapshot
    from identifyx.pipeline.images import ImageReference
    from identifyx.pipeline.lookup_gateway import LookupResult

_STYLE = """
body { font-family: sans-serif; margin: 2rem; }
.inputHolder { display: flex; gap: .5rem; align-items: center; margin-bottom: 1rem; }
.mainWrapper { display: flex; gap: 2rem; }
.result { display: flex; gap: 1rem; }
.bestGuess { background: #2e7d32; color: #fff; padding: 0 .4rem; border-radius: 3px; }
.error { color: #b00020; }
.notice { color: #8a6d00; }
.result-item { margin-bottom: 1rem; }
.searchmatch { font-weight: bold; }
.recentImages { display: flex; flex-direction: column; gap: .5rem; }
.recentImages button { border: none; background: none; padding: 0; cursor: pointer; }
"""


def format_confidence(confidence: float) -> str:
    """Confidence as a percentage with two decimals, e.g. 0.8234567 -> '82.35%'."""
    return f"{confidence * 100:.2f}%"


def image_src(image: ImageReference) -> str:
    if image.source == "upload":
        return f"/images/{image.id}"
    return image.url or ""


def _document(body: str, *, refresh: int | None = None) -> str:
    meta = f'<meta http-equiv="refresh" content="{refresh}">' if refresh is not None else ""
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en"><head><meta charset="utf-8">'
        f"{meta}<title>Image Identification</title><style>{_STYLE}</style></head>"
        f'<body><div class="App">{body}</div></body></html>'
    )


def render_loading() -> str:
    return _document("<h2>Model Loading...</h2>", refresh=2)


def render_predictions(predictions: tuple[Prediction, ...]) -> str:
    if not predictions:
        return ""
    rows = []
    for index, prediction in enumerate(predictions):
        best = ' <span class="bestGuess">Best Guess</span>' if index == 0 else ""
        rows.append(
            '<div class="result">'
            f'<span class="name">{escape(prediction.label)}</span>'
            f'<span class="confidence">Confidence level: {format_confidence(prediction.confidence)}{best}</span>'
            "</div>"
        )
    return f'<div class="resultsHolder">{"".join(rows)}</div>'


def render_lookup_results(results: tuple[LookupResult, ...]) -> str:
    items = []
    for result in results:
        url = escape(result.url)
        # Snippets come from the search API with <span class="searchmatch"> markup.
        items.append(
            '<div class="result-item">'
            f'<a href="{url}" target="_blank" rel="noopener"><h3 class="result-title">{escape(result.title)}</h3></a>'
            f'<a href="{url}" class="result-link" target="_blank" rel="noopener">{url}</a>'
            f'<span class="result-snippet">{result.snippet}</span><br>'
            "</div>"
        )
    return f'<div id="wikiresults">{"".join(items)}</div>'


def render_history(history: tuple[ImageReference, ...]) -> str:
    if not history:
        return ""
    thumbs = "".join(
        f'<form method="post" action="/history/{index}" class="recentPrediction">'
        f'<button type="submit"><img src="{escape(image_src(image))}" alt="Recent Prediction" width="200px"></button>'
        "</form>"
        for index, image in enumerate(history)
    )
    return f'<div class="recentPredictions"><h2>Recent Images</h2><div class="recentImages">{thumbs}</div></div>'


def _render_inputs() -> str:
    return (
        '<div class="inputHolder">'
        '<form method="post" action="/upload" enctype="multipart/form-data">'
        '<input type="file" name="file" accept="image/*" capture="camera" class="uploadInput">'
        '<button type="submit" class="uploadImage">Upload Image</button>'
        "</form>"
        '<form method="post" action="/url">'
        '<input type="text" name="url" placeholder="Paste image URL">'
        '<button type="submit">Use URL</button>'
        "</form>"
        "</div>"
    )


def _render_messages(snapshot: SessionSnapshot) -> str:
    parts = []
    if snapshot.model_status == ModelStatus.FAILED:
        parts.append('<p class="error">The classification model failed to load. Restart the service to retry.</p>')
    if snapshot.error:
        parts.append(f'<p class="error">{escape(snapshot.error)}</p>')
    if snapshot.notice:
        parts.append(f'<p class="notice">{escape(snapshot.notice)}</p>')
    return "".join(parts)


def _render_image_holder(snapshot: SessionSnapshot) -> str:
    if snapshot.current is None:
        return '<div class="imageHolder"></div>'
    disabled = "" if snapshot.can_identify and snapshot.state != PipelineState.CLASSIFYING else " disabled"
    return (
        '<div class="imageHolder">'
        f'<img src="{escape(image_src(snapshot.current))}" alt="Upload Preview" crossorigin="anonymous" width="200px">'
        '<div class="btn-result-block">'
        f'<form method="post" action="/identify"><button type="submit" class="button"{disabled}>Identify Image</button></form>'
        f"{render_predictions(snapshot.predictions)}"
        "</div></div>"
    )


def render_page(snapshot: SessionSnapshot) -> str:
    """Render the full identification page for a session snapshot."""
    body = (
        "<h1 class=\"header\">Image Identification</h1>"
        f"{_render_inputs()}"
        f"{_render_messages(snapshot)}"
        '<div class="mainWrapper"><div class="mainContent">'
        f"{_render_image_holder(snapshot)}"
        f"{render_lookup_results(snapshot.lookup_results)}"
        "</div>"
        f"{render_history(snapshot.history)}"
        "</div>"
    )
    return _document(body)
