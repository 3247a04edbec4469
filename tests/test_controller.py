"""Tests for the pipeline controller state machine."""

from __future__ import annotations

import asyncio

import pytest
from conftest import CAT_PREDICTIONS, CAT_RESULTS, FakeLookupGateway, FakeModelGateway

from identifyx.errors import ClassificationError, LookupFailedError, ModelLoadError
from identifyx.ml.image_classifier import Prediction
from identifyx.pipeline.controller import ModelStatus, PipelineController, PipelineState, search_term


def _controller(
    predictions: list[Prediction] | None = None,
    results: list | None = None,
) -> tuple[PipelineController, FakeModelGateway, FakeLookupGateway]:
    model = FakeModelGateway(CAT_PREDICTIONS if predictions is None else predictions)
    lookup = FakeLookupGateway(CAT_RESULTS if results is None else results)
    return PipelineController(model, lookup), model, lookup  # type: ignore[arg-type]


async def _ready_controller(**kwargs: object) -> tuple[PipelineController, FakeModelGateway, FakeLookupGateway]:
    controller, model, lookup = _controller(**kwargs)  # type: ignore[arg-type]
    await controller.load_model()
    return controller, model, lookup


class TestSearchTerm:
    def test_uses_highest_confidence_label(self) -> None:
        predictions = [Prediction("dog", 0.2), Prediction("cat", 0.7)]
        assert search_term(predictions) == "cat"

    def test_no_predictions(self) -> None:
        assert search_term([]) is None

    def test_empty_label(self) -> None:
        assert search_term([Prediction("", 0.9)]) is None


class TestModelLoading:
    async def test_starts_loading_then_ready(self) -> None:
        controller, _, _ = _controller()
        assert controller.snapshot().model_status == ModelStatus.LOADING

        await controller.load_model()

        snapshot = controller.snapshot()
        assert snapshot.model_status == ModelStatus.READY
        assert snapshot.model_name == "fake"

    async def test_load_failure_is_visible_state(self) -> None:
        controller, model, _ = _controller()
        model.load_error = ModelLoadError("no network")

        await controller.load_model()

        snapshot = controller.snapshot()
        assert snapshot.model_status == ModelStatus.FAILED
        assert snapshot.error == "no network"

    async def test_identify_before_model_ready_is_rejected(self) -> None:
        controller, model, _ = _controller()
        controller.select_url("https://example.com/cat.jpg")

        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.IMAGE_SELECTED
        assert snapshot.error == "The model is not ready yet"
        assert model.calls == []


class TestStateMachine:
    async def test_initial_state_is_idle(self) -> None:
        controller, _, _ = await _ready_controller()
        snapshot = controller.snapshot()
        assert snapshot.state == PipelineState.IDLE
        assert not snapshot.can_identify

    async def test_selection_moves_to_image_selected(self) -> None:
        controller, _, _ = await _ready_controller()
        snapshot = controller.select_upload("cat.jpg", "image/jpeg", b"cat")
        assert snapshot.state == PipelineState.IMAGE_SELECTED
        assert snapshot.can_identify

    async def test_clearing_selection_returns_to_idle(self) -> None:
        controller, _, _ = await _ready_controller()
        controller.select_url("https://example.com/cat.jpg")
        assert controller.select_url("").state == PipelineState.IDLE

    async def test_identify_without_image(self) -> None:
        controller, model, _ = await _ready_controller()
        snapshot = await controller.identify()
        assert snapshot.state == PipelineState.IDLE
        assert snapshot.error == "Select an image first"
        assert model.calls == []

    async def test_full_round(self) -> None:
        controller, model, lookup = await _ready_controller()
        controller.select_upload("a.jpg", "image/jpeg", b"a")

        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.predictions == tuple(CAT_PREDICTIONS)
        assert snapshot.lookup_term == "cat"
        assert snapshot.lookup_results == tuple(CAT_RESULTS)
        assert snapshot.error is None
        assert snapshot.notice is None
        assert lookup.terms == ["cat"]
        assert model.calls == [controller.images.current]

    async def test_empty_top_label_skips_lookup(self) -> None:
        controller, _, lookup = await _ready_controller(predictions=[Prediction("", 0.8), Prediction("x", 0.1)])
        controller.select_url("https://example.com/a.jpg")

        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.CLASSIFIED
        assert lookup.terms == []
        assert snapshot.lookup_term is None

    async def test_no_predictions_skips_lookup(self) -> None:
        controller, _, lookup = await _ready_controller(predictions=[])
        controller.select_url("https://example.com/a.jpg")

        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.CLASSIFIED
        assert lookup.terms == []

    async def test_zero_lookup_matches_is_not_an_error(self) -> None:
        controller, _, _ = await _ready_controller(results=[])
        controller.select_url("https://example.com/a.jpg")

        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.lookup_results == ()
        assert snapshot.error is None
        assert snapshot.notice is None

    async def test_new_selection_clears_results(self) -> None:
        controller, _, _ = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        await controller.identify()

        snapshot = controller.select_url("https://example.com/b.jpg")

        assert snapshot.state == PipelineState.IMAGE_SELECTED
        assert snapshot.predictions == ()
        assert snapshot.lookup_results == ()
        assert snapshot.lookup_term is None

    async def test_history_selection_clears_results(self) -> None:
        controller, _, _ = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        controller.select_url("https://example.com/b.jpg")
        await controller.identify()

        snapshot = controller.select_history(1)

        assert snapshot.state == PipelineState.IMAGE_SELECTED
        assert snapshot.predictions == ()
        assert snapshot.current is snapshot.history[1]
        assert len(snapshot.history) == 2

    async def test_reidentify_from_complete(self) -> None:
        controller, model, lookup = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        await controller.identify()
        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.COMPLETE
        assert len(model.calls) == 2
        assert lookup.terms == ["cat", "cat"]


class TestFailures:
    async def test_classification_failure_returns_to_image_selected(self) -> None:
        controller, model, lookup = await _ready_controller()
        controller.select_url("https://example.com/broken.jpg")
        model.error = ClassificationError("cannot decode")

        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.IMAGE_SELECTED
        assert snapshot.predictions == ()
        assert "cannot decode" in (snapshot.error or "")
        assert lookup.terms == []

    async def test_retry_after_classification_failure(self) -> None:
        controller, model, _ = await _ready_controller()
        controller.select_url("https://example.com/flaky.jpg")
        model.error = ClassificationError("timeout")
        await controller.identify()

        model.error = None
        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.error is None

    async def test_lookup_failure_keeps_predictions_and_adds_notice(self) -> None:
        controller, _, lookup = await _ready_controller()
        lookup.error = LookupFailedError("Service Unavailable")
        controller.select_url("https://example.com/a.jpg")

        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.predictions == tuple(CAT_PREDICTIONS)
        assert snapshot.lookup_results == ()
        assert snapshot.error is None
        assert "Service Unavailable" in (snapshot.notice or "")

    async def test_unexpected_classifier_exception_is_recoverable(self) -> None:
        controller, model, _ = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        model.error = RuntimeError("[ONNXRuntimeError] : 6 : RUNTIME_EXCEPTION")

        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.IMAGE_SELECTED
        assert "RUNTIME_EXCEPTION" in (snapshot.error or "")

        model.error = None
        retry = await controller.identify()

        assert len(model.calls) == 2
        assert retry.state == PipelineState.COMPLETE
        assert retry.error is None

    async def test_unexpected_lookup_exception_completes_with_notice(self) -> None:
        controller, _, lookup = await _ready_controller()
        lookup.error = KeyError("query")
        controller.select_url("https://example.com/a.jpg")

        snapshot = await controller.identify()

        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.predictions == tuple(CAT_PREDICTIONS)
        assert snapshot.notice is not None


class TestStaleResults:
    async def test_image_change_during_classification_discards_predictions(self) -> None:
        controller, model, lookup = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        model.gate = asyncio.Event()

        task = asyncio.create_task(controller.identify())
        await asyncio.sleep(0)
        assert controller.state == PipelineState.CLASSIFYING

        controller.select_url("https://example.com/b.jpg")
        model.gate.set()
        await task

        snapshot = controller.snapshot()
        assert snapshot.state == PipelineState.IMAGE_SELECTED
        assert snapshot.current.url == "https://example.com/b.jpg"
        assert snapshot.predictions == ()
        assert lookup.terms == []

    async def test_image_change_during_lookup_discards_results(self) -> None:
        controller, _, lookup = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        lookup.gate = asyncio.Event()

        task = asyncio.create_task(controller.identify())
        await asyncio.sleep(0)
        assert controller.state == PipelineState.LOOKING_UP
        assert controller.snapshot().predictions == tuple(CAT_PREDICTIONS)

        controller.select_url("https://example.com/b.jpg")
        lookup.gate.set()
        await task

        snapshot = controller.snapshot()
        assert snapshot.state == PipelineState.IMAGE_SELECTED
        assert snapshot.lookup_results == ()
        assert snapshot.predictions == ()

    async def test_failure_for_stale_image_is_not_shown(self) -> None:
        controller, model, _ = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        model.gate = asyncio.Event()
        model.error = ClassificationError("boom")

        task = asyncio.create_task(controller.identify())
        await asyncio.sleep(0)
        controller.select_url("https://example.com/b.jpg")
        model.gate.set()
        await task

        assert controller.snapshot().error is None

    async def test_identify_while_classifying_is_ignored(self) -> None:
        controller, model, _ = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        model.gate = asyncio.Event()

        task = asyncio.create_task(controller.identify())
        await asyncio.sleep(0)
        second = await controller.identify()

        assert second.state == PipelineState.CLASSIFYING
        assert len(model.calls) == 1

        model.gate.set()
        assert (await task).state == PipelineState.COMPLETE

    async def test_reselecting_same_history_entry_still_discards(self) -> None:
        controller, model, _ = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        model.gate = asyncio.Event()

        task = asyncio.create_task(controller.identify())
        await asyncio.sleep(0)
        # Same reference becomes current again, but as a new selection.
        controller.select_history(0)
        model.gate.set()
        await task

        assert controller.snapshot().predictions == ()

    async def test_identify_during_lookup_supersedes_previous_round(self) -> None:
        controller, model, lookup = await _ready_controller()
        controller.select_url("https://example.com/a.jpg")
        first_gate = asyncio.Event()
        lookup.gate = first_gate

        task = asyncio.create_task(controller.identify())
        await asyncio.sleep(0)
        assert controller.state == PipelineState.LOOKING_UP

        lookup.gate = None
        second = await controller.identify()
        assert second.state == PipelineState.COMPLETE
        assert second.lookup_results == tuple(CAT_RESULTS)

        # The first round now fails late; its outcome must not be applied.
        lookup.error = LookupFailedError("late failure")
        first_gate.set()
        await task

        snapshot = controller.snapshot()
        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.lookup_results == tuple(CAT_RESULTS)
        assert snapshot.notice is None
        assert len(model.calls) == 2
        assert lookup.terms == ["cat", "cat"]


@pytest.mark.parametrize("label", ["cat", "tabby, tabby cat"])
async def test_lookup_uses_top_label_verbatim(label: str) -> None:
    controller, _, lookup = await _ready_controller(predictions=[Prediction(label, 0.9)])
    controller.select_url("https://example.com/a.jpg")
    await controller.identify()
    assert lookup.terms == [label]
