"""Tests for the staged inference pipeline."""

from __future__ import annotations

import asyncio
import logging
import time

import numpy as np
import pytest

import lymphoscope.engine.pipeline as pipeline_module
from lymphoscope.engine.buffers import BufferScope
from lymphoscope.engine.classes import CLASS_NAMES
from lymphoscope.engine.config import PipelineConfig
from lymphoscope.engine.context import Stage
from lymphoscope.engine.events import EventRecorder
from lymphoscope.engine.pipeline import InferencePipeline, enhance_contrast
from lymphoscope.errors import AnalysisError, InferenceError, ModelLoadError
from lymphoscope.render.heatmap import HeatmapRenderer
from lymphoscope.render.ramp import VIRIDIS_RAMP
from tests.conftest import FakeFetcher, FakeModel, make_gateway, png_bytes


def _run(pipeline, source, sink=None):
    return asyncio.run(pipeline.run(source, sink))


@pytest.fixture
def scopes(monkeypatch):
    """Capture every BufferScope the pipeline opens."""
    created: list[BufferScope] = []

    class RecordingScope(BufferScope):
        def __init__(self, label: str = "scope") -> None:
            super().__init__(label)
            created.append(self)

    monkeypatch.setattr(pipeline_module, "BufferScope", RecordingScope)
    return created


class TestProgressProtocol:
    def test_stage_order(self, pipeline, gradient_image):
        recorder = EventRecorder()
        _run(pipeline, gradient_image, recorder)

        assert recorder.stages() == [
            Stage.PREPROCESSING,
            Stage.ANALYZING,
            Stage.ANALYZING,
            Stage.ANALYZING,
            Stage.ANALYZING,
            Stage.CLASSIFYING,
            Stage.CLASSIFYING,
            Stage.CLASSIFYING,
            Stage.COMPLETE,
        ]

    def test_percent_non_decreasing_and_100_only_at_complete(self, pipeline, gradient_image):
        recorder = EventRecorder()
        _run(pipeline, gradient_image, recorder)

        percents = recorder.percents()
        assert percents == sorted(percents)
        assert all(0 <= p <= 100 for p in percents)
        assert percents[-1] == 100
        assert all(p < 100 for p in percents[:-1])

    def test_complete_is_terminal_and_bare(self, pipeline, gradient_image):
        recorder = EventRecorder()
        _run(pipeline, gradient_image, recorder)

        assert recorder.latest.stage is Stage.COMPLETE
        assert recorder.latest.partial is None
        assert recorder.events[0].partial is None

    def test_artifact_list_never_shrinks(self, pipeline, gradient_image):
        recorder = EventRecorder()
        _run(pipeline, gradient_image, recorder)

        counts = [len(e.partial.artifacts) for e in recorder.events if e.partial is not None]
        assert counts == [1, 2, 3, 4, 4, 4, 5]

    def test_events_hold_snapshots(self, pipeline, gradient_image):
        recorder = EventRecorder()
        result = _run(pipeline, gradient_image, recorder)

        first = recorder.events[1].partial
        assert first.artifact_names == ["Grayscale Analysis"]
        # The first artifact keeps its identity for the rest of the run
        assert first.artifacts[0] is result.artifacts[0]

    def test_prediction_only_after_forward_pass(self, pipeline, gradient_image):
        recorder = EventRecorder()
        _run(pipeline, gradient_image, recorder)

        with_prediction = [
            e for e in recorder.events if e.partial is not None and e.partial.predicted_class
        ]
        assert [e.percent for e in with_prediction] == [90, 95]
        assert all(e.stage is Stage.CLASSIFYING for e in with_prediction)
        assert with_prediction[-1].partial.predicted_class == "FL"


class TestResult:
    def test_artifact_names_in_order(self, pipeline, gradient_image):
        result = _run(pipeline, gradient_image)
        assert [a.name for a in result.artifacts] == [
            "Grayscale Analysis",
            "Red Channel",
            "Green Channel",
            "Blue Channel",
            "Enhanced Contrast",
        ]

    def test_prediction_is_argmax(self, pipeline, gradient_image):
        result = _run(pipeline, gradient_image)
        assert result.predicted_class == "FL"
        assert result.predicted_class in CLASS_NAMES
        assert result.confidence == pytest.approx(0.7)

    def test_confidence_is_raw_score_not_softmax(self, gradient_image):
        pipeline = InferencePipeline(make_gateway(FakeModel(scores=(0.2, 0.3, 0.1))))
        result = _run(pipeline, gradient_image)
        assert result.predicted_class == "FL"
        assert result.confidence == pytest.approx(0.3)

    def test_out_of_range_score_is_clipped_and_logged(self, gradient_image, caplog):
        pipeline = InferencePipeline(make_gateway(FakeModel(scores=(-1.0, 0.5, 2.5))))
        with caplog.at_level(logging.WARNING, logger="lymphoscope.engine.pipeline"):
            result = _run(pipeline, gradient_image)
        assert result.predicted_class == "MCL"
        assert result.confidence == 1.0
        assert "may not be normalized" in caplog.text

    def test_channel_artifacts_copy_channels(self, pipeline, gradient_image):
        result = _run(pipeline, gradient_image)
        for index, name in enumerate(("Red Channel", "Green Channel", "Blue Channel")):
            np.testing.assert_array_equal(
                result.artifact(name).data, gradient_image.channel(index).ravel()
            )

    def test_grayscale_is_channel_mean(self, pipeline, gradient_image):
        result = _run(pipeline, gradient_image)
        expected = gradient_image.pixels.mean(axis=2).ravel()
        np.testing.assert_allclose(result.artifact("Grayscale Analysis").data, expected, rtol=1e-6)

    def test_enhanced_artifact_is_contrast_boosted_grayscale(self, pipeline, gradient_image):
        result = _run(pipeline, gradient_image)
        gray = result.artifact("Grayscale Analysis").data.astype(np.float64)
        normalized = (gray - gray.min()) / (gray.max() - gray.min())
        np.testing.assert_allclose(
            result.artifact("Enhanced Contrast").data, normalized ** 1.5, atol=1e-5
        )

    def test_artifacts_are_read_only(self, pipeline, gradient_image):
        result = _run(pipeline, gradient_image)
        with pytest.raises(ValueError):
            result.artifacts[0].data[0] = 1.0

    def test_accepts_raw_image_bytes(self, pipeline):
        result = _run(pipeline, png_bytes())
        assert len(result.artifacts) == 5
        assert all(len(a) == 256 * 256 for a in result.artifacts)


class TestUniformImage:
    def test_uniform_image_end_to_end(self, pipeline, uniform_image):
        recorder = EventRecorder()
        result = _run(pipeline, uniform_image, recorder)

        assert recorder.latest.stage is Stage.COMPLETE
        assert result.artifacts

        gray = result.artifact("Grayscale Analysis")
        np.testing.assert_allclose(gray.data, 0.5, atol=1e-6)

        rgba = HeatmapRenderer().render(gray, 64, 64)
        assert np.all(rgba[..., :3] == np.array(VIRIDIS_RAMP.midpoint, dtype=np.uint8))

    def test_uniform_enhancement_uses_half(self, pipeline, uniform_image):
        result = _run(pipeline, uniform_image)
        np.testing.assert_allclose(result.artifact("Enhanced Contrast").data, 0.5 ** 1.5, rtol=1e-6)


class TestEnhancementFallback:
    def test_failure_substitutes_plain_grayscale(self, gateway, gradient_image, caplog):
        def broken(values):
            raise FloatingPointError("overflow in contrast boost")

        pipeline = InferencePipeline(gateway, enhance=broken)
        recorder = EventRecorder()
        with caplog.at_level(logging.WARNING, logger="lymphoscope.engine.pipeline"):
            result = _run(pipeline, gradient_image, recorder)

        assert recorder.latest.stage is Stage.COMPLETE
        assert result.artifacts[-1].name == "Grayscale Analysis (fallback)"
        np.testing.assert_array_equal(result.artifacts[-1].data, result.artifacts[0].data)
        assert "Enhancement failed" in caplog.text

    def test_fallback_names_stay_unique(self, gateway, gradient_image):
        pipeline = InferencePipeline(gateway, enhance=lambda v: 1 / 0)
        result = _run(pipeline, gradient_image)
        names = [a.name for a in result.artifacts]
        assert len(names) == len(set(names))


class TestFailures:
    def test_inference_failure_aborts_run(self, gradient_image, scopes):
        pipeline = InferencePipeline(make_gateway(FakeModel(fail=True)))
        recorder = EventRecorder()

        with pytest.raises(AnalysisError) as excinfo:
            _run(pipeline, gradient_image, recorder)

        assert isinstance(excinfo.value.__cause__, InferenceError)
        assert "Classification failed" in str(excinfo.value)
        assert Stage.COMPLETE not in recorder.stages()
        assert recorder.latest.stage is Stage.CLASSIFYING
        assert scopes[0].closed
        assert scopes[0].live == 0

    def test_wrong_score_length_aborts_run(self, gradient_image):
        pipeline = InferencePipeline(make_gateway(FakeModel(scores=(0.5, 0.5))))
        with pytest.raises(AnalysisError):
            _run(pipeline, gradient_image)

    def test_preprocessing_failure_aborts_before_any_event(self, pipeline, scopes):
        recorder = EventRecorder()
        with pytest.raises(AnalysisError) as excinfo:
            _run(pipeline, b"definitely not an image", recorder)

        assert "Preprocessing failed" in str(excinfo.value)
        assert recorder.events == []
        assert scopes[0].live == 0

    def test_model_load_failure_propagates(self, gradient_image):
        gateway = make_gateway(fetcher=FakeFetcher(fail_times=1))
        pipeline = InferencePipeline(gateway)
        with pytest.raises(ModelLoadError):
            _run(pipeline, gradient_image)
        # Retryable: the second attempt fetches again and succeeds
        result = _run(pipeline, gradient_image)
        assert result.predicted_class == "FL"

    def test_sink_errors_propagate_unchanged(self, pipeline, gradient_image, scopes):
        def sink(event):
            if event.stage is Stage.CLASSIFYING:
                raise KeyError("ui went away")

        with pytest.raises(KeyError):
            _run(pipeline, gradient_image, sink)
        assert scopes[0].closed
        assert scopes[0].live == 0


class TestBufferDiscipline:
    def test_every_buffer_released_on_success(self, pipeline, gradient_image, scopes):
        _run(pipeline, gradient_image)

        assert len(scopes) == 1
        scope = scopes[0]
        assert scope.closed
        assert scope.live == 0
        # work copy, gray, 3 channels, scores, enhancement
        assert scope.allocated == 7
        assert scope.released == scope.allocated

    def test_artifact_buffers_released_before_scope_exit(self, gateway, gradient_image, scopes):
        live_counts: list[int] = []

        def sink(event):
            live_counts.append(scopes[0].live)

        _run(InferencePipeline(gateway), gradient_image, sink)
        # Only the working copy stays live between events
        assert live_counts[:-1] == [1] * (len(live_counts) - 1)
        assert live_counts[-1] == 0


class TestPacing:
    def test_stage_delays_are_awaited(self, gateway, gradient_image):
        config = PipelineConfig(stage_delay_ms={"analyzing": 10})
        pipeline = InferencePipeline(gateway, config)

        start = time.perf_counter()
        _run(pipeline, gradient_image)
        assert time.perf_counter() - start >= 0.035

    def test_delay_lookup(self):
        config = PipelineConfig(stage_delay_ms={"classifying": 250, "analyzing": -5})
        assert config.delay_for("classifying") == 0.25
        assert config.delay_for("analyzing") == 0.0
        assert config.delay_for("preprocessing") == 0.0


class TestPipelineConfig:
    def test_rejects_decreasing_percents(self):
        with pytest.raises(ValueError):
            PipelineConfig(analyzing_percents=(10, 30, 20, 70))

    def test_rejects_100_before_complete(self):
        with pytest.raises(ValueError):
            PipelineConfig(classifying_percents=(80, 90, 100))

    def test_custom_percents_are_reported(self, gateway, gradient_image):
        config = PipelineConfig(
            preprocessing_percent=0,
            analyzing_percents=(20, 40, 60, 65),
            classifying_percents=(70, 85, 99),
        )
        recorder = EventRecorder()
        _run(InferencePipeline(gateway, config), gradient_image, recorder)
        assert recorder.percents() == [0, 20, 40, 60, 65, 70, 85, 99, 100]


class TestEnhanceContrast:
    def test_known_values(self):
        out = enhance_contrast(np.array([0.0, 1.0, 4.0]))
        np.testing.assert_allclose(out, [0.0, 0.125, 1.0], atol=1e-6)

    def test_constant_field(self):
        out = enhance_contrast(np.full(9, 3.0))
        np.testing.assert_allclose(out, 0.5 ** 1.5, rtol=1e-6)

    def test_custom_exponent(self):
        out = enhance_contrast(np.array([0.0, 2.0, 4.0]), exponent=2.0)
        np.testing.assert_allclose(out, [0.0, 0.25, 1.0], atol=1e-6)


class SlowModel(FakeModel):
    def predict(self, batch):
        time.sleep(0.3)
        return super().predict(batch)


class TestEventLoop:
    def test_forward_pass_leaves_loop_free(self, gradient_image):
        pipeline = InferencePipeline(make_gateway(SlowModel()))

        async def scenario():
            ticks = 0
            task = asyncio.create_task(pipeline.run(gradient_image))
            while not task.done():
                ticks += 1
                await asyncio.sleep(0.01)
            return ticks, await task

        ticks, result = asyncio.run(scenario())
        assert result.predicted_class == "FL"
        assert ticks >= 10
