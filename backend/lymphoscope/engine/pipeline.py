"""Inference pipeline — staged classification with progressive feature artifacts.

Protocol for one run (overall percent, defaults from PipelineConfig):

    preprocessing  5    working buffer ready
    analyzing      10   + Grayscale Analysis
    analyzing      30   + Red Channel
    analyzing      50   + Green Channel
    analyzing      70   + Blue Channel
    classifying    80   forward pass starting
    classifying    90   prediction attached
    classifying    95   + Enhanced Contrast (or the grayscale fallback)
    complete       100

Every intermediate buffer lives in one BufferScope and is copied out and released
as soon as its artifact exists. Preprocessing and classification failures abort the
run with AnalysisError; the enhancement step is best-effort and never fails a run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Callable

import numpy as np
from numpy.typing import NDArray

from lymphoscope.engine.buffers import BufferScope
from lymphoscope.engine.config import PipelineConfig
from lymphoscope.engine.context import (
    CanonicalImage,
    FeatureArtifact,
    PartialResult,
    PredictionResult,
    ProgressEvent,
    Stage,
)
from lymphoscope.engine.events import ProgressSink
from lymphoscope.engine.gateway import ModelGateway
from lymphoscope.engine.normalizer import ImageSource, normalize_image
from lymphoscope.errors import AnalysisError

logger = logging.getLogger(__name__)

EnhanceFn = Callable[[NDArray[np.float32]], NDArray]


def enhance_contrast(values: NDArray, exponent: float = 1.5) -> NDArray[np.float32]:
    """normalized ** exponent, where normalized is min-max scaled (0.5 for a flat field)."""
    values = np.asarray(values, dtype=np.float32)
    lo = float(values.min())
    hi = float(values.max())
    span = hi - lo
    if span == 0:
        normalized = np.full_like(values, 0.5)
    else:
        normalized = (values - lo) / span
    return np.power(normalized, exponent, dtype=np.float32)


@contextmanager
def _fatal(step: str) -> Iterator[None]:
    """Turn any failure inside the block into an AnalysisError naming the step."""
    try:
        yield
    except AnalysisError:
        raise
    except Exception as e:
        raise AnalysisError(f"{step} failed: {e}") from e


def _discard(event: ProgressEvent) -> None:
    return None


class InferencePipeline:
    """Turns one image into a PredictionResult while emitting ProgressEvents."""

    def __init__(
        self,
        gateway: ModelGateway,
        config: PipelineConfig | None = None,
        *,
        enhance: EnhanceFn | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PipelineConfig()
        self._enhance = enhance or (
            lambda values: enhance_contrast(values, self.config.enhancement_exponent)
        )

    async def run(
        self,
        source: CanonicalImage | ImageSource,
        sink: ProgressSink | None = None,
    ) -> PredictionResult:
        """Run every stage on ``source``, reporting each step to ``sink``."""
        emit = sink or _discard
        cfg = self.config
        start = time.perf_counter()

        model = await self.gateway.load()
        artifacts: list[FeatureArtifact] = []

        def snapshot(**prediction) -> PartialResult:
            return PartialResult(artifacts=tuple(artifacts), **prediction)

        with BufferScope("inference") as scope:
            # Stage 1: preprocessing
            with _fatal("Preprocessing"):
                image = source if isinstance(source, CanonicalImage) else normalize_image(source)
                work = scope.track(np.array(image.pixels, dtype=np.float32))
            await self._emit(emit, ProgressEvent(Stage.PREPROCESSING, cfg.preprocessing_percent))

            # Stage 2: grayscale summary, then one artifact per channel
            percents = iter(cfg.analyzing_percents)
            with _fatal("Grayscale analysis"):
                artifacts.append(self._grayscale(work, scope, cfg.grayscale_name))
            await self._emit(emit, ProgressEvent(Stage.ANALYZING, next(percents), snapshot()))

            for index, name in enumerate(cfg.channel_names):
                with _fatal(f"{name} analysis"):
                    channel = scope.track(work[:, :, index])
                    artifacts.append(FeatureArtifact(name, scope.materialize(channel)))
                await self._emit(emit, ProgressEvent(Stage.ANALYZING, next(percents), snapshot()))

            # Stage 3: classification
            before, after_argmax, after_enhance = cfg.classifying_percents
            await self._emit(emit, ProgressEvent(Stage.CLASSIFYING, before, snapshot()))

            with _fatal("Classification"):
                predicted_class, confidence = await self._classify(model, image, scope)
            prediction = {"predicted_class": predicted_class, "confidence": confidence}
            await self._emit(
                emit, ProgressEvent(Stage.CLASSIFYING, after_argmax, snapshot(**prediction))
            )

            artifacts.append(self._enhancement(artifacts[0], work, scope))
            await self._emit(
                emit, ProgressEvent(Stage.CLASSIFYING, after_enhance, snapshot(**prediction))
            )

        result = PredictionResult(
            predicted_class=predicted_class,
            confidence=confidence,
            artifacts=tuple(artifacts),
        )
        emit(ProgressEvent(Stage.COMPLETE, 100))

        logger.info(
            "Run complete: %s (%.4f), %d artifacts in %.0fms",
            predicted_class,
            confidence,
            len(result.artifacts),
            (time.perf_counter() - start) * 1000,
        )
        return result

    async def _emit(self, emit: ProgressSink, event: ProgressEvent) -> None:
        emit(event)
        # Always yield so streaming consumers can flush between events
        await asyncio.sleep(self.config.delay_for(event.stage.value))

    def _grayscale(self, work: NDArray, scope: BufferScope, name: str) -> FeatureArtifact:
        gray = scope.track(work.mean(axis=2))
        return FeatureArtifact(name, scope.materialize(gray))

    async def _classify(
        self, model, image: CanonicalImage, scope: BufferScope
    ) -> tuple[str, float]:
        # The forward pass blocks; keep the event loop free for other requests
        loop = asyncio.get_running_loop()
        scores = scope.track(await loop.run_in_executor(None, self.gateway.infer, model, image))
        try:
            index = int(np.argmax(scores))
            raw = float(scores[index])
        finally:
            scope.release(scores)

        # Scores are taken as probabilities as-is; no softmax over the vector.
        if not 0.0 <= raw <= 1.0:
            logger.warning(
                "Top score %.4f lies outside [0, 1]; model output may not be normalized",
                raw,
            )
        confidence = min(max(raw, 0.0), 1.0)
        return self.gateway.class_names[index], confidence

    def _enhancement(
        self,
        grayscale: FeatureArtifact,
        work: NDArray,
        scope: BufferScope,
    ) -> FeatureArtifact:
        """Contrast-boosted grayscale, or a recomputed plain grayscale if that fails."""
        try:
            boosted = scope.track(self._enhance(grayscale.data))
            return FeatureArtifact(self.config.enhanced_name, scope.materialize(boosted))
        except Exception as e:
            logger.warning("Enhancement failed, substituting plain grayscale: %s", e)

        with _fatal("Enhancement fallback"):
            return self._grayscale(work, scope, self.config.fallback_name)
