"""Shared test fixtures — synthetic images and an in-memory stand-in for the model runtime."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from lymphoscope.engine.context import CANONICAL_SIZE, CanonicalImage
from lymphoscope.engine.gateway import ModelGateway
from lymphoscope.engine.pipeline import InferencePipeline

# CLL, FL, MCL — argmax is FL
DEFAULT_SCORES = (0.1, 0.7, 0.2)


class FakeModel:
    """Returns fixed scores; records the batches it was given."""

    def __init__(self, scores=DEFAULT_SCORES, fail: bool = False) -> None:
        self.scores = scores
        self.fail = fail
        self.batch_shapes: list[tuple[int, ...]] = []

    def predict(self, batch):
        self.batch_shapes.append(tuple(batch.shape))
        if self.fail:
            raise RuntimeError("graph execution failed")
        return np.asarray([self.scores], dtype=np.float64)


class FakeFetcher:
    """Fetch stand-in: reports half and full progress, optionally failing the first calls."""

    def __init__(self, payload: bytes = b"onnx-bytes", fail_times: int = 0) -> None:
        self.payload = payload
        self.fail_times = fail_times
        self.calls = 0

    def __call__(self, url, on_progress):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise ConnectionError(f"{url} unreachable")
        on_progress(0.5)
        on_progress(1.0)
        return self.payload


def make_gateway(model: FakeModel | None = None, fetcher: FakeFetcher | None = None) -> ModelGateway:
    model = model or FakeModel()
    return ModelGateway(
        "memory://model.onnx",
        fetch=fetcher or FakeFetcher(),
        model_factory=lambda payload: model,
    )


def gradient_pixels() -> np.ndarray:
    """R rises left→right, G rises top→bottom, B constant 0.25."""
    ramp = np.linspace(0.0, 1.0, CANONICAL_SIZE, dtype=np.float32)
    pixels = np.empty((CANONICAL_SIZE, CANONICAL_SIZE, 3), dtype=np.float32)
    pixels[:, :, 0] = ramp[np.newaxis, :]
    pixels[:, :, 1] = ramp[:, np.newaxis]
    pixels[:, :, 2] = 0.25
    return pixels


def png_bytes(width: int = 64, height: int = 48, color=(200, 120, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def uniform_image() -> CanonicalImage:
    return CanonicalImage.uniform(0.5)


@pytest.fixture
def gradient_image() -> CanonicalImage:
    return CanonicalImage(gradient_pixels())


@pytest.fixture
def fake_model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def gateway(fake_model: FakeModel) -> ModelGateway:
    return make_gateway(fake_model)


@pytest.fixture
def pipeline(gateway: ModelGateway) -> InferencePipeline:
    return InferencePipeline(gateway)
