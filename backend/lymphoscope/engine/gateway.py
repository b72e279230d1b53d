"""Model gateway — owns the process-lifetime classifier and the forward-pass boundary.

The gateway is built once at application start and passed by reference to the
pipeline. ``load()`` is an idempotent one-shot latch: concurrent callers share a
single fetch, a failed fetch leaves the latch open for a retry.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Protocol
from urllib.parse import urlparse

import numpy as np
import requests
from numpy.typing import NDArray

from lymphoscope.engine.classes import CLASS_NAMES
from lymphoscope.engine.context import CanonicalImage
from lymphoscope.errors import InferenceError, ModelLoadError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
Fetcher = Callable[[str, ProgressCallback], bytes]

_CHUNK_SIZE = 64 * 1024
_FETCH_TIMEOUT_S = 60


class Model(Protocol):
    """Anything that maps a (1, H, W, 3) float32 batch to per-class scores."""

    def predict(self, batch: NDArray[np.float32]) -> NDArray: ...


class OnnxModel:
    """onnxruntime-backed classifier."""

    def __init__(self, session: Any) -> None:
        self.session = session
        model_input = session.get_inputs()[0]
        self.input_name = model_input.name
        shape = list(model_input.shape)
        # NCHW graphs declare the channel count on axis 1
        self.channels_first = len(shape) == 4 and shape[1] == 3

    @classmethod
    def from_bytes(cls, payload: bytes) -> OnnxModel:
        import onnxruntime as ort

        session = ort.InferenceSession(payload, providers=["CPUExecutionProvider"])
        return cls(session)

    def predict(self, batch: NDArray[np.float32]) -> NDArray:
        if self.channels_first:
            batch = np.transpose(batch, (0, 3, 1, 2))
        outputs = self.session.run(None, {self.input_name: np.ascontiguousarray(batch)})
        return np.asarray(outputs[0])


def _report(on_progress: ProgressCallback | None, fraction: float, last: list[float]) -> None:
    """Forward a clamped, strictly increasing progress fraction."""
    if on_progress is None:
        return
    fraction = min(max(fraction, 0.0), 1.0)
    if fraction <= last[0]:
        return
    last[0] = fraction
    on_progress(fraction)


def fetch_model_bytes(url: str, on_progress: ProgressCallback | None = None) -> bytes:
    """Read a model resource from http(s), file:// or a plain path, reporting progress."""
    last = [0.0]
    parsed = urlparse(url)
    chunks: list[bytes] = []

    if parsed.scheme in ("http", "https"):
        with requests.get(url, stream=True, timeout=_FETCH_TIMEOUT_S) as response:
            response.raise_for_status()
            total = int(response.headers.get("Content-Length") or 0)
            received = 0
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                chunks.append(chunk)
                received += len(chunk)
                if total:
                    _report(on_progress, received / total, last)
    else:
        path = Path(parsed.path if parsed.scheme == "file" else url)
        total = path.stat().st_size
        received = 0
        with path.open("rb") as fh:
            while chunk := fh.read(_CHUNK_SIZE):
                chunks.append(chunk)
                received += len(chunk)
                if total:
                    _report(on_progress, received / total, last)

    _report(on_progress, 1.0, last)
    return b"".join(chunks)


class ModelGateway:
    """Lazily loaded, shared, read-only-after-load classifier handle."""

    def __init__(
        self,
        model_url: str,
        *,
        fetch: Fetcher | None = None,
        model_factory: Callable[[bytes], Model] | None = None,
        class_names: tuple[str, ...] = CLASS_NAMES,
    ) -> None:
        self.model_url = model_url
        self.class_names = class_names
        self._fetch = fetch or fetch_model_bytes
        self._model_factory = model_factory or OnnxModel.from_bytes
        self._model: Model | None = None
        self._lock: asyncio.Lock | None = None
        self.fetch_count = 0

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def model(self) -> Model:
        if self._model is None:
            raise ModelLoadError("Model not loaded")
        return self._model

    def reset(self) -> None:
        """Forget the cached model; the next load() fetches again."""
        self._model = None

    async def load(self, on_progress: ProgressCallback | None = None) -> Model:
        """Fetch and parse the model once. Later calls return the cached instance."""
        if self._model is not None:
            return self._model

        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            # A concurrent caller may have finished while we waited
            if self._model is not None:
                return self._model

            loop = asyncio.get_running_loop()

            def _progress(fraction: float) -> None:
                if on_progress is not None:
                    loop.call_soon_threadsafe(on_progress, fraction)

            self.fetch_count += 1
            logger.info("Loading model from %s", self.model_url)
            try:
                payload = await loop.run_in_executor(None, self._fetch, self.model_url, _progress)
                # Session construction parses the whole graph
                model = await loop.run_in_executor(None, self._model_factory, payload)
            except Exception as e:
                logger.error("Model load failed: %s", e)
                raise ModelLoadError(f"Failed to load model from {self.model_url} ({e})") from e

            # Flush progress callbacks scheduled by the fetch thread
            await asyncio.sleep(0)
            self._model = model
            logger.info("Model loaded (%d classes)", len(self.class_names))
            return model

    def infer(self, model: Model, image: CanonicalImage) -> NDArray[np.float64]:
        """Single forward pass. Returns a flat score vector, one entry per class."""
        batch = image.pixels[np.newaxis, ...]
        try:
            raw = model.predict(batch)
        except Exception as e:
            raise InferenceError(f"Forward pass failed: {e}") from e

        scores = np.asarray(raw, dtype=np.float64).reshape(-1)
        if scores.shape[0] != len(self.class_names):
            raise InferenceError(
                f"Model returned {scores.shape[0]} scores, expected {len(self.class_names)}"
            )
        if not np.all(np.isfinite(scores)):
            raise InferenceError("Model returned non-finite scores")
        return scores
