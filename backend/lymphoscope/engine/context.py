"""Run data model — the values flowing from the normalizer through the pipeline to the renderer.

CanonicalImage → (pipeline) → ProgressEvent* → PredictionResult
Every array held here is read-only; artifacts grow by appending, never by editing.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from lymphoscope.engine.classes import ClassInfo, confidence_level, get_class_info
from lymphoscope.errors import InvalidArtifactError

# Side length of the canonical input grid (model input is 256×256×3).
CANONICAL_SIZE = 256


def _frozen(arr: NDArray) -> NDArray:
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class CanonicalImage:
    """Fixed-size RGB grid with values in [0, 1], shape (256, 256, 3)."""

    pixels: NDArray[np.float32]

    def __post_init__(self) -> None:
        arr = np.array(self.pixels, dtype=np.float32)
        expected = (CANONICAL_SIZE, CANONICAL_SIZE, 3)
        if arr.shape != expected:
            raise ValueError(f"Canonical image must have shape {expected}, got {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise ValueError("Canonical image contains non-finite values")
        if arr.min() < 0.0 or arr.max() > 1.0:
            raise ValueError("Canonical image values must lie in [0, 1]")
        object.__setattr__(self, "pixels", _frozen(arr))

    @classmethod
    def uniform(cls, value: float | tuple[float, float, float]) -> CanonicalImage:
        """Synthetic image where every pixel holds the same value (or RGB triple)."""
        pixels = np.empty((CANONICAL_SIZE, CANONICAL_SIZE, 3), dtype=np.float32)
        pixels[...] = value
        return cls(pixels)

    @property
    def size(self) -> int:
        return CANONICAL_SIZE

    def channel(self, index: int) -> NDArray[np.float32]:
        return self.pixels[:, :, index]

    def to_uint8(self) -> NDArray[np.uint8]:
        """Display copy in 0..255 with half-up rounding."""
        return np.floor(self.pixels * 255.0 + 0.5).astype(np.uint8)


@dataclass(frozen=True, eq=False)
class FeatureArtifact:
    """A named flat numeric grid for heatmap display.

    Shape is not validated here; the renderer rejects non-square data at draw time.
    """

    name: str
    data: NDArray[np.float32]

    def __post_init__(self) -> None:
        arr = np.asarray(self.data, dtype=np.float32)
        # Own a detached flat copy unless we were handed one already
        if arr.ndim != 1 or arr.flags.writeable or arr.base is not None:
            arr = arr.flatten()
        object.__setattr__(self, "data", _frozen(arr))

    def __len__(self) -> int:
        return int(self.data.shape[0])

    @property
    def side(self) -> int:
        """Integer side length; raises InvalidArtifactError unless len is a perfect square."""
        return artifact_side(len(self), self.name)

    def as_grid(self) -> NDArray[np.float32]:
        side = self.side
        return self.data.reshape(side, side)


def artifact_side(length: int, name: str = "artifact") -> int:
    if length == 0:
        raise InvalidArtifactError(f"{name}: artifact data is empty")
    side = round(math.sqrt(length))
    if side * side != length:
        raise InvalidArtifactError(f"{name}: length {length} is not a perfect square")
    return side


class Stage(str, enum.Enum):
    """Pipeline stages in protocol order."""

    PREPROCESSING = "preprocessing"
    ANALYZING = "analyzing"
    CLASSIFYING = "classifying"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return list(Stage).index(self)


@dataclass(frozen=True)
class PartialResult:
    """Snapshot attached to a progress event. Each event owns its own tuple."""

    artifacts: tuple[FeatureArtifact, ...] = ()
    predicted_class: str | None = None
    confidence: float | None = None

    @property
    def artifact_names(self) -> list[str]:
        return [a.name for a in self.artifacts]


@dataclass(frozen=True)
class ProgressEvent:
    stage: Stage
    # Overall run completion, 0..100
    percent: int
    partial: PartialResult | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.percent <= 100:
            raise ValueError(f"percent must be within [0, 100], got {self.percent}")


@dataclass(frozen=True)
class PredictionResult:
    """Terminal output of one pipeline run."""

    predicted_class: str
    confidence: float
    artifacts: tuple[FeatureArtifact, ...] = field(default_factory=tuple)

    @property
    def class_info(self) -> ClassInfo:
        return get_class_info(self.predicted_class)

    @property
    def confidence_level(self) -> str:
        return confidence_level(self.confidence)

    def artifact(self, name: str) -> FeatureArtifact:
        for a in self.artifacts:
            if a.name == name:
                return a
        raise KeyError(name)
