"""Lymphoscope inference engine."""

from lymphoscope.engine.context import (
    CanonicalImage,
    FeatureArtifact,
    PartialResult,
    PredictionResult,
    ProgressEvent,
    Stage,
)
from lymphoscope.engine.gateway import ModelGateway
from lymphoscope.engine.normalizer import normalize_image
from lymphoscope.engine.pipeline import InferencePipeline

__all__ = [
    "CanonicalImage",
    "FeatureArtifact",
    "PartialResult",
    "PredictionResult",
    "ProgressEvent",
    "Stage",
    "ModelGateway",
    "normalize_image",
    "InferencePipeline",
]
