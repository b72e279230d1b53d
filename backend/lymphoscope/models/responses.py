"""API response models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    model_config = {"protected_namespaces": ()}

    status: str = "ok"
    version: str = "0.1.0"
    model_loaded: bool = False
    classes: list[str] = Field(default_factory=list)


class ModelStatusResponse(BaseModel):
    model_config = {"protected_namespaces": ()}

    loaded: bool = False
    model_url: str = ""
    progress: float = 0.0


class ArtifactPayload(BaseModel):
    name: str
    side: int
    # base64-encoded PNGs
    heatmap_png: str = ""
    overlay_png: str = ""


class ProgressPayload(BaseModel):
    stage: str
    percent: int
    artifacts: list[str] = Field(default_factory=list)
    predicted_class: str | None = None
    confidence: float | None = None


class AnalyzeResponse(BaseModel):
    predicted_class: str
    class_name: str
    description: str = ""
    confidence: float
    confidence_display: str = ""
    confidence_level: str = ""
    disclaimer: str = ""
    artifacts: list[ArtifactPayload] = Field(default_factory=list)
    processing_time_ms: float = 0.0
