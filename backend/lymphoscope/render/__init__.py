"""Heatmap rendering and animated transitions."""

from lymphoscope.render.heatmap import ORIGINAL, HeatmapRenderer, overlay_heatmap
from lymphoscope.render.ramp import VIRIDIS_RAMP, ColorRamp
from lymphoscope.render.surface import ArraySurface, to_png
from lymphoscope.render.transition import (
    AsyncioFrameScheduler,
    ManualScheduler,
    RenderState,
    TransitionEngine,
)
from lymphoscope.render.viewer import ArtifactViewer

__all__ = [
    "ORIGINAL",
    "HeatmapRenderer",
    "overlay_heatmap",
    "VIRIDIS_RAMP",
    "ColorRamp",
    "ArraySurface",
    "to_png",
    "AsyncioFrameScheduler",
    "ManualScheduler",
    "RenderState",
    "TransitionEngine",
    "ArtifactViewer",
]
