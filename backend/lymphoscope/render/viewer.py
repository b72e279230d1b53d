"""Artifact viewer — selection of an artifact or the original, animated onto one surface."""

from __future__ import annotations

from collections.abc import Sequence

from lymphoscope.engine.context import CanonicalImage, FeatureArtifact
from lymphoscope.render.heatmap import ORIGINAL, HeatmapRenderer
from lymphoscope.render.surface import Surface
from lymphoscope.render.transition import (
    DEFAULT_DURATION_MS,
    FrameScheduler,
    Target,
    TransitionEngine,
)


class ArtifactViewer:
    """Binds a run's artifacts and image to a surface through a TransitionEngine.

    Artifacts are drawn with the original overlaid at low opacity; the original
    itself is drawn plain. With no artifacts the viewer starts on the original.
    """

    def __init__(
        self,
        artifacts: Sequence[FeatureArtifact],
        image: CanonicalImage,
        surface: Surface,
        scheduler: FrameScheduler,
        renderer: HeatmapRenderer | None = None,
        duration_ms: float = DEFAULT_DURATION_MS,
    ) -> None:
        self.artifacts = tuple(artifacts)
        self.image = image
        self.surface = surface
        self.renderer = renderer or HeatmapRenderer()
        initial: Target = 0 if self.artifacts else ORIGINAL
        self.engine = TransitionEngine(self._draw, scheduler, duration_ms, initial=initial)
        self.engine.redraw()

    @property
    def active(self) -> Target:
        return self.engine.state.active

    @property
    def caption(self) -> str:
        if self.active == ORIGINAL:
            return "Original uploaded image"
        return f"{self.artifacts[self.active].name} visualization"

    def select_artifact(self, target: Target) -> bool:
        """Fade in an artifact index or "original". Returns False if already shown."""
        if target != ORIGINAL:
            if isinstance(target, bool) or not isinstance(target, int):
                raise ValueError(f"Unknown render target {target!r}")
            if not 0 <= target < len(self.artifacts):
                raise ValueError(
                    f"Artifact index {target} out of range (0..{len(self.artifacts) - 1})"
                )
        return self.engine.select(target)

    def show_original(self) -> bool:
        return self.select_artifact(ORIGINAL)

    def close(self) -> None:
        self.engine.close()

    def _draw(self, target: Target, blend_weight: float) -> None:
        if target == ORIGINAL:
            self.renderer.render_to(ORIGINAL, blend_weight, self.surface, image=self.image)
        else:
            self.renderer.render_to(
                self.artifacts[target], blend_weight, self.surface, image=self.image
            )
