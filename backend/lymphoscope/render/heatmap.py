"""Heatmap renderer — FeatureArtifact → RGBA pixel field.

Steps: side = √len, min-max normalize (0.5 for a flat field), map through the
color ramp, nearest-neighbour upsample each cell to a block of the target size,
alpha from the blend weight. The canonical image may be drawn over the result
at low opacity as a structural reference.
"""

from __future__ import annotations

import logging
from typing import Literal, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from PIL import Image

from lymphoscope.engine.context import CanonicalImage, FeatureArtifact, artifact_side
from lymphoscope.errors import InvalidArtifactError
from lymphoscope.render.ramp import VIRIDIS_RAMP, ColorRamp
from lymphoscope.render.surface import Surface

logger = logging.getLogger(__name__)

ORIGINAL: Literal["original"] = "original"
RenderTarget = Union[FeatureArtifact, Literal["original"]]

# Opacity of the canonical image drawn over a heatmap for structural reference.
DEFAULT_OVERLAY_OPACITY = 0.2

# Opacity of a heatmap drawn over the original for static result thumbnails.
THUMBNAIL_HEATMAP_OPACITY = 0.7


def normalize_field(data: ArrayLike) -> NDArray[np.float64]:
    """Min-max scale into [0, 1]; a constant field maps to 0.5 everywhere."""
    values = np.asarray(data, dtype=np.float64)
    lo = values.min()
    span = values.max() - lo
    if span == 0:
        return np.full(values.shape, 0.5)
    return np.clip((values - lo) / span, 0.0, 1.0)


def alpha_for(blend_weight: float) -> int:
    _check_blend(blend_weight)
    return int(np.floor(255.0 * blend_weight + 0.5))


def _check_blend(blend_weight: float) -> None:
    if not 0.0 <= blend_weight <= 1.0:
        raise ValueError(f"blend_weight must lie in [0, 1], got {blend_weight}")


def _validated(data: FeatureArtifact | ArrayLike) -> tuple[NDArray[np.float64], int]:
    name = data.name if isinstance(data, FeatureArtifact) else "artifact"
    raw = data.data if isinstance(data, FeatureArtifact) else data
    values = np.asarray(raw, dtype=np.float64).reshape(-1)
    side = artifact_side(values.shape[0], name)
    if not np.all(np.isfinite(values)):
        raise InvalidArtifactError(f"{name}: data contains non-finite values")
    return values, side


def _block_index(side: int, extent: int) -> NDArray[np.intp]:
    """Source cell index for each of ``extent`` output pixels."""
    return (np.arange(extent) * side) // extent


def _resize_rgb(image: CanonicalImage, width: int, height: int) -> NDArray[np.float64]:
    rgb = image.to_uint8()
    if (width, height) != (image.size, image.size):
        rgb = np.asarray(Image.fromarray(rgb).resize((width, height), Image.BILINEAR))
    return rgb.astype(np.float64)


def composite_over(
    base: NDArray[np.uint8],
    top_rgb: NDArray,
    top_alpha: NDArray | float,
) -> NDArray[np.uint8]:
    """Source-over compositing of ``top`` (alpha in [0, 1]) onto an RGBA ``base``."""
    base_rgb = base[..., :3].astype(np.float64)
    base_a = base[..., 3:4].astype(np.float64) / 255.0
    top_a = np.broadcast_to(np.asarray(top_alpha, dtype=np.float64), base_a.shape)

    out_a = top_a + base_a * (1.0 - top_a)
    weighted = top_rgb * top_a + base_rgb * base_a * (1.0 - top_a)
    out_rgb = np.divide(weighted, out_a, out=np.zeros_like(weighted), where=out_a > 0)

    out = np.empty(base.shape, dtype=np.uint8)
    out[..., :3] = np.clip(np.floor(out_rgb + 0.5), 0, 255)
    out[..., 3:4] = np.clip(np.floor(out_a * 255.0 + 0.5), 0, 255)
    return out


class HeatmapRenderer:
    """Draws artifacts as pseudo-colored heatmaps."""

    def __init__(
        self,
        ramp: ColorRamp = VIRIDIS_RAMP,
        overlay_opacity: float = DEFAULT_OVERLAY_OPACITY,
    ) -> None:
        if not 0.0 <= overlay_opacity <= 1.0:
            raise ValueError(f"overlay_opacity must lie in [0, 1], got {overlay_opacity}")
        self.ramp = ramp
        self.overlay_opacity = overlay_opacity

    def render(
        self,
        artifact: FeatureArtifact | ArrayLike,
        width: int,
        height: int,
        blend_weight: float = 1.0,
        overlay: CanonicalImage | None = None,
    ) -> NDArray[np.uint8]:
        """Return an (height, width, 4) RGBA buffer. Raises InvalidArtifactError first."""
        values, side = _validated(artifact)
        alpha = alpha_for(blend_weight)

        cells = self.ramp(normalize_field(values)).reshape(side, side, 3)
        rows = _block_index(side, height)
        cols = _block_index(side, width)

        out = np.empty((height, width, 4), dtype=np.uint8)
        out[..., :3] = cells[rows[:, np.newaxis], cols[np.newaxis, :]]
        out[..., 3] = alpha

        if overlay is not None and self.overlay_opacity > 0:
            out = composite_over(out, _resize_rgb(overlay, width, height), self.overlay_opacity)
        return out

    def render_original(
        self,
        image: CanonicalImage,
        width: int,
        height: int,
        blend_weight: float = 1.0,
    ) -> NDArray[np.uint8]:
        """The "show original" mode: the canonical image itself, faded by blend weight."""
        alpha = alpha_for(blend_weight)
        out = np.empty((height, width, 4), dtype=np.uint8)
        out[..., :3] = _resize_rgb(image, width, height)
        out[..., 3] = alpha
        return out

    def render_to(
        self,
        target: RenderTarget,
        blend_weight: float,
        surface: Surface,
        image: CanonicalImage | None = None,
    ) -> None:
        """Render an artifact (overlaid with ``image`` when given) or the original onto a surface."""
        if isinstance(target, str):
            if target != ORIGINAL:
                raise ValueError(f"Unknown render target {target!r}")
            if image is None:
                raise ValueError("Original mode needs the canonical image")
            pixels = self.render_original(image, surface.width, surface.height, blend_weight)
        else:
            pixels = self.render(target, surface.width, surface.height, blend_weight, overlay=image)
        surface.put_pixels(pixels)


def overlay_heatmap(
    image: CanonicalImage,
    heatmap: NDArray[np.uint8],
    opacity: float = THUMBNAIL_HEATMAP_OPACITY,
) -> NDArray[np.uint8]:
    """Draw an RGBA heatmap over the opaque original at ``opacity``."""
    _check_blend(opacity)
    height, width = heatmap.shape[:2]
    base = np.empty((height, width, 4), dtype=np.uint8)
    base[..., :3] = _resize_rgb(image, width, height)
    base[..., 3] = 255
    top_alpha = heatmap[..., 3:4].astype(np.float64) / 255.0 * opacity
    return composite_over(base, heatmap[..., :3].astype(np.float64), top_alpha)
