"""Piecewise-linear perceptual color ramp (viridis-like, cold → warm)."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

RGB = tuple[int, int, int]

# Quarter breakpoints: 4 linear segments between 5 anchors.
_QUARTERS = (0.0, 0.25, 0.5, 0.75, 1.0)


@dataclass(frozen=True)
class ColorRamp:
    """Maps a normalized value in [0, 1] to RGB by per-channel linear interpolation."""

    anchors: tuple[RGB, ...]
    breakpoints: tuple[float, ...] = _QUARTERS

    def __post_init__(self) -> None:
        if len(self.anchors) != len(self.breakpoints):
            raise ValueError("Ramp needs exactly one anchor color per breakpoint")
        if self.breakpoints[0] != 0.0 or self.breakpoints[-1] != 1.0:
            raise ValueError("Ramp breakpoints must start at 0 and end at 1")
        if any(b <= a for a, b in zip(self.breakpoints, self.breakpoints[1:])):
            raise ValueError("Ramp breakpoints must be strictly increasing")

    def __call__(self, normalized: ArrayLike) -> NDArray[np.uint8]:
        """Vectorized lookup; returns uint8 with a trailing RGB axis."""
        n = np.clip(np.asarray(normalized, dtype=np.float64), 0.0, 1.0)
        table = np.asarray(self.anchors, dtype=np.float64)
        rgb = np.stack(
            [np.interp(n, self.breakpoints, table[:, c]) for c in range(3)],
            axis=-1,
        )
        # Half-up rounding, same as the anchors being exact at breakpoints
        return np.floor(rgb + 0.5).astype(np.uint8)

    def color(self, normalized: float) -> RGB:
        r, g, b = (int(v) for v in self(normalized))
        return (r, g, b)

    @property
    def low(self) -> RGB:
        return self.anchors[0]

    @property
    def high(self) -> RGB:
        return self.anchors[-1]

    @property
    def midpoint(self) -> RGB:
        return self.color(0.5)


# purple → blue → teal → green → yellow
VIRIDIS_RAMP = ColorRamp(
    anchors=(
        (73, 3, 119),
        (43, 119, 191),
        (33, 170, 155),
        (130, 188, 97),
        (253, 231, 37),
    )
)
