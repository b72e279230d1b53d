"""Rendering surfaces — where RGBA pixel buffers end up."""

from __future__ import annotations

import io
from typing import Protocol

import numpy as np
from numpy.typing import NDArray
from PIL import Image


class Surface(Protocol):
    width: int
    height: int

    def put_pixels(self, rgba: NDArray[np.uint8]) -> None: ...


class ArraySurface:
    """In-memory RGBA surface backed by a numpy buffer."""

    def __init__(self, width: int = 256, height: int = 256) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Surface size must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self.pixels = np.zeros((height, width, 4), dtype=np.uint8)
        self.frames = 0

    def put_pixels(self, rgba: NDArray[np.uint8]) -> None:
        if rgba.shape != (self.height, self.width, 4):
            raise ValueError(
                f"Expected pixels of shape {(self.height, self.width, 4)}, got {rgba.shape}"
            )
        self.pixels[...] = rgba
        self.frames += 1

    def clear(self) -> None:
        self.pixels[...] = 0

    def to_png(self) -> bytes:
        return to_png(self.pixels)


def to_png(rgba: NDArray[np.uint8]) -> bytes:
    """Encode an (H, W, 4) uint8 buffer as PNG bytes."""
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8)).save(buf, format="PNG")
    return buf.getvalue()
