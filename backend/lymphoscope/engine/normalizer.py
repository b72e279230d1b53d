"""Image normalizer — arbitrary user image → CanonicalImage (256×256×3, [0, 1]).

Accepts encoded bytes, a path, a binary file object, a PIL image or a raw pixel
array. Resizing is bilinear, matching the model's training-time preprocessing.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import IO, Union

import numpy as np
from numpy.typing import NDArray
from PIL import Image, UnidentifiedImageError

from lymphoscope.engine.context import CANONICAL_SIZE, CanonicalImage

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, bytearray, str, Path, IO[bytes], Image.Image, NDArray]


def _array_to_pil(arr: NDArray) -> Image.Image:
    if arr.size == 0:
        raise ValueError("Image array is empty")
    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    if arr.ndim not in (2, 3) or (arr.ndim == 3 and arr.shape[2] not in (3, 4)):
        raise ValueError(f"Unsupported image array shape {arr.shape}")
    if np.issubdtype(arr.dtype, np.floating):
        # Float arrays are taken to be [0, 1] intensities
        arr = np.floor(np.clip(arr, 0.0, 1.0) * 255.0 + 0.5)
    arr = np.clip(arr, 0, 255).astype(np.uint8)
    return Image.fromarray(arr)


def open_image(source: ImageSource) -> Image.Image:
    """Decode any supported source into a PIL image. Raises ValueError when unreadable."""
    if isinstance(source, Image.Image):
        return source
    if isinstance(source, np.ndarray):
        return _array_to_pil(source)
    try:
        if isinstance(source, (bytes, bytearray)):
            if not source:
                raise ValueError("Image data is empty")
            image = Image.open(io.BytesIO(bytes(source)))
        else:
            image = Image.open(source)
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Failed to load image: {e}") from e
    return image


def normalize_image(source: ImageSource) -> CanonicalImage:
    """Resize to 256×256 RGB and scale pixel values into [0, 1]."""
    image = open_image(source)
    width, height = image.size
    if width == 0 or height == 0:
        raise ValueError("Image has zero width or height")

    size = CANONICAL_SIZE
    rgb = image.convert("RGB")
    if rgb.size != (size, size):
        rgb = rgb.resize((size, size), Image.BILINEAR)
    pixels = np.asarray(rgb, dtype=np.float32) / 255.0

    logger.debug("Normalized %dx%d %s image to %dx%d", width, height, image.mode, size, size)
    return CanonicalImage(pixels)


def load_canonical(path: str | Path) -> CanonicalImage:
    return normalize_image(Path(path))
