"""Scoped ownership of intermediate numeric buffers.

Every array created while building artifacts is registered with a BufferScope.
Buffers are released one by one as soon as their values have been copied out
(``materialize``); whatever is still live when the scope exits, on success or on
an exception, is released then.

    with BufferScope("run") as scope:
        gray = scope.track(image.pixels.mean(axis=2))
        data = scope.materialize(gray)   # detached copy, gray released
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class BufferScope:
    """Tracks intermediate buffers for one run and guarantees their release."""

    def __init__(self, label: str = "scope") -> None:
        self.label = label
        self._live: dict[int, NDArray] = {}
        self._closed = False
        self.allocated = 0
        self.released = 0

    def __enter__(self) -> BufferScope:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def live(self) -> int:
        return len(self._live)

    @property
    def closed(self) -> bool:
        return self._closed

    def track(self, array: Any) -> NDArray:
        """Register an array (or array-like) as owned by this scope."""
        self._check_open()
        arr = np.asarray(array)
        key = id(arr)
        if key not in self._live:
            self._live[key] = arr
            self.allocated += 1
        return arr

    def zeros(self, shape: tuple[int, ...], dtype: Any = np.float32) -> NDArray:
        return self.track(np.zeros(shape, dtype=dtype))

    def release(self, array: NDArray) -> None:
        """Drop a buffer. Unknown or already-released buffers are ignored."""
        if self._live.pop(id(array), None) is not None:
            self.released += 1

    def materialize(self, array: NDArray) -> NDArray[np.float32]:
        """Copy a buffer into a detached read-only flat float32 array, then release it."""
        self._check_open()
        try:
            out = np.asarray(array, dtype=np.float32).flatten()
        finally:
            self.release(array)
        out.flags.writeable = False
        return out

    def close(self) -> None:
        if self._closed:
            return
        leftover = len(self._live)
        self.released += leftover
        self._live.clear()
        self._closed = True
        logger.debug(
            "%s: %d buffers allocated, %d released (%d at close)",
            self.label,
            self.allocated,
            self.released,
            leftover,
        )

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"{self.label}: buffer scope already closed")
