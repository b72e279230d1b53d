"""Run serialization — one pipeline run at a time per shell."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from lymphoscope.errors import RunInProgressError


class RunGuard:
    """Rejects overlapping runs instead of queueing them."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        if self._lock.locked():
            raise RunInProgressError("An analysis run is already in progress")
        async with self._lock:
            yield
