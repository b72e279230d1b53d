"""Transition engine — time-boxed fade-in of a newly selected render target.

States:
    Idle                                    running=False, blend_weight=1
    Transitioning(target, previous, start)  running=True,  blend_weight rising 0 → 1

select(new) with new != active cancels any pending frame and starts a fresh
transition at now(). Each frame draws the active target at
min((now - start) / duration, 1); the frame that reaches 1 goes Idle and draws
one final frame at exactly 1.

Frames come from an injected FrameScheduler so tests can drive virtual time.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal, Protocol, Union

logger = logging.getLogger(__name__)

Target = Union[int, Literal["original"]]
DrawFn = Callable[[Target, float], None]
FrameCallback = Callable[[float], None]

DEFAULT_DURATION_MS = 600.0

# ~60 Hz display refresh
_FRAME_MS = 1000.0 / 60.0


class FrameScheduler(Protocol):
    def now(self) -> float:
        """Current time in milliseconds."""
        ...

    def request_frame(self, callback: FrameCallback) -> Any:
        """Schedule ``callback(timestamp_ms)`` for the next frame; return a handle."""
        ...

    def cancel_frame(self, handle: Any) -> None: ...


class ManualScheduler:
    """Virtual clock. Frames fire only when the test advances time."""

    def __init__(self, frame_ms: float = _FRAME_MS) -> None:
        self.frame_ms = frame_ms
        self._time = 0.0
        self._next_handle = 0
        self._pending: dict[int, FrameCallback] = {}

    def now(self) -> float:
        return self._time

    def request_frame(self, callback: FrameCallback) -> int:
        self._next_handle += 1
        self._pending[self._next_handle] = callback
        return self._next_handle

    def cancel_frame(self, handle: int) -> None:
        self._pending.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def tick(self) -> int:
        """Fire the callbacks pending right now; ones requested meanwhile wait a frame."""
        due = list(self._pending.values())
        self._pending.clear()
        for callback in due:
            callback(self._time)
        return len(due)

    def advance(self, ms: float) -> int:
        """Move time forward ``ms`` in frame-sized steps, ticking after each step."""
        fired = 0
        remaining = ms
        while remaining > 0:
            step = min(self.frame_ms, remaining)
            self._time += step
            remaining -= step
            fired += self.tick()
        return fired


class AsyncioFrameScheduler:
    """Frame callbacks on the running asyncio loop at a fixed rate."""

    def __init__(self, fps: float = 60.0, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        self.interval = 1.0 / fps
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time() * 1000.0

    def request_frame(self, callback: FrameCallback) -> asyncio.TimerHandle:
        return self.loop.call_later(self.interval, lambda: callback(self.now()))

    def cancel_frame(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


@dataclass
class RenderState:
    active: Target = 0
    previous: Target | None = None
    blend_weight: float = 1.0
    running: bool = False


class TransitionEngine:
    """Drives ``draw(target, blend_weight)`` through fade-in transitions."""

    def __init__(
        self,
        draw: DrawFn,
        scheduler: FrameScheduler,
        duration_ms: float = DEFAULT_DURATION_MS,
        initial: Target = 0,
    ) -> None:
        if duration_ms <= 0:
            raise ValueError(f"duration_ms must be positive, got {duration_ms}")
        self.draw = draw
        self.scheduler = scheduler
        self.duration_ms = duration_ms
        self.state = RenderState(active=initial)
        self.start_time: float | None = None
        self._handle: Any = None
        self._generation = 0
        self._closed = False

    @property
    def idle(self) -> bool:
        return not self.state.running

    def redraw(self) -> None:
        """Draw the current target at its current blend weight (no animation)."""
        self.draw(self.state.active, self.state.blend_weight)

    def select(self, target: Target) -> bool:
        """Start a transition to ``target``. Returns False when it is already active."""
        if self._closed:
            raise RuntimeError("Transition engine is closed")
        if _same_target(target, self.state.active):
            return False

        self._cancel_pending()
        self._generation += 1

        state = self.state
        state.previous = state.active
        state.active = target
        state.blend_weight = 0.0
        state.running = True
        self.start_time = self.scheduler.now()

        logger.debug("Transition %r → %r", state.previous, target)
        self._request(self._generation)
        return True

    def close(self) -> None:
        """Cancel any pending frame; the engine accepts no more selections."""
        self._cancel_pending()
        self._generation += 1
        self.state.running = False
        self._closed = True

    def _request(self, generation: int) -> None:
        self._handle = self.scheduler.request_frame(
            functools.partial(self._on_frame, generation)
        )

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self.scheduler.cancel_frame(self._handle)
            self._handle = None

    def _on_frame(self, generation: int, timestamp: float) -> None:
        if generation != self._generation:
            # Superseded by a newer selection
            return
        self._handle = None

        elapsed = timestamp - (self.start_time or 0.0)
        progress = min(max(elapsed / self.duration_ms, 0.0), 1.0)
        state = self.state
        state.blend_weight = progress
        self.draw(state.active, progress)

        if progress < 1.0:
            self._request(generation)
            return

        state.running = False
        state.blend_weight = 1.0
        self.draw(state.active, 1.0)
        logger.debug("Transition to %r settled", state.active)


def _same_target(a: Target, b: Target) -> bool:
    # Compare type as well so 0 and False or "0" never alias
    return type(a) is type(b) and a == b
