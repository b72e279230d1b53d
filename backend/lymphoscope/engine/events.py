"""Progress sinks — observers of the pipeline's ProgressEvent stream.

A sink is any callable taking one ProgressEvent. Logging is just another sink,
so the pipeline itself never writes progress lines.
"""

from __future__ import annotations

import logging
from typing import Callable

from lymphoscope.engine.context import ProgressEvent, Stage

ProgressSink = Callable[[ProgressEvent], None]


class LoggingSink:
    """Logs every event at INFO (the terminal event) or DEBUG (the rest)."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("lymphoscope.progress")

    def __call__(self, event: ProgressEvent) -> None:
        level = logging.INFO if event.stage is Stage.COMPLETE else logging.DEBUG
        partial = event.partial
        if partial is None:
            self.logger.log(level, "%s %d%%", event.stage.value, event.percent)
            return
        self.logger.log(
            level,
            "%s %d%% artifacts=%s prediction=%s",
            event.stage.value,
            event.percent,
            partial.artifact_names,
            partial.predicted_class,
        )


class EventRecorder:
    """Keeps every event, and the latest one, for later inspection."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def latest(self) -> ProgressEvent | None:
        return self.events[-1] if self.events else None

    def stages(self) -> list[Stage]:
        return [e.stage for e in self.events]

    def percents(self) -> list[int]:
        return [e.percent for e in self.events]


def fan_out(*sinks: ProgressSink | None) -> ProgressSink:
    """Combine several sinks into one; None entries are skipped."""
    active = [s for s in sinks if s is not None]

    def _emit(event: ProgressEvent) -> None:
        for sink in active:
            sink(event)

    return _emit
