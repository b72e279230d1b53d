"""Pipeline configuration — stage percents, pacing and artifact naming."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lymphoscope.config import Settings


@dataclass
class PipelineConfig:
    """Controls the progress protocol and the artifacts a run produces."""

    # Overall percent reported by each event, in emission order
    preprocessing_percent: int = 5
    # One entry per analyzing artifact: grayscale, red, green, blue
    analyzing_percents: tuple[int, ...] = (10, 30, 50, 70)
    # Before forward pass, after argmax, after enhancement
    classifying_percents: tuple[int, int, int] = (80, 90, 95)

    # Pacing (ms) awaited after each event of a stage; zero for headless runs
    stage_delay_ms: dict[str, int] = field(default_factory=dict)

    # Contrast boost exponent for the enhancement artifact
    enhancement_exponent: float = 1.5

    grayscale_name: str = "Grayscale Analysis"
    channel_names: tuple[str, str, str] = ("Red Channel", "Green Channel", "Blue Channel")
    enhanced_name: str = "Enhanced Contrast"
    fallback_name: str = "Grayscale Analysis (fallback)"

    def __post_init__(self) -> None:
        if len(self.analyzing_percents) != 1 + len(self.channel_names):
            raise ValueError("analyzing_percents needs one entry per analyzing artifact")
        sequence = [
            self.preprocessing_percent,
            *self.analyzing_percents,
            *self.classifying_percents,
        ]
        if any(b < a for a, b in zip(sequence, sequence[1:])):
            raise ValueError(f"Stage percents must be non-decreasing, got {sequence}")
        if sequence[0] < 0 or sequence[-1] >= 100:
            raise ValueError("Stage percents must lie in [0, 100); 100 is reserved for complete")

    def delay_for(self, stage: str) -> float:
        """Pacing delay in seconds for a stage name."""
        return max(self.stage_delay_ms.get(stage, 0), 0) / 1000.0

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(stage_delay_ms=dict(settings.stage_delay_ms))
