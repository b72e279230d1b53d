"""Lymphoma class catalogue — labels in model output order plus display metadata."""

from __future__ import annotations

from dataclasses import dataclass

# Model output order. The score vector index i belongs to CLASS_NAMES[i].
CLASS_NAMES: tuple[str, ...] = ("CLL", "FL", "MCL")

# Confidence bands, checked top-down: (lower bound, level).
_CONFIDENCE_BANDS: tuple[tuple[float, str], ...] = (
    (0.9, "high"),
    (0.7, "moderate"),
    (0.5, "low"),
)

DISCLAIMER = (
    "For research purposes only and not intended for clinical use. "
    "Always consult with a qualified healthcare professional."
)


@dataclass(frozen=True)
class ClassInfo:
    code: str
    name: str
    description: str


_CLASS_INFO: dict[str, ClassInfo] = {
    "CLL": ClassInfo(
        code="CLL",
        name="Chronic Lymphocytic Leukemia",
        description=(
            "A type of cancer that starts from white blood cells (lymphocytes) in the "
            "bone marrow. CLL affects a particular lymphocyte, the B cell, which "
            "normally fights infections."
        ),
    ),
    "FL": ClassInfo(
        code="FL",
        name="Follicular Lymphoma",
        description=(
            "A type of non-Hodgkin lymphoma that begins in the lymphatic system. FL is "
            "characterized by the appearance of malignant germinal center B cells that "
            "typically grow in a follicular pattern."
        ),
    ),
    "MCL": ClassInfo(
        code="MCL",
        name="Mantle Cell Lymphoma",
        description=(
            "A rare type of B-cell non-Hodgkin lymphoma that arises from cells "
            'originating in the "mantle zone" of the lymph node, and typically '
            "affects men over the age of 60."
        ),
    ),
}


def get_class_info(code: str) -> ClassInfo:
    """Look up display metadata; unknown codes get a generic entry."""
    info = _CLASS_INFO.get(code)
    if info is not None:
        return info
    return ClassInfo(code=code, name=code, description="No additional information available")


def confidence_level(confidence: float) -> str:
    for lower, level in _CONFIDENCE_BANDS:
        if confidence >= lower:
            return level
    return "very low"


def format_confidence(confidence: float) -> str:
    """0.97312 → '97.31%'."""
    return f"{confidence * 100:.2f}%"
