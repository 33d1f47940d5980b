"""Heart-rate zone table."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Zone:
    name:        str
    upper_bound: int      # inclusive, BPM
    color:       str      # hex colour used by dashboards


HR_ZONES: Tuple[Zone, ...] = (
    Zone("Rest",     90,  "#3498db"),
    Zone("Light",    110, "#2ecc71"),
    Zone("Moderate", 130, "#f1c40f"),
    Zone("Vigorous", 150, "#e67e22"),
    Zone("High",     170, "#e74c3c"),
    Zone("Maximum",  240, "#9b59b6"),
)

# Readings at or above this are treated as "high" by the warm-up suppression.
VIGOROUS_THRESHOLD = 130


def classify(bpm: float) -> Zone:
    """
    Return the first zone whose upper bound is at least *bpm*.

    ``bpm <= 0`` maps to Rest; values above the table fall into the last zone.
    """
    if bpm <= 0:
        return HR_ZONES[0]
    for zone in HR_ZONES:
        if bpm <= zone.upper_bound:
            return zone
    return HR_ZONES[-1]
