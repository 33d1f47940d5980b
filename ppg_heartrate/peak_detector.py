"""
Adaptive-threshold peak detector for the conditioned PPG envelope.

A sample is a peak when it strictly exceeds its two neighbours on each side,
clears the current threshold and lies at least ``min_peak_distance`` samples
after the previously accepted peak (the refractory period; 38 samples is
240 BPM at 150 Hz).  If the primary threshold yields too few peaks the scan
is repeated once with a lower threshold.

Two threshold policies are available:

* ``ADAPTIVE_PERCENTILE`` – the value at the top-25 % rank of the signal is
  the base; thresholds are 0.5 × and 0.2 × base.
* ``MAX_FRACTION`` – thresholds are 0.35 × and 0.15 × the signal maximum.

Both report a quality score from the share of samples that sit in the noise
band between the two thresholds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Set, Tuple

import numpy as np

from ppg_heartrate.config import PeakPolicy

logger = logging.getLogger(__name__)

# (noise-band fraction above which, quality) – checked in order
_QUALITY_STEPS: Tuple[Tuple[float, float], ...] = (
    (0.4, 0.1),
    (0.3, 0.3),
    (0.2, 0.6),
    (0.1, 0.8),
)


@dataclass
class PeakResult:
    indices:   List[int] = field(default_factory=list)
    quality:   float = 0.0
    threshold: float = 0.0

    def __len__(self) -> int:
        return len(self.indices)


def noise_band_quality(signal: np.ndarray, low: float, high: float) -> float:
    """
    Map the fraction of samples in ``(low, high]`` to a 0 – 1 quality score.

    A clean pulse envelope spends little time between the two thresholds;
    noise fills that band.
    """
    if len(signal) == 0:
        return 0.0
    in_band = float(np.count_nonzero((signal > low) & (signal <= high))) / len(signal)
    for limit, quality in _QUALITY_STEPS:
        if in_band > limit:
            return quality
    return 1.0


class PeakDetector:
    """
    Local-maximum extraction with refractory distance.

    Parameters
    ----------
    policy:
        Threshold policy (see module docstring).
    min_peak_distance:
        Minimum gap between accepted peaks in samples.  Default: 38.
    min_peaks:
        When the primary pass finds fewer peaks, the lower threshold is
        tried.  Default: 3.
    """

    def __init__(
        self,
        policy: PeakPolicy = PeakPolicy.ADAPTIVE_PERCENTILE,
        min_peak_distance: int = 38,
        min_peaks: int = 3,
    ) -> None:
        self.policy = policy
        self.min_peak_distance = min_peak_distance
        self.min_peaks = min_peaks

    def find(self, signal: np.ndarray) -> PeakResult:
        """Return ordered peak indices of *signal* and its quality score."""
        x = np.asarray(signal, dtype=np.float64)
        if len(x) < 5:
            return PeakResult()

        primary, secondary = self._thresholds(x)
        candidates = self._local_maxima(x)

        peaks, last_peak = self._scan(x, candidates, primary, -self.min_peak_distance, set())
        threshold = primary
        # The retry keeps the refractory cursor of the first pass.
        if len(peaks) < self.min_peaks and secondary > 0:
            extra, _ = self._scan(x, candidates, secondary, last_peak, set(peaks))
            if extra:
                peaks = sorted(peaks + extra)
            threshold = secondary
            logger.debug("Peak retry at %.4g added %d peaks", secondary, len(extra))

        return PeakResult(
            indices=peaks,
            quality=noise_band_quality(x, secondary, primary),
            threshold=threshold,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _thresholds(self, x: np.ndarray) -> Tuple[float, float]:
        if self.policy is PeakPolicy.MAX_FRACTION:
            peak = float(np.max(x))
            return 0.35 * peak, 0.15 * peak
        ranked = np.sort(x)[::-1]
        base = float(ranked[int(len(ranked) * 0.25)])
        return 0.5 * base, 0.2 * base

    @staticmethod
    def _local_maxima(x: np.ndarray) -> np.ndarray:
        """Indices in ``[2, len-2)`` strictly above both neighbours on each side."""
        centre = x[2:-2]
        mask = (
            (centre > x[1:-3]) & (centre > x[:-4])
            & (centre > x[3:-1]) & (centre > x[4:])
        )
        return np.flatnonzero(mask) + 2

    def _scan(
        self,
        x: np.ndarray,
        candidates: np.ndarray,
        threshold: float,
        last_peak: int,
        skip: Set[int],
    ) -> Tuple[List[int], int]:
        peaks: List[int] = []
        for i in candidates:
            i = int(i)
            if i in skip:
                continue
            if x[i] > threshold and i - last_peak >= self.min_peak_distance:
                peaks.append(i)
                last_peak = i
        return peaks, last_peak
