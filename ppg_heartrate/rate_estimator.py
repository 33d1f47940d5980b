"""
Heart-rate computation from peak positions.

Three strategies are tried in order; the first one that produces a value
inside the physiological bounds wins:

1. ``interval`` – median beat-to-beat interval after rejecting implausible
   gaps and MAD outliers.
2. ``span``     – number of beats over the first-to-last peak span.
3. ``duration`` – number of beats over the whole analysed window.

Nothing here raises: insufficient or implausible evidence yields
``bpm == 0``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


@dataclass
class RateReading:
    bpm:        int = 0
    confidence: float = 0.0
    method:     str = "none"

    @property
    def valid(self) -> bool:
        return self.bpm > 0


# A strategy returns (bpm, dispersion score) or None when it cannot decide.
Strategy = Callable[["RateEstimator", Sequence[int], int], Optional[Tuple[int, float]]]


class RateEstimator:
    """
    Interval-based BPM estimator with fallbacks and outlier rejection.

    Parameters
    ----------
    sample_rate:
        Sampling rate in Hz.  Default: 150.
    min_hr, max_hr:
        Physiological bounds in BPM.  Default: 40 – 200.
    min_peaks:
        Fewer peaks than this never produce a rate.  Default: 3.
    mad_multiplier:
        Intervals further than this many MADs from the median are dropped.
        Default: 2.5.
    """

    def __init__(
        self,
        sample_rate: float = 150.0,
        min_hr: int = 40,
        max_hr: int = 200,
        min_peaks: int = 3,
        mad_multiplier: float = 2.5,
    ) -> None:
        self.sample_rate = sample_rate
        self.min_hr = min_hr
        self.max_hr = max_hr
        self.min_peaks = min_peaks
        self.mad_multiplier = mad_multiplier

        self._strategies: List[Tuple[str, Strategy]] = [
            ("interval", RateEstimator._from_intervals),
            ("span", RateEstimator._from_span),
            ("duration", RateEstimator._from_duration),
        ]

    def compute(self, peaks: Sequence[int], signal_length: int, quality: float = 1.0) -> RateReading:
        """
        Return a :class:`RateReading` for the given peak indices.

        Parameters
        ----------
        peaks:
            Ascending peak indices into the analysed signal.
        signal_length:
            Number of samples in the analysed signal.
        quality:
            Peak quality score (0 – 1) folded into the confidence.
        """
        if len(peaks) < self.min_peaks:
            return RateReading()

        for name, strategy in self._strategies:
            result = strategy(self, peaks, signal_length)
            if result is None:
                continue
            bpm, score = result
            if not self.min_hr <= bpm <= self.max_hr:
                logger.debug("%s method gave implausible %d BPM", name, bpm)
                continue
            confidence = float(np.clip(score * quality, 0.0, 1.0))
            return RateReading(bpm=bpm, confidence=confidence, method=name)

        return RateReading()

    @property
    def interval_bounds(self) -> Tuple[float, float]:
        """Plausible beat-to-beat gaps in samples."""
        return 60.0 * self.sample_rate / self.max_hr, 60.0 * self.sample_rate / self.min_hr

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _from_intervals(self, peaks: Sequence[int], signal_length: int) -> Optional[Tuple[int, float]]:
        low, high = self.interval_bounds
        intervals = np.diff(np.asarray(peaks, dtype=np.float64))
        valid = intervals[(intervals >= low) & (intervals <= high)]
        if len(valid) < 2:
            return None

        median = float(np.median(valid))
        mad = float(np.median(np.abs(valid - median)))
        survivors = valid[np.abs(valid - median) <= self.mad_multiplier * mad]
        if len(survivors) >= 2:
            chosen = float(np.median(survivors))
        else:
            survivors = valid
            chosen = median

        cv = float(np.std(survivors) / np.mean(survivors))
        score = max(0.0, min(1.0, 1.0 - 2.0 * cv))
        return round_half_up(60.0 * self.sample_rate / chosen), score

    def _from_span(self, peaks: Sequence[int], signal_length: int) -> Optional[Tuple[int, float]]:
        if len(peaks) < 4:
            return None
        span = peaks[-1] - peaks[0]
        if span <= 0:
            return None
        return round_half_up((len(peaks) - 1) * 60.0 * self.sample_rate / span), 0.5

    def _from_duration(self, peaks: Sequence[int], signal_length: int) -> Optional[Tuple[int, float]]:
        if len(peaks) < 3 or signal_length <= 0:
            return None
        return round_half_up((len(peaks) - 1) * 60.0 * self.sample_rate / signal_length), 0.3
