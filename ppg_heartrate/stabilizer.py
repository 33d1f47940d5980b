"""
Temporal stabilizer for per-batch heart-rate readings.

Per-batch rates are noisy: a 1000-sample window holds only 6 – 10 beats and
early windows are prone to counting harmonics.  The stabilizer keeps the last
few accepted readings and turns them into the value that is displayed:

* jumps larger than ``max_jump`` BPM against the previous reading are clamped;
* readings whose recent history disagrees by more than ``stability_tolerance``
  are replaced by the mean of that history (or, with the exponential policy,
  every reading is exponentially smoothed);
* during the first minutes after the first displayed value, readings in the
  vigorous zone (>= 130 BPM) must be confirmed by a streak of high readings
  before they are shown, and their rise per batch is capped.

The warm-up constants are hand-calibrated against sensor settling behaviour
and kept exactly as tuned.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, List, Optional

import numpy as np

from ppg_heartrate.config import EngineConfig, SmoothingPolicy
from ppg_heartrate.rate_estimator import RateReading, round_half_up
from ppg_heartrate.zones import VIGOROUS_THRESHOLD

logger = logging.getLogger(__name__)

# Warm-up suppression of high readings
INITIAL_WINDOW_S    = 60.0     # strict: cap below vigorous without a streak
CAUTION_WINDOW_S    = 180.0    # loose: only limit the rise per batch
STREAK_DECAY_S      = 15.0     # one fewer required reading per 15 s elapsed
MIN_HIGH_STREAK     = 5
SUPPRESSED_CEILING  = VIGOROUS_THRESHOLD - 5
INITIAL_MAX_RISE    = 5
CAUTION_MAX_RISE    = 8


def required_high_streak(elapsed: float) -> int:
    """High readings needed in a row to show a vigorous rate *elapsed* s after first display."""
    return max(MIN_HIGH_STREAK,
               round_half_up(MIN_HIGH_STREAK + (INITIAL_WINDOW_S - elapsed) / STREAK_DECAY_S))


class Phase(Enum):
    NO_SIGNAL   = "no_signal"
    ACQUIRING   = "acquiring"
    STABILIZING = "stabilizing"
    TRACKING    = "tracking"


@dataclass
class HistoryEntry:
    bpm:        int
    confidence: float
    timestamp:  float


@dataclass
class StabilizedReading:
    raw_bpm:      int                  # after correction / jump limiting
    final_bpm:    int                  # value to display
    smoothed_bpm: int
    confidence:   float
    stable:       bool
    trend:        str
    phase:        Phase
    jump_limited: bool = False
    suppressed:   bool = False
    recent:       List[int] = field(default_factory=list)


class Stabilizer:
    """
    Cross-batch history, jump limiting, smoothing and warm-up suppression.

    Parameters
    ----------
    config:
        Engine configuration; only the stabilization fields are used.
    """

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig()
        self._history: Deque[HistoryEntry] = deque(maxlen=self.config.history_size)
        self._smoothed: int = 0
        self._high_streak: int = 0
        self._first_display: Optional[float] = None
        self._last_displayed: int = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def update(self, reading: RateReading, batches_received: int, now: float) -> StabilizedReading:
        """
        Fold one batch's reading into the history and return the display value.

        Parameters
        ----------
        reading:
            Rate computed for this batch (``bpm == 0`` when none).
        batches_received:
            Good-contact batches since acquisition started.
        now:
            Current time in seconds (any monotonic origin).
        """
        cfg = self.config
        bpm = reading.bpm
        confidence = reading.confidence

        if bpm > 0 and cfg.early_correction and batches_received <= cfg.min_batches + 5:
            bpm = self._early_correction(bpm, batches_received)

        if bpm > 0 and self._first_display is None and batches_received >= cfg.min_batches:
            self._first_display = now

        jump_limited = False
        if bpm > 0 and cfg.jump_limiting and self._history:
            prior = self._history[0].bpm
            if abs(bpm - prior) > cfg.max_jump:
                bpm = prior + cfg.max_jump if bpm > prior else prior - cfg.max_jump
                confidence *= cfg.jump_confidence_penalty
                jump_limited = True
                logger.debug("Jump %d -> %d clamped to %d", prior, reading.bpm, bpm)

        if bpm > 0:
            self._history.appendleft(HistoryEntry(bpm, confidence, now))
            if self._smoothed == 0:
                self._smoothed = bpm
            else:
                alpha = cfg.smoothing_alpha
                self._smoothed = round_half_up((1.0 - alpha) * self._smoothed + alpha * bpm)

        if bpm >= VIGOROUS_THRESHOLD:
            self._high_streak += 1
        else:
            self._high_streak = 0

        stable = self.is_stable()
        final = self._select_final(bpm, stable)

        suppressed = False
        if cfg.high_zone_suppression and final >= VIGOROUS_THRESHOLD:
            limited = self._suppress_high(final, now)
            suppressed = limited != final
            final = limited

        if final > 0 and batches_received >= cfg.min_batches:
            self._last_displayed = final

        if batches_received < cfg.min_batches:
            phase = Phase.ACQUIRING
        else:
            phase = Phase.TRACKING if stable else Phase.STABILIZING

        return StabilizedReading(
            raw_bpm=bpm,
            final_bpm=final,
            smoothed_bpm=self._smoothed,
            confidence=confidence if bpm > 0 else 0.0,
            stable=stable,
            trend=self.trend(),
            phase=phase,
            jump_limited=jump_limited,
            suppressed=suppressed,
            recent=self.recent_rates,
        )

    def is_stable(self) -> bool:
        """True when enough recent readings agree within the tolerance."""
        recent = self.recent_rates
        if len(recent) < self.config.min_stable_readings:
            return False
        return max(recent) - min(recent) <= self.config.stability_tolerance

    def trend(self) -> str:
        """``"rising"``, ``"falling"`` or ``"stable"`` across the history."""
        if len(self._history) < 3:
            return "stable"
        diff = self._history[0].bpm - self._history[-1].bpm
        if diff > self.config.trend_threshold:
            return "rising"
        if diff < -self.config.trend_threshold:
            return "falling"
        return "stable"

    def time_since_first_display(self, now: float) -> float:
        if self._first_display is None:
            return 0.0
        return now - self._first_display

    @property
    def recent_rates(self) -> List[int]:
        """Accepted readings, newest first."""
        return [entry.bpm for entry in self._history]

    @property
    def history(self) -> List[HistoryEntry]:
        return list(self._history)

    @property
    def high_streak(self) -> int:
        return self._high_streak

    @property
    def smoothed_bpm(self) -> int:
        return self._smoothed

    @property
    def last_displayed(self) -> int:
        return self._last_displayed

    @property
    def first_display_time(self) -> Optional[float]:
        return self._first_display

    def reset(self) -> None:
        """Clear history and all warm-up tracking."""
        self._history.clear()
        self._smoothed = 0
        self._high_streak = 0
        self._first_display = None
        self._last_displayed = 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _select_final(self, bpm: int, stable: bool) -> int:
        recent = self.recent_rates
        enough = len(recent) >= self.config.min_stable_readings

        if self.config.smoothing_policy is SmoothingPolicy.EXPONENTIAL:
            return self._smoothed if bpm > 0 or enough else 0

        if not enough:
            return bpm
        if stable:
            return bpm if bpm > 0 else recent[0]
        return round_half_up(float(np.mean(recent)))

    def _suppress_high(self, final: int, now: float) -> int:
        elapsed = self.time_since_first_display(now)
        last = self._last_displayed

        if elapsed < INITIAL_WINDOW_S:
            if self._high_streak < required_high_streak(elapsed):
                final = min(final, SUPPRESSED_CEILING)
                if 0 < last < final:
                    final = min(final, last + INITIAL_MAX_RISE)
        elif elapsed < CAUTION_WINDOW_S:
            if self._high_streak < MIN_HIGH_STREAK and 0 < last < final:
                final = min(final, last + CAUTION_MAX_RISE)
        return final

    @staticmethod
    def _early_correction(bpm: int, batches_received: int) -> int:
        """Shave up to 15 % off readings from the first few batches."""
        factor = max(0.0, 1.0 - batches_received / 10.0)
        if bpm >= VIGOROUS_THRESHOLD:
            share = 0.15
        elif bpm >= 110:
            share = 0.10
        else:
            share = 0.05
        return bpm - round_half_up(bpm * share * factor)
