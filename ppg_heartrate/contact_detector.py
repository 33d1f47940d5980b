"""
Finger-on-sensor detector.

When a finger rests on the optical sensor the infrared channel reads a high,
pulsating intensity.  Without a finger the reflected light collapses and most
samples fall below a fixed presence threshold (sensor-unit specific, 18000
for the canonical sensor).

A single noisy batch must not tear down an ongoing measurement, so loss of
contact is debounced: contact is declared immediately on any good batch but
only withdrawn after ``loss_batches`` consecutive bad ones.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ppg_heartrate.config import ContactPolicy

logger = logging.getLogger(__name__)


@dataclass
class ContactStatus:
    batch_has_contact:       bool
    contact:                 bool     # debounced state after this batch
    acquired:                bool     # False -> True on this batch
    lost:                    bool     # True -> False on this batch
    percent_below_threshold: float
    signal_max:              float
    signal_range:            float
    consecutive_low_batches: int


class ContactDetector:
    """
    Hysteretic finger-presence classifier.

    Parameters
    ----------
    policy:
        How a single batch is judged.  ``ABSOLUTE_THRESHOLD`` counts samples
        at or below *threshold*; ``AMPLITUDE_RANGE`` requires a peak-to-peak
        range above *min_range*.
    threshold:
        Presence threshold in raw sensor units.  Default: 18000.
    low_fraction:
        A batch has contact when fewer than this fraction of its samples are
        at or below *threshold*.  Default: 0.70.
    min_range:
        Minimum peak-to-peak amplitude for the range policy.  Default: 1000.
    loss_batches:
        Consecutive no-contact batches needed before contact is dropped.
        Default: 2.
    """

    def __init__(
        self,
        policy: ContactPolicy = ContactPolicy.ABSOLUTE_THRESHOLD,
        threshold: float = 18000,
        low_fraction: float = 0.70,
        min_range: float = 1000,
        loss_batches: int = 2,
    ) -> None:
        self.policy = policy
        self.threshold = threshold
        self.low_fraction = low_fraction
        self.min_range = min_range
        self.loss_batches = loss_batches

        self._contact = False
        self._consecutive_low = 0

    def update(self, batch: np.ndarray) -> ContactStatus:
        """
        Classify *batch* and advance the debounced contact state.

        Parameters
        ----------
        batch:
            Raw intensity samples of one batch (non-empty).
        """
        samples = np.asarray(batch, dtype=np.float64)
        signal_max = float(samples.max())
        signal_range = signal_max - float(samples.min())
        below = float(np.count_nonzero(samples <= self.threshold)) / samples.size

        if self.policy is ContactPolicy.AMPLITUDE_RANGE:
            batch_has_contact = signal_range > self.min_range
        else:
            batch_has_contact = below < self.low_fraction

        if batch_has_contact:
            self._consecutive_low = 0
        else:
            self._consecutive_low += 1

        previous = self._contact
        if batch_has_contact:
            self._contact = True
        elif self._consecutive_low >= self.loss_batches:
            self._contact = False

        status = ContactStatus(
            batch_has_contact=batch_has_contact,
            contact=self._contact,
            acquired=self._contact and not previous,
            lost=previous and not self._contact,
            percent_below_threshold=below * 100.0,
            signal_max=signal_max,
            signal_range=signal_range,
            consecutive_low_batches=self._consecutive_low,
        )
        if status.acquired:
            logger.info("Finger contact acquired (%.0f%% below threshold)", status.percent_below_threshold)
        elif status.lost:
            logger.info("Finger contact lost after %d low batches", self._consecutive_low)
        return status

    @property
    def contact(self) -> bool:
        return self._contact

    @property
    def consecutive_low_batches(self) -> int:
        return self._consecutive_low

    def reset(self) -> None:
        """Forget the contact state and the low-batch counter."""
        self._contact = False
        self._consecutive_low = 0
