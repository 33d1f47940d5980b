"""
PPG signal conditioner.

Algorithm (moving-average chain)
--------------------------------
1. Remove the DC component (subtract the window mean).
2. Smooth with a centred moving average (half-width 5 samples).
3. Take the first difference to emphasise the rising/falling pulse edges.
4. Square, so every value is non-negative and steep upstrokes dominate.
5. Smooth again (half-width 8 samples) into a peak-friendly envelope.

The band-pass chain replaces step 2 with a Butterworth IIR filter
(default 0.7 – 3.5 Hz = 42 – 210 BPM) and integrates the squared derivative
over a 150 ms window, in the spirit of Pan & Tompkins' QRS detector.

At the sequence edges the moving windows shrink to the available samples
instead of padding, so every output value is an average of real samples.

References
----------
- Pan J., Tompkins W.J., "A real-time QRS detection algorithm."
  IEEE Trans. Biomed. Eng., 1985.
- Elgendi M., "On the analysis of fingertip photoplethysmogram signals."
  Curr. Cardiol. Rev., 2012.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from scipy.signal import butter, sosfilt

from ppg_heartrate.config import ConditioningPolicy

logger = logging.getLogger(__name__)


def centered_moving_average(signal: np.ndarray, half_width: int) -> np.ndarray:
    """
    Average each sample with up to *half_width* neighbours on each side.

    Windows are clamped to the sequence bounds, so the first and last
    *half_width* outputs average fewer samples.
    """
    x = np.asarray(signal, dtype=np.float64)
    n = len(x)
    if n == 0 or half_width <= 0:
        return x.copy()
    kernel = np.ones(2 * half_width + 1)
    sums = np.convolve(x, kernel)[half_width:half_width + n]
    counts = np.convolve(np.ones(n), kernel)[half_width:half_width + n]
    return sums / counts


def first_difference(signal: np.ndarray) -> np.ndarray:
    """``x[i] - x[i-1]`` with a leading zero, preserving the length."""
    x = np.asarray(signal, dtype=np.float64)
    if len(x) == 0:
        return x.copy()
    return np.concatenate(([0.0], np.diff(x)))


class SignalConditioner:
    """
    Stateless filter pipeline turning raw samples into a peak envelope.

    Parameters
    ----------
    policy:
        ``MOVING_AVERAGE`` (default) or ``BANDPASS``.
    sample_rate:
        Sensor sampling rate in Hz.  Default: 150.
    smoothing_half_width:
        Half-width of the first moving average (samples).  Default: 5.
    envelope_half_width:
        Half-width of the envelope moving average (samples).  Default: 8.
    bandpass_low_hz, bandpass_high_hz:
        Pass-band edges of the IIR filter.  Default: 0.7 – 3.5 Hz.
    bandpass_order:
        Butterworth order.  Default: 2.
    integration_window_s:
        Integration window of the band-pass chain in seconds.  Default: 0.150.
    """

    def __init__(
        self,
        policy: ConditioningPolicy = ConditioningPolicy.MOVING_AVERAGE,
        sample_rate: float = 150.0,
        smoothing_half_width: int = 5,
        envelope_half_width: int = 8,
        bandpass_low_hz: float = 0.7,
        bandpass_high_hz: float = 3.5,
        bandpass_order: int = 2,
        integration_window_s: float = 0.150,
    ) -> None:
        self.policy = policy
        self.sample_rate = sample_rate
        self.smoothing_half_width = smoothing_half_width
        self.envelope_half_width = envelope_half_width
        self.bandpass_low_hz = bandpass_low_hz
        self.bandpass_high_hz = bandpass_high_hz
        self.bandpass_order = bandpass_order
        self.integration_window_s = integration_window_s

        self._sos = self._build_filter() if policy is ConditioningPolicy.BANDPASS else None

    def process(self, samples: Sequence[float]) -> np.ndarray:
        """
        Return the conditioned signal, one value per input sample.

        The input is never modified; calling twice on the same samples yields
        identical output.
        """
        signal = np.array(samples, dtype=np.float64)
        if signal.size == 0:
            return signal

        # Detrend (remove DC offset)
        signal = signal - np.mean(signal)

        if self._sos is not None:
            shaped = sosfilt(self._sos, signal)
            half_width = int(round(self.integration_window_s * self.sample_rate)) // 2
        else:
            shaped = centered_moving_average(signal, self.smoothing_half_width)
            half_width = self.envelope_half_width

        squared = first_difference(shaped) ** 2
        return centered_moving_average(squared, half_width)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_filter(self) -> np.ndarray:
        """Construct a Butterworth bandpass filter (SOS form)."""
        nyq = self.sample_rate / 2.0
        low = self.bandpass_low_hz / nyq
        high = self.bandpass_high_hz / nyq
        # Clamp to valid range
        low = max(1e-4, min(low, 0.999))
        high = max(low + 1e-4, min(high, 0.999))
        logger.debug("Band-pass %.2f–%.2f Hz, order %d", self.bandpass_low_hz,
                     self.bandpass_high_hz, self.bandpass_order)
        return butter(self.bandpass_order, [low, high], btype="bandpass", output="sos")
