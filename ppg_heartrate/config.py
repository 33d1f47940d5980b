"""
Engine configuration.

The heart-rate engine has a handful of interchangeable policies (how contact
is detected, how the raw window is conditioned, how peaks are thresholded and
how the displayed value is dampened).  They are collected here together with
the numeric constants of the pipeline so that one :class:`EngineConfig` fully
describes an engine instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

class ContactPolicy(Enum):
    ABSOLUTE_THRESHOLD = "absolute"   # fraction of samples below T_contact
    AMPLITUDE_RANGE    = "range"      # peak-to-peak amplitude of the batch


class WindowPolicy(Enum):
    SLIDING = "sliding"               # analyse the full buffered window
    BATCH   = "batch"                 # analyse the incoming batch only


class ConditioningPolicy(Enum):
    MOVING_AVERAGE = "moving-average"
    BANDPASS       = "bandpass"       # Butterworth IIR + integrate


class PeakPolicy(Enum):
    ADAPTIVE_PERCENTILE = "percentile"
    MAX_FRACTION        = "max-fraction"


class SmoothingPolicy(Enum):
    CONSENSUS   = "consensus"         # mean of recent readings when unstable
    EXPONENTIAL = "exponential"       # always report the smoothed value


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EngineConfig:
    """
    Constants and policy switches for :class:`~ppg_heartrate.engine.HeartRateEngine`.

    The defaults reproduce the canonical pipeline: a 1000-sample window at
    150 Hz, absolute-threshold contact detection with a two-batch debounce,
    the moving-average conditioning chain, percentile peak thresholds,
    consensus averaging with jump limiting and warm-up suppression of
    high readings.

    Raises
    ------
    ValueError
        When a field is out of range (see :meth:`validate`).
    """

    # Input / windowing
    sample_rate:           int = 150
    min_batch_samples:     int = 100
    window_capacity:       int = 1000
    min_window_samples:    int = 750
    window_policy:         WindowPolicy = WindowPolicy.SLIDING

    # Contact detection
    contact_policy:        ContactPolicy = ContactPolicy.ABSOLUTE_THRESHOLD
    contact_threshold:     int = 18000
    contact_low_fraction:  float = 0.70
    contact_min_range:     int = 1000
    contact_loss_batches:  int = 2

    # Conditioning
    conditioning_policy:   ConditioningPolicy = ConditioningPolicy.MOVING_AVERAGE
    smoothing_half_width:  int = 5
    envelope_half_width:   int = 8
    bandpass_low_hz:       float = 0.7
    bandpass_high_hz:      float = 3.5
    bandpass_order:        int = 2
    integration_window_s:  float = 0.150

    # Peaks / rate
    peak_policy:           PeakPolicy = PeakPolicy.ADAPTIVE_PERCENTILE
    min_peak_distance:     int = 38
    min_peaks:             int = 3
    min_hr:                int = 40
    max_hr:                int = 200
    mad_multiplier:        float = 2.5

    # Stabilization
    history_size:          int = 4
    min_batches:           int = 5
    min_stable_readings:   int = 3
    stability_tolerance:   int = 15
    smoothing_policy:      SmoothingPolicy = SmoothingPolicy.CONSENSUS
    smoothing_alpha:       float = 0.15
    jump_limiting:         bool = True
    max_jump:              int = 15
    jump_confidence_penalty: float = 0.7
    high_zone_suppression: bool = True
    early_correction:      bool = False
    trend_threshold:       int = 5

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ``ValueError`` if the configuration cannot drive an engine."""
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.min_batch_samples < 5:
            raise ValueError("min_batch_samples must be at least 5")
        if self.window_capacity < self.min_window_samples:
            raise ValueError(
                f"window_capacity ({self.window_capacity}) is smaller than "
                f"min_window_samples ({self.min_window_samples})"
            )
        if not 0.0 < self.contact_low_fraction <= 1.0:
            raise ValueError("contact_low_fraction must be in (0, 1]")
        if self.contact_loss_batches < 1:
            raise ValueError("contact_loss_batches must be >= 1")
        if not 0 < self.min_hr < self.max_hr:
            raise ValueError(f"invalid heart-rate bounds [{self.min_hr}, {self.max_hr}]")
        if not 0.0 < self.bandpass_low_hz < self.bandpass_high_hz < self.sample_rate / 2.0:
            raise ValueError("band-pass edges must satisfy 0 < low < high < Nyquist")
        if not 0.0 < self.smoothing_alpha <= 1.0:
            raise ValueError("smoothing_alpha must be in (0, 1]")
        if not 0.0 <= self.jump_confidence_penalty <= 1.0:
            raise ValueError("jump_confidence_penalty must be in [0, 1]")
        if self.history_size < 1 or self.min_peaks < 2 or self.min_peak_distance < 1:
            raise ValueError("history_size, min_peaks and min_peak_distance are too small")

    @property
    def min_interval(self) -> float:
        """Shortest plausible beat-to-beat gap in samples (at ``max_hr``)."""
        return 60.0 * self.sample_rate / self.max_hr

    @property
    def max_interval(self) -> float:
        """Longest plausible beat-to-beat gap in samples (at ``min_hr``)."""
        return 60.0 * self.sample_rate / self.min_hr
