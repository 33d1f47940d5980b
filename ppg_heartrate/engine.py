"""
Per-session heart-rate engine.

One :class:`HeartRateEngine` owns all mutable state of one device session:
the sample window, the debounced contact state, the batch counter and the
stabilizer history.  Each call to :meth:`HeartRateEngine.process_batch` runs
the whole pipeline synchronously::

    window -> contact -> conditioning -> peaks -> rate -> stabilizer -> zone

and always returns a well-formed :class:`HeartRateResult`; anomalies are
reported through ``heart_rate == 0``, ``phase`` and the confidence score,
never as exceptions.  The engine is not reentrant: callers serving several
threads must serialise calls per instance (see
:class:`~ppg_heartrate.session.SessionRegistry`).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

from ppg_heartrate.config import EngineConfig, WindowPolicy
from ppg_heartrate.contact_detector import ContactDetector, ContactStatus
from ppg_heartrate.peak_detector import PeakDetector, PeakResult
from ppg_heartrate.rate_estimator import RateEstimator, RateReading
from ppg_heartrate.signal_conditioner import SignalConditioner
from ppg_heartrate.stabilizer import Phase, StabilizedReading, Stabilizer
from ppg_heartrate.window import SampleWindow
from ppg_heartrate.zones import HR_ZONES, VIGOROUS_THRESHOLD, classify

logger = logging.getLogger(__name__)

# Below this many seconds without a rate the user is told we are still detecting.
_DETECTING_GRACE_S = 2.0


@dataclass
class HeartRateResult:
    heart_rate:      int = 0
    finger_detected: bool = False
    display_value:   str = "No signal"
    display_details: str = "Place finger on sensor"
    zone:            str = HR_ZONES[0].name
    zone_color:      str = HR_ZONES[0].color
    quality:         float = 0.0
    confidence:      float = 0.0
    trend:           str = "stable"
    is_stable:       bool = False
    phase:           str = Phase.NO_SIGNAL.value
    debug:           Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def no_signal(cls, debug: Optional[Dict[str, Any]] = None) -> "HeartRateResult":
        return cls(debug=debug or {})

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation consumed by broadcast sinks."""
        return {
            "heartRate": self.heart_rate,
            "fingerDetected": self.finger_detected,
            "display_value": self.display_value,
            "display_details": self.display_details,
            "zone": self.zone,
            "zoneColor": self.zone_color,
            "quality": self.quality,
            "confidence": self.confidence,
            "trend": self.trend,
            "isStable": self.is_stable,
            "phase": self.phase,
            "debug": dict(self.debug),
        }


class HeartRateEngine:
    """
    Stateful PPG batch processor for a single device session.

    Parameters
    ----------
    config:
        Pipeline constants and policies.  Defaults to :class:`EngineConfig()`.
    clock:
        Returns the current time in seconds; used when ``process_batch`` is
        called without ``now``.  Default: :func:`time.monotonic`.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = cfg = config or EngineConfig()
        self._clock = clock

        self.window = SampleWindow(cfg.window_capacity)
        self.contact_detector = ContactDetector(
            policy=cfg.contact_policy,
            threshold=cfg.contact_threshold,
            low_fraction=cfg.contact_low_fraction,
            min_range=cfg.contact_min_range,
            loss_batches=cfg.contact_loss_batches,
        )
        self.conditioner = SignalConditioner(
            policy=cfg.conditioning_policy,
            sample_rate=cfg.sample_rate,
            smoothing_half_width=cfg.smoothing_half_width,
            envelope_half_width=cfg.envelope_half_width,
            bandpass_low_hz=cfg.bandpass_low_hz,
            bandpass_high_hz=cfg.bandpass_high_hz,
            bandpass_order=cfg.bandpass_order,
            integration_window_s=cfg.integration_window_s,
        )
        self.peak_detector = PeakDetector(
            policy=cfg.peak_policy,
            min_peak_distance=cfg.min_peak_distance,
            min_peaks=cfg.min_peaks,
        )
        self.rate_estimator = RateEstimator(
            sample_rate=cfg.sample_rate,
            min_hr=cfg.min_hr,
            max_hr=cfg.max_hr,
            min_peaks=cfg.min_peaks,
            mad_multiplier=cfg.mad_multiplier,
        )
        self.stabilizer = Stabilizer(cfg)

        self._batches_received = 0
        self._acquisition_start: Optional[float] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process_batch(self, samples: Optional[Sequence[int]], now: Optional[float] = None) -> HeartRateResult:
        """
        Run one batch of raw samples through the pipeline.

        Parameters
        ----------
        samples:
            Raw infrared intensities, uniformly spaced at ``sample_rate``.
            ``None``, empty, short or non-finite batches yield the no-signal
            result and leave the session state untouched.
        now:
            Current time in seconds; defaults to the engine clock.
        """
        now = self._clock() if now is None else float(now)

        if samples is None or len(samples) < self.config.min_batch_samples:
            logger.debug("Batch too short (%d samples)", 0 if samples is None else len(samples))
            return HeartRateResult.no_signal()

        try:
            batch = np.asarray(samples, dtype=np.float64)
        except (TypeError, ValueError) as e:
            logger.warning("Unreadable batch discarded: %s", e)
            return HeartRateResult.no_signal()
        if batch.ndim != 1 or not np.all(np.isfinite(batch)):
            logger.warning("Batch with non-finite or nested samples discarded")
            return HeartRateResult.no_signal()

        status = self.contact_detector.update(batch)
        if not status.contact:
            self.reset()
            return HeartRateResult.no_signal({
                "signalMax": status.signal_max,
                "percentBelowThreshold": status.percent_below_threshold,
            })

        if status.acquired:
            self._start_acquisition(now)

        if status.batch_has_contact:
            self._batches_received += 1
            self.window.append(batch)

        signal_length, peaks, reading = self._analyse(batch, status)
        stabilized = self.stabilizer.update(reading, self._batches_received, now)
        return self._build_result(now, status, signal_length, peaks, reading, stabilized)

    def reset(self) -> None:
        """Return the session to its initial, no-contact state."""
        self.window.clear()
        self.contact_detector.reset()
        self.stabilizer.reset()
        self._batches_received = 0
        self._acquisition_start = None

    @property
    def batches_received(self) -> int:
        return self._batches_received

    @property
    def finger_detected(self) -> bool:
        return self.contact_detector.contact

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _start_acquisition(self, now: float) -> None:
        logger.info("Starting acquisition")
        self.window.clear()
        self.stabilizer.reset()
        self._batches_received = 0
        self._acquisition_start = now

    def _analyse(self, batch: np.ndarray, status: ContactStatus):
        """Return ``(signal_length, peaks, reading)`` for the current data."""
        if self.config.window_policy is WindowPolicy.BATCH:
            source = batch if status.batch_has_contact else None
        elif len(self.window) >= self.config.min_window_samples:
            source = self.window.values()
        else:
            source = None

        if source is None:
            return 0, PeakResult(), RateReading()

        try:
            conditioned = self.conditioner.process(source)
            peaks = self.peak_detector.find(conditioned)
            reading = self.rate_estimator.compute(peaks.indices, len(conditioned), peaks.quality)
        except Exception as e:
            logger.warning("Heart-rate analysis failed: %s", e)
            return len(source), PeakResult(), RateReading()

        logger.debug("%d peaks, %s -> %d BPM (conf=%.2f)",
                     len(peaks), reading.method, reading.bpm, reading.confidence)
        return len(source), peaks, reading

    def _build_result(
        self,
        now: float,
        status: ContactStatus,
        signal_length: int,
        peaks: PeakResult,
        reading: RateReading,
        stabilized: StabilizedReading,
    ) -> HeartRateResult:
        final = stabilized.final_bpm
        zone = classify(final)
        acquiring = stabilized.phase is Phase.ACQUIRING
        started = self._acquisition_start if self._acquisition_start is not None else now
        elapsed = now - started
        seconds = int(elapsed)

        if final > 0:
            if acquiring:
                display_value, display_details = "Acquiring signal", f"Please wait... ({seconds}s)"
            elif stabilized.stable:
                display_value, display_details = str(final), zone.name
            else:
                display_value, display_details = str(final), "Stabilizing..."
        elif elapsed < _DETECTING_GRACE_S:
            display_value, display_details = "Detecting pulse", "Please wait..."
        else:
            display_value, display_details = "Acquiring signal", f"Keep finger still ({seconds}s)"

        debug = {
            "signalMax": status.signal_max,
            "bufferSize": len(self.window),
            "analysedSamples": signal_length,
            "peakCount": len(peaks),
            "method": reading.method,
            "calculatedRate": reading.bpm,
            "limitedRate": stabilized.raw_bpm,
            "finalRate": final,
            "smoothedRate": stabilized.smoothed_bpm,
            "recentRates": stabilized.recent,
            "stable": stabilized.stable,
            "jumpLimited": stabilized.jump_limited,
            "suppressed": stabilized.suppressed,
            "batchesReceived": self._batches_received,
            "inAcquisitionPhase": acquiring,
            "percentBelowThreshold": status.percent_below_threshold,
            "consecutiveLowSignalBatches": status.consecutive_low_batches,
            "isHighRate": final >= VIGOROUS_THRESHOLD,
            "consecutiveHighZoneReadings": self.stabilizer.high_streak,
            "timeSinceFirstDisplay": self.stabilizer.time_since_first_display(now),
        }

        return HeartRateResult(
            heart_rate=0 if acquiring else final,
            finger_detected=True,
            display_value=display_value,
            display_details=display_details,
            zone=zone.name,
            zone_color=zone.color,
            quality=peaks.quality,
            confidence=stabilized.confidence,
            trend=stabilized.trend,
            is_stable=stabilized.stable,
            phase=stabilized.phase.value,
            debug=debug,
        )
