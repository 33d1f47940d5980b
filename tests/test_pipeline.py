"""
Unit tests for the per-batch pipeline stages.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from ppg_heartrate.config import ContactPolicy, EngineConfig, PeakPolicy, ConditioningPolicy
from ppg_heartrate.contact_detector import ContactDetector
from ppg_heartrate.peak_detector import PeakDetector, noise_band_quality
from ppg_heartrate.rate_estimator import RateEstimator, round_half_up
from ppg_heartrate.signal_conditioner import (
    SignalConditioner,
    centered_moving_average,
    first_difference,
)
from ppg_heartrate.synthetic import synthetic_ppg
from ppg_heartrate.window import SampleWindow
from ppg_heartrate.zones import classify


def _bumps(length: int, centres, heights=None, width: float = 5.0) -> np.ndarray:
    """Sum of Gaussian bumps – every centre is a strict local maximum."""
    n = np.arange(length, dtype=np.float64)
    heights = heights or [1.0] * len(centres)
    signal = np.zeros(length)
    for c, h in zip(centres, heights):
        signal += h * np.exp(-((n - c) / width) ** 2)
    return signal


# ---------------------------------------------------------------------------
# SampleWindow
# ---------------------------------------------------------------------------

class TestSampleWindow:

    def test_append_keeps_newest(self):
        w = SampleWindow(capacity=5)
        w.append([1, 2, 3])
        w.append([4, 5, 6, 7])
        assert len(w) == 5
        assert w.values().tolist() == [3.0, 4.0, 5.0, 6.0, 7.0]

    def test_fill_ratio_and_clear(self):
        w = SampleWindow(capacity=1000)
        assert w.fill_ratio == 0.0
        w.append(range(500))
        assert w.fill_ratio == 0.5
        w.clear()
        assert len(w) == 0


# ---------------------------------------------------------------------------
# ContactDetector
# ---------------------------------------------------------------------------

class TestContactDetector:

    def test_good_batch_acquires_contact(self):
        cd = ContactDetector()
        status = cd.update(np.full(500, 50000))
        assert status.batch_has_contact
        assert status.contact and status.acquired
        assert status.percent_below_threshold == 0.0

    def test_single_low_batch_keeps_contact(self):
        cd = ContactDetector()
        cd.update(np.full(500, 50000))
        status = cd.update(np.full(500, 1000))
        assert not status.batch_has_contact
        assert status.contact is True
        assert status.consecutive_low_batches == 1

    def test_two_low_batches_drop_contact(self):
        cd = ContactDetector()
        cd.update(np.full(500, 50000))
        cd.update(np.full(500, 1000))
        status = cd.update(np.full(500, 1000))
        assert status.contact is False
        assert status.lost

    def test_low_fraction_boundary(self):
        cd = ContactDetector()
        batch = np.full(100, 50000)
        batch[:69] = 18000              # 69 % at or below the threshold
        assert cd.update(batch).batch_has_contact
        batch[:70] = 18000              # 70 %
        assert not cd.update(batch).batch_has_contact

    def test_good_batch_resets_low_counter(self):
        cd = ContactDetector()
        cd.update(np.full(500, 50000))
        cd.update(np.full(500, 1000))
        cd.update(np.full(500, 50000))
        status = cd.update(np.full(500, 1000))
        assert status.contact is True
        assert status.consecutive_low_batches == 1

    def test_range_policy(self):
        cd = ContactDetector(policy=ContactPolicy.AMPLITUDE_RANGE, min_range=1000)
        assert not cd.update(np.full(500, 50000)).batch_has_contact
        assert cd.update(synthetic_ppg(72, 500)).batch_has_contact


# ---------------------------------------------------------------------------
# SignalConditioner
# ---------------------------------------------------------------------------

class TestSignalConditioner:

    def test_moving_average_shrinks_at_edges(self):
        out = centered_moving_average(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), 1)
        assert out.tolist() == pytest.approx([1.5, 2.0, 3.0, 4.0, 4.5])

    def test_moving_average_wider_than_signal(self):
        out = centered_moving_average(np.array([2.0, 4.0]), 8)
        assert out.tolist() == pytest.approx([3.0, 3.0])

    def test_first_difference_keeps_length(self):
        assert first_difference(np.array([1.0, 4.0, 9.0])).tolist() == [0.0, 3.0, 5.0]

    def test_output_shape_and_sign(self):
        sc = SignalConditioner()
        raw = synthetic_ppg(72, 1000)
        out = sc.process(raw)
        assert len(out) == len(raw)
        assert np.all(out >= 0.0)

    def test_idempotent(self):
        sc = SignalConditioner()
        raw = synthetic_ppg(80, 1000, seed=3)
        copy = raw.copy()
        first = sc.process(raw)
        second = sc.process(raw)
        assert np.array_equal(first, second)
        assert np.array_equal(raw, copy)

    def test_constant_input_is_flat(self):
        out = SignalConditioner().process([30000] * 200)
        assert np.allclose(out, 0.0)

    def test_bandpass_policy(self):
        sc = SignalConditioner(policy=ConditioningPolicy.BANDPASS)
        raw = synthetic_ppg(72, 1000)
        out = sc.process(raw)
        assert len(out) == 1000
        assert np.all(np.isfinite(out))
        assert np.array_equal(out, sc.process(raw))

    def test_empty_input(self):
        assert len(SignalConditioner().process([])) == 0


# ---------------------------------------------------------------------------
# PeakDetector
# ---------------------------------------------------------------------------

class TestPeakDetector:

    def test_finds_bump_centres(self):
        signal = _bumps(500, [50, 175, 300, 425])
        result = PeakDetector().find(signal)
        assert result.indices == [50, 175, 300, 425]

    def test_refractory_distance(self):
        signal = _bumps(600, [100, 120, 250, 400], width=3.0)
        result = PeakDetector(min_peak_distance=38).find(signal)
        assert result.indices == [100, 250, 400]
        assert all(b - a >= 38 for a, b in zip(result.indices, result.indices[1:]))

    def test_deterministic(self):
        signal = SignalConditioner().process(synthetic_ppg(72, 1000, seed=7))
        pd = PeakDetector()
        assert pd.find(signal).indices == pd.find(signal.copy()).indices

    def test_retry_with_lower_threshold(self):
        signal = _bumps(450, [50, 150, 250, 350], heights=[10, 10, 2, 2])
        result = PeakDetector(policy=PeakPolicy.MAX_FRACTION).find(signal)
        assert result.indices == [50, 150, 250, 350]

    def test_retry_continues_after_last_peak(self):
        signal = _bumps(350, [50, 150, 250], heights=[2, 10, 10])
        result = PeakDetector(policy=PeakPolicy.MAX_FRACTION).find(signal)
        assert result.indices == [150, 250]

    def test_short_signal(self):
        assert PeakDetector().find(np.array([1.0, 2.0, 1.0])).indices == []

    def test_noise_band_quality(self):
        assert noise_band_quality(np.zeros(100), 0.2, 0.5) == 1.0
        signal = np.zeros(100)
        signal[:50] = 0.3
        assert noise_band_quality(signal, 0.2, 0.5) == 0.1
        signal[:] = 0.0
        signal[:15] = 0.3
        assert noise_band_quality(signal, 0.2, 0.5) == 0.8


# ---------------------------------------------------------------------------
# RateEstimator
# ---------------------------------------------------------------------------

class TestRateEstimator:

    def test_regular_intervals(self):
        peaks = [10 + 125 * k for k in range(8)]
        reading = RateEstimator().compute(peaks, 1000)
        assert reading.bpm == 72
        assert reading.method == "interval"
        assert reading.confidence == pytest.approx(1.0)

    def test_too_few_peaks(self):
        assert RateEstimator().compute([10, 135], 1000).bpm == 0

    def test_implausible_interval_discarded(self):
        peaks = [0, 125, 250, 375, 400, 525, 650]
        assert RateEstimator().compute(peaks, 1000).bpm == 72

    def test_mad_outlier_rejected(self):
        peaks = [0, 125, 250, 375, 500, 700]
        reading = RateEstimator().compute(peaks, 1000)
        assert reading.bpm == 72
        assert reading.method == "interval"

    def test_span_fallback(self):
        reading = RateEstimator().compute([0, 30, 60, 300], 1000)
        assert reading.method == "span"
        assert reading.bpm == 90

    def test_duration_fallback(self):
        reading = RateEstimator().compute([0, 40, 80], 300)
        assert reading.method == "duration"
        assert reading.bpm == 60

    def test_all_methods_implausible(self):
        assert RateEstimator().compute([0, 40, 80], 1000).bpm == 0

    def test_confidence_scaled_by_quality(self):
        peaks = [10 + 125 * k for k in range(8)]
        reading = RateEstimator().compute(peaks, 1000, quality=0.6)
        assert reading.confidence == pytest.approx(0.6)

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(71.5) == 72
        assert round_half_up(71.49) == 71


# ---------------------------------------------------------------------------
# Zones / config
# ---------------------------------------------------------------------------

class TestZones:

    @pytest.mark.parametrize("bpm,name", [
        (0, "Rest"), (90, "Rest"), (91, "Light"), (130, "Moderate"),
        (131, "Vigorous"), (170, "High"), (240, "Maximum"), (241, "Maximum"),
    ])
    def test_classify(self, bpm, name):
        assert classify(bpm).name == name

    def test_zone_colour(self):
        assert classify(72).color == "#3498db"


class TestEngineConfig:

    def test_defaults_valid(self):
        cfg = EngineConfig()
        assert cfg.min_interval == pytest.approx(45.0)
        assert cfg.max_interval == pytest.approx(225.0)

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            EngineConfig(min_hr=200, max_hr=40)

    def test_window_smaller_than_minimum(self):
        with pytest.raises(ValueError):
            EngineConfig(window_capacity=500, min_window_samples=750)


# ---------------------------------------------------------------------------
# Synthetic source
# ---------------------------------------------------------------------------

class TestSyntheticPPG:

    def test_diastolic_baseline_is_flat(self):
        raw = synthetic_ppg(72, 250, noise=0.0)
        assert raw[:50].max() == pytest.approx(52000, abs=1)
        assert np.all(raw[50:125] == 50000)
        assert np.array_equal(raw[:125], raw[125:250])

    def test_one_envelope_peak_per_beat(self):
        envelope = SignalConditioner().process(synthetic_ppg(72, 1000, noise=0.0))
        peaks = PeakDetector().find(envelope).indices
        assert len(peaks) == 8
        assert all(123 <= gap <= 127 for gap in np.diff(peaks))

    @pytest.mark.parametrize("rise,fall", [(0.0, 0.25), (0.15, 0.0), (0.5, 0.6)])
    def test_invalid_fractions(self, rise, fall):
        with pytest.raises(ValueError):
            synthetic_ppg(72, 100, rise_fraction=rise, fall_fraction=fall)
