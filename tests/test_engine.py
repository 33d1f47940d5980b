"""
End-to-end tests for HeartRateEngine and SessionRegistry.
Run with:  pytest tests/test_engine.py
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from ppg_heartrate.config import (
    ConditioningPolicy,
    ContactPolicy,
    EngineConfig,
    PeakPolicy,
    WindowPolicy,
)
from ppg_heartrate.engine import HeartRateEngine, HeartRateResult
from ppg_heartrate.session import SessionRegistry
from ppg_heartrate.synthetic import batches, synthetic_ppg

_LOW_BATCH = [1000] * 500


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _pulse_batches(bpm: float = 72.0, count: int = 5, seed: int = 1, **shape):
    return list(batches(synthetic_ppg(bpm, 500 * count, noise=0.05, seed=seed, **shape), 500))


def _run(engine: HeartRateEngine, chunks, start: float = 0.0, step: float = 0.5):
    return [engine.process_batch(chunk, now=start + i * step) for i, chunk in enumerate(chunks)]


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------

class TestInputHandling:

    @pytest.mark.parametrize("samples", [None, [], [50000] * 99])
    def test_short_batch_is_no_signal(self, samples):
        result = HeartRateEngine().process_batch(samples, now=0.0)
        assert result.heart_rate == 0
        assert result.finger_detected is False
        assert result.phase == "no_signal"
        assert result.display_value == "No signal"

    def test_short_batch_leaves_state(self):
        engine = HeartRateEngine()
        engine.process_batch(_pulse_batches(count=1)[0], now=0.0)
        engine.process_batch([50000] * 50, now=0.5)
        assert engine.batches_received == 1
        assert engine.finger_detected

    def test_unreadable_batch(self):
        result = HeartRateEngine().process_batch(["abc"] * 200, now=0.0)
        assert result.phase == "no_signal"

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_sample_rejected(self, bad):
        engine = HeartRateEngine()
        engine.process_batch(_pulse_batches(count=1)[0], now=0.0)
        result = engine.process_batch([50000] * 499 + [bad], now=0.5)
        assert result.phase == "no_signal"
        assert result.finger_detected is False
        assert engine.batches_received == 1
        assert len(engine.window) == 500

    def test_no_contact_batch(self):
        result = HeartRateEngine().process_batch(_LOW_BATCH, now=0.0)
        assert result.finger_detected is False
        assert result.heart_rate == 0


# ---------------------------------------------------------------------------
# Contact hysteresis
# ---------------------------------------------------------------------------

class TestContact:

    def test_single_low_batch_keeps_finger(self):
        engine = HeartRateEngine()
        _run(engine, _pulse_batches(count=3))
        result = engine.process_batch(_LOW_BATCH, now=2.0)
        assert result.finger_detected is True
        assert engine.batches_received == 3
        assert result.phase == "acquiring"

    def test_two_low_batches_reset(self):
        engine = HeartRateEngine()
        _run(engine, _pulse_batches(count=5))
        engine.process_batch(_LOW_BATCH, now=3.0)
        result = engine.process_batch(_LOW_BATCH, now=3.5)
        assert result.finger_detected is False
        assert result.phase == "no_signal"
        assert engine.batches_received == 0
        assert len(engine.window) == 0
        assert engine.stabilizer.recent_rates == []

    def test_reacquisition_starts_fresh(self):
        engine = HeartRateEngine()
        _run(engine, _pulse_batches(count=5))
        engine.process_batch(_LOW_BATCH, now=3.0)
        engine.process_batch(_LOW_BATCH, now=3.5)
        result = engine.process_batch(_pulse_batches(count=1, seed=9)[0], now=4.0)
        assert result.finger_detected
        assert engine.batches_received == 1
        assert result.display_value == "Detecting pulse"

    def test_range_policy(self):
        engine = HeartRateEngine(EngineConfig(contact_policy=ContactPolicy.AMPLITUDE_RANGE))
        assert engine.process_batch(_pulse_batches(count=1)[0], now=0.0).finger_detected
        engine.process_batch([50000] * 500, now=0.5)
        assert engine.process_batch([50000] * 500, now=1.0).finger_detected is False


# ---------------------------------------------------------------------------
# End-to-end
# ---------------------------------------------------------------------------

class TestEndToEnd:

    def test_synthetic_72_bpm(self):
        results = _run(HeartRateEngine(), _pulse_batches(72.0))
        for early in results[:4]:
            assert early.heart_rate == 0
            assert early.phase == "acquiring"
        final = results[4]
        assert abs(final.heart_rate - 72) <= 3, f"Expected ~72 BPM, got {final.heart_rate}"
        assert final.phase == "tracking"
        assert final.is_stable
        assert final.zone == "Rest"
        assert final.display_value == str(final.heart_rate)
        assert final.display_details == "Rest"
        assert 0.0 < final.confidence <= 1.0
        assert 0.0 < final.quality <= 1.0

    @pytest.mark.parametrize("seed", [0, 2, 3, 5, 8, 13, 21, 34])
    def test_synthetic_72_bpm_across_seeds(self, seed):
        results = _run(HeartRateEngine(), _pulse_batches(72.0, seed=seed))
        for result in results[1:]:
            assert abs(result.debug["calculatedRate"] - 72) <= 3
        assert abs(results[4].heart_rate - 72) <= 3
        assert results[4].phase == "tracking"

    def test_first_batch_defers_analysis(self):
        result = HeartRateEngine().process_batch(_pulse_batches(count=1)[0], now=0.0)
        assert result.finger_detected
        assert result.debug["peakCount"] == 0
        assert result.display_value == "Detecting pulse"

    def test_rate_computed_while_acquiring(self):
        results = _run(HeartRateEngine(), _pulse_batches(count=2))
        assert results[1].heart_rate == 0
        assert abs(results[1].debug["calculatedRate"] - 72) <= 3
        assert results[1].display_value == "Acquiring signal"

    def test_deterministic(self):
        chunks = _pulse_batches(seed=4)
        first = [r.to_dict() for r in _run(HeartRateEngine(), chunks)]
        second = [r.to_dict() for r in _run(HeartRateEngine(), chunks)]
        assert first == second

    @pytest.mark.parametrize("config", [
        EngineConfig(peak_policy=PeakPolicy.MAX_FRACTION),
        EngineConfig(window_policy=WindowPolicy.BATCH),
    ])
    def test_alternative_policies(self, config):
        final = _run(HeartRateEngine(config), _pulse_batches(72.0))[4]
        assert abs(final.heart_rate - 72) <= 3
        assert final.phase == "tracking"

    def test_bandpass_policy_long_decay(self):
        # Sawtooth-like beats: no quiet baseline between pulses.
        engine = HeartRateEngine(EngineConfig(conditioning_policy=ConditioningPolicy.BANDPASS))
        results = _run(engine, _pulse_batches(72.0, fall_fraction=0.85))
        for result in results:
            assert result.finger_detected
            assert 0.0 <= result.confidence <= 1.0
        final = results[4]
        assert abs(final.heart_rate - 72) <= 3
        assert final.phase == "tracking"

    def test_clock_used_without_now(self):
        ticks = iter(np.arange(0.0, 10.0, 0.5))
        engine = HeartRateEngine(clock=lambda: float(next(ticks)))
        for chunk in _pulse_batches():
            result = engine.process_batch(chunk)
        assert result.phase == "tracking"
        assert result.debug["timeSinceFirstDisplay"] == 0.0


class TestResultRecord:

    def test_to_dict_keys(self):
        record = HeartRateResult().to_dict()
        assert set(record) == {
            "heartRate", "fingerDetected", "display_value", "display_details",
            "zone", "zoneColor", "quality", "confidence", "trend", "isStable",
            "phase", "debug",
        }
        assert record["zoneColor"] == "#3498db"
        assert record["trend"] == "stable"


# ---------------------------------------------------------------------------
# SessionRegistry
# ---------------------------------------------------------------------------

class TestSessionRegistry:

    def test_devices_are_independent(self):
        registry = SessionRegistry()
        for i, chunk in enumerate(_pulse_batches()):
            registry.process("finger", chunk, now=i * 0.5)
            registry.process("idle", _LOW_BATCH, now=i * 0.5)
        assert registry.engine("finger").finger_detected
        assert not registry.engine("idle").finger_detected
        assert registry.devices() == ["finger", "idle"]

    def test_missing_device_id(self):
        with pytest.raises(ValueError):
            SessionRegistry().process("", _LOW_BATCH)

    def test_concurrent_devices(self):
        registry = SessionRegistry()
        chunks = _pulse_batches()

        def run_device(device_id: str) -> HeartRateResult:
            result = None
            for i, chunk in enumerate(chunks):
                result = registry.process(device_id, chunk, now=i * 0.5)
            return result

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(run_device, ["a", "b", "c", "d"]))

        assert len(registry) == 4
        assert len({r.heart_rate for r in results}) == 1
        assert all(r.phase == "tracking" for r in results)

    def test_reset_and_remove(self):
        registry = SessionRegistry(engine_factory=lambda cfg: HeartRateEngine(cfg, clock=lambda: 0.0))
        registry.process("dev", _pulse_batches(count=1)[0])
        assert registry.engine("dev").batches_received == 1
        assert registry.reset("dev")
        assert registry.engine("dev").batches_received == 0
        assert registry.remove("dev")
        assert registry.engine("dev") is None
        assert not registry.reset("dev")
