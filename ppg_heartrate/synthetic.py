"""
Synthetic fingertip PPG generator.

Each beat is a systolic pulse built from two half-cosine segments, a fast
upstroke over the first ``rise_fraction`` of the period and a slower fall over
the next ``fall_fraction``, followed by a quiet diastolic baseline for the rest
of the period.  Setting ``fall_fraction = 1 - rise_fraction`` drops the
baseline and gives a sawtooth-like beat with a long diastolic decay.
Useful for replaying the engine without hardware and for tests.
"""

from __future__ import annotations

from typing import Iterator, List, Optional

import numpy as np


def synthetic_ppg(
    bpm: float,
    n_samples: int,
    sample_rate: float = 150.0,
    baseline: float = 50000.0,
    amplitude: float = 2000.0,
    noise: float = 0.05,
    rise_fraction: float = 0.15,
    fall_fraction: float = 0.25,
    seed: Optional[int] = 0,
) -> np.ndarray:
    """
    Return *n_samples* integer intensities of a PPG pulse train at *bpm*.

    Parameters
    ----------
    noise:
        Uniform noise amplitude as a fraction of *amplitude* (0.05 = ±5 %).
    rise_fraction, fall_fraction:
        Share of the beat period spent on the upstroke and on the fall back
        to baseline.  Their sum must not exceed 1.
    seed:
        Seed for :func:`numpy.random.default_rng`; identical seeds give
        identical signals.
    """
    if rise_fraction <= 0 or fall_fraction <= 0 or rise_fraction + fall_fraction > 1.0:
        raise ValueError("rise_fraction and fall_fraction must be positive and sum to at most 1")

    period = 60.0 * sample_rate / bpm
    phase = np.mod(np.arange(n_samples) / period, 1.0)

    rise = phase < rise_fraction
    fall = ~rise & (phase < rise_fraction + fall_fraction)
    shape = np.zeros(n_samples, dtype=np.float64)
    shape[rise] = 0.5 - 0.5 * np.cos(np.pi * phase[rise] / rise_fraction)
    decay = (phase[fall] - rise_fraction) / fall_fraction
    shape[fall] = 0.5 + 0.5 * np.cos(np.pi * decay)

    rng = np.random.default_rng(seed)
    jitter = rng.uniform(-noise, noise, n_samples) * amplitude
    return np.round(baseline + amplitude * shape + jitter).astype(np.int64)


def batches(signal: np.ndarray, batch_size: int = 500) -> Iterator[List[int]]:
    """Split *signal* into consecutive batches (the last one may be short)."""
    for start in range(0, len(signal), batch_size):
        yield [int(v) for v in signal[start:start + batch_size]]
