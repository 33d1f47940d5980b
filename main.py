#!/usr/bin/env python3
"""
PPG heart-rate engine – replay entry point.

Feeds a recorded session (or a synthetic pulse train) through the engine in
fixed-size batches, exactly as the ingest service would deliver them, and
logs one line per batch.

Usage
-----
    python main.py --replay data/dev1_2024-05-01_10-00-00_1714557600000.csv
    python main.py --synthetic 72 --duration 10

Options
-------
    --replay PATH        Archived ``ir_value`` CSV session to replay
    --synthetic BPM      Generate a synthetic PPG pulse train at BPM
    --duration FLOAT     Synthetic signal length in seconds (default: 10)
    --noise FLOAT        Synthetic noise as a fraction of amplitude (default: 0.05)
    --batch-size INT     Samples per batch (default: 500)
    --interval FLOAT     Simulated seconds between batches (default: 0.5)
    --archive-dir PATH   Also record the replayed batches into this archive
    --json               Print each result record as JSON
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from ppg_heartrate.archive import SampleArchive, read_samples
from ppg_heartrate.config import (
    ConditioningPolicy,
    ContactPolicy,
    EngineConfig,
    PeakPolicy,
    SmoothingPolicy,
    WindowPolicy,
)
from ppg_heartrate.session import SessionRegistry
from ppg_heartrate.synthetic import batches, synthetic_ppg

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("ppg_heartrate")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Replay PPG batches through the heart-rate engine",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--replay", type=Path,
                        help="Archived ir_value CSV session to replay")
    source.add_argument("--synthetic", type=float, metavar="BPM",
                        help="Generate a synthetic pulse train at this rate")
    parser.add_argument("--duration", type=float, default=10.0,
                        help="Synthetic signal length in seconds")
    parser.add_argument("--noise", type=float, default=0.05,
                        help="Synthetic noise as a fraction of pulse amplitude")
    parser.add_argument("--seed", type=int, default=0,
                        help="Random seed for the synthetic noise")
    parser.add_argument("--sample-rate", type=int, default=150,
                        help="Sensor sampling rate in Hz")
    parser.add_argument("--batch-size", type=int, default=500,
                        help="Samples per batch")
    parser.add_argument("--interval", type=float, default=0.5,
                        help="Simulated seconds between batches")
    parser.add_argument("--device-id", default="replay",
                        help="Device id used for the session and archive")
    parser.add_argument("--contact-policy", default=ContactPolicy.ABSOLUTE_THRESHOLD.value,
                        choices=[p.value for p in ContactPolicy])
    parser.add_argument("--window-policy", default=WindowPolicy.SLIDING.value,
                        choices=[p.value for p in WindowPolicy])
    parser.add_argument("--conditioning", default=ConditioningPolicy.MOVING_AVERAGE.value,
                        choices=[p.value for p in ConditioningPolicy])
    parser.add_argument("--peak-policy", default=PeakPolicy.ADAPTIVE_PERCENTILE.value,
                        choices=[p.value for p in PeakPolicy])
    parser.add_argument("--smoothing", default=SmoothingPolicy.CONSENSUS.value,
                        choices=[p.value for p in SmoothingPolicy])
    parser.add_argument("--no-jump-limit", action="store_true",
                        help="Disable clamping of large jumps between readings")
    parser.add_argument("--no-suppression", action="store_true",
                        help="Disable warm-up suppression of high readings")
    parser.add_argument("--early-correction", action="store_true",
                        help="Shave early readings during the first batches")
    parser.add_argument("--archive-dir", type=Path, default=None,
                        help="Record the replayed batches into this archive directory")
    parser.add_argument("--json", action="store_true",
                        help="Print each result record as JSON")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> EngineConfig:
    return EngineConfig(
        sample_rate=args.sample_rate,
        contact_policy=ContactPolicy(args.contact_policy),
        window_policy=WindowPolicy(args.window_policy),
        conditioning_policy=ConditioningPolicy(args.conditioning),
        peak_policy=PeakPolicy(args.peak_policy),
        smoothing_policy=SmoothingPolicy(args.smoothing),
        jump_limiting=not args.no_jump_limit,
        high_zone_suppression=not args.no_suppression,
        early_correction=args.early_correction,
    )


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error("Invalid engine configuration: %s", e)
        return 1

    if args.replay is not None:
        try:
            signal = read_samples(args.replay)
        except (OSError, ValueError) as e:
            logger.error("Cannot read %s: %s", args.replay, e)
            return 1
        logger.info("Replaying %d samples from %s", len(signal), args.replay)
    else:
        n_samples = int(args.duration * args.sample_rate)
        signal = synthetic_ppg(args.synthetic, n_samples, sample_rate=args.sample_rate,
                               noise=args.noise, seed=args.seed)
        logger.info("Generated %d synthetic samples at %.0f BPM", n_samples, args.synthetic)

    if args.batch_size <= 0:
        logger.error("--batch-size must be positive.")
        return 1

    registry = SessionRegistry(config)
    archive = SampleArchive(args.archive_dir) if args.archive_dir else None
    chunks = list(batches(signal, args.batch_size))

    for idx, batch in enumerate(chunks):
        now = idx * args.interval
        if archive is not None:
            archive.append(args.device_id, batch, chunk=idx, total_chunks=len(chunks))

        result = registry.process(args.device_id, batch, now=now)

        if args.json:
            print(json.dumps(result.to_dict()))
        elif result.heart_rate > 0:
            print(f"[t={now:5.1f}s] BPM={result.heart_rate}  zone={result.zone}  "
                  f"conf={result.confidence:.2f}  quality={result.quality:.2f}  "
                  f"phase={result.phase}  trend={result.trend}")
        else:
            print(f"[t={now:5.1f}s] {result.display_value} – {result.display_details}  "
                  f"finger={result.finger_detected}  phase={result.phase}")

    return 0


def cli() -> int:
    return run(parse_args())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(cli())
