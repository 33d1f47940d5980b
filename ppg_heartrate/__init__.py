"""
PPG heart-rate engine: BPM estimation from raw fingertip sensor batches.
Batches of infrared intensity samples go in; a stabilized heart rate, a
quality/confidence score, a named zone and stability/phase flags come out.
"""

from ppg_heartrate.config import EngineConfig
from ppg_heartrate.engine import HeartRateEngine, HeartRateResult
from ppg_heartrate.session import SessionRegistry

__version__ = "0.1.0"
__author__ = "ppg_heartrate"

__all__ = ["EngineConfig", "HeartRateEngine", "HeartRateResult", "SessionRegistry"]
