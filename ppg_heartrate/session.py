"""
Per-device engine registry.

Every device gets its own :class:`HeartRateEngine`; engines never share
state.  Batches for the same device are serialised by a per-device lock so
that concurrent request handlers cannot interleave inside one engine, while
different devices are processed independently.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from ppg_heartrate.config import EngineConfig
from ppg_heartrate.engine import HeartRateEngine, HeartRateResult

logger = logging.getLogger(__name__)


@dataclass
class _Session:
    engine: HeartRateEngine
    lock:   threading.Lock = field(default_factory=threading.Lock)


class SessionRegistry:
    """
    Map of device id -> engine, created lazily on the first batch.

    Parameters
    ----------
    config:
        Configuration given to every new engine.
    engine_factory:
        Optional callable building an engine from a config; useful to inject
        a deterministic clock in tests.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        engine_factory: Optional[Callable[[EngineConfig], HeartRateEngine]] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._factory = engine_factory or HeartRateEngine
        self._sessions: Dict[str, _Session] = {}
        self._lock = threading.Lock()

    def process(self, device_id: str, samples: Sequence[int], now: Optional[float] = None) -> HeartRateResult:
        """
        Run *samples* through the engine of *device_id*.

        Raises
        ------
        ValueError
            If *device_id* is empty.
        """
        if not device_id:
            raise ValueError("device_id is required")
        session = self._get_or_create(device_id)
        with session.lock:
            return session.engine.process_batch(samples, now=now)

    def engine(self, device_id: str) -> Optional[HeartRateEngine]:
        with self._lock:
            session = self._sessions.get(device_id)
        return session.engine if session else None

    def reset(self, device_id: str) -> bool:
        """Reset the engine of *device_id*; return False if it is unknown."""
        with self._lock:
            session = self._sessions.get(device_id)
        if session is None:
            return False
        with session.lock:
            session.engine.reset()
        return True

    def remove(self, device_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(device_id, None) is not None
        if removed:
            logger.info("Session for %s removed", device_id)
        return removed

    def devices(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _get_or_create(self, device_id: str) -> _Session:
        with self._lock:
            session = self._sessions.get(device_id)
            if session is None:
                session = _Session(engine=self._factory(self.config))
                self._sessions[device_id] = session
                logger.info("New session for device %s", device_id)
            return session
