"""
Raw-sample archive.

Uploads arrive in chunks; each upload session is written to its own CSV file
in the archive directory::

    <device>_<YYYY-MM-DD>_<HH-MM-SS>_<session_ms>.csv

with a single ``ir_value`` column, one raw sample per line.  A chunk that
arrives for a device without an open session (the first chunk was missed)
starts a ``<device>_recovery_...`` file instead.  The heart-rate engine never
reads this archive.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

HEADER = "ir_value"
DEFAULT_MAX_IDLE_S = 600.0

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass
class UploadSession:
    device_id:       str
    session_id:      str
    path:            Path
    total_chunks:    int = 1
    received_chunks: int = 0
    last_update:     float = field(default_factory=time.monotonic)

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def complete(self) -> bool:
        return self.received_chunks >= self.total_chunks


class SampleArchive:
    """
    Append-only CSV archive of raw sample uploads.

    Parameters
    ----------
    data_dir:
        Directory holding the session files; created if missing.
    """

    def __init__(self, data_dir: Path | str = "data") -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._active: Dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def open_session(
        self,
        device_id: str,
        total_chunks: int = 1,
        recovery: bool = False,
        now: Optional[datetime] = None,
    ) -> UploadSession:
        """Start a new session file for *device_id*, replacing any open one."""
        now = now or datetime.now(timezone.utc)
        session_id = str(int(now.timestamp() * 1000))
        stem = _UNSAFE_CHARS.sub("-", device_id)
        if recovery:
            stem += "_recovery"
        filename = f"{stem}_{now:%Y-%m-%d}_{now:%H-%M-%S}_{session_id}.csv"
        path = self.data_dir / filename

        path.write_text(HEADER + "\n", encoding="utf-8")
        session = UploadSession(
            device_id=device_id,
            session_id=session_id,
            path=path,
            total_chunks=max(1, total_chunks),
        )
        with self._lock:
            self._active[device_id] = session
        logger.info("Creating %sfile for upload session: %s", "recovery " if recovery else "", filename)
        return session

    def append(
        self,
        device_id: str,
        samples: Sequence[int],
        chunk: Optional[int] = None,
        total_chunks: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> UploadSession:
        """
        Append one chunk of *samples* to the device's session file.

        Chunk 0 (or no chunk index at all) starts a fresh session.  The
        session is closed once every announced chunk has arrived, or right
        away for un-chunked uploads.
        """
        if chunk is None or chunk == 0:
            session = self.open_session(device_id, total_chunks or 1, now=now)
        else:
            with self._lock:
                session = self._active.get(device_id)
            if session is None:
                session = self.open_session(device_id, total_chunks or 1, recovery=True, now=now)

        with session.path.open("a", encoding="utf-8") as fh:
            fh.writelines(f"{int(v)}\n" for v in samples)

        session.received_chunks += 1
        session.last_update = time.monotonic()
        if chunk is not None:
            logger.debug("Chunk %d of %d from %s (%d samples)",
                         chunk + 1, session.total_chunks, device_id, len(samples))

        if chunk is None or session.complete:
            self.close_session(device_id)
            logger.info("All data received for %s, saved to %s", device_id, session.path)
        return session

    def close_session(self, device_id: str) -> Optional[UploadSession]:
        with self._lock:
            return self._active.pop(device_id, None)

    def active_session(self, device_id: str) -> Optional[UploadSession]:
        with self._lock:
            return self._active.get(device_id)

    def prune_inactive(self, max_idle_s: float = DEFAULT_MAX_IDLE_S, now: Optional[float] = None) -> List[str]:
        """Drop upload trackers idle for more than *max_idle_s*; return their devices."""
        now = time.monotonic() if now is None else now
        with self._lock:
            stale = [dev for dev, s in self._active.items() if now - s.last_update > max_idle_s]
            for dev in stale:
                del self._active[dev]
        for dev in stale:
            logger.info("Cleaning up inactive upload from %s", dev)
        return stale

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def list_sessions(self) -> List[str]:
        """Archived session filenames, newest first."""
        files = [p for p in self.data_dir.glob("*.csv") if p.is_file()]
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.name for p in files]

    def read_session(self, filename: str) -> List[int]:
        """
        Return the samples stored in *filename*.

        Raises
        ------
        ValueError
            If *filename* points outside the archive directory.
        FileNotFoundError
            If the file does not exist.
        """
        path = self.session_path(filename)
        return read_samples(path)

    def session_path(self, filename: str) -> Path:
        root = self.data_dir.resolve()
        path = (root / filename).resolve()
        if path.parent != root:
            raise ValueError(f"Invalid session name: {filename!r}")
        if not path.is_file():
            raise FileNotFoundError(filename)
        return path


def read_samples(path: Path | str) -> List[int]:
    """Parse an ``ir_value`` CSV file into a list of samples."""
    samples: List[int] = []
    with Path(path).open("r", encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line or line == HEADER:
                continue
            samples.append(int(float(line)))
    return samples
