"""Fixed-capacity sliding buffer of raw sensor samples."""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterable

import numpy as np


class SampleWindow:
    """
    Append-only window holding the newest ``capacity`` samples.

    Parameters
    ----------
    capacity:
        Maximum number of samples kept.  Older samples are evicted from the
        front once the window is full.  Default: 1000 (two 500-sample batches).
    """

    def __init__(self, capacity: int = 1000) -> None:
        self.capacity = capacity
        self._buffer: Deque[int] = deque(maxlen=capacity)

    def append(self, batch: Iterable[int]) -> None:
        """Concatenate *batch* and keep only the newest ``capacity`` samples."""
        self._buffer.extend(int(v) for v in batch)

    def values(self) -> np.ndarray:
        """Return the window contents, oldest first, as a float array."""
        return np.array(self._buffer, dtype=np.float64)

    def clear(self) -> None:
        self._buffer.clear()

    @property
    def fill_ratio(self) -> float:
        """How full the window is (0 – 1)."""
        return len(self._buffer) / self.capacity

    def __len__(self) -> int:
        return len(self._buffer)
