"""
Bounded sliding window of optical samples.

A thin wrapper around :class:`collections.deque` with a fixed ``maxlen``:
pushing into a full window silently evicts the oldest sample.  The window is
owned by exactly one measurement session and is cleared with :meth:`reset`
whenever a new session starts.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator, Optional

import numpy as np


@dataclass(frozen=True)
class RawSample:
    """One channel-intensity reading taken from one frame."""

    value: float
    timestamp_ms: float


class SignalWindow:
    """
    Fixed-capacity, time-ordered buffer of :class:`RawSample`.

    Parameters
    ----------
    capacity:
        Maximum number of samples kept (default 150 ≈ 5 s at 30 fps).
    """

    def __init__(self, capacity: int = 150) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._samples: Deque[RawSample] = deque(maxlen=capacity)

    def push(self, sample: RawSample) -> None:
        if self._samples and sample.timestamp_ms < self._samples[-1].timestamp_ms:
            raise ValueError(
                f"Sample at {sample.timestamp_ms} ms is older than the newest "
                f"sample at {self._samples[-1].timestamp_ms} ms"
            )
        self._samples.append(sample)

    def values(self) -> np.ndarray:
        """Snapshot of the sample values, oldest first."""
        return np.fromiter((s.value for s in self._samples), dtype=np.float64,
                           count=len(self._samples))

    def timestamps(self) -> np.ndarray:
        """Snapshot of the sample timestamps (ms), oldest first."""
        return np.fromiter((s.timestamp_ms for s in self._samples), dtype=np.float64,
                           count=len(self._samples))

    def reset(self) -> None:
        self._samples.clear()

    @property
    def capacity(self) -> int:
        return self._samples.maxlen  # type: ignore[return-value]

    @property
    def last_timestamp_ms(self) -> Optional[float]:
        """Timestamp of the newest sample, or ``None`` when empty."""
        return self._samples[-1].timestamp_ms if self._samples else None

    @property
    def is_full(self) -> bool:
        return len(self._samples) == self.capacity

    @property
    def fill_ratio(self) -> float:
        """How full the window is (0 – 1)."""
        return len(self._samples) / self.capacity

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[RawSample]:
        return iter(tuple(self._samples))
