# client/audio/queues.py
"""
Bounded capture sample buffer with canonical depth measurement.

- Depth measured in seconds (not block count)
- Explicit drop behavior: OLDEST blocks are dropped on overflow so the next
  chunk carries the freshest audio
- Drops counted for observability
- Deterministic, synchronous behavior
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from typing import Deque

import numpy as np


@dataclass
class DropCounters:
    """Drop counters for observability."""
    overflow_blocks: int = 0
    overflow_samples: int = 0


class SampleBuffer:
    """
    FIFO of float32 sample blocks between device callbacks and chunk ticks.

    Blocks are appended on the event loop (after thread hand-off) and
    drained all at once when a chunk is cut.
    """

    def __init__(self, *, sample_rate_hz: int, max_depth_s: float) -> None:
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if max_depth_s <= 0:
            raise ValueError("max_depth_s must be > 0")

        self._sample_rate_hz = sample_rate_hz
        self._max_samples = int(max_depth_s * sample_rate_hz)
        self._blocks: Deque[np.ndarray] = deque()
        self._samples = 0
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core operations
    # -------------------------

    def append(self, block: np.ndarray) -> None:
        """Append one 1D float32 block, dropping oldest blocks on overflow."""
        if block.size == 0:
            return

        self._blocks.append(block)
        self._samples += block.size

        while self._samples > self._max_samples and len(self._blocks) > 1:
            dropped = self._blocks.popleft()
            self._samples -= dropped.size
            self.drops.overflow_blocks += 1
            self.drops.overflow_samples += dropped.size

    def drain(self) -> np.ndarray:
        """Remove and return all buffered samples as one array (possibly empty)."""
        if not self._blocks:
            return np.zeros(0, dtype=np.float32)
        out = np.concatenate(list(self._blocks)).astype(np.float32, copy=False)
        self.clear()
        return out

    def latest(self, num_samples: int) -> np.ndarray:
        """
        Most recent num_samples without removing anything.

        Used for observation-only consumers (VAD).
        """
        if num_samples <= 0 or not self._blocks:
            return np.zeros(0, dtype=np.float32)

        parts: list[np.ndarray] = []
        needed = num_samples
        for block in reversed(self._blocks):
            if needed <= 0:
                break
            parts.append(block[-needed:])
            needed -= min(needed, block.size)
        parts.reverse()
        return np.concatenate(parts).astype(np.float32, copy=False)

    def clear(self) -> None:
        """Drop everything without counting it as a drop."""
        self._blocks.clear()
        self._samples = 0

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return self._samples

    def is_empty(self) -> bool:
        return self._samples == 0

    def depth_seconds(self) -> float:
        return self._samples / self._sample_rate_hz

    def snapshot(self) -> dict[str, float | int]:
        """Lightweight snapshot for logging."""
        return {
            "samples": self._samples,
            "depth_s": self.depth_seconds(),
            "dropped_blocks": self.drops.overflow_blocks,
            "dropped_samples": self.drops.overflow_samples,
        }
