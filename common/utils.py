from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict


def iso_now_ms() -> str:
    """Current UTC time, e.g. '2024-06-10T08:15:02.481Z'."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass(slots=True)
class RunningStats:
    """Streaming mean and sample std of render times (Welford update)."""
    n: int = 0
    mean: float = 0.0
    m2: float = 0.0

    def add(self, x: float) -> None:
        self.n += 1
        delta = x - self.mean
        self.mean += delta / self.n
        self.m2 += delta * (x - self.mean)

    @property
    def std(self) -> float:
        if self.n < 2:
            return 0.0
        return (self.m2 / (self.n - 1)) ** 0.5


class RenderCounters:
    """Render timings and failure count, shared by every request thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timing = RunningStats()
        self.failures = 0

    def success(self, elapsed_ms: float) -> None:
        with self._lock:
            self._timing.add(elapsed_ms)

    def failure(self) -> None:
        with self._lock:
            self.failures += 1

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return {
                "rendered": self._timing.n,
                "failures": self.failures,
                "mean_ms": round(self._timing.mean, 3),
                "std_ms": round(self._timing.std, 3),
            }
