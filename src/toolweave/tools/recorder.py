"""In-memory usage recorder."""

from __future__ import annotations

import threading
from collections import Counter

__all__ = ["CountingUsageRecorder"]


class CountingUsageRecorder:
    """Tallies how often each tool was executed."""

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def record(self, tool_name: str) -> None:
        with self._lock:
            self._counts[tool_name] += 1

    def count(self, tool_name: str) -> int:
        with self._lock:
            return self._counts[tool_name]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
