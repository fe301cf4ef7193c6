"""
Processing statistics for the match pipeline.

The match worker is the only writer; the stats tick and the API server
read snapshots from other tasks and threads.
"""

import threading
from typing import Union

from .enums import Metric


class Counter:
    """Lock-guarded mapping of metric names to non-decreasing integers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, int] = {metric.value: 0 for metric in Metric}

    def increment(self, metric: Union[Metric, str], amount: int = 1) -> int:
        """
        Increase a counter and return its new value.

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError("Counters cannot be decremented")
        key = metric.value if isinstance(metric, Metric) else metric
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount
            return self._values[key]

    def get(self, metric: Union[Metric, str]) -> int:
        key = metric.value if isinstance(metric, Metric) else metric
        with self._lock:
            return self._values.get(key, 0)

    def snapshot(self) -> dict[str, int]:
        """Get a consistent copy of all counter values."""
        with self._lock:
            return dict(self._values)

    def to_dict(self) -> dict:
        return {"values": self.snapshot()}
