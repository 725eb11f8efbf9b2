"""Tagged counters, gauges and timers."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, FrozenSet, List, Optional, Tuple

logger = logging.getLogger(__name__)

COUNT = 'count'
GAUGE = 'gauge'
TIMER = 'timer'

Tags = Dict[str, str]


@dataclass
class Measurement:
    """One named, tagged metric and everything recorded for it."""
    name: str
    kind: str
    tags: Tags
    values: List[float] = field(default_factory=list)
    durations: List[timedelta] = field(default_factory=list)

    def count(self, n: int = 1) -> None:
        previous = self.values[-1] if self.values else 0
        self.values.append(previous + n)

    def gauge(self, value: float) -> None:
        self.values.append(value)

    def send_timing(self, duration: timedelta) -> None:
        self.durations.append(duration)

    def last_value(self) -> float:
        return self.values[-1] if self.values else 0

    def last_duration(self) -> timedelta:
        return self.durations[-1] if self.durations else timedelta(0)


class Stats:
    """Interface used by the engine to publish metrics."""

    def new_tagged_stat(self, name: str, kind: str, tags: Optional[Tags] = None) -> Measurement:
        raise NotImplementedError

    def counter(self, name: str, tags: Optional[Tags] = None) -> Measurement:
        return self.new_tagged_stat(name, COUNT, tags)

    def gauge(self, name: str, tags: Optional[Tags] = None) -> Measurement:
        return self.new_tagged_stat(name, GAUGE, tags)

    def timer(self, name: str, tags: Optional[Tags] = None) -> Measurement:
        return self.new_tagged_stat(name, TIMER, tags)


class MemStats(Stats):
    """In-memory store. Measurements are keyed by name and tag set."""

    def __init__(self):
        self._lock = threading.Lock()
        self._measurements: Dict[Tuple[str, FrozenSet], Measurement] = {}

    def new_tagged_stat(self, name: str, kind: str, tags: Optional[Tags] = None) -> Measurement:
        tags = dict(tags or {})
        key = (name, frozenset(tags.items()))
        with self._lock:
            measurement = self._measurements.get(key)
            if measurement is None:
                measurement = Measurement(name=name, kind=kind, tags=tags)
                self._measurements[key] = measurement
            return measurement

    def get(self, name: str, tags: Optional[Tags] = None) -> Optional[Measurement]:
        with self._lock:
            return self._measurements.get((name, frozenset((tags or {}).items())))

    def get_by_name(self, name: str) -> List[Measurement]:
        with self._lock:
            return [m for (n, _), m in self._measurements.items() if n == name]

    def snapshot(self) -> Dict[str, float]:
        """name{k=v,...} -> last value, for log lines and health output."""
        with self._lock:
            result = {}
            for measurement in self._measurements.values():
                tags = ','.join(f"{k}={v}" for k, v in sorted(measurement.tags.items()))
                key = f"{measurement.name}{{{tags}}}"
                if measurement.kind == TIMER:
                    result[key] = measurement.last_duration().total_seconds()
                else:
                    result[key] = measurement.last_value()
            return result
