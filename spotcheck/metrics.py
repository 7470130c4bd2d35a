import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

HISTOGRAM_WINDOW = 1000


class MetricsCollector:
    """In-process counters, gauges and latency samples served by /metrics-lite."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.histograms: Dict[str, List[float]] = defaultdict(list)
        self.start_time = time.time()

    @staticmethod
    def _key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        if not labels:
            return name
        rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{rendered}}}"

    def increment(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None) -> None:
        self.counters[self._key(name, labels)] += value

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        self.gauges[self._key(name, labels)] = value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        samples = self.histograms[self._key(name, labels)]
        samples.append(value)
        if len(samples) > HISTOGRAM_WINDOW:
            del samples[: len(samples) - HISTOGRAM_WINDOW]

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, (time.perf_counter() - started) * 1000)

    def counter(self, name: str) -> int:
        """Total for ``name`` summed over all label sets."""
        return sum(v for k, v in self.counters.items() if k == name or k.startswith(name + "{"))

    def snapshot(self) -> Dict[str, Any]:
        summaries = {}
        for key, values in self.histograms.items():
            if not values:
                continue
            ordered = sorted(values)
            n = len(ordered)
            summaries[key] = {
                "count": n,
                "avg": sum(ordered) / n,
                "p50": ordered[int(n * 0.5)],
                "p95": ordered[min(n - 1, int(n * 0.95))],
                "p99": ordered[min(n - 1, int(n * 0.99))],
            }
        return {
            "uptime_seconds": time.time() - self.start_time,
            "timestamp": time.time(),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "histograms": summaries,
        }


metrics = MetricsCollector()
