from __future__ import annotations

import threading

from common.utils import now_utc_iso

from ats.models import MetricsSnapshot

CACHE_COUNTERS = ("cache_hits", "cache_misses", "cache_errors")


class MetricsStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals: dict[str, int] = {"requests": 0, "errors": 0}
        self._totals.update({name: 0 for name in CACHE_COUNTERS})
        self._endpoints: dict[str, dict[str, float | int]] = {}

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._totals[counter] = self._totals.get(counter, 0) + amount

    def observe(self, *, method: str, route: str, status_code: int, duration_ms: float) -> None:
        key = f"{method} {route}"
        bucket = f"{status_code // 100}xx"
        with self._lock:
            self._totals["requests"] += 1
            if status_code >= 400:
                self._totals["errors"] += 1
            endpoint = self._endpoints.setdefault(
                key,
                {"count": 0, "2xx": 0, "4xx": 0, "5xx": 0, "latency_ms_sum": 0.0},
            )
            endpoint["count"] = int(endpoint["count"]) + 1
            if bucket in endpoint:
                endpoint[bucket] = int(endpoint[bucket]) + 1
            endpoint["latency_ms_sum"] = float(endpoint["latency_ms_sum"]) + duration_ms
            endpoint["latency_ms_avg"] = float(endpoint["latency_ms_sum"]) / int(endpoint["count"])

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                endpoints={key: dict(value) for key, value in self._endpoints.items()},
            )
