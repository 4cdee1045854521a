"""Request audit log.

Every dispatched request appends one JSON line to
``requests-YYYYMMDD.jsonl`` in the metrics directory, and a Prometheus text
snapshot (``prometheus.prom``) is rewritten alongside it. Set
``ARENA_METRICS_EXPORT_MODE=off`` to keep only the JSONL log.
"""

from __future__ import annotations

import asyncio
import json
import os
import threading
import time
from collections import defaultdict
from typing import Any, Optional

_MODE_FLAG = "ARENA_METRICS_EXPORT_MODE"
_PROM_FILE = "prometheus.prom"
_PROM_MODE = "prom"
_OFF_MODE = "off"
_MODE_VALUES = {_PROM_MODE, _OFF_MODE}
_HISTOGRAM_BUCKETS: tuple[float, ...] = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0)


def _metrics_mode_from_env() -> str:
    raw = os.environ.get(_MODE_FLAG)
    if raw is not None:
        normalized = raw.strip().lower()
        if normalized in _MODE_VALUES:
            return normalized
    return _PROM_MODE


def _new_histogram_state() -> dict[str, Any]:
    return {"buckets": [0] * (len(_HISTOGRAM_BUCKETS) + 1), "count": 0, "sum": 0.0}


class _PromMetrics:
    __slots__ = ("_dir", "_lock", "_counter", "_histogram", "_search_tiers", "_retries")

    def __init__(self, dirpath: str) -> None:
        self._dir = dirpath
        self._lock = threading.Lock()
        self._counter: defaultdict[tuple[str, str, str, str], int] = defaultdict(int)
        self._histogram: defaultdict[tuple[str, str], dict[str, Any]] = defaultdict(_new_histogram_state)
        self._search_tiers: defaultdict[tuple[str, str], int] = defaultdict(int)
        self._retries: defaultdict[tuple[str, str], int] = defaultdict(int)

    def record(self, payload: dict[str, Any]) -> None:
        endpoint = str(payload.get("endpoint") or "unknown")
        provider = str(payload.get("provider") or "unknown")
        status = str(payload.get("status") or "0")
        ok_label = "true" if bool(payload.get("ok")) else "false"
        latency_seconds = max(float(payload.get("latency_ms") or 0.0) / 1000.0, 0.0)
        search_tier = payload.get("search_tier")
        retries = int(payload.get("retries") or 0)

        with self._lock:
            self._counter[(endpoint, provider, status, ok_label)] += 1
            hist_state = self._histogram[(provider, ok_label)]
            buckets = hist_state["buckets"]
            for idx, bound in enumerate(_HISTOGRAM_BUCKETS):
                if latency_seconds <= bound:
                    buckets[idx] += 1
            buckets[-1] += 1
            hist_state["count"] += 1
            hist_state["sum"] += latency_seconds
            if search_tier:
                self._search_tiers[(provider, str(search_tier))] += 1
            if retries > 0:
                self._retries[(endpoint, provider)] += retries
            self._write_locked()

    def render(self) -> str:
        with self._lock:
            return self._render_locked()

    def _render_locked(self) -> str:
        lines: list[str] = [
            "# HELP arena_requests_total Total number of dispatched arena requests",
            "# TYPE arena_requests_total counter",
        ]
        for (endpoint, provider, status, ok_label), value in sorted(self._counter.items()):
            lines.append(
                f'arena_requests_total{{endpoint="{endpoint}",provider="{provider}",status="{status}",ok="{ok_label}"}} {value}'
            )
        lines.append("# HELP arena_request_latency_seconds Time until the upstream stream opened")
        lines.append("# TYPE arena_request_latency_seconds histogram")
        for (provider, ok_label), state in sorted(self._histogram.items()):
            buckets = state["buckets"]
            for idx, bound in enumerate(_HISTOGRAM_BUCKETS):
                le_value = format(bound, ".6g")
                lines.append(
                    f'arena_request_latency_seconds_bucket{{provider="{provider}",ok="{ok_label}",le="{le_value}"}} {buckets[idx]}'
                )
            lines.append(
                f'arena_request_latency_seconds_bucket{{provider="{provider}",ok="{ok_label}",le="+Inf"}} {buckets[-1]}'
            )
            lines.append(
                f'arena_request_latency_seconds_count{{provider="{provider}",ok="{ok_label}"}} {state["count"]}'
            )
            lines.append(
                f'arena_request_latency_seconds_sum{{provider="{provider}",ok="{ok_label}"}} {state["sum"]}'
            )
        lines.append("# HELP arena_search_requests_total Web-search requests by the tier that answered")
        lines.append("# TYPE arena_search_requests_total counter")
        for (provider, tier), value in sorted(self._search_tiers.items()):
            lines.append(f'arena_search_requests_total{{provider="{provider}",tier="{tier}"}} {value}')
        lines.append("# HELP arena_fallback_attempts_total Upstream calls beyond the first per request")
        lines.append("# TYPE arena_fallback_attempts_total counter")
        for (endpoint, provider), value in sorted(self._retries.items()):
            lines.append(
                f'arena_fallback_attempts_total{{endpoint="{endpoint}",provider="{provider}"}} {value}'
            )
        return "\n".join(lines) + "\n"

    def _write_locked(self) -> None:
        os.makedirs(self._dir, exist_ok=True)
        prom_path = os.path.join(self._dir, _PROM_FILE)
        tmp_path = f"{prom_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            handle.write(self._render_locked())
        os.replace(tmp_path, prom_path)


class MetricsLogger:
    def __init__(self, dirpath: str):
        self.dir = dirpath
        os.makedirs(self.dir, exist_ok=True)
        self._lock: Optional[asyncio.Lock] = None
        self._mode = _metrics_mode_from_env()
        self._prom = _PromMetrics(self.dir) if self._mode == _PROM_MODE else None

    def _file(self) -> str:
        return os.path.join(self.dir, f"requests-{time.strftime('%Y%m%d')}.jsonl")

    async def write(self, record: dict[str, Any]) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            with open(self._file(), "a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, ensure_ascii=False) + "\n")
        prom = self._prom
        if prom is not None:
            prom.record(record)

    def render_prometheus(self) -> str | None:
        if self._prom is None:
            return None
        return self._prom.render()
