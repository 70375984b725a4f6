"""Lightweight in-memory metrics (Prometheus text format).

Counters here are best-effort telemetry. Nothing in the economy reads them
back, and a failure to record must never affect an operation's outcome.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple, Union


def _sanitize_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"")


def _format_labels(label_names: List[str], values: Tuple[str, ...]) -> str:
    if not label_names:
        return ""
    parts = [f'{name}="{_sanitize_label_value(val)}"' for name, val in zip(label_names, values)]
    return "{" + ",".join(parts) + "}"


class Counter:
    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None):
        self.name = name
        self.label_names = list(label_names or [])
        self._values: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0):
        key = self._label_tuple(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = self._label_tuple(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def _label_tuple(self, labels: Optional[Dict[str, str]]) -> Tuple[str, ...]:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def export(self) -> List[str]:
        lines = [f"# TYPE {self.name} counter"]
        with self._lock:
            for label_values, value in self._values.items():
                labels = _format_labels(self.label_names, label_values)
                lines.append(f"{self.name}{labels} {value}")
        return lines

    def reset(self):
        with self._lock:
            self._values.clear()


class Gauge:
    """Point-in-time value (locks currently held, for example)."""

    def __init__(self, name: str):
        self.name = name
        self._value = 0.0
        self._lock = threading.Lock()

    def add(self, amount: float) -> None:
        with self._lock:
            self._value += float(amount)

    def value(self) -> float:
        with self._lock:
            return self._value

    def export(self) -> List[str]:
        return [f"# TYPE {self.name} gauge", f"{self.name} {self.value()}"]

    def reset(self):
        with self._lock:
            self._value = 0.0


class MetricsRegistry:
    def __init__(self):
        self.counters: Dict[str, Counter] = {}
        self.gauges: Dict[str, Gauge] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None) -> Counter:
        with self._lock:
            if name not in self.counters:
                self.counters[name] = Counter(name, label_names)
            return self.counters[name]

    def gauge(self, name: str) -> Gauge:
        with self._lock:
            if name not in self.gauges:
                self.gauges[name] = Gauge(name)
            return self.gauges[name]

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for metric in [*self.counters.values(), *self.gauges.values()]:
            lines.extend(metric.export())
        return "\n".join(lines) + "\n"

    def reset(self):
        for metric in [*self.counters.values(), *self.gauges.values()]:
            metric.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter("http_requests_total", ["method", "path", "status"])
economy_operations_total = METRICS.counter("economy_operations_total", ["operation", "outcome"])
coins_spent_total = METRICS.counter("coins_spent_total")
coins_awarded_total = METRICS.counter("coins_awarded_total")
streak_decisions_total = METRICS.counter("streak_decisions_total", ["status"])
store_retries_total = METRICS.counter("store_retries_total", ["path"])
user_locks_held = METRICS.gauge("user_locks_held")


def record_safely(counter: Union[Counter, Gauge], labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
    """Increment a counter, never raising into the caller."""
    try:
        if isinstance(counter, Gauge):
            counter.add(amount)
        else:
            counter.inc(labels=labels, amount=amount)
    except Exception:
        logging.getLogger("crave").debug("metrics.record_failed", exc_info=True)


_UUID_RE = re.compile(r"^[0-9a-fA-F-]{8,}$")


def normalize_path(path: str) -> str:
    """Reduce cardinality by replacing UUID/number segments with :id."""
    parts = []
    for segment in path.split("/"):
        if not segment:
            continue
        if segment.isdigit() or _UUID_RE.match(segment):
            parts.append(":id")
        else:
            parts.append(segment)
    return "/" + "/".join(parts)
