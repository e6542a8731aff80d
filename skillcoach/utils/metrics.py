"""
Process-local Prometheus-style metrics.

Counters cover practice provenance, ingestion volume and HTTP traffic; histograms
cover request latency. Exposed as text by `GET /metrics`.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

_LOCK = threading.Lock()

LabelKey = Tuple[Tuple[str, str], ...]
MetricKey = Tuple[str, LabelKey]


@dataclass
class _Histogram:
    buckets: List[float]
    counts: List[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self) -> None:
        if not self.counts:
            self.counts = [0 for _ in self.buckets]


_COUNTERS: Dict[MetricKey, float] = {}
_HISTS: Dict[MetricKey, _Histogram] = {}


def _labels_key(labels: Optional[Dict[str, str]]) -> LabelKey:
    if not labels:
        return ()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items() if v is not None))


def inc_counter(
    name: str, *, labels: Optional[Dict[str, str]] = None, value: float = 1.0
) -> None:
    key = (str(name), _labels_key(labels))
    with _LOCK:
        _COUNTERS[key] = _COUNTERS.get(key, 0.0) + float(value)


def get_counter(name: str, *, labels: Optional[Dict[str, str]] = None) -> float:
    with _LOCK:
        return _COUNTERS.get((str(name), _labels_key(labels)), 0.0)


def observe_histogram(
    name: str,
    *,
    value: float,
    buckets: Iterable[float],
    labels: Optional[Dict[str, str]] = None,
) -> None:
    bs = sorted(set(float(b) for b in buckets))
    key = (str(name), _labels_key(labels))
    with _LOCK:
        h = _HISTS.get(key)
        if h is None or h.buckets != bs:
            h = _Histogram(buckets=bs)
            _HISTS[key] = h
        h.sum += float(value)
        h.count += 1
        # Buckets are cumulative: one observation lands in every bucket >= value.
        for i, b in enumerate(h.buckets):
            if value <= b:
                h.counts[i] += 1


def reset_metrics() -> None:
    with _LOCK:
        _COUNTERS.clear()
        _HISTS.clear()


class Timer:
    def __init__(self) -> None:
        self._start = time.monotonic()

    def elapsed_seconds(self) -> float:
        return max(0.0, time.monotonic() - self._start)


def _fmt_labels(labels: LabelKey, extra: Optional[Tuple[str, str]] = None) -> str:
    items = list(labels)
    if extra:
        items.append(extra)
    if not items:
        return ""
    parts = []
    for k, v in items:
        vv = str(v).replace("\\", "\\\\").replace('"', '\\"')
        parts.append(f'{k}="{vv}"')
    return "{" + ",".join(parts) + "}"


def render_prometheus() -> str:
    lines: List[str] = []
    with _LOCK:
        for (name, labels), value in sorted(_COUNTERS.items()):
            lines.append(f"# TYPE {name} counter")
            lines.append(f"{name}{_fmt_labels(labels)} {value:.0f}")
        for (name, labels), h in sorted(_HISTS.items(), key=lambda x: x[0]):
            lines.append(f"# TYPE {name} histogram")
            for b, cnt in zip(h.buckets, h.counts):
                lines.append(f"{name}_bucket{_fmt_labels(labels, ('le', str(b)))} {cnt}")
            lines.append(f"{name}_bucket{_fmt_labels(labels, ('le', '+Inf'))} {h.count}")
            lines.append(f"{name}_count{_fmt_labels(labels)} {h.count}")
            lines.append(f"{name}_sum{_fmt_labels(labels)} {h.sum:.6f}")
    return "\n".join(lines) + "\n"
