"""Lightweight Metrics Facade

In-process instrumentation for the generation pipeline. All public methods
swallow exceptions so instrumentation never breaks a session.

 - Stage event recording with a bounded ring buffer
 - Percentiles (p50/p95/p99) over recent durations per stage
 - Counters with optional label tuples (capped cardinality)
 - QC outcome tracking (score and hallucination rate)
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Tuple

MAX_EVENTS = 5000  # Ring buffer upper bound
MAX_LABEL_CARDINALITY = 50

_lock = threading.RLock()


@dataclass
class StageEvent:
    ts: float
    stage: str
    duration_ms: float
    success: bool
    fallback: bool
    cached: bool = False


@dataclass
class QCEvent:
    ts: float
    score: float
    total_claims: int
    hallucinated: int
    corrected: bool


class MetricsFacade:
    def __init__(self):
        self._events: Deque[StageEvent] = deque(maxlen=MAX_EVENTS)
        self._qc_events: Deque[QCEvent] = deque(maxlen=MAX_EVENTS)
        self._counters: Dict[str, Dict[Tuple[str, ...], int]] = defaultdict(
            lambda: defaultdict(int)
        )
        self._label_values: Dict[str, set] = defaultdict(set)

    def record_stage(
        self,
        stage: str,
        duration_ms: float,
        success: bool = True,
        fallback: bool = False,
        cached: bool = False,
    ) -> None:
        try:
            with _lock:
                self._events.append(
                    StageEvent(
                        ts=time.time(),
                        stage=stage,
                        duration_ms=max(0.0, duration_ms),
                        success=success,
                        fallback=fallback,
                        cached=cached,
                    )
                )
        except Exception:
            pass

    def increment(
        self,
        name: str,
        *label_values: str,
        amount: int = 1,
    ) -> None:
        try:
            with _lock:
                for v in label_values:
                    if len(self._label_values[name]) < MAX_LABEL_CARDINALITY:
                        self._label_values[name].add(v)
                    elif v not in self._label_values[name]:
                        return
                self._counters[name][tuple(label_values)] += amount
        except Exception:
            pass

    def record_qc(
        self,
        *,
        score: float,
        total_claims: int,
        hallucinated: int,
        corrected: bool,
    ) -> None:
        try:
            with _lock:
                self._qc_events.append(
                    QCEvent(
                        ts=time.time(),
                        score=float(score),
                        total_claims=max(0, int(total_claims)),
                        hallucinated=max(0, int(hallucinated)),
                        corrected=bool(corrected),
                    )
                )
        except Exception:
            pass

    def _percentiles(self, values: List[float]) -> Dict[str, float]:
        if not values:
            return {"p50": 0.0, "p95": 0.0, "p99": 0.0}
        values_sorted = sorted(values)

        def pct(p: float) -> float:
            k = (len(values_sorted) - 1) * (p / 100.0)
            f = int(k)
            c = min(f + 1, len(values_sorted) - 1)
            if f == c:
                return float(values_sorted[f])
            return float(
                values_sorted[f]
                + (values_sorted[c] - values_sorted[f]) * (k - f)
            )

        return {
            "p50": round(pct(50), 2),
            "p95": round(pct(95), 2),
            "p99": round(pct(99), 2),
        }

    def get_latency_distributions(self) -> Dict[str, Dict[str, float]]:
        by_stage: Dict[str, List[float]] = defaultdict(list)
        with _lock:
            for ev in self._events:
                by_stage[ev.stage].append(ev.duration_ms)
        return {stage: self._percentiles(vals) for stage, vals in by_stage.items()}

    def get_fallback_rates(self) -> Dict[str, float]:
        counts: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        with _lock:
            for ev in self._events:
                counts[ev.stage][1] += 1
                if ev.fallback:
                    counts[ev.stage][0] += 1
        return {
            stage: round((fb[0] / fb[1]) if fb[1] else 0.0, 4)
            for stage, fb in counts.items()
        }

    def get_quality_metrics(self) -> Dict[str, float]:
        with _lock:
            events = list(self._qc_events)
        if not events:
            return {"avg_score": 0.0, "hallucination_rate": 0.0, "correction_rate": 0.0}
        total_claims = sum(ev.total_claims for ev in events)
        hallucinated = sum(ev.hallucinated for ev in events)
        return {
            "avg_score": round(sum(ev.score for ev in events) / len(events), 2),
            "hallucination_rate": round(hallucinated / total_claims, 4) if total_claims else 0.0,
            "correction_rate": round(sum(1 for ev in events if ev.corrected) / len(events), 4),
        }

    def get_counters(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        with _lock:
            for name, bucket in self._counters.items():
                out[name] = {"|".join(lbl): val for lbl, val in bucket.items()}
        return out

    def snapshot(self) -> Dict[str, Any]:
        return {
            "latency": self.get_latency_distributions(),
            "fallback_rates": self.get_fallback_rates(),
            "quality": self.get_quality_metrics(),
            "counters": self.get_counters(),
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }

    def reset(self) -> None:
        with _lock:
            self._events.clear()
            self._qc_events.clear()
            self._counters.clear()
            self._label_values.clear()


metrics = MetricsFacade()
