"""Release readiness observability instrumentation."""

from __future__ import annotations

import os
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Iterable, Mapping, Optional

from opentelemetry import metrics as otel_metrics


@dataclass
class ReleaseMetrics:
    """Records run-status and gate-evaluation events.

    Events are buffered in memory for dashboards and tests. When OpenTelemetry
    is enabled (``RELEASE_ENABLE_OTEL=1`` or ``enable_otel=True``) they are
    also recorded as counters and a readiness-score histogram.
    """

    enable_otel: Optional[bool] = None
    _run_events: Deque[Mapping[str, object]] = field(default_factory=lambda: deque(maxlen=500))
    _gate_events: Deque[Mapping[str, object]] = field(default_factory=lambda: deque(maxlen=2000))
    _status_counts: Counter = field(default_factory=Counter)
    _meter = None
    _counter_run_status: Optional[object] = None
    _counter_gate_evaluations: Optional[object] = None
    _hist_readiness: Optional[object] = None

    def __post_init__(self) -> None:
        if self.enable_otel is None:
            self.enable_otel = os.environ.get("RELEASE_ENABLE_OTEL", "0") == "1"
        if self.enable_otel:
            try:
                self._meter = otel_metrics.get_meter_provider().get_meter("release_readiness.orchestration")
                self._counter_run_status = self._meter.create_counter("release.run_status_total")
                self._counter_gate_evaluations = self._meter.create_counter(
                    "release.gate_evaluations_total"
                )
                self._hist_readiness = self._meter.create_histogram(
                    "release.readiness_score", unit="%"
                )
            except Exception:  # pragma: no cover - OTEL optional at runtime
                self._meter = None

    def record_release_run_status(
        self,
        *,
        status: str,
        environment: str,
        version_tag: str | None = None,
        readiness_score: float | None = None,
    ) -> None:
        event: dict[str, object] = {
            "type": "run_status",
            "status": status,
            "environment": environment,
            "recorded_at": datetime.now(timezone.utc).isoformat(),
        }
        if version_tag:
            event["version_tag"] = version_tag
        if readiness_score is not None:
            event["readiness_score"] = readiness_score
        self._run_events.append(event)
        self._status_counts[(environment, status)] += 1
        attributes = {"status": status, "environment": environment}
        if self._counter_run_status:
            try:
                self._counter_run_status.add(1, attributes=attributes)
            except Exception:  # pragma: no cover
                pass
        if self._hist_readiness and readiness_score is not None:
            try:
                self._hist_readiness.record(readiness_score, attributes=attributes)
            except Exception:  # pragma: no cover
                pass

    def record_release_gate_evaluation(
        self,
        *,
        gate_key: str,
        status: str,
        environment: str | None = None,
        version_tag: str | None = None,
    ) -> None:
        event: dict[str, object] = {
            "type": "gate_evaluation",
            "gate_key": gate_key,
            "status": status,
            "recorded_at": datetime.now(timezone.utc).isoformat(),
        }
        if environment:
            event["environment"] = environment
        if version_tag:
            event["version_tag"] = version_tag
        self._gate_events.append(event)
        if self._counter_gate_evaluations:
            try:
                self._counter_gate_evaluations.add(1, attributes={"gate_key": gate_key, "status": status})
            except Exception:  # pragma: no cover
                pass

    def run_events(self, limit: int = 50) -> Iterable[Mapping[str, object]]:
        if limit <= 0:
            return []
        return list(self._run_events)[-limit:]

    def gate_events(self, limit: int = 50) -> Iterable[Mapping[str, object]]:
        if limit <= 0:
            return []
        return list(self._gate_events)[-limit:]

    def metrics_snapshot(self) -> Mapping[str, object]:
        return {
            "run_events": len(self._run_events),
            "gate_events": len(self._gate_events),
            "status_counts": {
                f"{environment}:{status}": count
                for (environment, status), count in sorted(self._status_counts.items())
            },
            "last_run_event": self._run_events[-1] if self._run_events else None,
        }


__all__ = ["ReleaseMetrics"]
