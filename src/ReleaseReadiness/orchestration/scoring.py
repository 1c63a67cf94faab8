"""Weighted readiness scoring for release runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence

from .models import GateResult, GateStatus, RunStatus


@dataclass(frozen=True)
class BlockingGate:
    """A required gate that has not passed yet."""

    gate_key: str
    status: GateStatus
    owner_email: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ReadinessScore:
    """Readiness score and the run status it recommends."""

    value: float
    recommended_status: RunStatus
    required_total: int
    blocking_gates: tuple[BlockingGate, ...] = field(default_factory=tuple)

    @property
    def display(self) -> int:
        return int(round(self.value))


def recommend_status(statuses: Iterable[GateStatus]) -> RunStatus:
    """Fold required gate statuses into a run status.

    All pass (or nothing required) is ``ready``; any failure is ``blocked``;
    anything else is still ``in_progress``.
    """

    statuses = tuple(statuses)
    if all(status is GateStatus.PASS for status in statuses):
        return RunStatus.READY
    if any(status is GateStatus.FAIL for status in statuses):
        return RunStatus.BLOCKED
    return RunStatus.IN_PROGRESS


def score(
    gate_results: Iterable[GateResult],
    required_gate_keys: Sequence[str],
    weights_by_key: Mapping[str, float],
) -> ReadinessScore:
    """Compute ``100 * passed weight / required weight`` over required gates.

    Required keys without a gate result count as pending. With no required
    gates the score is 100.
    """

    by_key = {gate.gate_key: gate for gate in gate_results}
    required = tuple(dict.fromkeys(required_gate_keys))
    passed_weight = 0.0
    total_weight = 0.0
    statuses: list[GateStatus] = []
    blocking: list[BlockingGate] = []
    for key in required:
        weight = float(weights_by_key.get(key, 1.0))
        gate = by_key.get(key)
        status = gate.status if gate else GateStatus.PENDING
        total_weight += weight
        statuses.append(status)
        if status is GateStatus.PASS:
            passed_weight += weight
        else:
            blocking.append(
                BlockingGate(
                    gate_key=key,
                    status=status,
                    owner_email=gate.owner_email if gate else None,
                    notes=gate.notes if gate else None,
                )
            )
    value = 100.0 if total_weight <= 0 else 100.0 * passed_weight / total_weight
    value = min(100.0, max(0.0, value))
    return ReadinessScore(
        value=value,
        recommended_status=recommend_status(statuses),
        required_total=len(required),
        blocking_gates=tuple(blocking),
    )


__all__ = ["BlockingGate", "ReadinessScore", "recommend_status", "score"]
