"""Evaluates auto-evaluated gates against their success criteria."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from .criteria import (
    BooleanProhibited,
    BooleanRequired,
    Criterion,
    MaxThreshold,
    MinThreshold,
    RequiredEvidence,
    UnrecognizedCriterion,
    coerce_number,
)
from .exceptions import EvaluationSchemaWarning
from .models import ChecklistItemTemplate, GateStatus

_MISSING = object()


@dataclass(frozen=True)
class GateEvaluation:
    """Outcome of evaluating one gate."""

    status: GateStatus
    notes: tuple[str, ...] = field(default_factory=tuple)
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def note_text(self) -> str:
        return "\n".join((*self.notes, *self.warnings))


def _lookup(metrics: Mapping[str, Any], key: str, aliases: Iterable[str] = ()) -> Any:
    for candidate in (key, *aliases):
        value = metrics.get(candidate)
        if value is not None:
            return value
    return _MISSING


def _as_number(value: Any) -> Optional[float]:
    if value is _MISSING:
        return None
    return coerce_number(value)


def _check(criterion: Criterion, metrics: Mapping[str, Any]) -> tuple[GateStatus, Optional[str]]:
    if isinstance(criterion, (MinThreshold, MaxThreshold)):
        observed = _as_number(_lookup(metrics, criterion.metric_key, criterion.aliases))
        if observed is None:
            return GateStatus.PENDING, f"Awaiting {criterion.metric_key} metric for {criterion.criterion}."
        if isinstance(criterion, MinThreshold) and observed < criterion.value:
            return (
                GateStatus.FAIL,
                f"{criterion.metric_key} {observed:g} is below the required minimum {criterion.value:g}.",
            )
        if isinstance(criterion, MaxThreshold) and observed > criterion.value:
            return (
                GateStatus.FAIL,
                f"{criterion.metric_key} {observed:g} exceeds the allowed maximum {criterion.value:g}.",
            )
        return GateStatus.PASS, None
    if isinstance(criterion, BooleanRequired):
        observed = _lookup(metrics, criterion.metric_key)
        if observed is _MISSING:
            return GateStatus.PENDING, f"Awaiting {criterion.metric_key} for {criterion.criterion}."
        if not observed:
            return GateStatus.FAIL, f"{criterion.metric_key} is required by {criterion.criterion} but is not set."
        return GateStatus.PASS, None
    if isinstance(criterion, BooleanProhibited):
        observed = _lookup(metrics, criterion.metric_key)
        if observed is not _MISSING and observed:
            return GateStatus.FAIL, f"{criterion.metric_key} is set but prohibited by {criterion.criterion}."
        return GateStatus.PASS, None
    if isinstance(criterion, RequiredEvidence):
        provided = _lookup(metrics, criterion.metric_key)
        provided_items = {str(item) for item in provided} if isinstance(provided, (list, tuple, set)) else set()
        missing = [item for item in criterion.items if item not in provided_items]
        if missing:
            return GateStatus.PENDING, f"Evidence missing: {', '.join(missing)}."
        return GateStatus.PASS, None
    if isinstance(criterion, UnrecognizedCriterion):
        return GateStatus.PASS, None
    raise TypeError(f"Unsupported criterion type: {type(criterion).__name__}")


def evaluate_criteria(criteria: Iterable[Criterion], metrics: Mapping[str, Any] | None) -> GateEvaluation:
    """Evaluate parsed ``criteria`` against ``metrics``.

    Any failing rule makes the gate ``fail``; otherwise any rule lacking its
    metric makes it ``pending``; otherwise it is ``pass``. Empty criteria pass.
    """

    metrics = metrics or {}
    failures: list[str] = []
    waiting: list[str] = []
    warnings: list[str] = []
    for criterion in criteria:
        if isinstance(criterion, UnrecognizedCriterion):
            warnings.append(str(EvaluationSchemaWarning(criterion.warning())))
            continue
        status, note = _check(criterion, metrics)
        if status is GateStatus.FAIL:
            failures.append(note or criterion.criterion)
        elif status is GateStatus.PENDING:
            waiting.append(note or criterion.criterion)
    if failures:
        return GateEvaluation(GateStatus.FAIL, tuple(failures + waiting), tuple(warnings))
    if waiting:
        return GateEvaluation(GateStatus.PENDING, tuple(waiting), tuple(warnings))
    return GateEvaluation(GateStatus.PASS, (), tuple(warnings))


def evaluate(template: ChecklistItemTemplate, current_metrics: Mapping[str, Any] | None) -> GateEvaluation:
    """Evaluate a gate template against the metrics recorded on its gate result."""

    return evaluate_criteria(template.criteria, current_metrics)


__all__ = ["GateEvaluation", "evaluate", "evaluate_criteria"]
