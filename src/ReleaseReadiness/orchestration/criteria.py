"""Parsing of checklist success criteria into typed rules."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

_THRESHOLD_PATTERN = re.compile(r"^(min|max)([A-Z0-9][A-Za-z0-9_]*)$")

# criterion name -> (metric key, fallback metric keys)
KNOWN_THRESHOLDS: Mapping[str, tuple[str, tuple[str, ...]]] = {
    "minCoverage": ("coverage", ("testCoverage",)),
    "maxFailureRate": ("testFailureRate", ("failureRate",)),
    "maxCriticalVulnerabilities": ("criticalVulnerabilities", ()),
    "maxHighVulnerabilities": ("highVulnerabilities", ()),
    "maxOpenIncidents": ("openIncidents", ("activeIncidents",)),
    "maxErrorRate": ("errorRate", ("apmErrorRate",)),
}
BOOLEAN_REQUIREMENTS: Mapping[str, str] = {
    "changeReviewRequired": "changeReviewCompleted",
}
BOOLEAN_PROHIBITIONS: Mapping[str, str] = {
    "freezeWindowCheck": "freezeWindowBypassed",
}
EVIDENCE_REQUIREMENTS: Mapping[str, str] = {
    "requiredEvidence": "evidence",
}


@dataclass(frozen=True)
class MinThreshold:
    """Metric must be greater than or equal to ``value``."""

    criterion: str
    metric_key: str
    value: float
    aliases: tuple[str, ...] = ()

    def describe(self) -> str:
        return f"{self.metric_key} >= {self.value:g}"


@dataclass(frozen=True)
class MaxThreshold:
    """Metric must be less than or equal to ``value``."""

    criterion: str
    metric_key: str
    value: float
    aliases: tuple[str, ...] = ()

    def describe(self) -> str:
        return f"{self.metric_key} <= {self.value:g}"


@dataclass(frozen=True)
class BooleanRequired:
    """Metric must be truthy."""

    criterion: str
    metric_key: str

    def describe(self) -> str:
        return f"{self.metric_key} is true"


@dataclass(frozen=True)
class BooleanProhibited:
    """Bypass metric must be falsy."""

    criterion: str
    metric_key: str

    def describe(self) -> str:
        return f"{self.metric_key} is not set"


@dataclass(frozen=True)
class RequiredEvidence:
    """Every item must be listed in the evidence metric."""

    criterion: str
    metric_key: str
    items: tuple[str, ...]

    def describe(self) -> str:
        return f"{self.metric_key} includes {', '.join(self.items)}"


@dataclass(frozen=True)
class UnrecognizedCriterion:
    """A criterion key the evaluator does not understand."""

    criterion: str
    value: Any
    reason: str = "unrecognized criterion"

    def describe(self) -> str:
        return f"ignored ({self.reason})"

    def warning(self) -> str:
        return f"Ignored success criterion '{self.criterion}': {self.reason}."


Criterion = Union[
    MinThreshold,
    MaxThreshold,
    BooleanRequired,
    BooleanProhibited,
    RequiredEvidence,
    UnrecognizedCriterion,
]


def coerce_number(value: Any) -> Optional[float]:
    """Return ``value`` as a finite float, accepting numeric strings but not booleans."""

    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _metric_from_suffix(suffix: str) -> str:
    return suffix[0].lower() + suffix[1:]


def _parse_threshold(name: str, value: Any) -> Criterion:
    threshold = coerce_number(value)
    if threshold is None:
        raise ValueError(f"success criterion '{name}' must be a finite number, got {value!r}")
    if name in KNOWN_THRESHOLDS:
        metric_key, aliases = KNOWN_THRESHOLDS[name]
    else:
        metric_key, aliases = _metric_from_suffix(name[3:]), ()
    kind = MinThreshold if name.startswith("min") else MaxThreshold
    return kind(criterion=name, metric_key=metric_key, value=threshold, aliases=aliases)


def parse_criterion(name: str, value: Any) -> Criterion | None:
    """Parse a single criterion. Returns ``None`` for disabled boolean rules.

    Recognised keys with malformed values raise ``ValueError`` so a gate never
    passes because its rule was dropped. Unknown keys become
    ``UnrecognizedCriterion``.
    """

    if name in BOOLEAN_REQUIREMENTS or name in BOOLEAN_PROHIBITIONS:
        if not isinstance(value, bool):
            raise ValueError(f"success criterion '{name}' must be a boolean flag, got {value!r}")
        if not value:
            return None
        if name in BOOLEAN_REQUIREMENTS:
            return BooleanRequired(criterion=name, metric_key=BOOLEAN_REQUIREMENTS[name])
        return BooleanProhibited(criterion=name, metric_key=BOOLEAN_PROHIBITIONS[name])
    if name in EVIDENCE_REQUIREMENTS:
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise ValueError(f"success criterion '{name}' must be a list of evidence names")
        items = tuple(str(item) for item in value if str(item).strip())
        if not items:
            return None
        return RequiredEvidence(criterion=name, metric_key=EVIDENCE_REQUIREMENTS[name], items=items)
    if name in KNOWN_THRESHOLDS or _THRESHOLD_PATTERN.match(name):
        return _parse_threshold(name, value)
    return UnrecognizedCriterion(name, value)


def parse_success_criteria(success_criteria: Mapping[str, Any]) -> tuple[Criterion, ...]:
    """Parse a success-criteria mapping into rules, preserving key order."""

    parsed: list[Criterion] = []
    for name, value in success_criteria.items():
        criterion = parse_criterion(str(name), value)
        if criterion is not None:
            parsed.append(criterion)
    return tuple(parsed)


__all__ = [
    "BooleanProhibited",
    "BooleanRequired",
    "Criterion",
    "MaxThreshold",
    "MinThreshold",
    "RequiredEvidence",
    "UnrecognizedCriterion",
    "coerce_number",
    "parse_criterion",
    "parse_success_criteria",
]
