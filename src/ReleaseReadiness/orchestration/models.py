"""Data models for release readiness orchestration."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, MutableMapping, Optional, Sequence

from .criteria import Criterion, parse_success_criteria


class RunStatus(str, Enum):
    """Release run lifecycle states."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"

    @property
    def externally_owned(self) -> bool:
        """States set by the deployment process that evaluation must not overwrite."""

        return self in _EXTERNAL_RUN_STATES


_EXTERNAL_RUN_STATES = frozenset({RunStatus.COMPLETED, RunStatus.ROLLED_BACK, RunStatus.CANCELLED})


class GateStatus(str, Enum):
    """Gate result states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PASS = "pass"
    FAIL = "fail"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(key): _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _coerce_weight(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"weight must be a positive number, got {value!r}")
    try:
        weight = float(1 if value is None else value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"weight must be a positive number, got {value!r}") from exc
    if not math.isfinite(weight) or weight <= 0:
        raise ValueError(f"weight must be a positive number, got {value!r}")
    return weight


@dataclass(frozen=True)
class ChecklistItemTemplate:
    """Reusable definition of a release gate.

    ``success_criteria`` is stored as a read-only deep copy, and ``criteria``
    holds the parsed rules so evaluation never re-interprets the raw mapping.
    """

    slug: str
    category: str
    title: str
    description: str = ""
    auto_evaluated: bool = False
    weight: float = 1.0
    default_owner: Optional[str] = None
    success_criteria: Mapping[str, Any] = field(default_factory=dict)
    criteria: tuple[Criterion, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        slug = str(self.slug or "").strip()
        if not slug:
            raise ValueError("checklist item slug is required")
        if not isinstance(self.success_criteria, Mapping):
            raise ValueError(f"successCriteria for '{slug}' must be a mapping")
        object.__setattr__(self, "slug", slug)
        object.__setattr__(self, "weight", _coerce_weight(self.weight))
        object.__setattr__(self, "auto_evaluated", bool(self.auto_evaluated))
        object.__setattr__(self, "success_criteria", _freeze(self.success_criteria))
        object.__setattr__(self, "criteria", parse_success_criteria(self.success_criteria))

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChecklistItemTemplate":
        return cls(
            slug=payload.get("slug", ""),
            category=str(payload.get("category", "quality")),
            title=str(payload.get("title", payload.get("slug", ""))),
            description=str(payload.get("description") or ""),
            auto_evaluated=bool(payload.get("autoEvaluated", payload.get("auto_evaluated", False))),
            weight=payload.get("weight", 1),
            default_owner=payload.get(
                "defaultOwner", payload.get("defaultOwnerEmail", payload.get("default_owner"))
            ),
            success_criteria=payload.get("successCriteria", payload.get("success_criteria")) or {},
        )

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "slug": self.slug,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "autoEvaluated": self.auto_evaluated,
            "weight": self.weight,
            "defaultOwner": self.default_owner,
            "successCriteria": _thaw(self.success_criteria),
        }


@dataclass
class ReleaseRun:
    """A scheduled release readiness run and its frozen checklist."""

    public_id: str
    version_tag: str
    environment: str
    status: RunStatus
    checklist_snapshot: tuple[ChecklistItemTemplate, ...]
    initiated_by_email: str
    change_ticket: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    initiated_by_name: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    change_window_start: Optional[datetime] = None
    change_window_end: Optional[datetime] = None
    summary_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def required_gates(self) -> tuple[str, ...]:
        return tuple(self.metadata.get("requiredGates") or ())

    @property
    def readiness_score(self) -> float:
        return float(self.metadata.get("readinessScore") or 0)

    def snapshot_entry(self, slug: str) -> Optional[ChecklistItemTemplate]:
        for item in self.checklist_snapshot:
            if item.slug == slug:
                return item
        return None

    def weights_by_key(self) -> Mapping[str, float]:
        return {item.slug: item.weight for item in self.checklist_snapshot}

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "publicId": self.public_id,
            "versionTag": self.version_tag,
            "environment": self.environment,
            "status": self.status.value,
            "checklistSnapshot": [item.to_dict() for item in self.checklist_snapshot],
            "metadata": dict(self.metadata),
            "initiatedByEmail": self.initiated_by_email,
            "initiatedByName": self.initiated_by_name,
            "changeTicket": self.change_ticket,
            "scheduledAt": _format_datetime(self.scheduled_at),
            "changeWindowStart": _format_datetime(self.change_window_start),
            "changeWindowEnd": _format_datetime(self.change_window_end),
            "summaryNotes": self.summary_notes,
            "createdAt": _format_datetime(self.created_at),
            "updatedAt": _format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ReleaseRun":
        return cls(
            public_id=payload["publicId"],
            version_tag=payload["versionTag"],
            environment=payload["environment"],
            status=RunStatus(payload.get("status", RunStatus.SCHEDULED.value)),
            checklist_snapshot=tuple(
                ChecklistItemTemplate.from_dict(item) for item in payload.get("checklistSnapshot") or ()
            ),
            initiated_by_email=payload.get("initiatedByEmail", ""),
            change_ticket=payload.get("changeTicket"),
            metadata=dict(payload.get("metadata") or {}),
            initiated_by_name=payload.get("initiatedByName"),
            scheduled_at=_parse_datetime(payload.get("scheduledAt")),
            change_window_start=_parse_datetime(payload.get("changeWindowStart")),
            change_window_end=_parse_datetime(payload.get("changeWindowEnd")),
            summary_notes=payload.get("summaryNotes"),
            created_at=_parse_datetime(payload.get("createdAt")),
            updated_at=_parse_datetime(payload.get("updatedAt")),
        )


@dataclass
class GateResult:
    """Current state of one gate within a release run."""

    public_id: str
    run_id: str
    gate_key: str
    status: GateStatus = GateStatus.PENDING
    owner_email: Optional[str] = None
    metrics: dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    last_evaluated_at: Optional[datetime] = None
    evidence_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "publicId": self.public_id,
            "runId": self.run_id,
            "gateKey": self.gate_key,
            "status": self.status.value,
            "ownerEmail": self.owner_email,
            "metrics": dict(self.metrics),
            "notes": self.notes,
            "lastEvaluatedAt": _format_datetime(self.last_evaluated_at),
            "evidenceUrl": self.evidence_url,
            "createdAt": _format_datetime(self.created_at),
            "updatedAt": _format_datetime(self.updated_at),
        }


def snapshot_templates(templates: Sequence[ChecklistItemTemplate]) -> tuple[ChecklistItemTemplate, ...]:
    """Return independent copies of ``templates`` suitable for a run snapshot."""

    return tuple(ChecklistItemTemplate.from_dict(item.to_dict()) for item in templates)


__all__ = [
    "ChecklistItemTemplate",
    "GateResult",
    "GateStatus",
    "ReleaseRun",
    "RunStatus",
    "snapshot_templates",
]
