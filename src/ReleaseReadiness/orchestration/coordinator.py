"""Release run scheduling and evaluation workflow."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from .config import ReleaseSettings
from .evaluator import evaluate
from .exceptions import NotFoundError, TemplateSourceError, ValidationError
from .models import (
    ChecklistItemTemplate,
    GateResult,
    GateStatus,
    ReleaseRun,
    RunStatus,
    snapshot_templates,
)
from .schemas import GateEvaluationUpdate, ScheduleReleaseRunRequest, parse_payload, sanitise_environment
from .scoring import BlockingGate, score
from .storage import ReleaseStorage
from .telemetry import ReleaseMetrics
from .templates import ChecklistTemplateSource, TemplateCache

LOGGER = logging.getLogger("ReleaseReadiness.orchestration.coordinator")

UPCOMING_STATUSES = (RunStatus.SCHEDULED, RunStatus.IN_PROGRESS)


@dataclass(frozen=True)
class ScheduleResult:
    run: ReleaseRun
    gates: tuple[GateResult, ...]


@dataclass(frozen=True)
class EvaluationResult:
    run: ReleaseRun
    gates: tuple[GateResult, ...]
    readiness_score: float
    recommended_status: RunStatus
    required_gates: tuple[str, ...]
    blocking_gates: tuple[BlockingGate, ...] = field(default_factory=tuple)

    @property
    def readiness_score_display(self) -> int:
        return int(round(self.readiness_score))


@dataclass(frozen=True)
class GateView:
    """A gate result joined to the snapshot entry it was created from."""

    gate: GateResult
    snapshot: Optional[ChecklistItemTemplate]


@dataclass(frozen=True)
class RunView:
    run: ReleaseRun
    gates: tuple[GateView, ...]


@dataclass(frozen=True)
class ChecklistView:
    items: tuple[ChecklistItemTemplate, ...]
    required_gates: tuple[str, ...]
    thresholds: Mapping[str, Any]


@dataclass(frozen=True)
class ReleaseDashboard:
    breakdown: Mapping[str, int]
    upcoming: tuple[Mapping[str, Any], ...]
    recent: tuple[ReleaseRun, ...]
    required_gates: tuple[str, ...]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_public_id() -> str:
    return str(uuid.uuid4())


def _as_filter(value: str | Iterable[str] | None) -> Optional[list[str]]:
    if value is None:
        return None
    values = [value] if isinstance(value, str) else list(value)
    return [item for item in values if item] or None


class ReleaseRunCoordinator:
    """Schedules release runs and drives them through readiness evaluation.

    The coordinator holds no run state between calls. Storage is expected to
    make the gate upsert and the run update atomic; repeated evaluation with
    unchanged metrics converges on the same status and score.
    """

    def __init__(
        self,
        template_source: ChecklistTemplateSource,
        storage: ReleaseStorage,
        metrics: ReleaseMetrics | None = None,
        *,
        settings: ReleaseSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._templates = template_source
        self._storage = storage
        self._settings = settings or ReleaseSettings()
        if metrics is None:
            # Without loaded settings, ReleaseMetrics falls back to RELEASE_ENABLE_OTEL.
            metrics = ReleaseMetrics(enable_otel=settings.enable_otel if settings is not None else None)
        self._metrics = metrics
        self._clock = clock or _utcnow
        self._new_id = id_factory or _new_public_id

    @classmethod
    def from_settings(
        cls,
        template_source: ChecklistTemplateSource,
        storage: ReleaseStorage,
        settings: ReleaseSettings,
        metrics: ReleaseMetrics | None = None,
        **kwargs: Any,
    ) -> "ReleaseRunCoordinator":
        """Build a coordinator whose template source is cached for ``template_cache_ttl_seconds``."""

        if not isinstance(template_source, TemplateCache):
            template_source = TemplateCache(template_source, ttl_seconds=settings.template_cache_ttl_seconds)
        return cls(template_source, storage, metrics, settings=settings, **kwargs)

    @property
    def metrics(self) -> ReleaseMetrics:
        return self._metrics

    @property
    def template_source(self) -> ChecklistTemplateSource:
        return self._templates

    # Scheduling ----------------------------------------------------------
    def schedule_release_run(self, request: ScheduleReleaseRunRequest | Mapping[str, Any]) -> ScheduleResult:
        payload = parse_payload(ScheduleReleaseRunRequest, request)
        snapshot = snapshot_templates(self._fetch_templates())
        slugs = [item.slug for item in snapshot]
        required_gates = self._resolve_required_gates(payload.required_gates, slugs)
        unknown_seeds = sorted(set(payload.initial_gates) - set(slugs))
        if unknown_seeds:
            raise ValidationError(
                f"initialGates reference unknown gates: {', '.join(unknown_seeds)}",
                errors=[f"initialGates.{slug}: unknown gate" for slug in unknown_seeds],
            )

        now = self._clock()
        metadata = {
            **payload.metadata,
            "requiredGates": list(required_gates),
            "readinessScore": 0,
            "thresholds": dict(self._settings.thresholds),
            "createdBy": payload.initiated_by_email,
            "createdAt": now.isoformat(),
            "changeTicket": payload.change_ticket,
        }
        run = self._storage.create_run(
            ReleaseRun(
                public_id=self._new_id(),
                version_tag=payload.version_tag,
                environment=payload.environment,
                status=RunStatus.SCHEDULED,
                checklist_snapshot=snapshot,
                initiated_by_email=payload.initiated_by_email,
                change_ticket=payload.change_ticket,
                metadata=metadata,
                initiated_by_name=payload.initiated_by_name or None,
                scheduled_at=payload.scheduled_at or now,
                change_window_start=payload.change_window_start,
                change_window_end=payload.change_window_end,
                summary_notes=payload.summary_notes or None,
            )
        )
        LOGGER.info(
            "Scheduled release readiness run",
            extra={
                "run_id": run.public_id,
                "version_tag": run.version_tag,
                "environment": run.environment,
                "initiated_by": run.initiated_by_email,
            },
        )

        gates: list[GateResult] = []
        for item in snapshot:
            seed = payload.initial_gates.get(item.slug)
            gates.append(
                self._storage.create_gate_result(
                    GateResult(
                        public_id=self._new_id(),
                        run_id=run.public_id,
                        gate_key=item.slug,
                        status=seed.status if seed and seed.status else GateStatus.PENDING,
                        owner_email=(seed.owner_email if seed else None)
                        or item.default_owner
                        or payload.initiated_by_email,
                        metrics=dict(seed.metrics) if seed else {},
                        notes=seed.notes if seed else None,
                    )
                )
            )

        self._emit(
            self._metrics.record_release_run_status,
            status=run.status.value,
            environment=run.environment,
            version_tag=run.version_tag,
            readiness_score=0,
        )
        return ScheduleResult(run=run, gates=tuple(gates))

    def _fetch_templates(self) -> Sequence[ChecklistItemTemplate]:
        try:
            return tuple(self._templates.list())
        except TemplateSourceError:
            raise
        except Exception as exc:
            raise TemplateSourceError(f"Unable to load release checklist: {exc}") from exc

    def _resolve_required_gates(self, requested: Optional[Sequence[str]], slugs: Sequence[str]) -> tuple[str, ...]:
        if requested is not None:
            unknown = [slug for slug in requested if slug not in slugs]
            if unknown:
                raise ValidationError(
                    f"requiredGates reference unknown gates: {', '.join(unknown)}",
                    errors=[f"requiredGates: unknown gate '{slug}'" for slug in unknown],
                )
            return tuple(requested)
        if not self._settings.required_gates:
            return tuple(slugs)
        configured = [slug for slug in self._settings.required_gates if slug in slugs]
        skipped = [slug for slug in self._settings.required_gates if slug not in slugs]
        if skipped:
            LOGGER.warning(
                "Configured required gates missing from checklist",
                extra={"gates": skipped},
            )
        return tuple(configured)

    # Evaluation ----------------------------------------------------------
    def evaluate_run(self, public_id: str) -> EvaluationResult:
        run = self._load_run(public_id)
        existing = {gate.gate_key: gate for gate in self._storage.list_gate_results_by_run_id(run.public_id)}
        now = self._clock()

        refreshed: list[GateResult] = []
        evaluated: list[GateResult] = []
        for item in run.checklist_snapshot:
            gate = existing.pop(item.slug, None)
            if not item.auto_evaluated:
                if gate is not None:
                    refreshed.append(gate)
                continue
            evaluation = evaluate(item, gate.metrics if gate else {})
            updated = self._storage.upsert_gate_result_by_run_and_gate(
                run.public_id,
                item.slug,
                {
                    "status": evaluation.status,
                    "notes": evaluation.note_text or None,
                    "last_evaluated_at": now,
                },
            )
            refreshed.append(updated)
            evaluated.append(updated)
        if existing:
            LOGGER.warning(
                "Gate results without a snapshot entry were left untouched",
                extra={"run_id": run.public_id, "gates": sorted(existing)},
            )
            refreshed.extend(existing.values())

        readiness = score(refreshed, run.required_gates, run.weights_by_key())
        # A stored ``ready`` is re-evaluated so a regressed required gate blocks the run again.
        new_status = run.status if run.status.externally_owned else readiness.recommended_status
        metadata = {
            **run.metadata,
            "readinessScore": readiness.value,
            "evaluatedAt": now.isoformat(),
        }
        updated_run = self._storage.update_run_by_public_id(
            run.public_id,
            {"status": new_status, "metadata": metadata},
        )
        LOGGER.info(
            "Evaluated release readiness run",
            extra={
                "run_id": updated_run.public_id,
                "recommended_status": readiness.recommended_status.value,
                "status": updated_run.status.value,
                "readiness_score": readiness.value,
                "blocking_gates": len(readiness.blocking_gates),
            },
        )

        for gate in evaluated:
            self._emit(
                self._metrics.record_release_gate_evaluation,
                gate_key=gate.gate_key,
                status=gate.status.value,
                environment=updated_run.environment,
                version_tag=updated_run.version_tag,
            )
        self._emit(
            self._metrics.record_release_run_status,
            status=updated_run.status.value,
            environment=updated_run.environment,
            version_tag=updated_run.version_tag,
            readiness_score=readiness.value,
        )
        return EvaluationResult(
            run=updated_run,
            gates=tuple(refreshed),
            readiness_score=readiness.value,
            recommended_status=readiness.recommended_status,
            required_gates=run.required_gates,
            blocking_gates=readiness.blocking_gates,
        )

    def record_gate_evaluation(
        self,
        public_id: str,
        gate_key: str,
        update: GateEvaluationUpdate | Mapping[str, Any],
    ) -> GateResult:
        """Record CI metrics, notes or a manual status against one gate.

        Metrics are merged into the gate's existing metrics by the storage upsert,
        so concurrent pushes of different keys are all kept. The run status is
        not recomputed; call :meth:`evaluate_run` for that.
        """

        payload = parse_payload(GateEvaluationUpdate, update)
        run = self._load_run(public_id)
        key = str(gate_key).strip()
        if run.snapshot_entry(key) is None:
            raise ValidationError(f"Gate '{key}' is not part of release run '{run.public_id}'")

        patch: dict[str, Any] = {"last_evaluated_at": payload.last_evaluated_at or self._clock()}
        if payload.metrics is not None:
            patch["metrics"] = dict(payload.metrics)
        if payload.status is not None:
            patch["status"] = payload.status
        for name in ("owner_email", "notes", "evidence_url"):
            if name in payload.model_fields_set:
                patch[name] = getattr(payload, name)

        gate = self._storage.upsert_gate_result_by_run_and_gate(run.public_id, key, patch, merge_metrics=True)
        LOGGER.info(
            "Recorded release gate evaluation",
            extra={"run_id": run.public_id, "gate_key": gate.gate_key, "status": gate.status.value},
        )
        self._emit(
            self._metrics.record_release_gate_evaluation,
            gate_key=gate.gate_key,
            status=gate.status.value,
            environment=run.environment,
            version_tag=run.version_tag,
        )
        return gate

    # Queries -------------------------------------------------------------
    def get_run(self, public_id: str) -> RunView:
        run = self._load_run(public_id)
        gates = self._storage.list_gate_results_by_run_id(run.public_id)
        return RunView(
            run=run,
            gates=tuple(GateView(gate=gate, snapshot=run.snapshot_entry(gate.gate_key)) for gate in gates),
        )

    def list_runs(
        self,
        *,
        environment: str | Iterable[str] | None = None,
        status: str | Iterable[str] | None = None,
    ) -> list[ReleaseRun]:
        environments = _as_filter(environment)
        if environments:
            environments = [sanitise_environment(item) for item in environments]
        statuses = _as_filter(status)
        if statuses:
            try:
                statuses = [RunStatus(item).value for item in statuses]
            except ValueError as exc:
                raise ValidationError(f"Unknown release run status filter: {exc}") from exc
        return self._storage.list_runs(environment=environments, status=statuses)

    def list_checklist(self) -> ChecklistView:
        return ChecklistView(
            items=tuple(self._fetch_templates()),
            required_gates=self._settings.required_gates,
            thresholds=dict(self._settings.thresholds),
        )

    def get_dashboard(self, environment: str | None = None) -> ReleaseDashboard:
        runs = self.list_runs(environment=environment)
        breakdown = Counter(run.status.value for run in runs)
        upcoming = tuple(
            {
                "publicId": run.public_id,
                "versionTag": run.version_tag,
                "environment": run.environment,
                "status": run.status.value,
                "changeWindowStart": run.change_window_start.isoformat() if run.change_window_start else None,
                "changeWindowEnd": run.change_window_end.isoformat() if run.change_window_end else None,
                "readinessScore": run.metadata.get("readinessScore"),
            }
            for run in runs
            if run.status in UPCOMING_STATUSES
        )[:5]
        return ReleaseDashboard(
            breakdown=dict(breakdown),
            upcoming=upcoming,
            recent=tuple(runs[:10]),
            required_gates=self._settings.required_gates,
        )

    # Helpers -------------------------------------------------------------
    def _load_run(self, public_id: str) -> ReleaseRun:
        run = self._storage.find_run_by_public_id(public_id)
        if run is None:
            raise NotFoundError(public_id)
        return run

    def _emit(self, recorder: Callable[..., None], **payload: Any) -> None:
        try:
            recorder(**payload)
        except Exception:
            LOGGER.warning(
                "Release metrics emission failed",
                exc_info=True,
                extra={"recorder": getattr(recorder, "__name__", repr(recorder))},
            )


__all__ = [
    "ChecklistView",
    "EvaluationResult",
    "GateView",
    "ReleaseDashboard",
    "ReleaseRunCoordinator",
    "RunView",
    "ScheduleResult",
]
