"""Tests for the release run coordinator."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from ReleaseReadiness.orchestration import (
    ChecklistItemTemplate,
    InMemoryReleaseStorage,
    NotFoundError,
    ReleaseMetrics,
    ReleaseRunCoordinator,
    ReleaseSettings,
    StaticChecklistTemplateSource,
    TemplateCache,
    TemplateSourceError,
    ValidationError,
)
from ReleaseReadiness.orchestration.models import GateStatus, RunStatus


class ExplodingMetrics(ReleaseMetrics):
    def record_release_run_status(self, **_: object) -> None:
        raise RuntimeError("collector unavailable")

    def record_release_gate_evaluation(self, **_: object) -> None:
        raise RuntimeError("collector unavailable")


class BrokenSource:
    def list(self):
        raise OSError("checklist store offline")


def _record_metrics(coordinator: ReleaseRunCoordinator, run_id: str, gate_key: str, metrics: dict) -> None:
    coordinator.record_gate_evaluation(run_id, gate_key, {"metrics": metrics})


def _gate_by_key(gates, key):
    return next(gate for gate in gates if gate.gate_key == key)


def test_schedule_creates_run_and_pending_gates(coordinator, schedule_payload) -> None:
    result = coordinator.schedule_release_run(schedule_payload)

    run = result.run
    assert run.status is RunStatus.SCHEDULED
    assert run.version_tag == "v2.4.0"
    assert run.initiated_by_email == "release.manager@example.com"
    assert run.required_gates == ("quality-verification",)
    assert run.metadata["readinessScore"] == 0
    assert run.metadata["changeTicket"] == "CHG-1042"
    assert [gate.gate_key for gate in result.gates] == ["quality-verification"]
    gate = result.gates[0]
    assert gate.status is GateStatus.PENDING
    assert gate.run_id == run.public_id
    assert gate.owner_email == "release.manager@example.com"


def test_scenario_a_passing_metrics_make_run_ready(coordinator, schedule_payload, metrics) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.95, "testFailureRate": 0.01})

    result = coordinator.evaluate_run(run.public_id)

    assert result.gates[0].status is GateStatus.PASS
    assert result.run.status is RunStatus.READY
    assert result.readiness_score == 100.0
    assert result.run.metadata["readinessScore"] == 100.0
    assert result.blocking_gates == ()
    assert [event["status"] for event in metrics.run_events()] == ["scheduled", "ready"]


def test_scenario_b_failing_metric_blocks_run(coordinator, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.80, "testFailureRate": 0.01})

    result = coordinator.evaluate_run(run.public_id)

    gate = result.gates[0]
    assert gate.status is GateStatus.FAIL
    assert "coverage 0.8 is below the required minimum 0.9." in gate.notes
    assert result.run.status is RunStatus.BLOCKED
    assert result.readiness_score == 0.0
    assert result.blocking_gates[0].gate_key == "quality-verification"


def test_scenario_c_weighted_score(storage, metrics, clock, quality_gate, change_gate, schedule_payload) -> None:
    coordinator = ReleaseRunCoordinator(
        StaticChecklistTemplateSource([quality_gate, change_gate]), storage, metrics, clock=clock
    )
    run = coordinator.schedule_release_run(schedule_payload).run
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.99, "testFailureRate": 0.0})
    _record_metrics(coordinator, run.public_id, "change-review", {"changeReviewCompleted": False})

    result = coordinator.evaluate_run(run.public_id)

    assert _gate_by_key(result.gates, "quality-verification").status is GateStatus.PASS
    assert _gate_by_key(result.gates, "change-review").status is GateStatus.FAIL
    assert result.run.status is RunStatus.BLOCKED
    assert result.readiness_score_display == 67


def test_scenario_d_missing_metric_keeps_run_in_progress(coordinator, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    _record_metrics(coordinator, run.public_id, "quality-verification", {"testFailureRate": 0.01})

    result = coordinator.evaluate_run(run.public_id)

    assert result.gates[0].status is GateStatus.PENDING
    assert result.gates[0].notes == "Awaiting coverage metric for minCoverage."
    assert result.run.status is RunStatus.IN_PROGRESS


def test_evaluation_is_idempotent(coordinator, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.5})

    first = coordinator.evaluate_run(run.public_id)
    second = coordinator.evaluate_run(run.public_id)

    assert first.run.status is second.run.status is RunStatus.BLOCKED
    assert first.readiness_score == second.readiness_score
    assert first.gates[0].notes == second.gates[0].notes
    assert len(coordinator.get_run(run.public_id).gates) == 1


def test_manual_gates_are_not_reevaluated(storage, metrics, clock, quality_gate, signoff_gate, schedule_payload) -> None:
    coordinator = ReleaseRunCoordinator(
        StaticChecklistTemplateSource([quality_gate, signoff_gate]), storage, metrics, clock=clock
    )
    scheduled = coordinator.schedule_release_run(schedule_payload)
    run = scheduled.run
    assert _gate_by_key(scheduled.gates, "product-signoff").owner_email == "pm@example.com"

    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.95, "testFailureRate": 0.0})
    pending = coordinator.evaluate_run(run.public_id)
    assert _gate_by_key(pending.gates, "product-signoff").status is GateStatus.PENDING
    assert pending.run.status is RunStatus.IN_PROGRESS
    assert pending.readiness_score_display == 67

    coordinator.record_gate_evaluation(run.public_id, "product-signoff", {"status": "pass", "notes": "Approved"})
    ready = coordinator.evaluate_run(run.public_id)
    signoff = _gate_by_key(ready.gates, "product-signoff")
    assert signoff.status is GateStatus.PASS
    assert signoff.notes == "Approved"
    assert ready.run.status is RunStatus.READY


def test_explicit_required_gates_limit_scoring(storage, metrics, clock, quality_gate, signoff_gate, schedule_payload) -> None:
    coordinator = ReleaseRunCoordinator(
        StaticChecklistTemplateSource([quality_gate, signoff_gate]), storage, metrics, clock=clock
    )
    payload = {**schedule_payload, "requiredGates": ["quality-verification", "quality-verification"]}
    run = coordinator.schedule_release_run(payload).run
    assert run.required_gates == ("quality-verification",)

    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.95, "testFailureRate": 0.0})
    result = coordinator.evaluate_run(run.public_id)

    assert result.run.status is RunStatus.READY
    assert result.readiness_score == 100.0


def test_unknown_required_gate_is_rejected(coordinator, schedule_payload) -> None:
    with pytest.raises(ValidationError) as excinfo:
        coordinator.schedule_release_run({**schedule_payload, "requiredGates": ["does-not-exist"]})

    assert "does-not-exist" in str(excinfo.value)


def test_settings_required_gates_are_filtered_to_checklist(storage, metrics, clock, template_source, schedule_payload) -> None:
    settings = ReleaseSettings(required_gates=("quality-verification", "legacy-gate"), thresholds={"minCoverage": 0.9})
    coordinator = ReleaseRunCoordinator(template_source, storage, metrics, settings=settings, clock=clock)

    run = coordinator.schedule_release_run(schedule_payload).run

    assert run.required_gates == ("quality-verification",)
    assert run.metadata["thresholds"] == {"minCoverage": 0.9}


def test_schedule_validation_errors(coordinator, schedule_payload) -> None:
    payload = dict(schedule_payload)
    payload.pop("versionTag")
    payload["initiatedByEmail"] = "not-an-email"

    with pytest.raises(ValidationError) as excinfo:
        coordinator.schedule_release_run(payload)

    errors = excinfo.value.errors
    assert any(error.startswith("versionTag") for error in errors)
    assert any(error.startswith("initiatedByEmail") for error in errors)
    assert excinfo.value.client_error is True


def test_schedule_rejects_inverted_change_window(coordinator, schedule_payload) -> None:
    payload = {
        **schedule_payload,
        "changeWindowStart": "2025-10-03T10:00:00Z",
        "changeWindowEnd": "2025-10-03T09:00:00Z",
    }

    with pytest.raises(ValidationError):
        coordinator.schedule_release_run(payload)


def test_initial_gate_seeds(coordinator, schedule_payload) -> None:
    payload = {
        **schedule_payload,
        "initialGates": {
            "quality-verification": {
                "ownerEmail": "QA@example.com",
                "metrics": {"coverage": 0.97, "testFailureRate": 0.0},
            }
        },
    }
    scheduled = coordinator.schedule_release_run(payload)

    assert scheduled.gates[0].owner_email == "qa@example.com"
    result = coordinator.evaluate_run(scheduled.run.public_id)
    assert result.run.status is RunStatus.READY

    with pytest.raises(ValidationError):
        coordinator.schedule_release_run({**schedule_payload, "initialGates": {"unknown": {}}})


def test_snapshot_is_immune_to_template_changes(template_source, coordinator, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    template_source.replace(
        [
            ChecklistItemTemplate(
                slug="quality-verification",
                category="quality",
                title="Quality verification",
                auto_evaluated=True,
                weight=2,
                success_criteria={"minCoverage": 0.99},
            )
        ]
    )
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.95, "testFailureRate": 0.01})

    result = coordinator.evaluate_run(run.public_id)

    assert result.run.status is RunStatus.READY
    assert result.run.checklist_snapshot[0].success_criteria["minCoverage"] == 0.9


def test_externally_owned_status_is_preserved(coordinator, storage, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    storage.update_run_by_public_id(run.public_id, {"status": RunStatus.COMPLETED})
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.1})

    result = coordinator.evaluate_run(run.public_id)

    assert result.run.status is RunStatus.COMPLETED
    assert result.recommended_status is RunStatus.BLOCKED
    assert result.run.metadata["readinessScore"] == 0.0


def test_unknown_run_raises_not_found(coordinator) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        coordinator.evaluate_run("missing-run")

    assert excinfo.value.public_id == "missing-run"
    with pytest.raises(NotFoundError):
        coordinator.get_run("missing-run")


def test_record_gate_evaluation_merges_metrics(coordinator, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.95})
    gate = coordinator.record_gate_evaluation(
        run.public_id,
        "quality-verification",
        {"metrics": {"testFailureRate": 0.01}, "evidenceUrl": "https://ci.example.com/builds/42"},
    )

    assert gate.metrics == {"coverage": 0.95, "testFailureRate": 0.01}
    assert gate.evidence_url == "https://ci.example.com/builds/42"

    with pytest.raises(ValidationError):
        coordinator.record_gate_evaluation(run.public_id, "unknown-gate", {"metrics": {}})
    with pytest.raises(ValidationError):
        coordinator.record_gate_evaluation(run.public_id, "quality-verification", {"evidenceUrl": "ftp://x"})


def test_metrics_failures_do_not_fail_operations(storage, template_source, clock, schedule_payload) -> None:
    coordinator = ReleaseRunCoordinator(
        template_source, storage, ExplodingMetrics(enable_otel=False), clock=clock
    )
    run = coordinator.schedule_release_run(schedule_payload).run
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.95, "testFailureRate": 0.0})

    result = coordinator.evaluate_run(run.public_id)

    assert result.run.status is RunStatus.READY


def test_template_source_failure_is_wrapped(storage, metrics, schedule_payload) -> None:
    coordinator = ReleaseRunCoordinator(BrokenSource(), storage, metrics)

    with pytest.raises(TemplateSourceError):
        coordinator.schedule_release_run(schedule_payload)
    assert storage.runs == {}


def test_empty_checklist_is_vacuously_ready(storage, metrics, clock, schedule_payload) -> None:
    coordinator = ReleaseRunCoordinator(StaticChecklistTemplateSource([]), storage, metrics, clock=clock)
    run = coordinator.schedule_release_run(schedule_payload).run

    result = coordinator.evaluate_run(run.public_id)

    assert result.run.status is RunStatus.READY
    assert result.readiness_score == 100.0


def test_get_run_joins_snapshot(coordinator, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run

    view = coordinator.get_run(run.public_id)

    assert view.run.public_id == run.public_id
    assert view.gates[0].snapshot.slug == "quality-verification"


def test_list_runs_and_dashboard(coordinator, schedule_payload) -> None:
    prod = coordinator.schedule_release_run(schedule_payload).run
    staging = coordinator.schedule_release_run({**schedule_payload, "environment": "Staging", "versionTag": "v2.5.0"}).run
    _record_metrics(coordinator, prod.public_id, "quality-verification", {"coverage": 0.2})
    coordinator.evaluate_run(prod.public_id)

    assert [run.public_id for run in coordinator.list_runs(environment="staging")] == [staging.public_id]
    assert [run.public_id for run in coordinator.list_runs(status="blocked")] == [prod.public_id]
    with pytest.raises(ValidationError):
        coordinator.list_runs(status="exploded")

    dashboard = coordinator.get_dashboard()
    assert dashboard.breakdown == {"blocked": 1, "scheduled": 1}
    assert [item["publicId"] for item in dashboard.upcoming] == [staging.public_id]
    assert len(dashboard.recent) == 2

    production_only = coordinator.get_dashboard(environment="production")
    assert production_only.breakdown == {"blocked": 1}


def test_list_checklist_reports_settings(storage, metrics, template_source) -> None:
    settings = ReleaseSettings(required_gates=("quality-verification",), thresholds={"maxFailureRate": 0.02})
    coordinator = ReleaseRunCoordinator(template_source, storage, metrics, settings=settings)

    view = coordinator.list_checklist()

    assert [item.slug for item in view.items] == ["quality-verification"]
    assert view.required_gates == ("quality-verification",)
    assert view.thresholds == {"maxFailureRate": 0.02}


def test_orphan_gate_results_are_left_untouched(coordinator, storage, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    storage.upsert_gate_result_by_run_and_gate(run.public_id, "retired-gate", {"status": GateStatus.FAIL})
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.95, "testFailureRate": 0.0})

    result = coordinator.evaluate_run(run.public_id)

    assert result.run.status is RunStatus.READY
    assert _gate_by_key(result.gates, "retired-gate").status is GateStatus.FAIL


def test_in_memory_storage_is_the_default_collaborator(template_source, schedule_payload) -> None:
    coordinator = ReleaseRunCoordinator(template_source, InMemoryReleaseStorage())

    result = coordinator.schedule_release_run(schedule_payload)

    assert result.run.created_at is not None


def test_ready_run_is_blocked_again_when_metrics_regress(coordinator, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.95, "testFailureRate": 0.01})
    assert coordinator.evaluate_run(run.public_id).run.status is RunStatus.READY

    _record_metrics(coordinator, run.public_id, "quality-verification", {"coverage": 0.5})
    result = coordinator.evaluate_run(run.public_id)

    assert result.run.status is RunStatus.BLOCKED
    assert result.readiness_score == 0.0


def test_concurrent_metric_pushes_are_all_kept(coordinator, schedule_payload) -> None:
    run = coordinator.schedule_release_run(schedule_payload).run
    pushes = [{f"check{index}": index} for index in range(20)]
    pushes.append({"coverage": 0.95})
    pushes.append({"testFailureRate": 0.01})

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda push: _record_metrics(coordinator, run.public_id, "quality-verification", push), pushes))

    gate = coordinator.get_run(run.public_id).gates[0].gate
    assert len(gate.metrics) == 22
    assert coordinator.evaluate_run(run.public_id).run.status is RunStatus.READY


def test_from_settings_caches_templates(storage, metrics, quality_gate, schedule_payload) -> None:
    class CountingSource:
        calls = 0

        def list(self):
            self.calls += 1
            return [quality_gate]

    source = CountingSource()
    settings = ReleaseSettings(template_cache_ttl_seconds=300)
    coordinator = ReleaseRunCoordinator.from_settings(source, storage, settings, metrics)

    coordinator.schedule_release_run(schedule_payload)
    coordinator.schedule_release_run(schedule_payload)
    coordinator.list_checklist()

    assert isinstance(coordinator.template_source, TemplateCache)
    assert coordinator.template_source.ttl_seconds == 300
    assert source.calls == 1


def test_from_settings_keeps_an_existing_cache(storage, metrics, template_source) -> None:
    cache = TemplateCache(template_source, ttl_seconds=0)
    coordinator = ReleaseRunCoordinator.from_settings(cache, storage, ReleaseSettings(template_cache_ttl_seconds=60), metrics)

    assert coordinator.template_source is cache


def test_default_metrics_follow_environment_flag(monkeypatch, storage, template_source) -> None:
    monkeypatch.setenv("RELEASE_ENABLE_OTEL", "1")
    assert ReleaseRunCoordinator(template_source, storage).metrics.enable_otel is True

    configured = ReleaseRunCoordinator(template_source, storage, settings=ReleaseSettings(enable_otel=False))
    assert configured.metrics.enable_otel is False

    monkeypatch.setenv("RELEASE_ENABLE_OTEL", "0")
    assert ReleaseRunCoordinator(template_source, storage).metrics.enable_otel is False
