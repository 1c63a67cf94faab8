"""Storage collaborator interface and an in-memory implementation."""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .exceptions import StorageError
from .models import GateResult, GateStatus, ReleaseRun, RunStatus

_RUN_FIELDS = {f.name for f in fields(ReleaseRun)} - {"public_id", "created_at"}
_GATE_FIELDS = {f.name for f in fields(GateResult)} - {"public_id", "run_id", "gate_key", "created_at"}


class ReleaseStorage:
    """Storage interface expected by the release run coordinator."""

    def create_run(self, run: ReleaseRun) -> ReleaseRun:  # pragma: no cover - placeholder
        raise NotImplementedError

    def find_run_by_public_id(self, public_id: str) -> Optional[ReleaseRun]:  # pragma: no cover - placeholder
        raise NotImplementedError

    def update_run_by_public_id(
        self, public_id: str, patch: Mapping[str, Any]
    ) -> ReleaseRun:  # pragma: no cover - placeholder
        raise NotImplementedError

    def list_runs(
        self,
        *,
        environment: Optional[Iterable[str]] = None,
        status: Optional[Iterable[str]] = None,
    ) -> List[ReleaseRun]:  # pragma: no cover - placeholder
        raise NotImplementedError

    def create_gate_result(self, gate: GateResult) -> GateResult:  # pragma: no cover - placeholder
        raise NotImplementedError

    def list_gate_results_by_run_id(self, run_id: str) -> List[GateResult]:  # pragma: no cover - placeholder
        raise NotImplementedError

    def upsert_gate_result_by_run_and_gate(
        self,
        run_id: str,
        gate_key: str,
        patch: Mapping[str, Any],
        *,
        merge_metrics: bool = False,
    ) -> GateResult:  # pragma: no cover - placeholder
        """Create or update the gate result for ``(run_id, gate_key)`` atomically.

        With ``merge_metrics`` the patch's ``metrics`` are merged into the stored
        metrics inside the same atomic step, so concurrent writers of different
        metric keys do not drop each other's values.
        """

        raise NotImplementedError


def _copy_run(run: ReleaseRun) -> ReleaseRun:
    return replace(run, metadata=copy.deepcopy(run.metadata))


def _copy_gate(gate: GateResult) -> GateResult:
    return replace(gate, metrics=copy.deepcopy(gate.metrics))


def _apply_patch(record: Any, patch: Mapping[str, Any], allowed: set[str]) -> None:
    unknown = set(patch) - allowed
    if unknown:
        raise StorageError(f"Unsupported fields in update: {', '.join(sorted(unknown))}")
    for key, value in patch.items():
        if key == "status" and isinstance(record, ReleaseRun):
            value = RunStatus(value)
        elif key == "status":
            value = GateStatus(value)
        elif isinstance(value, (dict, list)):
            value = copy.deepcopy(value)
        setattr(record, key, value)


class InMemoryReleaseStorage(ReleaseStorage):
    """Simple in-memory storage primarily for unit tests.

    A re-entrant lock makes each operation atomic, and the ``(run_id,
    gate_key)`` pair is unique. Returned records are copies.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self.runs: Dict[str, ReleaseRun] = {}
        self.gates: Dict[Tuple[str, str], GateResult] = {}

    # Run operations ------------------------------------------------------
    def create_run(self, run: ReleaseRun) -> ReleaseRun:
        with self._lock:
            if run.public_id in self.runs:
                raise StorageError(f"Release run '{run.public_id}' already exists")
            now = self._clock()
            stored = replace(_copy_run(run), created_at=run.created_at or now, updated_at=now)
            self.runs[run.public_id] = stored
            return _copy_run(stored)

    def find_run_by_public_id(self, public_id: str) -> Optional[ReleaseRun]:
        with self._lock:
            run = self.runs.get(public_id)
            return _copy_run(run) if run else None

    def update_run_by_public_id(self, public_id: str, patch: Mapping[str, Any]) -> ReleaseRun:
        with self._lock:
            run = self.runs.get(public_id)
            if run is None:
                raise StorageError(f"Release run '{public_id}' does not exist")
            updated = _copy_run(run)
            _apply_patch(updated, patch, _RUN_FIELDS)
            updated.updated_at = self._clock()
            self.runs[public_id] = updated
            return _copy_run(updated)

    def list_runs(
        self,
        *,
        environment: Optional[Iterable[str]] = None,
        status: Optional[Iterable[str]] = None,
    ) -> List[ReleaseRun]:
        environments = set(environment) if environment else None
        statuses = {RunStatus(value) for value in status} if status else None
        with self._lock:
            runs = [
                _copy_run(run)
                for run in self.runs.values()
                if (environments is None or run.environment in environments)
                and (statuses is None or run.status in statuses)
            ]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        runs.sort(key=lambda run: run.scheduled_at or run.created_at or epoch, reverse=True)
        return runs

    # Gate operations -----------------------------------------------------
    def create_gate_result(self, gate: GateResult) -> GateResult:
        with self._lock:
            key = (gate.run_id, gate.gate_key)
            if key in self.gates:
                raise StorageError(f"Gate '{gate.gate_key}' already exists for run '{gate.run_id}'")
            if gate.run_id not in self.runs:
                raise StorageError(f"Release run '{gate.run_id}' does not exist")
            now = self._clock()
            stored = replace(_copy_gate(gate), created_at=gate.created_at or now, updated_at=now)
            self.gates[key] = stored
            return _copy_gate(stored)

    def list_gate_results_by_run_id(self, run_id: str) -> List[GateResult]:
        with self._lock:
            return [_copy_gate(gate) for (owner, _), gate in self.gates.items() if owner == run_id]

    def upsert_gate_result_by_run_and_gate(
        self,
        run_id: str,
        gate_key: str,
        patch: Mapping[str, Any],
        *,
        merge_metrics: bool = False,
    ) -> GateResult:
        with self._lock:
            key = (run_id, gate_key)
            now = self._clock()
            existing = self.gates.get(key)
            if existing is None:
                if run_id not in self.runs:
                    raise StorageError(f"Release run '{run_id}' does not exist")
                existing = GateResult(
                    public_id=str(uuid.uuid4()),
                    run_id=run_id,
                    gate_key=gate_key,
                    created_at=now,
                )
            updated = _copy_gate(existing)
            if merge_metrics and patch.get("metrics") is not None:
                patch = {**patch, "metrics": {**updated.metrics, **patch["metrics"]}}
            _apply_patch(updated, patch, _GATE_FIELDS)
            updated.updated_at = now
            self.gates[key] = updated
            return _copy_gate(updated)


__all__ = ["InMemoryReleaseStorage", "ReleaseStorage"]
