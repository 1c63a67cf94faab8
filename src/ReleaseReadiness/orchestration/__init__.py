"""Release readiness orchestration engine."""

from .config import ReleaseSettings, load_release_settings
from .coordinator import (
    ChecklistView,
    EvaluationResult,
    GateView,
    ReleaseDashboard,
    ReleaseRunCoordinator,
    RunView,
    ScheduleResult,
)
from .criteria import parse_success_criteria
from .evaluator import GateEvaluation, evaluate, evaluate_criteria
from .exceptions import (
    EvaluationSchemaWarning,
    NotFoundError,
    ReleaseOrchestrationError,
    StorageError,
    TemplateSourceError,
    ValidationError,
)
from .models import ChecklistItemTemplate, GateResult, GateStatus, ReleaseRun, RunStatus
from .schemas import GateEvaluationUpdate, ScheduleReleaseRunRequest
from .scoring import ReadinessScore, recommend_status, score
from .storage import InMemoryReleaseStorage, ReleaseStorage
from .telemetry import ReleaseMetrics
from .templates import (
    ChecklistTemplateSource,
    FileChecklistTemplateSource,
    StaticChecklistTemplateSource,
    TemplateCache,
    checklist_warnings,
)

__all__ = [
    "ChecklistItemTemplate",
    "ChecklistTemplateSource",
    "ChecklistView",
    "EvaluationResult",
    "EvaluationSchemaWarning",
    "FileChecklistTemplateSource",
    "GateEvaluation",
    "GateEvaluationUpdate",
    "GateResult",
    "GateStatus",
    "GateView",
    "InMemoryReleaseStorage",
    "NotFoundError",
    "ReadinessScore",
    "ReleaseDashboard",
    "ReleaseMetrics",
    "ReleaseOrchestrationError",
    "ReleaseRun",
    "ReleaseRunCoordinator",
    "ReleaseSettings",
    "ReleaseStorage",
    "RunStatus",
    "RunView",
    "ScheduleReleaseRunRequest",
    "ScheduleResult",
    "StaticChecklistTemplateSource",
    "StorageError",
    "TemplateCache",
    "TemplateSourceError",
    "ValidationError",
    "checklist_warnings",
    "evaluate",
    "evaluate_criteria",
    "load_release_settings",
    "parse_success_criteria",
    "recommend_status",
    "score",
]
