from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import pytest  # noqa: E402

from ReleaseReadiness.orchestration import (  # noqa: E402
    ChecklistItemTemplate,
    InMemoryReleaseStorage,
    ReleaseMetrics,
    ReleaseRunCoordinator,
    StaticChecklistTemplateSource,
)

# Disable OTEL export during tests to avoid noisy connection errors when a collector
# is not running. Individual tests can override as needed.
os.environ.setdefault("OTEL_METRICS_EXPORTER", "none")
os.environ.setdefault("OTEL_SDK_DISABLED", "true")
os.environ.setdefault("RELEASE_ENABLE_OTEL", "0")


class FixedClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 10, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value


@pytest.fixture(autouse=True)
def _reset_release_logger():
    yield
    logger = logging.getLogger("ReleaseReadiness")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def quality_gate() -> ChecklistItemTemplate:
    return ChecklistItemTemplate(
        slug="quality-verification",
        category="quality",
        title="Quality verification",
        auto_evaluated=True,
        weight=2,
        success_criteria={"minCoverage": 0.9, "maxFailureRate": 0.02},
    )


@pytest.fixture
def change_gate() -> ChecklistItemTemplate:
    return ChecklistItemTemplate(
        slug="change-review",
        category="change",
        title="Change review",
        auto_evaluated=True,
        weight=1,
        success_criteria={"changeReviewRequired": True, "freezeWindowCheck": True},
    )


@pytest.fixture
def signoff_gate() -> ChecklistItemTemplate:
    return ChecklistItemTemplate(
        slug="product-signoff",
        category="approval",
        title="Product sign-off",
        auto_evaluated=False,
        weight=1,
        default_owner="pm@example.com",
    )


@pytest.fixture
def template_source(quality_gate: ChecklistItemTemplate) -> StaticChecklistTemplateSource:
    return StaticChecklistTemplateSource([quality_gate])


@pytest.fixture
def storage(clock: FixedClock) -> InMemoryReleaseStorage:
    return InMemoryReleaseStorage(clock=clock)


@pytest.fixture
def metrics() -> ReleaseMetrics:
    return ReleaseMetrics(enable_otel=False)


@pytest.fixture
def coordinator(
    template_source: StaticChecklistTemplateSource,
    storage: InMemoryReleaseStorage,
    metrics: ReleaseMetrics,
    clock: FixedClock,
) -> ReleaseRunCoordinator:
    return ReleaseRunCoordinator(template_source, storage, metrics, clock=clock)


@pytest.fixture
def schedule_payload() -> dict[str, object]:
    return {
        "versionTag": "v2.4.0",
        "environment": "production",
        "initiatedByEmail": "Release.Manager@Example.com",
        "changeTicket": "CHG-1042",
    }
