"""Checklist template sources and the template cache."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, Sequence

import yaml

from .criteria import UnrecognizedCriterion
from .exceptions import TemplateSourceError
from .models import ChecklistItemTemplate

LOGGER = logging.getLogger("ReleaseReadiness.orchestration.templates")


class ChecklistTemplateSource(Protocol):
    """Supplies the current ordered list of checklist item templates."""

    def list(self) -> Sequence[ChecklistItemTemplate]:  # pragma: no cover - protocol
        ...


def build_templates(entries: Iterable[Mapping[str, Any]]) -> tuple[ChecklistItemTemplate, ...]:
    """Parse raw checklist entries, rejecting malformed items and duplicate slugs."""

    templates: list[ChecklistItemTemplate] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise TemplateSourceError(f"Checklist entry {index} must be a mapping")
        try:
            template = ChecklistItemTemplate.from_dict(entry)
        except ValueError as exc:
            raise TemplateSourceError(f"Checklist entry {index} is invalid: {exc}") from exc
        if template.slug in seen:
            raise TemplateSourceError(f"Duplicate checklist slug '{template.slug}'")
        seen.add(template.slug)
        templates.append(template)
    return tuple(templates)


class StaticChecklistTemplateSource:
    """In-memory template source, mainly for tests and embedding."""

    def __init__(self, templates: Iterable[ChecklistItemTemplate] = ()) -> None:
        self._templates = tuple(templates)

    def list(self) -> Sequence[ChecklistItemTemplate]:
        return self._templates

    def replace(self, templates: Iterable[ChecklistItemTemplate]) -> None:
        self._templates = tuple(templates)


def _load_structure(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix in {".yml", ".yaml"}:
        return yaml.safe_load(text)
    return json.loads(text)


@dataclass
class FileChecklistTemplateSource:
    """Reads checklist templates from a YAML or JSON file on every call.

    The file holds either a list of items or a mapping with a ``checklist``
    (or ``items``) list.
    """

    path: Path

    def list(self) -> Sequence[ChecklistItemTemplate]:
        try:
            payload = _load_structure(self.path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise TemplateSourceError(f"Unable to read checklist from {self.path}: {exc}") from exc
        if isinstance(payload, Mapping):
            payload = payload.get("checklist", payload.get("items"))
        if not isinstance(payload, list):
            raise TemplateSourceError(f"Checklist file {self.path} must contain a list of items")
        return build_templates(payload)


@dataclass
class TemplateCache:
    """Caches a template source for ``ttl_seconds``.

    A TTL of zero disables caching. ``invalidate()`` forces the next call to
    hit the source. Source errors are never cached.
    """

    source: ChecklistTemplateSource
    ttl_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _cached: Optional[tuple[ChecklistItemTemplate, ...]] = field(default=None, init=False, repr=False)
    _loaded_at: float = field(default=0.0, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def list(self) -> Sequence[ChecklistItemTemplate]:
        with self._lock:
            now = self.clock()
            if self._cached is not None and self.ttl_seconds > 0 and now - self._loaded_at < self.ttl_seconds:
                return self._cached
            templates = tuple(self.source.list())
            if self.ttl_seconds > 0:
                self._cached = templates
                self._loaded_at = now
            LOGGER.debug("Loaded checklist templates", extra={"count": len(templates)})
            return templates

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._loaded_at = 0.0


def checklist_warnings(
    templates: Sequence[ChecklistItemTemplate],
    required_gates: Sequence[str] = (),
) -> list[str]:
    """Return configuration problems worth flagging before a checklist is used."""

    warnings: list[str] = []
    slugs = {item.slug for item in templates}
    for item in templates:
        rules = [rule for rule in item.criteria if not isinstance(rule, UnrecognizedCriterion)]
        if item.auto_evaluated and not rules:
            warnings.append(
                f"{item.slug}: auto-evaluated gate has no success criteria and will always pass"
            )
        if not item.auto_evaluated and item.success_criteria:
            warnings.append(
                f"{item.slug}: manual gate declares success criteria that are never evaluated"
            )
        for rule in item.criteria:
            if isinstance(rule, UnrecognizedCriterion):
                warnings.append(f"{item.slug}: {rule.warning()}")
    for slug in required_gates:
        if slug not in slugs:
            warnings.append(f"{slug}: required gate is not defined in the checklist")
    if not templates:
        warnings.append("checklist is empty; every run will be vacuously ready")
    return warnings


__all__ = [
    "ChecklistTemplateSource",
    "checklist_warnings",
    "FileChecklistTemplateSource",
    "StaticChecklistTemplateSource",
    "TemplateCache",
    "build_templates",
]
