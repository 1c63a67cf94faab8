"""Pydantic schemas for release orchestration inputs."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .exceptions import ValidationError
from .models import GateStatus

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

ModelT = TypeVar("ModelT", bound=BaseModel)


def normalise_version_tag(value: str) -> str:
    """Lower-case a version tag and reduce it to ``[a-z0-9._-]`` characters."""

    tag = re.sub(r"\s+", "-", str(value or "").strip())
    tag = re.sub(r"[^a-z0-9._-]", "-", tag, flags=re.IGNORECASE)
    tag = re.sub(r"-+", "-", tag).strip("-")
    return tag.lower()


def sanitise_environment(value: str) -> str:
    return re.sub(r"[^a-z0-9-]", "", str(value or "").strip(), flags=re.IGNORECASE).lower()


def _normalise_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    email = value.strip().lower()
    if not _EMAIL_PATTERN.match(email):
        raise ValueError("must be a valid email address")
    return email


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps are taken as UTC so they compare with the engine clock.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )


class GateSeed(_Schema):
    """Initial values for a gate created at schedule time."""

    status: Optional[GateStatus] = None
    owner_email: Optional[str] = None
    metrics: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = Field(default=None, max_length=4000)

    @field_validator("owner_email")
    @classmethod
    def normalise_owner(cls, value: Optional[str]) -> Optional[str]:
        return _normalise_email(value)


class ScheduleReleaseRunRequest(_Schema):
    """Input for scheduling a release run."""

    version_tag: str = Field(max_length=120)
    environment: str = Field(max_length=64)
    initiated_by_email: str
    change_ticket: str = Field(max_length=160)
    required_gates: Optional[List[str]] = None
    initiated_by_name: Optional[str] = Field(default=None, max_length=160)
    scheduled_at: Optional[datetime] = None
    change_window_start: Optional[datetime] = None
    change_window_end: Optional[datetime] = None
    summary_notes: Optional[str] = Field(default=None, max_length=4000)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    initial_gates: Dict[str, GateSeed] = Field(default_factory=dict)

    @field_validator("version_tag")
    @classmethod
    def check_version_tag(cls, value: str) -> str:
        tag = normalise_version_tag(value)
        if not tag:
            raise ValueError("is required")
        return tag

    @field_validator("environment")
    @classmethod
    def check_environment(cls, value: str) -> str:
        environment = sanitise_environment(value)
        if not environment:
            raise ValueError("is required")
        return environment

    @field_validator("initiated_by_email")
    @classmethod
    def normalise_initiator(cls, value: str) -> str:
        return _normalise_email(value)

    @field_validator("change_ticket")
    @classmethod
    def require_ticket(cls, value: str) -> str:
        if not value:
            raise ValueError("is required")
        return value

    @field_validator("required_gates")
    @classmethod
    def dedupe_required_gates(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return list(dict.fromkeys(item.strip() for item in value if item and item.strip()))

    @field_validator("scheduled_at", "change_window_start", "change_window_end")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @model_validator(mode="after")
    def check_change_window(self) -> "ScheduleReleaseRunRequest":
        if self.change_window_end and not self.change_window_start:
            raise ValueError("changeWindowEnd requires changeWindowStart")
        if self.change_window_start and self.change_window_end:
            if self.change_window_end <= self.change_window_start:
                raise ValueError("changeWindowEnd must be after changeWindowStart")
        return self


class GateEvaluationUpdate(_Schema):
    """Metrics, notes or a status recorded against a single gate."""

    status: Optional[GateStatus] = None
    owner_email: Optional[str] = None
    metrics: Optional[Dict[str, Any]] = None
    notes: Optional[str] = Field(default=None, max_length=4000)
    evidence_url: Optional[str] = Field(default=None, max_length=2000)
    last_evaluated_at: Optional[datetime] = None

    @field_validator("owner_email")
    @classmethod
    def normalise_owner(cls, value: Optional[str]) -> Optional[str]:
        return _normalise_email(value)

    @field_validator("evidence_url")
    @classmethod
    def check_evidence_url(cls, value: Optional[str]) -> Optional[str]:
        if value and not re.match(r"^https?://", value):
            raise ValueError("must be an absolute http(s) URL")
        return value or None

    @field_validator("last_evaluated_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


def _format_error(error: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
    message = str(error.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message


def parse_payload(model: Type[ModelT], payload: Any) -> ModelT:
    """Validate ``payload`` against ``model``, raising the engine's ``ValidationError``."""

    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [_format_error(error) for error in exc.errors()]
        raise ValidationError(
            f"Invalid {model.__name__}: {'; '.join(errors)}",
            errors=errors,
        ) from exc


__all__ = [
    "GateEvaluationUpdate",
    "GateSeed",
    "ScheduleReleaseRunRequest",
    "normalise_version_tag",
    "parse_payload",
    "sanitise_environment",
]
