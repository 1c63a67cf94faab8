"""Command line tooling for release readiness checklists."""

from .app import app, main
from .logging import configure_logging

__all__ = ["app", "configure_logging", "main"]
