"""CLI application entrypoint built with Typer."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ReleaseReadiness.orchestration.config import ReleaseSettings, load_release_settings
from ReleaseReadiness.orchestration.exceptions import TemplateSourceError
from ReleaseReadiness.orchestration.templates import FileChecklistTemplateSource, checklist_warnings

from .logging import configure_logging

app = typer.Typer(help="Release readiness checklist tooling")
checklist_app = typer.Typer(help="Inspect and validate release checklists")
settings_app = typer.Typer(help="Inspect release orchestration settings")

app.add_typer(checklist_app, name="checklist")
app.add_typer(settings_app, name="settings")


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Release settings file (YAML, JSON or TOML)."),
    log_format: str = typer.Option("text", "--log-format", help="Log format (text or json)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Load settings and configure logging."""

    logger = configure_logging(log_format, verbose)
    try:
        settings = load_release_settings(config)
    except (OSError, ValueError) as exc:
        typer.echo(f"[error] unable to load settings: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    ctx.obj = {"settings": settings, "logger": logger}


@checklist_app.command("validate")
def checklist_validate(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Checklist file (YAML or JSON)."),
    strict: bool = typer.Option(False, "--strict", help="Exit non-zero when warnings are found."),
) -> None:
    """Parse a checklist and flag gates whose configuration is suspicious."""

    settings: ReleaseSettings = ctx.obj["settings"]
    try:
        templates = FileChecklistTemplateSource(path).list()
    except TemplateSourceError as exc:
        typer.echo(f"[error] {exc}", err=True)
        raise typer.Exit(code=2) from exc

    console = Console()
    table = Table(title=f"Release checklist: {path.name}")
    table.add_column("Slug")
    table.add_column("Category")
    table.add_column("Auto")
    table.add_column("Weight", justify="right")
    table.add_column("Rules")
    for item in templates:
        rules = "; ".join(rule.describe() for rule in item.criteria) or "-"
        table.add_row(item.slug, item.category, "yes" if item.auto_evaluated else "no", f"{item.weight:g}", rules)
    console.print(table)

    warnings = checklist_warnings(templates, settings.required_gates)
    for warning in warnings:
        typer.echo(f"[warning] {warning}")
    if not warnings:
        typer.echo(f"[ok] {len(templates)} gates validated")
    if warnings and strict:
        raise typer.Exit(code=1)


@settings_app.command("show")
def settings_show(ctx: typer.Context) -> None:
    """Print the effective release settings as JSON."""

    settings: ReleaseSettings = ctx.obj["settings"]
    payload = {
        "required_gates": list(settings.required_gates),
        "thresholds": dict(settings.thresholds),
        "template_cache_ttl_seconds": settings.template_cache_ttl_seconds,
        "enable_otel": settings.enable_otel,
    }
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def main() -> None:
    """Entrypoint for the CLI."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
