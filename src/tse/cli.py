"""Command-line entry point for running and validating tutorial documents."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
import yaml

from .config import ExecutorSettings, load_settings
from .dossier import build_execution_dossier, build_schema_dossier
from .dsl import load_document, read_document, validate_document
from .dsl.validation import ValidationIssue
from .errors import DocumentValidationError
from .executor import ExecutionResult, run_tutorial

APP_HELP = "Execute tutorial step documents inside a disposable sandbox."
EXIT_FAILURE = 1
EXIT_INVALID_DOCUMENT = 2

app = typer.Typer(help=APP_HELP)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not verbose:
        logging.getLogger("tse.telemetry").setLevel(logging.WARNING)


def _load_settings(config: Optional[Path]) -> ExecutorSettings:
    try:
        return load_settings(config)
    except (OSError, ValueError, yaml.YAMLError) as error:
        typer.echo(f"Failed to load config: {error}", err=True)
        raise typer.Exit(code=EXIT_FAILURE) from error


def _echo_issues(issues: tuple[ValidationIssue, ...] | list[ValidationIssue]) -> None:
    typer.echo(f"Document is invalid ({len(issues)} issue(s)):", err=True)
    for issue in issues:
        typer.echo(f"  - {issue.path}: {issue.message}", err=True)


def _echo_result(result: ExecutionResult) -> None:
    title = result.title or "Untitled tutorial"
    typer.echo(f"{title}: {result.executed_steps}/{result.total_steps} step(s) executed")
    for step in result.step_results:
        marker = "ok" if step.success else "FAILED"
        typer.echo(f"  [{marker}] {step.step_number}. {step.step_id}")
        if step.error:
            typer.echo(f"      {step.error}")
    if result.error and result.failed_step is None:
        typer.echo(f"Error ({result.failure_kind.value if result.failure_kind else 'run'}): {result.error}")
    typer.echo(f"Workspace: {result.workspace_root}")
    typer.echo(f"Outcome: {'success' if result.complete else 'failure'}")


@app.command()
def run(
    document: Path = typer.Argument(..., help="Path to the tutorial step document (YAML or JSON)."),
    keep_workspace: bool = typer.Option(
        False,
        "--keep-workspace",
        "-k",
        help="Preserve the sandbox workspace after the run for inspection.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    screenshots: bool = typer.Option(
        False,
        "--screenshots",
        help="Request automatic screenshots from the browser automation collaborator.",
    ),
    sandbox: Optional[str] = typer.Option(
        None,
        "--sandbox",
        help="Sandbox backend: host or container.",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to an executor settings YAML file.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Per-command timeout in seconds (0 disables).",
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the run result as JSON."),
) -> None:
    """Execute every step of DOCUMENT and report the outcome."""
    _configure_logging(verbose)
    settings = _load_settings(config)
    if sandbox is not None:
        choice = sandbox.strip().lower()
        if choice not in {"host", "container"}:
            typer.echo(f"Unknown sandbox '{sandbox}'; expected host or container.", err=True)
            raise typer.Exit(code=EXIT_FAILURE)
        settings = replace(settings, sandbox=choice)
    if timeout is not None:
        settings = replace(settings, command_timeout=timeout if timeout > 0 else None)
    if screenshots:
        settings = replace(settings, capture_screenshots=True)

    try:
        spec = load_document(document)
    except DocumentValidationError as error:
        if json_output:
            typer.echo(build_schema_dossier(error.issues).model_dump_json(by_alias=True, indent=2))
        else:
            _echo_issues(error.issues)
        raise typer.Exit(code=EXIT_INVALID_DOCUMENT) from error
    except OSError as error:
        typer.echo(f"Failed to read {document}: {error}", err=True)
        raise typer.Exit(code=EXIT_FAILURE) from error

    result = run_tutorial(spec, settings=settings, keep_workspace=keep_workspace)

    if json_output:
        payload = result.to_dict()
        dossier = build_execution_dossier(result, spec)
        if dossier is not None:
            payload["dossier"] = dossier.model_dump(by_alias=True, exclude_none=True)
        typer.echo(json.dumps(payload, indent=2))
    else:
        _echo_result(result)

    if not result.complete:
        raise typer.Exit(code=EXIT_FAILURE)


@app.command()
def validate(
    document: Path = typer.Argument(..., help="Path to the tutorial step document (YAML or JSON)."),
    json_output: bool = typer.Option(False, "--json", help="Print validation issues as JSON."),
) -> None:
    """Check DOCUMENT against the step schema without executing it."""
    try:
        data = read_document(document)
    except DocumentValidationError as error:
        issues = list(error.issues)
    except OSError as error:
        typer.echo(f"Failed to read {document}: {error}", err=True)
        raise typer.Exit(code=EXIT_FAILURE) from error
    else:
        issues = list(validate_document(data).issues)

    if json_output:
        typer.echo(json.dumps({"valid": not issues, "issues": [issue.to_dict() for issue in issues]}, indent=2))
    elif issues:
        _echo_issues(issues)
    else:
        typer.echo(f"{document} is valid.")

    if issues:
        raise typer.Exit(code=EXIT_INVALID_DOCUMENT)


if __name__ == "__main__":
    app()
