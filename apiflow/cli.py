"""Command line interface for running apiflow workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from apiflow import RunContext, StepExecutor, WorkflowEngine, WorkflowStep
from apiflow.auth import AuthInjector, StaticAuthProvider
from apiflow.cli_utils.documents import format_result, format_step, load_document, parse_vars
from apiflow.config import ApiflowConfig, load_config
from apiflow.contracts import ApiRequest, Workflow
from apiflow.engine import coerce_workflow, history_entry
from apiflow.errors import ApiflowError
from apiflow.handlers import default_registry
from apiflow.persistence import get_repository
from apiflow.variables import VariableBag

app = typer.Typer(help="CLI for apiflow workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing stored workflows")
history_app = typer.Typer(help="Commands for inspecting request history")

app.add_typer(workflow_app, name="workflow")
app.add_typer(history_app, name="history")

VAR_OPTION = typer.Option(
    None, "--var", "-v", help="Initial variable as name=value (repeatable)"
)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Logging level (defaults to log_level from config)"
    ),
) -> None:
    """apiflow CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )


def _build_executor(config: ApiflowConfig) -> StepExecutor:
    return StepExecutor(
        handlers=default_registry(config),
        auth=AuthInjector(StaticAuthProvider(config.auth)),
    )


def _build_engine(config: ApiflowConfig) -> WorkflowEngine:
    return WorkflowEngine(executor=_build_executor(config), repository=get_repository())


def _load_or_exit(path: Path) -> dict:
    try:
        return load_document(path)
    except (OSError, ValueError) as exc:
        typer.secho(f"Could not read {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2)


def _vars_or_exit(pairs: Optional[List[str]]) -> dict:
    try:
        return parse_vars(pairs or [])
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2)


def _run_and_report(
    engine: WorkflowEngine,
    coro_factory,
    as_json: bool,
) -> None:
    try:
        result = asyncio.run(coro_factory(engine))
    except ApiflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2)

    if as_json:
        typer.echo(json.dumps(result.to_payload(), indent=2, default=str))
    else:
        typer.echo(format_result(result))
    if not result.success:
        raise typer.Exit(code=1)


@app.command("run")
def run(
    workflow_path: Path,
    var: Optional[List[str]] = VAR_OPTION,
    history: bool = typer.Option(True, help="Record executed steps in request history"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    user_id: str = typer.Option("default-user", help="User recorded in history"),
) -> None:
    """
    Run a workflow document (YAML or JSON).

    Steps run in ascending order. Exit code is 0 when every step succeeded,
    1 when the workflow halted or a step failed, 2 when the document was
    rejected before the run.

    Example:
        apiflow run ./workflows/signup.yaml --var email=a@example.com
    """
    config = load_config()
    document = _load_or_exit(workflow_path)
    context = RunContext(
        user_id=user_id,
        record_history=history and config.history.enabled,
        variables=_vars_or_exit(var),
    )
    engine = _build_engine(config)
    _run_and_report(engine, lambda e: e.run_workflow(document, context), as_json)


@app.command("request")
def request(
    request_path: Path,
    var: Optional[List[str]] = VAR_OPTION,
    history: bool = typer.Option(True, help="Record the request in history"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    user_id: str = typer.Option("default-user", help="User recorded in history"),
) -> None:
    """
    Execute a single request document.

    Example:
        apiflow request ./requests/get-user.yaml --var id=42
    """
    config = load_config()
    document = _load_or_exit(request_path)
    try:
        api_request = ApiRequest.model_validate(document)
    except ValueError as exc:
        typer.secho(f"Invalid request document: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2)

    step = WorkflowStep(order=0, name=request_path.stem, api_request=api_request)
    bag = VariableBag(_vars_or_exit(var))
    result = asyncio.run(_build_executor(config).run(step, bag, 0))

    if history and config.history.enabled:
        repo = get_repository()
        entry = history_entry(result, user_id=user_id, source="manual")
        try:
            asyncio.run(repo.record_history(entry))
        except Exception as exc:
            typer.secho(f"Failed to save request to history: {exc}", fg=typer.colors.YELLOW)

    if as_json:
        typer.echo(json.dumps(result.to_payload(), indent=2, default=str))
    else:
        typer.echo(format_step(result))
        if result.response is not None:
            typer.echo(json.dumps(result.response.body, indent=2, default=str))
    if not result.success:
        raise typer.Exit(code=1)


@workflow_app.command("save")
def workflow_save(workflow_path: Path) -> None:
    """Validate a workflow document and store it; prints the workflow id."""
    document = _load_or_exit(workflow_path)
    try:
        workflow = coerce_workflow(document)
    except ApiflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2)
    workflow_id = asyncio.run(get_repository().save_workflow(workflow))
    typer.echo(workflow_id)


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List stored workflows.

    Example:
        apiflow workflow list
        # Output: 3f2a...    signup-flow    3 steps
    """
    workflows = asyncio.run(get_repository().list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.name or 'Unnamed workflow'}\t{len(wf.steps)} steps")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show the steps of a stored workflow."""
    wf: Optional[Workflow] = asyncio.run(get_repository().get_workflow(workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.id}: {wf.name or 'Unnamed workflow'}")
    if wf.description:
        typer.echo(wf.description)
    for step in wf.ordered_steps():
        flags = " (continue on failure)" if step.continue_on_failure else ""
        typer.echo(f"- [{step.order}] {step.label}: {step.api_request.describe()}{flags}")
        for mapping in step.variable_mappings:
            typer.echo(
                f"    {mapping.target_variable} <- step {mapping.source_step} {mapping.source_path}"
            )


@workflow_app.command("run")
def workflow_run(
    workflow_id: str,
    var: Optional[List[str]] = VAR_OPTION,
    history: bool = typer.Option(True, help="Record executed steps in request history"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    user_id: str = typer.Option("default-user", help="User recorded in history"),
) -> None:
    """Run a stored workflow by id."""
    config = load_config()
    context = RunContext(
        user_id=user_id,
        record_history=history and config.history.enabled,
        variables=_vars_or_exit(var),
    )
    engine = _build_engine(config)
    _run_and_report(engine, lambda e: e.run_workflow_by_id(workflow_id, context), as_json)


@history_app.command("list")
def history_list(
    workflow_id: Optional[str] = typer.Option(None, help="Only entries of this workflow"),
    limit: int = typer.Option(20, help="Maximum number of entries"),
) -> None:
    """Show recent request history, newest first."""
    entries = asyncio.run(get_repository().list_history(workflow_id=workflow_id, limit=limit))
    if not entries:
        typer.echo("No history found")
        return
    for entry in entries:
        request = entry.request
        target = request.get("endpoint", "")
        typer.echo(
            f"{entry.timestamp.isoformat()}\t{entry.source}\t"
            f"{request.get('protocol', '')} {request.get('method') or ''} {target}\t"
            f"{entry.response.get('statusCode')}\t"
            f"{'ok' if entry.success else 'failed'}\t{entry.duration}ms"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
