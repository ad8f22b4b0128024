"""Helpers for reading workflow documents and rendering results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable

import yaml

from apiflow.contracts import StepResult, WorkflowResult


def load_document(path: Path) -> Dict[str, Any]:
    """Read a YAML or JSON document into a mapping."""

    with open(path) as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a mapping")
    return data


def parse_vars(pairs: Iterable[str]) -> Dict[str, Any]:
    """Turn ``name=value`` pairs into a mapping.

    Values that parse as JSON (numbers, booleans, objects) keep their type.
    """

    variables: Dict[str, Any] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"Expected name=value, got {pair!r}")
        try:
            variables[name] = json.loads(raw)
        except ValueError:
            variables[name] = raw
    return variables


def format_step(result: StepResult) -> str:
    status = result.response.status_code if result.response else "-"
    line = (
        f"  [{result.step_order}] {result.step_name or 'Unnamed step'}: "
        f"{result.request.describe()} -> {status} ({result.duration}ms) "
        f"{'ok' if result.success else 'FAILED'}"
    )
    if result.error:
        line += f"\n      {result.error}"
    for warning in result.warnings:
        line += f"\n      warning: {warning}"
    return line


def format_result(result: WorkflowResult) -> str:
    lines = [
        f"Workflow {result.workflow_name or 'Unnamed workflow'}: "
        f"{result.status.value.upper()} "
        f"({'SUCCESS' if result.success else 'FAILED'}) in {result.total_duration}ms"
    ]
    lines.extend(format_step(step) for step in result.steps)
    if result.error:
        lines.append(f"Error: {result.error}")
    return "\n".join(lines)
