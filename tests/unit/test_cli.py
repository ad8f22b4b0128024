import asyncio
import json

import pytest
from typer.testing import CliRunner

import apiflow.cli as cli
import apiflow.persistence as persistence
from apiflow.cli import app
from apiflow.persistence import HistoryEntry, InMemoryWorkflowRepository


WORKFLOW_YAML = """
name: signup-flow
description: Create a user then load it
steps:
  - order: 0
    name: create user
    apiRequest:
      protocol: rest
      method: POST
      endpoint: /users
      body:
        name: "{{name}}"
  - order: 1
    name: load user
    apiRequest:
      protocol: rest
      method: GET
      endpoint: /users/{{id}}
    variableMappings:
      - sourceStep: 0
        sourcePath: $.id
        targetVariable: id
"""


def _setup_repo() -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    persistence._repository_instance = repo
    return repo


@pytest.fixture
def api(monkeypatch, tmp_path, fake_api, registry):
    monkeypatch.setenv("APIFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setattr(cli, "default_registry", lambda config=None: registry)
    fake_api.add("POST", "/users", status=201, json_body={"id": 42, "name": "ada"})
    fake_api.add("GET", "/users/42", json_body={"id": 42, "name": "ada"})
    return fake_api


def test_run_command_executes_workflow_file(api, tmp_path):
    repo = _setup_repo()
    path = tmp_path / "signup.yaml"
    path.write_text(WORKFLOW_YAML)

    runner = CliRunner()
    result = runner.invoke(app, ["run", str(path), "--var", "name=ada"])
    assert result.exit_code == 0, f"Command failed with exit code {result.exit_code}. Output: {result.output}"
    assert "COMPLETED" in result.output
    assert "load user" in result.output
    assert json.loads(api.calls[0].content) == {"name": "ada"}
    assert api.calls[1].url.path == "/users/42"

    history = asyncio.run(repo.list_history())
    assert [h.step_order for h in history] == [1, 0]


def test_run_command_json_output_and_failure_exit_code(api, tmp_path):
    _setup_repo()
    path = tmp_path / "broken.json"
    path.write_text(
        json.dumps(
            {
                "name": "broken",
                "steps": [
                    {"order": 0, "apiRequest": {"method": "GET", "endpoint": "/nowhere"}},
                    {"order": 1, "apiRequest": {"method": "GET", "endpoint": "/users/42"}},
                ],
            }
        )
    )

    runner = CliRunner()
    result = runner.invoke(app, ["run", str(path), "--json", "--no-history"])
    assert result.exit_code == 1, f"Expected exit code 1, got {result.exit_code}. Output: {result.output}"
    payload = json.loads(result.stdout)
    assert payload["success"] is False
    assert len(payload["steps"]) == 1
    assert payload["error"] == "Step 0 failed: Request failed with status code 404"


def test_run_command_rejects_empty_workflow(api, tmp_path):
    _setup_repo()
    path = tmp_path / "empty.yaml"
    path.write_text("name: empty\nsteps: []\n")

    result = CliRunner().invoke(app, ["run", str(path)])
    assert result.exit_code == 2
    assert "EMPTY_WORKFLOW" in result.output


def test_request_command_runs_single_request(api, tmp_path):
    repo = _setup_repo()
    path = tmp_path / "get-user.yaml"
    path.write_text("protocol: rest\nmethod: GET\nendpoint: /users/{{id}}\n")

    result = CliRunner().invoke(app, ["request", str(path), "-v", "id=42"])
    assert result.exit_code == 0, f"Command failed with exit code {result.exit_code}. Output: {result.output}"
    assert '"name": "ada"' in result.output

    history = asyncio.run(repo.list_history())
    assert len(history) == 1
    assert history[0].source == "manual"
    assert history[0].request["endpoint"] == "/users/42"


def test_workflow_save_list_show_and_run(api, tmp_path):
    repo = _setup_repo()
    path = tmp_path / "signup.yaml"
    path.write_text(WORKFLOW_YAML)

    runner = CliRunner()
    saved = runner.invoke(app, ["workflow", "save", str(path)])
    assert saved.exit_code == 0, f"Command failed with exit code {saved.exit_code}. Output: {saved.output}"
    workflow_id = saved.output.strip()
    assert asyncio.run(repo.get_workflow(workflow_id)) is not None

    listed = runner.invoke(app, ["workflow", "list"])
    assert listed.exit_code == 0
    assert workflow_id in listed.output
    assert "signup-flow" in listed.output
    assert "2 steps" in listed.output

    shown = runner.invoke(app, ["workflow", "show", workflow_id])
    assert shown.exit_code == 0
    assert "create user" in shown.output
    assert "id <- step 0 $.id" in shown.output

    ran = runner.invoke(app, ["workflow", "run", workflow_id, "--var", "name=ada", "--no-history"])
    assert ran.exit_code == 0, f"Command failed with exit code {ran.exit_code}. Output: {ran.output}"
    assert "SUCCESS" in ran.output


def test_workflow_show_and_run_missing():
    _setup_repo()
    runner = CliRunner()

    result_missing = runner.invoke(app, ["workflow", "show", "missing-id"])
    assert (
        result_missing.exit_code == 1
    ), f"Expected exit code 1 for missing workflow, got {result_missing.exit_code}. Output: {result_missing.output}"
    assert "Workflow not found" in result_missing.output

    result_run = runner.invoke(app, ["workflow", "run", "missing-id"])
    assert result_run.exit_code == 2
    assert "WORKFLOW_NOT_FOUND" in result_run.output


def test_workflow_list_empty():
    _setup_repo()
    result = CliRunner().invoke(app, ["workflow", "list"])
    assert result.exit_code == 0
    assert "No workflows found" in result.output


def test_history_list_command():
    repo = _setup_repo()
    runner = CliRunner()

    empty = runner.invoke(app, ["history", "list"])
    assert "No history found" in empty.output

    asyncio.run(
        repo.record_history(
            HistoryEntry(
                workflow_id="wf-1",
                step_order=0,
                request={"protocol": "rest", "method": "GET", "endpoint": "https://api.test/x"},
                response={"statusCode": 200},
                duration=3.2,
                success=True,
            )
        )
    )

    result = runner.invoke(app, ["history", "list", "--workflow-id", "wf-1"])
    assert result.exit_code == 0
    assert "rest GET https://api.test/x" in result.output
    assert "200" in result.output
    assert "ok" in result.output
