import asyncio

import pytest

from apiflow import ExecutionStatus, RunContext, StepExecutor, WorkflowEngine
from apiflow.engine import coerce_workflow
from apiflow.errors import (
    EmptyWorkflowError,
    InvalidWorkflowError,
    WorkflowNotFoundError,
)
from apiflow.persistence import InMemoryWorkflowRepository


def _get(order, endpoint, **extra):
    step = {"order": order, "apiRequest": {"protocol": "rest", "method": "GET", "endpoint": endpoint}}
    step.update(extra)
    return step


def _engine(registry, repository=None) -> WorkflowEngine:
    return WorkflowEngine(executor=StepExecutor(handlers=registry), repository=repository)


@pytest.mark.asyncio
async def test_all_steps_succeed(registry, fake_api):
    for n in range(3):
        fake_api.add("GET", f"/items/{n}", json_body={"n": n})
    workflow = {"name": "three", "steps": [_get(n, f"/items/{n}") for n in range(3)]}

    result = await _engine(registry).run_workflow(workflow)

    assert result.success
    assert result.status == ExecutionStatus.COMPLETED
    assert len(result.steps) == 3
    assert result.error is None
    assert result.total_duration >= 0


@pytest.mark.asyncio
async def test_steps_run_in_order_not_list_position(registry, fake_api):
    fake_api.add("GET", "/first", json_body={})
    fake_api.add("GET", "/second", json_body={})
    workflow = {"steps": [_get(5, "/second"), _get(1, "/first")]}

    result = await _engine(registry).run_workflow(workflow)

    assert [s.step_order for s in result.steps] == [1, 5]
    assert [c.url.path for c in fake_api.calls] == ["/first", "/second"]


@pytest.mark.asyncio
async def test_failure_halts_remaining_steps(registry, fake_api):
    fake_api.add("GET", "/ok", json_body={})
    workflow = {
        "steps": [_get(0, "/ok"), _get(1, "/broken"), _get(2, "/ok"), _get(3, "/ok")]
    }

    result = await _engine(registry).run_workflow(workflow)

    assert not result.success
    assert result.status == ExecutionStatus.HALTED
    assert len(result.steps) == 2
    assert result.error == "Step 1 failed: Request failed with status code 404"
    assert len(fake_api.calls) == 2


@pytest.mark.asyncio
async def test_continue_on_failure_runs_later_steps(registry, fake_api):
    fake_api.add("GET", "/ok", json_body={})
    workflow = {
        "steps": [
            _get(0, "/ok"),
            _get(1, "/broken", continueOnFailure=True),
            _get(2, "/ok"),
        ]
    }

    result = await _engine(registry).run_workflow(workflow)

    assert len(result.steps) == 3
    assert [s.success for s in result.steps] == [True, False, True]
    assert result.status == ExecutionStatus.COMPLETED
    assert not result.success
    assert result.error is None


@pytest.mark.asyncio
async def test_variable_round_trip_into_endpoint(registry, fake_api):
    fake_api.add("POST", "/users", status=201, json_body={"id": 42})
    fake_api.add("GET", "/users/42", json_body={"id": 42, "name": "ada"})
    workflow = {
        "steps": [
            {
                "order": 1,
                "apiRequest": {"method": "POST", "endpoint": "/users", "body": {"name": "ada"}},
            },
            _get(
                2,
                "/users/{{x}}",
                variableMappings=[{"sourceStep": 0, "sourcePath": "$.id", "targetVariable": "x"}],
            ),
        ]
    }

    result = await _engine(registry).run_workflow(workflow)

    assert result.success
    assert "/42" in result.steps[1].request.endpoint
    assert fake_api.calls[1].url.path == "/users/42"


@pytest.mark.asyncio
async def test_query_string_variable_scenario(registry, fake_api):
    fake_api.add("GET", "/users/1", json_body={"id": 1})
    fake_api.add("GET", "/posts", json_body=[{"id": 10, "userId": 1}])
    workflow = {
        "steps": [
            _get(0, "/users/1"),
            _get(
                1,
                "/posts?userId={{id}}",
                variableMappings=[{"sourceStep": 0, "sourcePath": "$.id", "targetVariable": "id"}],
            ),
        ]
    }

    result = await _engine(registry).run_workflow(workflow)

    assert result.success
    assert result.steps[1].request.endpoint == "/posts?userId=1"
    assert fake_api.calls[1].url.params["userId"] == "1"


@pytest.mark.asyncio
async def test_unreachable_host_halts_three_step_workflow(registry, fake_api):
    fake_api.add("GET", "/ok", json_body={})
    workflow = {
        "steps": [
            _get(0, "/ok"),
            _get(1, "https://unreachable.invalid/x"),
            _get(2, "/ok"),
        ]
    }

    result = await _engine(registry).run_workflow(workflow)

    assert not result.success
    assert len(result.steps) == 2
    assert result.steps[1].response.status_code == 0
    assert all(s.step_order != 2 for s in result.steps)


@pytest.mark.asyncio
async def test_missing_endpoint_fails_without_network(registry, fake_api):
    workflow = {"steps": [{"order": 0, "apiRequest": {"protocol": "rest", "method": "GET"}}]}

    result = await _engine(registry).run_workflow(workflow)

    assert not result.success
    assert result.steps[0].error_code == "INVALID_REQUEST"
    assert fake_api.calls == []


@pytest.mark.asyncio
async def test_unsupported_protocol_fails_step(registry, fake_api):
    workflow = {
        "steps": [
            {"order": 0, "apiRequest": {"protocol": "soap", "endpoint": "https://api.test/ws"}}
        ]
    }

    result = await _engine(registry).run_workflow(workflow)

    assert not result.success
    assert result.steps[0].error_code == "INVALID_PROTOCOL"
    assert result.error == "Step 0 failed: INVALID_PROTOCOL: Unsupported protocol: soap"
    assert fake_api.calls == []


@pytest.mark.asyncio
async def test_mixed_protocol_workflow(registry, fake_api, grpc_server):
    fake_api.add("POST", "/graphql", json_body={"data": {"createUser": {"id": "u-7"}}})
    grpc_server.add("/users.UserService/GetUser", lambda msg: {"id": msg["id"], "active": True})
    workflow = {
        "steps": [
            {
                "order": 0,
                "apiRequest": {
                    "protocol": "graphql",
                    "endpoint": "/graphql",
                    "query": "mutation { createUser { id } }",
                },
            },
            {
                "order": 1,
                "apiRequest": {
                    "protocol": "grpc",
                    "endpoint": "localhost:50051",
                    "service": "users.UserService",
                    "rpcMethod": "GetUser",
                    "body": {"id": "{{userId}}"},
                },
                "variableMappings": [
                    {
                        "sourceStep": 0,
                        "sourcePath": "$.data.createUser.id",
                        "targetVariable": "userId",
                    }
                ],
                "assertions": [{"type": "jsonPath", "path": "$.active", "expected": True}],
            },
        ]
    }

    result = await _engine(registry).run_workflow(workflow)

    assert result.success
    assert result.steps[1].response.body == {"id": "u-7", "active": True}


@pytest.mark.asyncio
async def test_initial_variables_seed_the_bag(registry, fake_api):
    fake_api.add("GET", "/users/9", json_body={})
    workflow = {"steps": [_get(0, "/users/{{uid}}")]}

    result = await _engine(registry).run_workflow(
        workflow, RunContext(variables={"uid": 9})
    )

    assert result.success
    assert result.steps[0].request.endpoint == "/users/9"


@pytest.mark.asyncio
async def test_concurrent_runs_do_not_share_variables(registry, fake_api):
    fake_api.add("GET", "/users/1", json_body={})
    fake_api.add("GET", "/users/2", json_body={})
    engine = _engine(registry)
    workflow = {"steps": [_get(0, "/users/{{uid}}")]}

    first, second = await asyncio.gather(
        engine.run_workflow(workflow, RunContext(variables={"uid": 1})),
        engine.run_workflow(workflow, RunContext(variables={"uid": 2})),
    )

    assert first.steps[0].request.endpoint == "/users/1"
    assert second.steps[0].request.endpoint == "/users/2"


@pytest.mark.asyncio
async def test_empty_workflow_is_rejected(registry):
    with pytest.raises(EmptyWorkflowError):
        await _engine(registry).run_workflow({"name": "nothing", "steps": []})


@pytest.mark.asyncio
async def test_duplicate_orders_are_rejected(registry):
    with pytest.raises(InvalidWorkflowError):
        await _engine(registry).run_workflow(
            {"steps": [_get(1, "/a"), _get(1, "/b")]}
        )


@pytest.mark.asyncio
async def test_malformed_definition_is_rejected(registry):
    with pytest.raises(InvalidWorkflowError):
        await _engine(registry).run_workflow({"steps": [{"apiRequest": {}}]})


@pytest.mark.asyncio
async def test_run_by_id_and_history(registry, fake_api):
    fake_api.add("GET", "/ok", json_body={"ok": True})
    repo = InMemoryWorkflowRepository()
    engine = _engine(registry, repository=repo)

    workflow_id = await repo.save_workflow(
        coerce_workflow({"name": "stored", "steps": [_get(0, "/ok"), _get(1, "/ok")]})
    )

    result = await engine.run_workflow_by_id(workflow_id, RunContext(user_id="u1"))

    assert result.success
    assert result.workflow_id == workflow_id
    history = await repo.list_history(workflow_id=workflow_id)
    assert [h.step_order for h in history] == [1, 0]
    assert all(h.user_id == "u1" and h.source == "workflow" for h in history)
    assert history[0].response["statusCode"] == 200


@pytest.mark.asyncio
async def test_history_can_be_disabled(registry, fake_api):
    fake_api.add("GET", "/ok", json_body={})
    repo = InMemoryWorkflowRepository()

    await _engine(registry, repository=repo).run_workflow(
        {"steps": [_get(0, "/ok")]}, RunContext(record_history=False)
    )

    assert await repo.list_history() == []


@pytest.mark.asyncio
async def test_unknown_workflow_id_raises(registry):
    engine = _engine(registry, repository=InMemoryWorkflowRepository())
    with pytest.raises(WorkflowNotFoundError) as excinfo:
        await engine.run_workflow_by_id("missing")
    assert excinfo.value.message == "Workflow with ID missing not found"


class _BrokenHistoryRepository(InMemoryWorkflowRepository):
    async def record_history(self, entry):
        raise RuntimeError("disk full")


@pytest.mark.asyncio
async def test_history_failure_does_not_change_result(registry, fake_api):
    fake_api.add("GET", "/ok", json_body={})

    result = await _engine(registry, repository=_BrokenHistoryRepository()).run_workflow(
        {"steps": [_get(0, "/ok")]}
    )

    assert result.success
    assert len(result.steps) == 1


@pytest.mark.asyncio
async def test_result_payload_shape(registry, fake_api):
    fake_api.add("GET", "/ok", json_body={"id": 1})

    result = await _engine(registry).run_workflow(
        {"name": "payload", "steps": [_get(0, "/ok", name="fetch")]}
    )
    payload = result.to_payload()

    assert payload["success"] is True
    assert payload["workflowName"] == "payload"
    assert "error" not in payload
    step = payload["steps"][0]
    assert step["stepName"] == "fetch"
    assert step["response"]["statusCode"] == 200
    assert step["response"]["body"] == {"id": 1}
    assert step["request"]["endpoint"] == "/ok"
