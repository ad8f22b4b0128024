"""Workflow engine: runs the steps of a workflow in order."""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from .contracts import (
    ExecutionStatus,
    RunContext,
    StepResult,
    Workflow,
    WorkflowResult,
)
from .errors import EmptyWorkflowError, InvalidWorkflowError, WorkflowNotFoundError
from .execute import StepExecutor
from .persistence import HistoryEntry, WorkflowRepository
from .variables import VariableBag

logger = logging.getLogger(__name__)


def coerce_workflow(definition: Union[Workflow, Mapping[str, Any]]) -> Workflow:
    """Validate a raw workflow document into a ``Workflow``.

    Raises:
        EmptyWorkflowError: if the workflow has no steps.
        InvalidWorkflowError: if the document is malformed or step orders repeat.
    """
    if isinstance(definition, Workflow):
        workflow = definition
    else:
        try:
            workflow = Workflow.model_validate(definition)
        except ValidationError as exc:
            raise InvalidWorkflowError(f"Malformed workflow definition: {exc}") from exc

    if not workflow.steps:
        raise EmptyWorkflowError("Workflow must contain at least one step")

    orders = [step.order for step in workflow.steps]
    duplicates = sorted({order for order in orders if orders.count(order) > 1})
    if duplicates:
        raise InvalidWorkflowError(
            f"Step order values must be unique, repeated: {duplicates}"
        )
    return workflow


class WorkflowEngine:
    """Drives a workflow run and aggregates the step results.

    The engine keeps no state between runs; every run gets its own
    ``VariableBag`` and report, so one engine may serve concurrent runs.
    """

    def __init__(
        self,
        executor: Optional[StepExecutor] = None,
        repository: Optional[WorkflowRepository] = None,
    ) -> None:
        self._executor = executor or StepExecutor()
        self._repository = repository

    async def run_workflow_by_id(
        self, workflow_id: str, context: Optional[RunContext] = None
    ) -> WorkflowResult:
        """Load a stored workflow and run it.

        Raises:
            WorkflowNotFoundError: if no workflow is stored under ``workflow_id``.
        """
        workflow = None
        if self._repository is not None:
            workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        context = (context or RunContext()).model_copy(update={"workflow_id": workflow_id})
        return await self.run_workflow(workflow, context)

    async def run_workflow(
        self,
        definition: Union[Workflow, Mapping[str, Any]],
        context: Optional[RunContext] = None,
    ) -> WorkflowResult:
        """Execute every step in ascending order.

        Structural problems raise before the run starts. Anything that goes
        wrong afterwards is reported on the returned result.
        """
        workflow = coerce_workflow(definition)
        context = context or RunContext()
        steps = workflow.ordered_steps()
        name = workflow.name or "Unnamed workflow"

        result = WorkflowResult(
            workflow_id=context.workflow_id or workflow.id,
            workflow_name=workflow.name,
        )
        bag = VariableBag(context.variables)

        result.status = ExecutionStatus.RUNNING
        logger.info(f"Starting workflow execution: {name} ({len(steps)} steps)")
        start = time.perf_counter()

        for position, step in enumerate(steps):
            logger.info(f"Executing workflow step {position + 1}/{len(steps)}: {step.label}")
            step_result = await self._executor.run(step, bag, position)
            result.steps.append(step_result)

            if not step_result.success and not step.continue_on_failure:
                logger.error(f"Workflow step {step.order} failed, halting execution")
                result.status = ExecutionStatus.HALTED
                result.error = f"Step {step.order} failed: {step_result.error or 'Unknown error'}"
                break
            if not step_result.success:
                logger.warning(f"Workflow step {step.order} failed, continuing")

        if result.status == ExecutionStatus.RUNNING:
            result.status = ExecutionStatus.COMPLETED
        result.success = result.status == ExecutionStatus.COMPLETED and all(
            s.success for s in result.steps
        )
        result.total_duration = round((time.perf_counter() - start) * 1000, 3)

        logger.info(
            f"Workflow execution {result.status.value}: "
            f"{'SUCCESS' if result.success else 'FAILED'} in {result.total_duration}ms"
        )

        if context.record_history:
            await self._record_history(result, context)
        return result

    async def _record_history(self, result: WorkflowResult, context: RunContext) -> None:
        """Persist one history entry per executed step.

        Runs only after ``result`` is final. Writes are awaited in turn so
        the entries exist once ``run_workflow`` returns; a failed write is logged
        and never changes the result.
        """
        if self._repository is None:
            return
        for step_result in result.steps:
            entry = history_entry(
                step_result,
                user_id=context.user_id,
                workflow_id=result.workflow_id,
            )
            try:
                await self._repository.record_history(entry)
            except Exception as exc:
                logger.error(
                    f"Failed to save workflow step {step_result.step_order} to history: {exc}"
                )


def history_entry(
    step_result: StepResult,
    user_id: str = "default-user",
    workflow_id: Optional[str] = None,
    source: str = "workflow",
) -> HistoryEntry:
    """Build the history record for an executed step."""
    response = step_result.response
    return HistoryEntry(
        user_id=user_id,
        workflow_id=workflow_id,
        step_order=step_result.step_order,
        request=step_result.request.model_dump(by_alias=True, exclude_none=True),
        response={
            "statusCode": response.status_code if response else None,
            "headers": response.headers if response else {},
            "body": response.body if response else None,
            "error": response.error if response else step_result.error,
        },
        duration=step_result.duration,
        success=step_result.success,
        source=source,
    )
