"""Step execution for apiflow workflows."""

from __future__ import annotations

import logging
from typing import List, Optional

from .assertions import run_assertions
from .auth import AuthInjector
from .contracts import ApiRequest, StepResult, WorkflowStep
from .errors import ApiflowError, ErrorCode, InvalidRequestError
from .handlers import HandlerRegistry, default_registry
from .variables import VariableBag, bind_mappings, substitute

logger = logging.getLogger(__name__)


class StepExecutor:
    """Runs a single workflow step against its protocol handler."""

    def __init__(
        self,
        handlers: Optional[HandlerRegistry] = None,
        auth: Optional[AuthInjector] = None,
    ) -> None:
        self._handlers = handlers or default_registry()
        self._auth = auth or AuthInjector()

    async def run(self, step: WorkflowStep, bag: VariableBag, position: int) -> StepResult:
        """Execute ``step`` as the ``position``-th step of a run.

        Never raises: every failure is reported on the returned result.
        """
        warnings: List[str] = []
        request = step.api_request
        try:
            handler = self._handlers.get(request.protocol)

            earlier = [m for m in step.variable_mappings if m.source_step < position]
            warnings.extend(bind_mappings(earlier, bag))

            request, unresolved = substitute(request, bag)
            for field, names in unresolved.items():
                message = f"Unresolved variable(s) in {field}: {', '.join(names)}"
                logger.warning(f"{step.label}: {message}")
                warnings.append(message)

            request = await self._auth.inject(request)

            validation = handler.validate(request)
            if not validation.valid:
                raise InvalidRequestError(
                    f"Invalid {request.protocol} request: {validation.reason}"
                )
        except ApiflowError as exc:
            logger.error(f"{step.label} rejected before dispatch: {exc}")
            return self._rejected(step, request, str(exc), exc.code, warnings)
        except Exception as exc:
            logger.exception(f"{step.label} could not be prepared")
            return self._rejected(step, request, f"{type(exc).__name__}: {exc}", None, warnings)

        logger.info(f"{step.label}: {request.describe()}")
        response = await handler.execute(request)

        assertions = run_assertions(step.assertions, response)
        failed = [a for a in assertions if not a.passed]
        success = response.success and not failed

        error = None
        if not response.success:
            error = response.error or "Request failed"
        elif failed:
            error = "Assertions failed: " + "; ".join(a.message for a in failed)

        if success:
            bag.record_output(position, response.body)
            own = [m for m in step.variable_mappings if m.source_step == position]
            warnings.extend(bind_mappings(own, bag))

        return StepResult(
            step_name=step.name,
            step_order=step.order,
            request=request,
            response=response,
            duration=response.duration,
            success=success,
            assertions=assertions,
            error=error,
            warnings=warnings,
        )

    @staticmethod
    def _rejected(
        step: WorkflowStep,
        request: ApiRequest,
        error: str,
        code: Optional[ErrorCode],
        warnings: List[str],
    ) -> StepResult:
        return StepResult(
            step_name=step.name,
            step_order=step.order,
            request=request,
            response=None,
            duration=0.0,
            success=False,
            error=error,
            error_code=code.value if code else None,
            warnings=warnings,
        )
