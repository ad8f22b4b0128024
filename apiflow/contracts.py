"""Core data contracts for apiflow workflows."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Accepts both snake_case and the camelCase names used by JSON documents."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True
    )


class ApiRequest(_CamelModel):
    """A single request, tagged by ``protocol``.

    The union of all protocol fields lives on one model. Which of them are
    required is decided by the handler for ``protocol`` at validation time,
    so an unknown tag still parses and can be reported when the step runs.
    """

    protocol: str = "rest"
    endpoint: Optional[str] = None
    method: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    # REST: query parameters. GraphQL: the query text.
    query: Optional[Union[str, Dict[str, Any]]] = None
    variables: Optional[Dict[str, Any]] = None
    service: Optional[str] = None
    rpc_method: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)
    auth_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("authRef", "auth_ref", "apiSpecId"),
        serialization_alias="authRef",
    )

    def describe(self) -> str:
        """Short human readable label used in logs."""
        if self.protocol.lower() == "grpc":
            return f"GRPC {self.endpoint}/{self.service}.{self.rpc_method}"
        method = (self.method or "POST").upper()
        return f"{self.protocol.upper()} {method} {self.endpoint}"


class VariableMapping(_CamelModel):
    """Binds a value extracted from an earlier step's body to a variable."""

    source_step: int = Field(..., ge=0)
    source_path: str
    target_variable: str


class Assertion(_CamelModel):
    """Declared expectation checked against a step response."""

    type: str
    expected: Any = None
    path: Optional[str] = None


class AssertionResult(BaseModel):
    type: str
    expected: Any = None
    actual: Any = None
    passed: bool = False
    message: str = ""


class WorkflowStep(_CamelModel):
    """Defines one API call in a workflow."""

    order: int
    name: Optional[str] = None
    api_request: ApiRequest
    variable_mappings: List[VariableMapping] = Field(default_factory=list)
    assertions: List[Assertion] = Field(default_factory=list)
    continue_on_failure: bool = False

    @property
    def label(self) -> str:
        return self.name or f"Step {self.order}"


class Workflow(_CamelModel):
    """An ordered sequence of steps."""

    id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("id", "_id")
    )
    name: Optional[str] = None
    description: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    user_id: Optional[str] = None

    def ordered_steps(self) -> List[WorkflowStep]:
        """Steps sorted by ``order``; the execution sequence."""
        return sorted(self.steps, key=lambda step: step.order)


class NormalizedResponse(_CamelModel):
    """Protocol-agnostic response envelope."""

    status_code: Optional[int] = None
    headers: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    duration: float = 0.0
    success: bool = False
    error: Optional[str] = None


class ValidationResult(BaseModel):
    valid: bool = True
    errors: List[str] = Field(default_factory=list)

    @property
    def reason(self) -> str:
        return ", ".join(self.errors)


class ExecutionStatus(str, Enum):
    """Workflow run state."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    HALTED = "halted"


class StepResult(_CamelModel):
    """Outcome of a single executed step."""

    step_name: Optional[str] = None
    step_order: int
    request: ApiRequest
    response: Optional[NormalizedResponse] = None
    duration: float = 0.0
    success: bool = False
    assertions: List[AssertionResult] = Field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        if self.response is not None:
            response = {
                "statusCode": self.response.status_code,
                "headers": self.response.headers,
                "body": self.response.body,
            }
            if self.response.error:
                response["error"] = self.response.error
        else:
            response = {"statusCode": None, "headers": {}, "body": None, "error": self.error}
        return {
            "stepName": self.step_name,
            "stepOrder": self.step_order,
            "request": self.request.model_dump(by_alias=True, exclude_none=True),
            "response": response,
            "duration": self.duration,
            "success": self.success,
            "assertions": [a.model_dump() for a in self.assertions],
        }


class WorkflowResult(_CamelModel):
    """Aggregated outcome of a workflow run."""

    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    success: bool = False
    steps: List[StepResult] = Field(default_factory=list)
    total_duration: float = 0.0
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, Any]:
        """Shape serialized by an HTTP layer or the CLI ``--json`` flag."""
        payload: Dict[str, Any] = {
            "success": self.success,
            "workflowName": self.workflow_name,
            "totalDuration": self.total_duration,
            "steps": [step.to_payload() for step in self.steps],
        }
        if self.error:
            payload["error"] = self.error
        return payload


class RunContext(BaseModel):
    """Per-invocation settings supplied by the caller."""

    user_id: str = "default-user"
    workflow_id: Optional[str] = None
    record_history: bool = True
    variables: Dict[str, Any] = Field(default_factory=dict)
