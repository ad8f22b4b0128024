"""apiflow: multi-step API workflows over REST, GraphQL and gRPC."""

from .contracts import (
    ApiRequest,
    Assertion,
    ExecutionStatus,
    NormalizedResponse,
    RunContext,
    StepResult,
    VariableMapping,
    Workflow,
    WorkflowResult,
    WorkflowStep,
)
from .engine import WorkflowEngine
from .errors import ApiflowError, ErrorCode
from .execute import StepExecutor
from .handlers import HandlerRegistry, default_registry
from .persistence import get_repository
from .variables import VariableBag

__version__ = "0.1.0"
__all__ = [
    "ApiRequest",
    "ApiflowError",
    "Assertion",
    "ErrorCode",
    "ExecutionStatus",
    "HandlerRegistry",
    "NormalizedResponse",
    "RunContext",
    "StepExecutor",
    "StepResult",
    "VariableBag",
    "VariableMapping",
    "Workflow",
    "WorkflowEngine",
    "WorkflowResult",
    "WorkflowStep",
    "default_registry",
    "get_repository",
]
