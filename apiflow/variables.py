"""Variable extraction and ``{{placeholder}}`` substitution."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError
from jsonpath_ng.ext import parse as parse_path

from .contracts import ApiRequest, VariableMapping
from .errors import ExtractionError, UnresolvedVariableError

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.\-]*)\s*\}\}")

# An unresolved token in one of these fails the step instead of warning.
REQUIRED_FIELDS = ("endpoint", "method", "service", "rpc_method")

_MISSING = object()


class VariableBag:
    """Run-scoped variables and the outputs of steps that succeeded.

    Outputs are keyed by the step's position in the ordered step list.
    A bag belongs to exactly one run and is never shared.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(initial or {})
        self._outputs: Dict[int, Any] = {}

    def bind(self, name: str, value: Any) -> None:
        self._values[name] = value

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def record_output(self, position: int, body: Any) -> None:
        self._outputs[position] = body

    def has_output(self, position: int) -> bool:
        return position in self._outputs

    def output(self, position: int) -> Any:
        return self._outputs[position]


def extract(body: Any, path: str) -> Any:
    """Evaluate a JSONPath expression against ``body``.

    ``id`` is shorthand for ``$.id``. One match yields the value itself,
    several matches yield a list.

    Raises:
        ExtractionError: if the path is malformed or matches nothing.
    """

    expression = path.strip()
    if not expression.startswith("$"):
        expression = f"$.{expression}" if not expression.startswith("[") else f"${expression}"
    try:
        compiled = parse_path(expression)
    except (JsonPathLexerError, JsonPathParserError) as exc:
        raise ExtractionError(path, f"invalid path ({exc})") from exc

    matches = [match.value for match in compiled.find(body)]
    if not matches:
        raise ExtractionError(path)
    if len(matches) == 1 and "*" not in expression and "?" not in expression:
        return matches[0]
    return matches


def bind_mappings(
    mappings: Iterable[VariableMapping], bag: VariableBag
) -> List[str]:
    """Extract each mapping from its source step output into ``bag``.

    Returns warnings for mappings that could not be resolved: the source
    step has not run, did not succeed, or the path matched nothing.
    """

    warnings: List[str] = []
    for mapping in mappings:
        if not bag.has_output(mapping.source_step):
            message = (
                f"Variable '{mapping.target_variable}': source step "
                f"{mapping.source_step} has no successful output"
            )
            logger.warning(message)
            warnings.append(message)
            continue
        try:
            value = extract(bag.output(mapping.source_step), mapping.source_path)
        except ExtractionError as exc:
            message = f"Variable '{mapping.target_variable}': {exc.message}"
            logger.warning(message)
            warnings.append(message)
            continue
        bag.bind(mapping.target_variable, value)
        logger.debug(f"Bound {mapping.target_variable}={value!r}")
    return warnings


def stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _replace(text: str, bag: VariableBag, unresolved: List[str]) -> str:
    def _sub(match: re.Match) -> str:
        name = match.group(1)
        value = bag.get(name, _MISSING)
        if value is _MISSING:
            if name not in unresolved:
                unresolved.append(name)
            return match.group(0)
        return stringify(value)

    return PLACEHOLDER.sub(_sub, text)


def _walk(value: Any, bag: VariableBag, unresolved: List[str]) -> Any:
    if isinstance(value, str):
        return _replace(value, bag, unresolved)
    if isinstance(value, dict):
        return {key: _walk(item, bag, unresolved) for key, item in value.items()}
    if isinstance(value, list):
        return [_walk(item, bag, unresolved) for item in value]
    return value


def substitute(
    request: ApiRequest, bag: VariableBag
) -> Tuple[ApiRequest, Dict[str, List[str]]]:
    """Replace ``{{name}}`` tokens in every string field of ``request``.

    The input request is left untouched. Returns the resolved copy and the
    names left unresolved, per field.

    Raises:
        UnresolvedVariableError: if a token in endpoint, method, service or
            rpc_method has no value in ``bag``.
    """

    data = request.model_dump()
    resolved: Dict[str, Any] = {}
    unresolved: Dict[str, List[str]] = {}
    for field, value in data.items():
        if field in ("protocol", "auth_ref", "timeout"):
            resolved[field] = value
            continue
        missing: List[str] = []
        resolved[field] = _walk(value, bag, missing)
        if missing:
            unresolved[field] = missing

    for field in REQUIRED_FIELDS:
        if field in unresolved:
            raise UnresolvedVariableError(field, unresolved[field])

    return ApiRequest.model_validate(resolved), unresolved
