"""Assertion evaluation against normalized responses."""

from __future__ import annotations

import json
import logging
from typing import Callable, Dict, List

from .contracts import Assertion, AssertionResult, NormalizedResponse
from .errors import ExtractionError
from .variables import extract

logger = logging.getLogger(__name__)


def _status_code(assertion: Assertion, response: NormalizedResponse) -> AssertionResult:
    actual = response.status_code
    passed = actual == assertion.expected
    return AssertionResult(
        type=assertion.type,
        expected=assertion.expected,
        actual=actual,
        passed=passed,
        message=(
            f"Status code is {assertion.expected}"
            if passed
            else f"Expected status {assertion.expected}, got {actual}"
        ),
    )


def _response_time(assertion: Assertion, response: NormalizedResponse) -> AssertionResult:
    actual = response.duration
    passed = assertion.expected is not None and actual <= float(assertion.expected)
    return AssertionResult(
        type=assertion.type,
        expected=assertion.expected,
        actual=actual,
        passed=passed,
        message=(
            f"Response time {actual:.0f}ms is within {assertion.expected}ms"
            if passed
            else f"Response time {actual:.0f}ms exceeds {assertion.expected}ms"
        ),
    )


def _body_contains(assertion: Assertion, response: NormalizedResponse) -> AssertionResult:
    body = response.body if isinstance(response.body, str) else json.dumps(response.body)
    needle = str(assertion.expected)
    passed = needle in body
    return AssertionResult(
        type=assertion.type,
        expected=assertion.expected,
        actual=body,
        passed=passed,
        message=(
            f'Response body contains "{needle}"'
            if passed
            else f'Response body does not contain "{needle}"'
        ),
    )


def _header_exists(assertion: Assertion, response: NormalizedResponse) -> AssertionResult:
    wanted = str(assertion.expected).lower()
    actual = next(
        (value for name, value in response.headers.items() if name.lower() == wanted),
        None,
    )
    passed = actual is not None
    return AssertionResult(
        type=assertion.type,
        expected=assertion.expected,
        actual=actual,
        passed=passed,
        message=(
            f'Header "{assertion.expected}" exists'
            if passed
            else f'Header "{assertion.expected}" not found'
        ),
    )


def _json_path(assertion: Assertion, response: NormalizedResponse) -> AssertionResult:
    path = assertion.path or "$"
    try:
        actual = extract(response.body, path)
    except ExtractionError as exc:
        return AssertionResult(
            type=assertion.type,
            expected=assertion.expected,
            passed=False,
            message=exc.message,
        )
    passed = actual == assertion.expected
    return AssertionResult(
        type=assertion.type,
        expected=assertion.expected,
        actual=actual,
        passed=passed,
        message=(
            f"JSONPath {path} matches expected value"
            if passed
            else f"JSONPath {path} value mismatch"
        ),
    )


CHECKS: Dict[str, Callable[[Assertion, NormalizedResponse], AssertionResult]] = {
    "statusCode": _status_code,
    "responseTime": _response_time,
    "bodyContains": _body_contains,
    "headerExists": _header_exists,
    "jsonPath": _json_path,
}


def run_assertions(
    assertions: List[Assertion], response: NormalizedResponse
) -> List[AssertionResult]:
    """Evaluate every assertion; unknown types count as failures.

    A check that blows up (e.g. a non-numeric ``responseTime`` limit) is
    reported as a failed result instead of propagating.
    """

    results: List[AssertionResult] = []
    for assertion in assertions:
        check = CHECKS.get(assertion.type)
        if check is None:
            results.append(
                AssertionResult(
                    type=assertion.type,
                    expected=assertion.expected,
                    message=f"Unknown assertion type: {assertion.type}",
                )
            )
            continue
        try:
            results.append(check(assertion, response))
        except Exception as exc:
            logger.warning(f"Assertion {assertion.type} could not be evaluated: {exc}")
            results.append(
                AssertionResult(
                    type=assertion.type,
                    expected=assertion.expected,
                    message=f"Assertion error: {exc}",
                )
            )
    return results
