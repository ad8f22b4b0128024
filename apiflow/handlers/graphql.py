"""GraphQL protocol handler."""

from __future__ import annotations

from typing import Any

from ..contracts import ApiRequest, NormalizedResponse, ValidationResult
from .rest import HttpHandler, parse_body


class GraphQLHandler(HttpHandler):
    """Handles GraphQL queries and mutations over HTTP POST."""

    protocol = "graphql"

    def validate(self, request: ApiRequest) -> ValidationResult:
        errors: list[str] = []
        if not request.query:
            errors.append("query is required")
        elif not isinstance(request.query, str):
            errors.append("query must be a string")
        self._check_endpoint(request, errors)
        return ValidationResult(valid=not errors, errors=errors)

    async def _dispatch(self, request: ApiRequest, timeout: float) -> NormalizedResponse:
        payload: dict[str, Any] = {"query": request.query}
        if request.variables:
            payload["variables"] = request.variables
        headers = {"Content-Type": "application/json", **request.headers}

        url = self.resolve_url(request.endpoint)
        async with self._client(timeout) as client:
            response = await client.post(url, json=payload, headers=headers)

        body = parse_body(response)
        normalized = self._envelope(response, body)
        errors = body.get("errors") if isinstance(body, dict) else None
        if normalized.success and errors:
            # Servers answer 200 even when the operation failed.
            messages = ", ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
            )
            normalized.success = False
            normalized.error = f"GraphQL errors: {messages}"
        return normalized
