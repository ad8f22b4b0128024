"""REST protocol handler."""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

from ..contracts import ApiRequest, NormalizedResponse, ValidationResult
from .base import ProtocolHandler

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def is_absolute_url(endpoint: str) -> bool:
    parts = urlsplit(endpoint)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def parse_body(response: httpx.Response) -> Any:
    """Decode JSON when possible, otherwise return the text."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpHandler(ProtocolHandler):
    """Shared plumbing for handlers that speak HTTP through ``httpx``."""

    def __init__(
        self,
        timeout: float = 30.0,
        base_url: Optional[str] = None,
        verify_ssl: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self.base_url = base_url.rstrip("/") if base_url else None
        self.verify_ssl = verify_ssl
        # Injected for tests; a fresh client is opened per call.
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout, verify=self.verify_ssl, transport=self._transport
        )

    def resolve_url(self, endpoint: str) -> str:
        if is_absolute_url(endpoint) or not self.base_url:
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _check_endpoint(self, request: ApiRequest, errors: list[str]) -> None:
        if not request.endpoint:
            errors.append("endpoint is required")
        elif not is_absolute_url(self.resolve_url(request.endpoint)):
            errors.append("endpoint must be a valid URL")

    def _transport_failure(self, exc: Exception, timeout: float) -> NormalizedResponse:
        if isinstance(exc, httpx.TimeoutException):
            return self._failure(f"Request timed out after {timeout}s")
        if isinstance(exc, httpx.RequestError):
            return self._failure(f"Request failed: {exc}")
        return super()._transport_failure(exc, timeout)

    @staticmethod
    def _envelope(response: httpx.Response, body: Any) -> NormalizedResponse:
        success = response.status_code < 400
        return NormalizedResponse(
            status_code=response.status_code,
            headers=dict(response.headers.items()),
            body=body,
            success=success,
            error=None if success else f"Request failed with status code {response.status_code}",
        )


class RestHandler(HttpHandler):
    """Handles REST API requests."""

    protocol = "rest"

    def validate(self, request: ApiRequest) -> ValidationResult:
        errors: list[str] = []
        if not request.method:
            errors.append("method is required")
        elif request.method.upper() not in ALLOWED_METHODS:
            errors.append(f"method must be one of: {', '.join(ALLOWED_METHODS)}")
        self._check_endpoint(request, errors)
        if request.query is not None and not isinstance(request.query, dict):
            errors.append("query must be a mapping of parameters")
        return ValidationResult(valid=not errors, errors=errors)

    async def _dispatch(self, request: ApiRequest, timeout: float) -> NormalizedResponse:
        method = request.method.upper()
        kwargs: dict[str, Any] = {
            "headers": request.headers,
            "params": request.query or None,
        }
        if method in BODY_METHODS and request.body is not None:
            if isinstance(request.body, (str, bytes)):
                kwargs["content"] = request.body
            else:
                kwargs["json"] = request.body

        url = self.resolve_url(request.endpoint)
        async with self._client(timeout) as client:
            response = await client.request(method, url, **kwargs)
        return self._envelope(response, parse_body(response))
