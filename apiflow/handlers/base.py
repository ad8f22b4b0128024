"""Base protocol handler interface."""

from __future__ import annotations

import abc
import logging
import time
from typing import Any, Optional

from ..contracts import ApiRequest, NormalizedResponse, ValidationResult

logger = logging.getLogger(__name__)

# Synthetic status for failures where no response arrived at all.
TRANSPORT_ERROR_STATUS = 0


class ProtocolHandler(metaclass=abc.ABCMeta):
    """Executes one request for a single wire protocol.

    Implementations must not keep per-call state on the instance; one
    handler serves concurrent workflow runs.
    """

    protocol: str = ""

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout

    @abc.abstractmethod
    def validate(self, request: ApiRequest) -> ValidationResult:
        """Check the fields this protocol requires. No network access."""
        raise NotImplementedError

    @abc.abstractmethod
    async def _dispatch(self, request: ApiRequest, timeout: float) -> NormalizedResponse:
        """Perform the call. ``duration`` is filled in by ``execute``."""
        raise NotImplementedError

    def _failure(
        self, error: str, status_code: Optional[int] = TRANSPORT_ERROR_STATUS, body: Any = None
    ) -> NormalizedResponse:
        return NormalizedResponse(
            status_code=status_code,
            headers={},
            body=body if body is not None else {"error": error},
            success=False,
            error=error,
        )

    def _transport_failure(self, exc: Exception, timeout: float) -> NormalizedResponse:
        """Map an exception raised by the client library to a response."""
        return self._failure(f"{type(exc).__name__}: {exc}")

    async def execute(self, request: ApiRequest) -> NormalizedResponse:
        """Run ``request`` and always return a response envelope.

        Transport errors and timeouts come back as failed responses.
        """
        timeout = request.timeout or self.timeout
        start = time.perf_counter()
        try:
            response = await self._dispatch(request, timeout)
        except Exception as exc:
            logger.warning(f"{request.describe()} failed: {exc!r}")
            response = self._transport_failure(exc, timeout)
        response.duration = round((time.perf_counter() - start) * 1000, 3)
        logger.debug(
            f"{request.describe()} -> {response.status_code} in {response.duration}ms"
        )
        return response

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(protocol={self.protocol!r})"
