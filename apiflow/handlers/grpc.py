"""gRPC protocol handler.

Calls are made without compiled stubs: the method is invoked generically as
``/{service}/{rpc_method}`` and messages travel JSON encoded, which servers
registering a JSON codec (or a transcoding proxy) accept.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

import grpc

from ..contracts import ApiRequest, NormalizedResponse, ValidationResult
from .base import ProtocolHandler

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[str], Any]


def _serialize(message: Any) -> bytes:
    return json.dumps(message or {}).encode("utf-8")


def _deserialize(raw: bytes) -> Any:
    if not raw:
        return None
    return json.loads(raw.decode("utf-8"))


def _metadata_dict(metadata: Any) -> Dict[str, Any]:
    return {key: value for key, value in (metadata or ())}


def is_host_port(endpoint: str) -> bool:
    if "://" in endpoint:
        return False
    host, sep, port = endpoint.rpartition(":")
    return bool(sep and host and port.isdigit())


class GrpcHandler(ProtocolHandler):
    """Handles unary gRPC calls."""

    protocol = "grpc"

    def __init__(
        self,
        timeout: float = 30.0,
        use_tls: bool = False,
        channel_factory: Optional[ChannelFactory] = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self.use_tls = use_tls
        self._channel_factory = channel_factory or self._open_channel

    def _open_channel(self, endpoint: str) -> grpc.aio.Channel:
        if self.use_tls:
            return grpc.aio.secure_channel(endpoint, grpc.ssl_channel_credentials())
        return grpc.aio.insecure_channel(endpoint)

    def validate(self, request: ApiRequest) -> ValidationResult:
        errors: list[str] = []
        if not request.service:
            errors.append("service is required")
        if not request.rpc_method:
            errors.append("rpcMethod is required")
        if not request.endpoint:
            errors.append("endpoint is required")
        elif not is_host_port(request.endpoint):
            errors.append("endpoint must be host:port")
        if request.body is not None and not isinstance(request.body, dict):
            errors.append("body must be a message mapping")
        return ValidationResult(valid=not errors, errors=errors)

    def _transport_failure(self, exc: Exception, timeout: float) -> NormalizedResponse:
        if isinstance(exc, grpc.aio.AioRpcError):
            code = exc.code()
            return NormalizedResponse(
                status_code=code.value[0],
                headers=_metadata_dict(exc.trailing_metadata()),
                body={"error": exc.details() or code.name},
                success=False,
                error=f"{code.name}: {exc.details()}",
            )
        return self._failure(
            f"{type(exc).__name__}: {exc}", status_code=grpc.StatusCode.UNKNOWN.value[0]
        )

    async def _dispatch(self, request: ApiRequest, timeout: float) -> NormalizedResponse:
        path = f"/{request.service}/{request.rpc_method}"
        metadata = tuple(
            (key.lower(), str(value))
            for key, value in {**request.headers, **request.metadata}.items()
        )

        channel = self._channel_factory(request.endpoint)
        try:
            rpc = channel.unary_unary(
                path,
                request_serializer=_serialize,
                response_deserializer=_deserialize,
            )
            call = rpc(request.body or {}, metadata=metadata, timeout=timeout)
            message = await call
            headers = {
                **_metadata_dict(await call.initial_metadata()),
                **_metadata_dict(await call.trailing_metadata()),
            }
        finally:
            await channel.close()

        return NormalizedResponse(
            status_code=grpc.StatusCode.OK.value[0],
            headers=headers,
            body=message,
            success=True,
        )
