"""Shared fakes for handler, executor and engine tests."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import grpc
import httpx
import pytest

from apiflow.handlers import GraphQLHandler, GrpcHandler, HandlerRegistry, RestHandler

BASE_URL = "https://api.test"
UNREACHABLE_HOST = "unreachable.invalid"


class FakeApi:
    """In-process HTTP API served through ``httpx.MockTransport``.

    Routes are keyed by method and path; every request that reaches the
    transport is kept in ``calls``.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: List[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        def _respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json=json_body, headers=headers)

        self.routes[(method.upper(), path)] = _respond

    def add_callable(
        self, method: str, path: str, fn: Callable[[httpx.Request], httpx.Response]
    ) -> None:
        self.routes[(method.upper(), path)] = fn

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if request.url.host == UNREACHABLE_HOST:
            raise httpx.ConnectError("Name or service not known", request=request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        return route(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


class FakeCall:
    """Stands in for ``grpc.aio.UnaryUnaryCall``."""

    def __init__(self, result: Any = None, error: Optional[Exception] = None) -> None:
        self._result = result
        self._error = error

    def __await__(self):
        return self._resolve().__await__()

    async def _resolve(self) -> Any:
        if self._error is not None:
            raise self._error
        return self._result

    async def initial_metadata(self):
        return (("content-type", "application/grpc"),)

    async def trailing_metadata(self):
        return (("x-served-by", "fake"),)


class FakeGrpcChannel:
    """Fake channel answering unary calls from a mapping of method paths."""

    def __init__(self, methods: Dict[str, Callable[[dict], dict]]) -> None:
        self.methods = methods
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def unary_unary(self, path, request_serializer=None, response_deserializer=None):
        def invoke(message, metadata=None, timeout=None):
            self.calls.append(
                {"path": path, "message": message, "metadata": dict(metadata or ()), "timeout": timeout}
            )
            fn = self.methods.get(path)
            if fn is None:
                return FakeCall(
                    error=grpc.aio.AioRpcError(
                        grpc.StatusCode.UNIMPLEMENTED,
                        grpc.aio.Metadata(),
                        grpc.aio.Metadata(),
                        details=f"Method {path} not found",
                    )
                )
            decoded = json.loads(request_serializer(message))
            return FakeCall(result=response_deserializer(json.dumps(fn(decoded)).encode()))

        return invoke

    async def close(self) -> None:
        self.closed = True


class FakeGrpcServer:
    """Hands out ``FakeGrpcChannel``s and remembers the endpoints dialed."""

    def __init__(self) -> None:
        self.methods: Dict[str, Callable[[dict], dict]] = {}
        self.channels: List[FakeGrpcChannel] = []
        self.endpoints: List[str] = []

    def add(self, path: str, fn: Callable[[dict], dict]) -> None:
        self.methods[path] = fn

    def __call__(self, endpoint: str) -> FakeGrpcChannel:
        self.endpoints.append(endpoint)
        channel = FakeGrpcChannel(self.methods)
        self.channels.append(channel)
        return channel


def build_registry(fake_api: FakeApi, grpc_server: FakeGrpcServer) -> HandlerRegistry:
    transport = fake_api.transport()
    registry = HandlerRegistry()
    registry.register(RestHandler(base_url=BASE_URL, transport=transport))
    registry.register(GraphQLHandler(base_url=BASE_URL, transport=transport))
    registry.register(GrpcHandler(channel_factory=grpc_server))
    return registry


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def grpc_server() -> FakeGrpcServer:
    return FakeGrpcServer()


@pytest.fixture
def registry(fake_api: FakeApi, grpc_server: FakeGrpcServer) -> HandlerRegistry:
    return build_registry(fake_api, grpc_server)
