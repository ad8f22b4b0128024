"""Protocol handler registry."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..config import ApiflowConfig, load_config
from ..errors import InvalidProtocolError
from .base import ProtocolHandler
from .graphql import GraphQLHandler
from .grpc import GrpcHandler
from .rest import RestHandler

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Maps protocol tags to handler instances."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ProtocolHandler] = {}

    def register(self, handler: ProtocolHandler, protocol: Optional[str] = None) -> None:
        """Register ``handler`` under ``protocol`` (defaults to its own tag)."""
        tag = (protocol or handler.protocol).lower()
        if not tag:
            raise ValueError(f"{handler!r} has no protocol tag")
        self._handlers[tag] = handler
        logger.debug(f"Registered protocol handler: {tag}")

    def get(self, protocol: Optional[str]) -> ProtocolHandler:
        """Return the handler for ``protocol``.

        Raises:
            InvalidProtocolError: if nothing is registered for the tag.
        """
        handler = self._handlers.get((protocol or "").lower())
        if handler is None:
            raise InvalidProtocolError(protocol)
        return handler

    def protocols(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, protocol: object) -> bool:
        return isinstance(protocol, str) and protocol.lower() in self._handlers


def default_registry(config: Optional[ApiflowConfig] = None) -> HandlerRegistry:
    """Build a registry with the REST, GraphQL and gRPC handlers."""

    config = config or load_config()
    registry = HandlerRegistry()
    http = config.http
    registry.register(
        RestHandler(
            timeout=http.timeout_seconds, base_url=http.base_url, verify_ssl=http.verify_ssl
        )
    )
    registry.register(
        GraphQLHandler(
            timeout=http.timeout_seconds, base_url=http.base_url, verify_ssl=http.verify_ssl
        )
    )
    registry.register(
        GrpcHandler(timeout=config.grpc.timeout_seconds, use_tls=config.grpc.use_tls)
    )
    return registry


__all__ = [
    "GraphQLHandler",
    "GrpcHandler",
    "HandlerRegistry",
    "ProtocolHandler",
    "RestHandler",
    "default_registry",
]
