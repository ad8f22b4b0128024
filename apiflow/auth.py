"""Credential injection applied to requests before they reach a handler."""

from __future__ import annotations

import base64
import logging
import os
from typing import Dict, Literal, Optional, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, field_validator

from .contracts import ApiRequest

logger = logging.getLogger(__name__)


class AuthConfig(BaseModel):
    """Credentials for one API.

    Secret values written as ``${ENV_VAR}`` are read from the environment.
    """

    auth_type: Literal["bearer", "apikey", "basic", "oauth2"]
    token: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None
    location: Literal["header", "query"] = "header"
    username: Optional[str] = None
    password: Optional[str] = None
    token_type: str = "Bearer"

    @field_validator("token", "value", "password", mode="before")
    @classmethod
    def _expand_env(cls, raw: Optional[str]) -> Optional[str]:
        if isinstance(raw, str) and raw.startswith("${") and raw.endswith("}"):
            return os.environ.get(raw[2:-1], "")
        return raw


class AuthProvider(Protocol):
    """Resolves the auth reference carried by a request."""

    async def resolve(self, auth_ref: str) -> AuthConfig | None:
        """Return the credentials registered under ``auth_ref``."""


class StaticAuthProvider(AuthProvider):
    """Serve credentials from a fixed mapping, typically the YAML config."""

    def __init__(self, configs: Optional[Dict[str, AuthConfig]] = None) -> None:
        self._configs = dict(configs or {})

    def add(self, auth_ref: str, config: AuthConfig) -> None:
        self._configs[auth_ref] = config

    async def resolve(self, auth_ref: str) -> AuthConfig | None:
        return self._configs.get(auth_ref)


def _credential_headers(config: AuthConfig) -> Dict[str, str]:
    if config.auth_type == "bearer":
        return {"Authorization": f"Bearer {config.token or ''}"}
    if config.auth_type == "oauth2":
        return {"Authorization": f"{config.token_type} {config.token or ''}"}
    if config.auth_type == "basic":
        raw = f"{config.username or ''}:{config.password or ''}".encode()
        return {"Authorization": f"Basic {base64.b64encode(raw).decode()}"}
    if config.auth_type == "apikey" and config.location == "header":
        return {config.key or "X-API-Key": config.value or ""}
    return {}


def _with_query_param(endpoint: str, key: str, value: str) -> str:
    parts = urlsplit(endpoint)
    params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    params.append((key, value))
    return urlunsplit(parts._replace(query=urlencode(params)))


def apply_auth(request: ApiRequest, config: Optional[AuthConfig]) -> ApiRequest:
    """Return a copy of ``request`` carrying the credentials in ``config``."""

    if config is None:
        return request

    if request.protocol.lower() == "grpc":
        # gRPC metadata keys must be lower case.
        if config.auth_type == "apikey":
            extra = {(config.key or "api-key").lower(): config.value or ""}
        else:
            extra = {k.lower(): v for k, v in _credential_headers(config).items()}
        return request.model_copy(update={"metadata": {**request.metadata, **extra}})

    if config.auth_type == "apikey" and config.location == "query":
        key = config.key or "api_key"
        if isinstance(request.query, dict) or request.protocol.lower() == "rest":
            query = dict(request.query) if isinstance(request.query, dict) else {}
            query[key] = config.value or ""
            return request.model_copy(update={"query": query})
        endpoint = _with_query_param(request.endpoint or "", key, config.value or "")
        return request.model_copy(update={"endpoint": endpoint})

    headers = {**request.headers, **_credential_headers(config)}
    return request.model_copy(update={"headers": headers})


class AuthInjector:
    """Looks up credentials for a request and applies them."""

    def __init__(self, provider: Optional[AuthProvider] = None) -> None:
        self._provider = provider

    async def inject(self, request: ApiRequest) -> ApiRequest:
        if not request.auth_ref or self._provider is None:
            return request
        config = await self._provider.resolve(request.auth_ref)
        if config is None:
            logger.warning(f"No auth config registered for {request.auth_ref!r}")
            return request
        return apply_auth(request, config)
