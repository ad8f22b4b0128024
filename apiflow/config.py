from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .auth import AuthConfig


class HttpConfig(BaseModel):
    """Settings shared by the REST and GraphQL handlers."""

    timeout_seconds: float = 30.0
    base_url: Optional[str] = None
    verify_ssl: bool = True


class GrpcConfig(BaseModel):
    """Settings for the gRPC handler."""

    timeout_seconds: float = 30.0
    use_tls: bool = False


class HistoryConfig(BaseModel):
    enabled: bool = True


class ApiflowConfig(BaseModel):
    """Top-level configuration model."""

    http: HttpConfig = HttpConfig()
    grpc: GrpcConfig = GrpcConfig()
    history: HistoryConfig = HistoryConfig()
    database_url: Optional[str] = None
    auth: Dict[str, AuthConfig] = Field(default_factory=dict)
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> ApiflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to APIFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("APIFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ApiflowConfig(**data)
    else:
        config = ApiflowConfig()

    env_db_url = os.getenv("APIFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
