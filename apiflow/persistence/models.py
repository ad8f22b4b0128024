"""Data models for persisted workflows and request history."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


class HistoryEntry(BaseModel):
    """Record of one executed request."""

    id: Optional[int] = None
    user_id: str = "default-user"
    workflow_id: Optional[str] = None
    step_order: Optional[int] = None
    request: dict[str, Any] = Field(default_factory=dict)
    response: dict[str, Any] = Field(default_factory=dict)
    duration: float = 0.0
    success: bool = False
    source: str = "workflow"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
