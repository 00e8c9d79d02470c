"""Notification message models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID


class NotificationPriority(str, Enum):
    """Delivery priority of a notification."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationEvent(str, Enum):
    """Phase transitions that produce notifications."""

    DEPLOYMENT_STARTED = "deployment_started"
    DEPLOYMENT_SUCCEEDED = "deployment_succeeded"
    DEPLOYMENT_FAILED = "deployment_failed"
    VALIDATION_FAILED = "validation_failed"
    ROLLBACK_STARTED = "rollback_started"
    APPROVAL_REQUIRED = "approval_required"


class NotificationMessage(BaseModel):
    """A notification delivered to every registered channel."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: str(ULID()))
    event: NotificationEvent
    title: str
    body: str
    environment: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationHistoryEntry(BaseModel):
    """Delivery record of one notification."""

    model_config = ConfigDict(extra="forbid")

    message: NotificationMessage
    channels: list[str] = Field(default_factory=list)
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: str = "sent"
    error: str | None = None
