"""Deployment notifications: the notifier interface and its channels."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

import httpx

from rollgate.lib.errors import ConfigError, NotificationError
from rollgate.lib.logging_config import get_logger
from rollgate.models.config import NotificationConfig
from rollgate.models.notification import (
    NotificationEvent,
    NotificationHistoryEntry,
    NotificationMessage,
    NotificationPriority,
)
from rollgate.models.plan import ProvisioningResult

logger = get_logger(__name__)

_LOG_LEVELS = {
    NotificationPriority.LOW: logging.DEBUG,
    NotificationPriority.NORMAL: logging.INFO,
    NotificationPriority.HIGH: logging.WARNING,
    NotificationPriority.CRITICAL: logging.ERROR,
}


class Notifier(ABC):
    """Receives a call at every deployment phase transition."""

    @abstractmethod
    async def send_deployment_started(self, environment: str, plan_id: str) -> None:
        """A plan started executing."""

    @abstractmethod
    async def send_deployment_succeeded(
        self, environment: str, plan_id: str, result: ProvisioningResult | None
    ) -> None:
        """A plan finished with every phase passing."""

    @abstractmethod
    async def send_deployment_failed(
        self, environment: str, plan_id: str, error: Exception
    ) -> None:
        """A plan failed before or during provisioning."""

    @abstractmethod
    async def send_validation_failed(
        self, environment: str, plan_id: str, error: Exception
    ) -> None:
        """Post-deploy validation failed after provisioning succeeded."""

    @abstractmethod
    async def send_rollback_started(
        self, environment: str, plan_id: str, original_error: Exception
    ) -> None:
        """A rollback was started because of ``original_error``."""

    @abstractmethod
    async def send_approval_required(
        self,
        environment: str,
        plan_id: str,
        approval_id: str,
        approvers: list[str],
    ) -> None:
        """An approval is waiting on people."""


class NotificationChannel(ABC):
    """A destination for notification messages."""

    @abstractmethod
    async def send(self, message: NotificationMessage) -> None:
        """Deliver a message. Raise on failure."""


class LoggingNotificationChannel(NotificationChannel):
    """Writes notifications to the log, at a level matching their priority."""

    async def send(self, message: NotificationMessage) -> None:
        level = _LOG_LEVELS[message.priority]
        details = ", ".join(f"{k}={v}" for k, v in message.data.items())
        logger.log(
            level,
            f"[{message.priority.value}] {message.environment}: {message.title} - "
            f"{message.body}" + (f" ({details})" if details else ""),
        )


class WebhookNotificationChannel(NotificationChannel):
    """Posts notifications as JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.transport = transport

    async def send(self, message: NotificationMessage) -> None:
        async with httpx.AsyncClient(
            timeout=self.timeout, headers=self.headers, transport=self.transport
        ) as client:
            response = await client.post(
                self.url, json=message.model_dump(mode="json")
            )
            response.raise_for_status()
        logger.debug(
            f"Webhook notification {message.id} delivered: "
            f"status={response.status_code}"
        )


class NotificationManager(Notifier):
    """Fans messages out to every registered channel and keeps a history.

    Every channel is tried even when an earlier one fails; failures are
    collected into a single NotificationError.
    """

    def __init__(self, channels: dict[str, NotificationChannel] | None = None) -> None:
        self._channels: dict[str, NotificationChannel] = dict(channels or {})
        self._history: list[NotificationHistoryEntry] = []
        self._lock = threading.Lock()

    def register_channel(self, name: str, channel: NotificationChannel) -> None:
        self._channels[name] = channel

    @property
    def channels(self) -> list[str]:
        return list(self._channels)

    async def send_notification(self, message: NotificationMessage) -> None:
        """Deliver a message to every channel.

        Raises:
            NotificationError: If one or more channels failed
        """
        failures: dict[str, Any] = {}
        for name, channel in list(self._channels.items()):
            try:
                await channel.send(message)
            except Exception as exc:
                failures[name] = exc

        entry = NotificationHistoryEntry(
            message=message,
            channels=[name for name in self._channels if name not in failures],
            status="failed" if failures else "sent",
            error=str(NotificationError(failures)) if failures else None,
        )
        with self._lock:
            self._history.append(entry)

        if failures:
            raise NotificationError(failures)

    def get_history(
        self, environment: str | None = None
    ) -> list[NotificationHistoryEntry]:
        """Return delivery records in send order, optionally for one environment."""
        with self._lock:
            return [
                entry
                for entry in self._history
                if environment is None or entry.message.environment == environment
            ]

    async def send_deployment_started(self, environment: str, plan_id: str) -> None:
        await self.send_notification(
            NotificationMessage(
                event=NotificationEvent.DEPLOYMENT_STARTED,
                title=f"Deployment Started - {environment}",
                body=f"Deployment {plan_id} has started for environment {environment}",
                environment=environment,
                priority=NotificationPriority.NORMAL,
                data={"deployment_id": plan_id, "status": "started"},
            )
        )

    async def send_deployment_succeeded(
        self, environment: str, plan_id: str, result: ProvisioningResult | None
    ) -> None:
        duration = result.duration if result else 0.0
        await self.send_notification(
            NotificationMessage(
                event=NotificationEvent.DEPLOYMENT_SUCCEEDED,
                title=f"Deployment Succeeded - {environment}",
                body=(
                    f"Deployment {plan_id} completed successfully for environment "
                    f"{environment} in {duration:.2f}s"
                ),
                environment=environment,
                priority=NotificationPriority.NORMAL,
                data={
                    "deployment_id": plan_id,
                    "status": "succeeded",
                    "duration": duration,
                    "resources": len(result.resources) if result else 0,
                },
            )
        )

    async def send_deployment_failed(
        self, environment: str, plan_id: str, error: Exception
    ) -> None:
        await self.send_notification(
            NotificationMessage(
                event=NotificationEvent.DEPLOYMENT_FAILED,
                title=f"Deployment Failed - {environment}",
                body=(
                    f"Deployment {plan_id} failed for environment {environment}: "
                    f"{error}"
                ),
                environment=environment,
                priority=NotificationPriority.CRITICAL,
                data={
                    "deployment_id": plan_id,
                    "status": "failed",
                    "error": str(error),
                },
            )
        )

    async def send_validation_failed(
        self, environment: str, plan_id: str, error: Exception
    ) -> None:
        await self.send_notification(
            NotificationMessage(
                event=NotificationEvent.VALIDATION_FAILED,
                title=f"Validation Failed - {environment}",
                body=(
                    f"Validation failed for deployment {plan_id} in environment "
                    f"{environment}: {error}"
                ),
                environment=environment,
                priority=NotificationPriority.HIGH,
                data={
                    "deployment_id": plan_id,
                    "type": "validation_failed",
                    "error": str(error),
                },
            )
        )

    async def send_rollback_started(
        self, environment: str, plan_id: str, original_error: Exception
    ) -> None:
        await self.send_notification(
            NotificationMessage(
                event=NotificationEvent.ROLLBACK_STARTED,
                title=f"Rollback Started - {environment}",
                body=(
                    f"Rollback initiated for deployment {plan_id} in environment "
                    f"{environment} due to: {original_error}"
                ),
                environment=environment,
                priority=NotificationPriority.HIGH,
                data={
                    "deployment_id": plan_id,
                    "type": "rollback_started",
                    "original_error": str(original_error),
                },
            )
        )

    async def send_approval_required(
        self,
        environment: str,
        plan_id: str,
        approval_id: str,
        approvers: list[str],
    ) -> None:
        await self.send_notification(
            NotificationMessage(
                event=NotificationEvent.APPROVAL_REQUIRED,
                title=f"Approval Required - {environment}",
                body=(
                    f"Deployment {plan_id} to {environment} requires approval "
                    f"(ID: {approval_id}). Required approvers: {', '.join(approvers)}"
                ),
                environment=environment,
                priority=NotificationPriority.HIGH,
                data={
                    "deployment_id": plan_id,
                    "approval_id": approval_id,
                    "type": "approval_required",
                    "approvers": list(approvers),
                },
            )
        )


def create_notifier(config: NotificationConfig | None = None) -> NotificationManager:
    """Create a notification manager with the configured channels.

    Raises:
        ConfigError: If a channel name is unknown
    """
    config = config or NotificationConfig()
    manager = NotificationManager()

    for name in config.channels:
        if name == "log":
            manager.register_channel(name, LoggingNotificationChannel())
        elif name == "webhook":
            if not config.webhook_url:
                raise ConfigError(
                    "notifications.webhook_url",
                    "webhook_url is required when the webhook channel is on",
                )
            manager.register_channel(
                name,
                WebhookNotificationChannel(
                    config.webhook_url, timeout=config.webhook_timeout
                ),
            )
        else:
            raise ConfigError(
                "notifications.channels", f"Unknown notification channel: {name}"
            )

    return manager
