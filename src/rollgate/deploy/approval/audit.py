"""Append-only approval audit log and its storage backends."""

from __future__ import annotations

import asyncio
import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from rollgate.lib.errors import ConfigError
from rollgate.lib.logging_config import get_logger
from rollgate.models.approval import ApprovalAuditEntry, ApprovalAuditState

logger = get_logger(__name__)

AUDIT_VERSION = "1.0"


class AuditStore(ABC):
    """Storage for audit entries: append and query, never update."""

    @abstractmethod
    def append(self, entry: ApprovalAuditEntry) -> None:
        """Append an entry."""

    @abstractmethod
    def entries(self, environment: str | None = None) -> list[ApprovalAuditEntry]:
        """Return entries in append order, optionally for one environment."""


class InMemoryAuditStore(AuditStore):
    """Process-local audit store guarded by a lock."""

    def __init__(self) -> None:
        self._entries: list[ApprovalAuditEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: ApprovalAuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self, environment: str | None = None) -> list[ApprovalAuditEntry]:
        with self._lock:
            return [
                entry
                for entry in self._entries
                if environment is None or entry.environment == environment
            ]


class JsonFileAuditStore(AuditStore):
    """Audit store persisted to a JSON file.

    Every append rewrites the whole document, which is fine for the volume of
    approval actions a deployment pipeline produces.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> ApprovalAuditState:
        if not self.path.exists():
            return ApprovalAuditState(version=AUDIT_VERSION)

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(
                "audit.path", f"Failed to read audit log at {self.path}: {exc}"
            ) from exc
        if not content.strip():
            return ApprovalAuditState(version=AUDIT_VERSION)

        try:
            return ApprovalAuditState.model_validate_json(content)
        except ValidationError as exc:
            raise ConfigError(
                "audit.path", f"Invalid audit log format in {self.path}: {exc}"
            ) from exc

    def _save(self, state: ApprovalAuditState) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(
                state.model_dump(mode="json"), indent=2, sort_keys=True
            )
            self.path.write_text(payload, encoding="utf-8")
        except OSError as exc:
            raise ConfigError(
                "audit.path", f"Failed to write audit log to {self.path}: {exc}"
            ) from exc

    def append(self, entry: ApprovalAuditEntry) -> None:
        with self._lock:
            state = self._load()
            state.entries.append(entry)
            self._save(state)

    def entries(self, environment: str | None = None) -> list[ApprovalAuditEntry]:
        with self._lock:
            state = self._load()
        return [
            entry
            for entry in state.entries
            if environment is None or entry.environment == environment
        ]


class ApprovalAuditLog:
    """Records approval actions and answers history queries per environment.

    Stores are synchronous. Async callers use ``record_approval_action``,
    which runs the append in a worker thread so file-backed stores do not
    block the event loop.
    """

    def __init__(self, store: AuditStore | None = None) -> None:
        self.store = store or InMemoryAuditStore()

    def log_approval_action(
        self,
        approval_id: str,
        environment: str,
        action: str,
        actor: str,
        details: dict[str, Any] | None = None,
    ) -> ApprovalAuditEntry:
        """Append an audit entry and return it."""
        entry = ApprovalAuditEntry(
            approval_id=approval_id,
            environment=environment,
            action=action,
            actor=actor,
            details=details or {},
        )
        self.store.append(entry)
        logger.info(
            f"Approval audit: {actor} performed {action} on approval "
            f"{approval_id} for environment {environment}"
        )
        return entry

    async def record_approval_action(
        self,
        approval_id: str,
        environment: str,
        action: str,
        actor: str,
        details: dict[str, Any] | None = None,
    ) -> ApprovalAuditEntry:
        """Append an audit entry from a worker thread and return it."""
        return await asyncio.to_thread(
            self.log_approval_action, approval_id, environment, action, actor, details
        )

    def get_approval_history(self, environment: str) -> list[ApprovalAuditEntry]:
        """Return every entry for an environment in append order."""
        return self.store.entries(environment)
