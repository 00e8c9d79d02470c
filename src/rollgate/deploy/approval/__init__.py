"""Approval gate for deployment plans.

Handlers are strategies with two capabilities, requesting an approval and
polling its status. The ApprovalManager picks one per environment, and
every decision lands in the append-only ApprovalAuditLog.
"""

from __future__ import annotations

from rollgate.deploy.approval.audit import (
    ApprovalAuditLog,
    AuditStore,
    InMemoryAuditStore,
    JsonFileAuditStore,
)
from rollgate.deploy.approval.automated import AutomatedApprovalHandler
from rollgate.deploy.approval.base import ApprovalHandler
from rollgate.deploy.approval.manager import ApprovalManager
from rollgate.deploy.approval.manual import ManualApprovalHandler
from rollgate.deploy.approval.policy import PolicyManager
from rollgate.models.config import EngineConfig


def create_approval_manager(config: EngineConfig | None = None) -> ApprovalManager:
    """Create an approval manager from engine configuration.

    The audit log is kept in memory unless ``audit.path`` names a JSON file.
    """
    config = config or EngineConfig()
    store: AuditStore = (
        JsonFileAuditStore(config.audit.path)
        if config.audit.path
        else InMemoryAuditStore()
    )
    return ApprovalManager(
        config=config.approval,
        audit_log=ApprovalAuditLog(store),
    )


__all__ = [
    "ApprovalAuditLog",
    "ApprovalHandler",
    "ApprovalManager",
    "AuditStore",
    "AutomatedApprovalHandler",
    "InMemoryAuditStore",
    "JsonFileAuditStore",
    "ManualApprovalHandler",
    "PolicyManager",
    "create_approval_manager",
]
