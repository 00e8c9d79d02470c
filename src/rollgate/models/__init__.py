"""Data models for Rollgate plans, approvals, rollbacks and configuration."""

from rollgate.models.approval import (
    ApprovalAuditEntry,
    ApprovalPolicy,
    ApprovalResult,
    ApprovalStatus,
    EscalationAction,
    EscalationRule,
    PendingApproval,
)
from rollgate.models.config import EngineConfig
from rollgate.models.notification import (
    NotificationEvent,
    NotificationMessage,
    NotificationPriority,
)
from rollgate.models.plan import (
    DeploymentPlan,
    DeploymentResult,
    DeploymentSchedule,
    DeploymentStage,
    ProvisioningResult,
    ValidationOutcome,
    ValidationReport,
    ValidationStep,
    ValidationType,
)
from rollgate.models.rollback import (
    RiskLevel,
    RollbackHistoryEntry,
    RollbackPlan,
    RollbackResult,
    RollbackSettings,
)

__all__ = [
    "ApprovalAuditEntry",
    "ApprovalPolicy",
    "ApprovalResult",
    "ApprovalStatus",
    "DeploymentPlan",
    "DeploymentResult",
    "DeploymentSchedule",
    "DeploymentStage",
    "EngineConfig",
    "EscalationAction",
    "EscalationRule",
    "NotificationEvent",
    "NotificationMessage",
    "NotificationPriority",
    "PendingApproval",
    "ProvisioningResult",
    "RiskLevel",
    "RollbackHistoryEntry",
    "RollbackPlan",
    "RollbackResult",
    "RollbackSettings",
    "ValidationOutcome",
    "ValidationReport",
    "ValidationStep",
    "ValidationType",
]
