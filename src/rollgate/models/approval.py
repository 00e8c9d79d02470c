"""Pydantic models for deployment approvals, policies and the audit trail."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalStatus(str, Enum):
    """Approval lifecycle status. Pending is the only non-terminal status."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        """Return True for approved, denied and expired."""
        return self is not ApprovalStatus.PENDING


class EscalationAction(str, Enum):
    """What happens when an escalation rule triggers."""

    NOTIFY = "notify"
    AUTO_APPROVE = "auto_approve"
    DENY = "deny"


class EscalationRule(BaseModel):
    """Escalate a pending approval once it has waited ``trigger_after`` seconds."""

    model_config = ConfigDict(extra="forbid")

    trigger_after: float = Field(..., gt=0, description="Seconds before escalating")
    escalatees: list[str] = Field(default_factory=list)
    action: EscalationAction = Field(default=EscalationAction.NOTIFY)


class ApprovalPolicy(BaseModel):
    """Approval rule set for one environment.

    Attributes:
        environment: Environment the policy applies to
        required_approvers: Number of approvers a decision needs
        approver_groups: Groups asked to approve
        timeout_duration: Seconds before a pending approval expires
        escalation_rules: Rules applied in order while an approval is pending
    """

    model_config = ConfigDict(extra="forbid")

    environment: str = Field(..., min_length=1)
    required_approvers: int = Field(default=1, ge=1)
    approver_groups: list[str] = Field(default_factory=list)
    timeout_duration: float = Field(
        default=2 * 3600.0, gt=0, description="Approval timeout in seconds"
    )
    escalation_rules: list[EscalationRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_escalation_order(self) -> ApprovalPolicy:
        """Escalations must trigger before the approval expires."""
        for rule in self.escalation_rules:
            if rule.trigger_after >= self.timeout_duration:
                raise ValueError(
                    f"escalation trigger_after ({rule.trigger_after}s) must be "
                    f"less than timeout_duration ({self.timeout_duration}s)"
                )
        return self


class ApprovalResult(BaseModel):
    """Outcome of an approval request or status poll."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    status: ApprovalStatus
    approver: str | None = None
    approved_at: datetime | None = None
    comments: str = ""
    conditions: list[str] = Field(default_factory=list)

    @property
    def approved(self) -> bool:
        """Return True when the deployment may proceed."""
        return self.status is ApprovalStatus.APPROVED


class PendingApproval(BaseModel):
    """Approval request tracked by the manual handler until it is decided."""

    model_config = ConfigDict(extra="forbid")

    id: str
    plan_id: str
    environment: str
    requested_at: datetime = Field(default_factory=_utcnow)
    approvers: list[str] = Field(default_factory=list)
    status: ApprovalStatus = ApprovalStatus.PENDING
    approver: str | None = None
    decided_at: datetime | None = None
    comments: str = ""
    fired_escalations: list[int] = Field(
        default_factory=list, description="Indexes of escalation rules already fired"
    )


class ApprovalAuditEntry(BaseModel):
    """Immutable record of one approval action."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timestamp: datetime = Field(default_factory=_utcnow)
    approval_id: str
    environment: str
    action: str
    actor: str
    details: dict[str, Any] = Field(default_factory=dict)


class ApprovalAuditState(BaseModel):
    """Top-level audit document stored on disk by the JSON audit store."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0", description="Audit file version")
    entries: list[ApprovalAuditEntry] = Field(default_factory=list)
