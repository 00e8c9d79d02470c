"""Base interface for approval handlers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from rollgate.models.approval import ApprovalResult
from rollgate.models.plan import DeploymentPlan, ValidationReport

SYSTEM_APPROVER = "system-admin"
AUTOMATED_APPROVER = "automated-system"


class ApprovalHandler(ABC):
    """Abstract base class for approval strategies."""

    @abstractmethod
    async def request_approval(
        self,
        plan: DeploymentPlan,
        validation_report: ValidationReport | None = None,
    ) -> ApprovalResult:
        """Request approval for a deployment plan.

        Args:
            plan: Plan awaiting the approval gate.
            validation_report: Pre-deploy validation report, when available.

        Returns:
            ApprovalResult, either terminal or pending.

        Raises:
            ApprovalError: If the approval request cannot be made.
        """

    @abstractmethod
    async def check_approval_status(self, approval_id: str) -> ApprovalResult:
        """Poll a previously requested approval.

        Args:
            approval_id: Identifier returned by request_approval.

        Returns:
            Current ApprovalResult.

        Raises:
            ApprovalError: If the approval id is unknown.
        """
