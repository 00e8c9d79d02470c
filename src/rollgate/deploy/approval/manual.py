"""Manual approval handler.

Approval requests are recorded as PendingApproval entries. Without an
external approval channel the handler resolves every request at once as
``system-admin``; set ``auto_resolve=False`` and feed decisions through
``record_decision`` to put a real channel in that seam.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone

from ulid import ULID

from rollgate.config.defaults import DEFAULT_APPROVERS
from rollgate.deploy.approval.base import SYSTEM_APPROVER, ApprovalHandler
from rollgate.deploy.approval.policy import PolicyManager
from rollgate.lib.errors import ApprovalError
from rollgate.lib.logging_config import get_logger
from rollgate.models.approval import (
    ApprovalPolicy,
    ApprovalResult,
    ApprovalStatus,
    EscalationAction,
    EscalationRule,
    PendingApproval,
)
from rollgate.models.plan import DeploymentPlan, ValidationReport

logger = get_logger(__name__)

ESCALATION_APPROVER = "escalation-policy"

EscalationCallback = Callable[[PendingApproval, EscalationRule], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ManualApprovalHandler(ApprovalHandler):
    """Approval by people, tracked until a terminal decision is recorded."""

    def __init__(
        self,
        policies: PolicyManager,
        auto_resolve: bool = True,
        on_escalation: EscalationCallback | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the handler.

        Args:
            policies: Source of approver groups, timeouts and escalation rules
            auto_resolve: Approve immediately as system-admin
            on_escalation: Called when a notify escalation fires
            clock: Returns the current UTC time
        """
        self.policies = policies
        self.auto_resolve = auto_resolve
        self.on_escalation = on_escalation
        self.clock = clock
        self._pending: dict[str, PendingApproval] = {}
        self._lock = threading.Lock()

    async def request_approval(
        self,
        plan: DeploymentPlan,
        validation_report: ValidationReport | None = None,
    ) -> ApprovalResult:
        approval_id = f"approval-{plan.environment}-{ULID()}"
        policy = self.policies.get_policy(plan.environment)
        approvers = (
            list(policy.approver_groups)
            if policy and policy.approver_groups
            else list(DEFAULT_APPROVERS)
        )

        pending = PendingApproval(
            id=approval_id,
            plan_id=plan.id,
            environment=plan.environment,
            requested_at=self.clock(),
            approvers=approvers,
        )
        logger.info(
            f"Manual approval requested for deployment to {plan.environment} "
            f"(ID: {approval_id}); required approvers: {', '.join(approvers)}"
        )

        if self.auto_resolve:
            self._decide(
                pending,
                ApprovalStatus.APPROVED,
                SYSTEM_APPROVER,
                "Automatically approved: no external approval channel configured",
            )

        with self._lock:
            self._pending[approval_id] = pending
            return self._to_result(pending)

    async def check_approval_status(self, approval_id: str) -> ApprovalResult:
        with self._lock:
            pending = self._pending.get(approval_id)
            if pending is None:
                raise ApprovalError(
                    environment=None,
                    message=f"approval request {approval_id} not found",
                    approval_id=approval_id,
                )
            if pending.status is ApprovalStatus.PENDING:
                policy = self.policies.get_policy(pending.environment)
                if policy is not None:
                    self._apply_policy(pending, policy)
            return self._to_result(pending)

    def record_decision(
        self,
        approval_id: str,
        status: ApprovalStatus,
        approver: str,
        comments: str = "",
    ) -> ApprovalResult:
        """Record a human decision for a pending approval.

        Raises:
            ApprovalError: If the id is unknown, the status is not terminal,
                or the approval was already decided
        """
        if not status.is_terminal:
            raise ApprovalError(
                environment=None,
                message=(
                    f"decision for {approval_id} must be terminal, "
                    f"got {status.value}"
                ),
                approval_id=approval_id,
            )

        with self._lock:
            pending = self._pending.get(approval_id)
            if pending is None:
                raise ApprovalError(
                    environment=None,
                    message=f"approval request {approval_id} not found",
                    approval_id=approval_id,
                )
            if pending.status.is_terminal:
                raise ApprovalError(
                    environment=pending.environment,
                    message=(
                        f"approval {approval_id} was already decided: "
                        f"{pending.status.value}"
                    ),
                    status=pending.status.value,
                    approval_id=approval_id,
                )
            self._decide(pending, status, approver, comments)
            return self._to_result(pending)

    def pending_approvals(self) -> list[PendingApproval]:
        """Return copies of approvals that are still pending."""
        with self._lock:
            return [
                p.model_copy(deep=True)
                for p in self._pending.values()
                if p.status is ApprovalStatus.PENDING
            ]

    def _apply_policy(self, pending: PendingApproval, policy: ApprovalPolicy) -> None:
        """Fire due escalation rules, then expire the approval if it timed out."""
        elapsed = (self.clock() - pending.requested_at).total_seconds()

        for index, rule in enumerate(policy.escalation_rules):
            if index in pending.fired_escalations or elapsed < rule.trigger_after:
                continue
            pending.fired_escalations.append(index)
            logger.warning(
                f"Escalating approval {pending.id} for {pending.environment} "
                f"to {', '.join(rule.escalatees) or 'nobody'}: {rule.action.value}"
            )

            if rule.action is EscalationAction.NOTIFY:
                if self.on_escalation is not None:
                    self.on_escalation(pending, rule)
            elif rule.action is EscalationAction.AUTO_APPROVE:
                self._decide(
                    pending,
                    ApprovalStatus.APPROVED,
                    ESCALATION_APPROVER,
                    f"Auto-approved after {rule.trigger_after:g}s without a decision",
                )
                return
            elif rule.action is EscalationAction.DENY:
                self._decide(
                    pending,
                    ApprovalStatus.DENIED,
                    ESCALATION_APPROVER,
                    f"Denied after {rule.trigger_after:g}s without a decision",
                )
                return

        if elapsed >= policy.timeout_duration:
            self._decide(
                pending,
                ApprovalStatus.EXPIRED,
                None,
                f"Approval expired after {policy.timeout_duration:g}s",
            )

    def _decide(
        self,
        pending: PendingApproval,
        status: ApprovalStatus,
        approver: str | None,
        comments: str,
    ) -> None:
        pending.status = status
        pending.approver = approver
        pending.decided_at = self.clock()
        pending.comments = comments

    @staticmethod
    def _to_result(pending: PendingApproval) -> ApprovalResult:
        return ApprovalResult(
            id=pending.id,
            status=pending.status,
            approver=pending.approver,
            approved_at=(
                pending.decided_at
                if pending.status is ApprovalStatus.APPROVED
                else None
            ),
            comments=pending.comments,
            conditions=[f"approvers: {', '.join(pending.approvers)}"],
        )
