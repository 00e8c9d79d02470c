"""Rule-based automated approval handler."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone

from ulid import ULID

from rollgate.deploy.approval.base import AUTOMATED_APPROVER, ApprovalHandler
from rollgate.lib.errors import ApprovalError
from rollgate.lib.logging_config import get_logger
from rollgate.models.approval import ApprovalResult, ApprovalStatus
from rollgate.models.plan import DeploymentPlan, ValidationReport
from rollgate.models.rollback import RiskLevel

logger = get_logger(__name__)

NON_PRODUCTION = "Non-production environment"
LOW_RISK = "Low-risk deployment"
VALIDATIONS_PASSED = "All validations passed"
OUTSIDE_BUSINESS_HOURS = "Outside business hours"

MANUAL_REQUIRED_COMMENT = (
    "Automated approval criteria not met, manual approval required"
)


class AutomatedApprovalHandler(ApprovalHandler):
    """Approve automatically when every auto-approval condition holds.

    Conditions, checked in order, stopping at the first unmet one:
    the environment is not the production tier, the plan is low risk,
    a pre-deploy report exists and every step in it passed, and the
    current hour is outside the business-hours window.
    """

    def __init__(
        self,
        production_environment: str = "production",
        business_hours: tuple[int, int] = (8, 18),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            production_environment: Name of the production-tier environment
            business_hours: First and last hour of the business-hours window
            clock: Returns the current time; its hour is compared to the window
        """
        self.production_environment = production_environment
        self.business_hours = business_hours
        self.clock = clock or (lambda: datetime.now(timezone.utc).astimezone())
        self._results: dict[str, ApprovalResult] = {}
        self._lock = threading.Lock()

    def _conditions(
        self, plan: DeploymentPlan, report: ValidationReport | None
    ) -> list[tuple[str, Callable[[], bool]]]:
        start, end = self.business_hours
        production = self.production_environment
        return [
            (NON_PRODUCTION, lambda: plan.environment != production),
            (LOW_RISK, lambda: plan.risk is RiskLevel.LOW),
            (VALIDATIONS_PASSED, lambda: report is not None and report.all_passed),
            (
                OUTSIDE_BUSINESS_HOURS,
                lambda: not start <= self.clock().hour <= end,
            ),
        ]

    def unmet_condition(
        self, plan: DeploymentPlan, report: ValidationReport | None = None
    ) -> str | None:
        """Return the name of the first unmet condition, or None if all hold."""
        for name, check in self._conditions(plan, report):
            if not check():
                logger.info(
                    f"Auto-approval condition not met for {plan.environment}: {name}"
                )
                return name
        return None

    async def request_approval(
        self,
        plan: DeploymentPlan,
        validation_report: ValidationReport | None = None,
    ) -> ApprovalResult:
        unmet = self.unmet_condition(plan, validation_report)

        if unmet is None:
            result = ApprovalResult(
                id=f"auto-approval-{plan.environment}-{ULID()}",
                status=ApprovalStatus.APPROVED,
                approver=AUTOMATED_APPROVER,
                approved_at=datetime.now(timezone.utc),
                comments="Automatically approved based on deployment rules",
                conditions=[name for name, _ in self._conditions(plan, None)],
            )
        else:
            result = ApprovalResult(
                id=f"manual-required-{plan.environment}-{ULID()}",
                status=ApprovalStatus.PENDING,
                comments=MANUAL_REQUIRED_COMMENT,
                conditions=[f"unmet: {unmet}"],
            )

        with self._lock:
            self._results[result.id] = result
        return result

    async def check_approval_status(self, approval_id: str) -> ApprovalResult:
        with self._lock:
            result = self._results.get(approval_id)
        if result is None:
            raise ApprovalError(
                environment=None,
                message=f"approval request {approval_id} not found",
                approval_id=approval_id,
            )
        return result
