"""Approval gate: handler selection, delegation and auditing."""

from __future__ import annotations

import threading

from rollgate.deploy.approval.audit import ApprovalAuditLog
from rollgate.deploy.approval.automated import AutomatedApprovalHandler
from rollgate.deploy.approval.base import ApprovalHandler
from rollgate.deploy.approval.manual import EscalationCallback, ManualApprovalHandler
from rollgate.deploy.approval.policy import PolicyManager
from rollgate.lib.errors import ApprovalError
from rollgate.lib.logging_config import get_logger
from rollgate.models.approval import ApprovalResult
from rollgate.models.config import ApprovalConfig
from rollgate.models.plan import DeploymentPlan, ValidationReport

logger = get_logger(__name__)

REQUESTER = "rollgate"


class ApprovalManager:
    """Decide whether a plan may proceed and record every decision.

    Handlers are strategies registered by name and built once. The
    production tier is routed to ``manual``; other environments use the
    configured mapping or the default handler.
    """

    def __init__(
        self,
        config: ApprovalConfig | None = None,
        policies: PolicyManager | None = None,
        audit_log: ApprovalAuditLog | None = None,
        handlers: dict[str, ApprovalHandler] | None = None,
        on_escalation: EscalationCallback | None = None,
    ) -> None:
        self.config = config or ApprovalConfig()
        self.policies = policies or PolicyManager()
        self.audit_log = audit_log or ApprovalAuditLog()

        if handlers is None:
            handlers = {
                "manual": ManualApprovalHandler(
                    self.policies,
                    auto_resolve=self.config.auto_resolve_manual,
                    on_escalation=on_escalation,
                ),
                "automated": AutomatedApprovalHandler(
                    production_environment=self.config.production_environment,
                    business_hours=(
                        self.config.business_hours_start,
                        self.config.business_hours_end,
                    ),
                ),
            }
        self._handlers: dict[str, ApprovalHandler] = dict(handlers)
        self._owners: dict[str, tuple[str, str]] = {}
        self._audited_terminal: set[str] = set()
        self._lock = threading.Lock()

    def register_handler(self, name: str, handler: ApprovalHandler) -> None:
        """Add or replace an approval strategy."""
        self._handlers[name] = handler

    def get_handler(self, name: str) -> ApprovalHandler | None:
        return self._handlers.get(name)

    def handler_for_environment(self, environment: str) -> str:
        """Return the handler name used for an environment."""
        if environment in self.config.handlers:
            return self.config.handlers[environment]
        if environment == self.config.production_environment:
            return "manual"
        return self.config.default_handler

    async def request_approval(
        self,
        plan: DeploymentPlan,
        validation_report: ValidationReport | None = None,
    ) -> ApprovalResult:
        """Request approval for a plan from the environment's handler.

        Raises:
            ApprovalError: If no handler is registered for the environment
        """
        handler_name = self.handler_for_environment(plan.environment)
        logger.debug(
            f"Routing approval for {plan.environment} to the {handler_name} handler"
        )
        handler = self._handlers.get(handler_name)
        if handler is None:
            raise ApprovalError(
                environment=plan.environment,
                message=f"approval handler {handler_name} not found",
            )

        result = await handler.request_approval(plan, validation_report)

        with self._lock:
            self._owners[result.id] = (handler_name, plan.environment)

        await self.audit_log.record_approval_action(
            result.id,
            plan.environment,
            "requested",
            REQUESTER,
            {"plan_id": plan.id, "handler": handler_name},
        )
        await self._audit_outcome(plan.environment, result)
        return result

    async def check_approval_status(self, approval_id: str) -> ApprovalResult:
        """Poll an approval through the handler that issued it.

        Raises:
            ApprovalError: If the approval id was never issued by this manager
        """
        with self._lock:
            owner = self._owners.get(approval_id)
        if owner is None:
            raise ApprovalError(
                environment=None,
                message=f"approval request {approval_id} not found",
                approval_id=approval_id,
            )

        handler_name, environment = owner
        handler = self._handlers[handler_name]
        result = await handler.check_approval_status(approval_id)
        await self._audit_outcome(environment, result)
        return result

    async def _audit_outcome(self, environment: str, result: ApprovalResult) -> None:
        """Audit terminal outcomes once per approval."""
        if not result.status.is_terminal:
            return
        with self._lock:
            if result.id in self._audited_terminal:
                return
            self._audited_terminal.add(result.id)

        await self.audit_log.record_approval_action(
            result.id,
            environment,
            result.status.value,
            result.approver or "system",
            {"comments": result.comments} if result.comments else None,
        )
