"""Deployment orchestrator.

Runs each plan through the pipeline

    created -> pre_validated -> (approval_pending ->) approved
            -> provisioned -> post_validated -> succeeded

Any stage can exit to ``failed``. When rollback on failure is enabled and
the plan names rollback targets, a failed provisioning or post-deploy
validation continues ``failed -> rolling_back -> rolled_back``.
"""

from __future__ import annotations

import asyncio
from typing import NoReturn

from rollgate.deploy.approval.manager import ApprovalManager
from rollgate.deploy.notifications import Notifier
from rollgate.deploy.provisioner import Provisioner
from rollgate.deploy.rollback.handler import RollbackHandler
from rollgate.deploy.validation import ValidationRunner
from rollgate.lib.errors import (
    ApprovalError,
    ConfigError,
    DeploymentError,
    MultiEnvironmentDeploymentError,
    ProvisioningError,
    RollbackError,
    ValidationFailedError,
)
from rollgate.lib.logging_config import get_logger
from rollgate.models.approval import ApprovalStatus
from rollgate.models.config import OrchestratorConfig
from rollgate.models.plan import (
    DeploymentPlan,
    DeploymentResult,
    DeploymentSchedule,
    DeploymentStage,
    ProvisioningResult,
    ValidationType,
)

logger = get_logger(__name__)


class DeploymentOrchestrator:
    """Gate deployments behind validation and approval, then provision."""

    def __init__(
        self,
        provisioner: Provisioner,
        approvals: ApprovalManager,
        notifier: Notifier,
        rollback: RollbackHandler | dict[str, RollbackHandler] | None = None,
        validation_runner: ValidationRunner | None = None,
        config: OrchestratorConfig | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            provisioner: Materializes plan programs
            approvals: Approval gate
            notifier: Receives phase-transition notifications
            rollback: Rollback handler, or one handler per environment
            validation_runner: Runs validation phases; built from the
                configured validation timeout when omitted
            config: Pipeline settings
        """
        self.config = config or OrchestratorConfig()
        self.provisioner = provisioner
        self.approvals = approvals
        self.notifier = notifier
        self.rollback = rollback
        self.validation_runner = validation_runner or ValidationRunner(
            default_timeout=self.config.validation_timeout
        )

    def requires_approval(self, plan: DeploymentPlan) -> bool:
        """Return whether a plan must pass the approval gate."""
        return (
            plan.approval_required
            or plan.environment in self.config.require_approval_for
        )

    async def execute_deployment_plan(self, plan: DeploymentPlan) -> DeploymentResult:
        """Run one plan end to end.

        Args:
            plan: Plan to execute

        Returns:
            DeploymentResult in the ``succeeded`` stage

        Raises:
            ValidationFailedError: If a required pre- or post-deploy step failed
            ApprovalError: If approval was not granted or the request failed
            ProvisioningError: If the provisioner failed or timed out

            The raised error carries the failed DeploymentResult as ``result``.
        """
        env = plan.environment
        result = DeploymentResult(plan_id=plan.id, environment=env)
        logger.info(f"Starting deployment {plan.id} to {env}")
        await self._notify("send_deployment_started", env, plan.id)

        try:
            result.pre_validation = await self.validation_runner.run(
                plan,
                ValidationType.PRE_DEPLOY,
                include=self.config.include_in_pre_deploy,
            )
        except ValidationFailedError as exc:
            result.pre_validation = exc.report
            await self._fail(plan, result, exc)
        result.advance(DeploymentStage.PRE_VALIDATED)

        if self.requires_approval(plan):
            result.advance(DeploymentStage.APPROVAL_PENDING)
            await self._approve(plan, result)
        result.advance(DeploymentStage.APPROVED)

        try:
            provisioning = await self._provision(plan)
        except Exception as exc:
            cause = self._describe(exc)
            error = ProvisioningError(env, cause)
            result.advance(DeploymentStage.FAILED)
            result.error = str(error)
            await self._notify("send_deployment_failed", env, plan.id, error)

            rollback_error = await self._rollback(plan, result, error)
            if rollback_error is not None:
                error = ProvisioningError(env, cause, rollback_error=rollback_error)
            error.result = result
            result.error = str(error)
            raise error from exc

        result.provisioning = provisioning
        result.advance(DeploymentStage.PROVISIONED)

        try:
            result.post_validation = await self.validation_runner.run(
                plan, ValidationType.POST_DEPLOY
            )
        except ValidationFailedError as exc:
            result.post_validation = exc.report
            result.advance(DeploymentStage.FAILED)
            result.error = str(exc)
            await self._notify("send_validation_failed", env, plan.id, exc)

            rollback_error = await self._rollback(plan, result, exc)
            if rollback_error is None:
                exc.result = result
                raise
            error = ValidationFailedError(
                environment=exc.environment,
                step_name=exc.step_name,
                phase=exc.phase,
                cause=exc.cause,
                report=exc.report,
                rollback_error=rollback_error,
            )
            error.result = result
            result.error = str(error)
            raise error from exc
        result.advance(DeploymentStage.POST_VALIDATED)

        result.success = True
        result.advance(DeploymentStage.SUCCEEDED)
        logger.info(f"Deployment {plan.id} to {env} succeeded")
        await self._notify("send_deployment_succeeded", env, plan.id, provisioning)
        return result

    async def execute_multi_environment_deployment(
        self, plans: list[DeploymentPlan]
    ) -> dict[str, DeploymentResult]:
        """Run several plans, sequentially or in parallel per configuration.

        Sequential runs stop at the first failure and never touch later
        environments. Parallel runs execute every plan to completion with no
        cross-plan cancellation.

        Returns:
            DeploymentResult per environment

        Raises:
            ConfigError: If two plans target the same environment
            MultiEnvironmentDeploymentError: If any plan failed
        """
        environments = [plan.environment for plan in plans]
        duplicates = sorted({e for e in environments if environments.count(e) > 1})
        if duplicates:
            raise ConfigError(
                "plans", f"Multiple plans target the same environment: {duplicates}"
            )

        if self.config.allow_parallel_deployments:
            return await self._execute_parallel(plans)
        return await self._execute_sequential(plans)

    async def _execute_sequential(
        self, plans: list[DeploymentPlan]
    ) -> dict[str, DeploymentResult]:
        results: dict[str, DeploymentResult] = {}
        for index, plan in enumerate(plans):
            try:
                results[plan.environment] = await self.execute_deployment_plan(plan)
            except Exception as exc:
                if isinstance(exc, DeploymentError) and exc.result is not None:
                    results[plan.environment] = exc.result
                not_attempted = [p.environment for p in plans[index + 1 :]]
                raise MultiEnvironmentDeploymentError(
                    results, {plan.environment: exc}, not_attempted=not_attempted
                ) from exc
        return results

    async def _execute_parallel(
        self, plans: list[DeploymentPlan]
    ) -> dict[str, DeploymentResult]:
        outcomes = await asyncio.gather(
            *(self.execute_deployment_plan(plan) for plan in plans),
            return_exceptions=True,
        )

        results: dict[str, DeploymentResult] = {}
        failures: dict[str, Exception] = {}
        for plan, outcome in zip(plans, outcomes):
            if isinstance(outcome, DeploymentResult):
                results[plan.environment] = outcome
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            failures[plan.environment] = outcome
            if isinstance(outcome, DeploymentError) and outcome.result is not None:
                results[plan.environment] = outcome.result

        if failures:
            raise MultiEnvironmentDeploymentError(results, failures)
        return results

    async def schedule_deployment(self, plan: DeploymentPlan) -> DeploymentSchedule:
        """Check that a plan can be scheduled and return its schedule.

        Nothing executes the plan later.

        Raises:
            ConfigError: If the plan has no schedule
        """
        if plan.schedule is None:
            raise ConfigError("schedule", f"Plan {plan.id} has no deployment schedule")
        logger.info(
            f"Deployment {plan.id} to {plan.environment} scheduled for "
            f"{plan.schedule.scheduled_time.isoformat()} ({plan.schedule.timezone})"
        )
        return plan.schedule

    async def cancel_deployment(self, deployment_id: str) -> None:
        raise NotImplementedError("Deployment cancellation is not implemented")

    async def get_deployment_status(self, environment: str) -> DeploymentResult:
        raise NotImplementedError("Deployment status checking is not implemented")

    async def _approve(self, plan: DeploymentPlan, result: DeploymentResult) -> None:
        env = plan.environment
        try:
            approval = await self.approvals.request_approval(
                plan, result.pre_validation
            )
        except ApprovalError as exc:
            await self._fail(plan, result, exc)
        except Exception as exc:
            error = ApprovalError(env, f"approval process failed: {exc}")
            await self._fail(plan, result, error, cause=exc)

        result.approval = approval
        if approval.approved:
            return

        if approval.status is ApprovalStatus.PENDING:
            policy = self.approvals.policies.get_policy(env)
            approvers = list(policy.approver_groups) if policy else []
            await self._notify(
                "send_approval_required", env, plan.id, approval.id, approvers
            )

        await self._fail(
            plan,
            result,
            ApprovalError(
                env,
                f"deployment not approved: {approval.status.value}",
                status=approval.status.value,
                approval_id=approval.id,
            ),
        )

    async def _provision(self, plan: DeploymentPlan) -> ProvisioningResult:
        deploying = self.provisioner.deploy(plan.environment, plan.program)
        if self.config.deployment_timeout is None:
            return await deploying
        return await asyncio.wait_for(
            deploying, timeout=self.config.deployment_timeout
        )

    def _describe(self, exc: Exception) -> str:
        if isinstance(exc, asyncio.TimeoutError):
            return f"timed out after {self.config.deployment_timeout:g}s"
        return str(exc) or type(exc).__name__

    def _rollback_handler(self, environment: str) -> RollbackHandler | None:
        if isinstance(self.rollback, dict):
            return self.rollback.get(environment)
        return self.rollback

    async def _rollback(
        self,
        plan: DeploymentPlan,
        result: DeploymentResult,
        original_error: Exception,
    ) -> RollbackError | None:
        """Roll back after a failure, best effort.

        Returns the rollback failure, if any, so it can be appended to the
        original error.
        """
        if not self.config.rollback_on_failure:
            return None

        env = plan.environment
        await self._notify("send_rollback_started", env, plan.id, original_error)
        handler = self._rollback_handler(env)
        if handler is None or not plan.rollback_targets:
            logger.warning(
                f"Rollback for {env} requested but plan {plan.id} has no rollback "
                f"targets or no rollback handler is configured; nothing rolled back"
            )
            return None

        result.advance(DeploymentStage.ROLLING_BACK)
        try:
            result.rollback = await handler.perform_rollback(
                dict(plan.rollback_targets),
                reason=f"deployment {plan.id} failed: {original_error}",
            )
        except RollbackError as exc:
            logger.error(f"Rollback for {env} failed: {exc}")
            result.rollback = exc.rollback_result
            result.advance(DeploymentStage.FAILED)
            return exc
        except Exception as exc:
            logger.error(f"Rollback for {env} failed: {exc}")
            result.advance(DeploymentStage.FAILED)
            return RollbackError(f"rollback failed: {exc}")

        result.advance(DeploymentStage.ROLLED_BACK)
        logger.info(f"Rolled back {env} after failed deployment {plan.id}")
        return None

    async def _fail(
        self,
        plan: DeploymentPlan,
        result: DeploymentResult,
        error: DeploymentError,
        cause: Exception | None = None,
    ) -> NoReturn:
        """Mark the result failed, notify, and raise ``error``."""
        result.advance(DeploymentStage.FAILED)
        result.error = str(error)
        error.result = result
        logger.error(f"Deployment {plan.id} to {plan.environment} failed: {error}")
        await self._notify("send_deployment_failed", plan.environment, plan.id, error)
        if cause is not None:
            raise error from cause
        raise error

    async def _notify(self, method: str, environment: str, *args: object) -> None:
        """Call a notifier method; failures are logged and never propagate."""
        try:
            await getattr(self.notifier, method)(environment, *args)
        except Exception as exc:
            logger.warning(f"Notification {method} for {environment} failed: {exc}")
