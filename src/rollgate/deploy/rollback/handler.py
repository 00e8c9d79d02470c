"""Rollback handler with retry, emergency recreation and schema fallback.

A rollback request goes through a fixed chain and stops at the first link
that succeeds:

1. Ordinary rollback through the planner, retried ``max_attempts`` times.
2. Emergency mode: drop and recreate every configured domain schema.
3. Auto-recreate: drop and recreate only the requested domains.

When the whole chain fails the handler raises ``RollbackError`` flagged for
manual intervention.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from rollgate.config.defaults import (
    DATA_LOSS_THRESHOLDS,
    RECREATE_RECOVERY_STEPS,
    ROLLBACK_SECONDS_PER_DOMAIN,
)
from rollgate.deploy.rollback.base import (
    RollbackHistoryStore,
    RollbackPlanner,
    SchemaManager,
)
from rollgate.lib.errors import ConfigError, RollbackError
from rollgate.lib.logging_config import get_logger
from rollgate.models.config import DEFAULT_DOMAINS
from rollgate.models.rollback import (
    FULL_RESET_VERSION,
    RiskLevel,
    RollbackHistoryEntry,
    RollbackPlan,
    RollbackResult,
    RollbackSettings,
)

logger = get_logger(__name__)

SafetyPolicy = Callable[[RollbackPlan, str], bool]

_RISK_ORDER = list(RiskLevel)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def allow_non_production(production_environment: str = "production") -> SafetyPolicy:
    """Build a safety policy that refuses destructive rollback in production.

    Outside production the policy still refuses plans rated critical.
    """

    def policy(plan: RollbackPlan, environment: str) -> bool:
        if environment == production_environment:
            return False
        return plan.data_loss_risk is not RiskLevel.CRITICAL

    return policy


def assess_data_loss_risk(plan: RollbackPlan) -> RiskLevel:
    """Rate how much data a rollback plan may destroy.

    Each domain is rated by how many versions it moves back, and the worst
    domain rates the plan. A target domain missing from ``current_versions``
    rates critical. Without any current versions the planner's own rating is
    kept.
    """
    if not plan.current_versions:
        return plan.data_loss_risk

    worst = plan.data_loss_risk
    for domain, target in plan.target_versions.items():
        current = plan.current_versions.get(domain)
        if current is None:
            return RiskLevel.CRITICAL
        risk = RiskLevel.LOW
        for threshold, level in DATA_LOSS_THRESHOLDS:
            if current - target > threshold:
                risk = RiskLevel(level)
                break
        if _RISK_ORDER.index(risk) > _RISK_ORDER.index(worst):
            worst = risk
    return worst


class RollbackHandler:
    """Perform rollbacks for one environment."""

    def __init__(
        self,
        planner: RollbackPlanner | None,
        schemas: SchemaManager,
        history: RollbackHistoryStore | None = None,
        settings: RollbackSettings | None = None,
        environment: str = "development",
        domains: list[str] | None = None,
        requested_by: str = "rollgate",
        safety_policy: SafetyPolicy | None = None,
        production_environment: str = "production",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the handler.

        Args:
            planner: Plans and executes ordinary rollbacks; without one only
                schema recreation, validation and history are available
            schemas: Drops and recreates domain schemas
            history: Source of rollback history, optional
            settings: Retry and fallback policy
            environment: Environment this handler operates on
            domains: Domains covered by emergency and from-scratch recreation
            requested_by: Actor recorded on rollback plans
            safety_policy: Decides whether a destructive rollback may run when
                ``allow_destructive`` is off; defaults to non-production only
            production_environment: Production tier for the default policy and
                for the critical data loss gate
            sleep: Awaitable used for the pause between attempts
        """
        self.planner = planner
        self.schemas = schemas
        self.history = history
        self.settings = settings or RollbackSettings()
        self.environment = environment
        self.domains = list(domains or DEFAULT_DOMAINS)
        self.requested_by = requested_by
        self.safety_policy = safety_policy or allow_non_production(
            production_environment
        )
        self.production_environment = production_environment
        self.sleep = sleep

    def is_destructive_rollback_allowed(self, plan: RollbackPlan) -> bool:
        """Return whether a rollback plan may run."""
        if plan.is_full_reset:
            return True
        if (
            plan.data_loss_risk is RiskLevel.CRITICAL
            and self.environment == self.production_environment
        ):
            return False
        if self.settings.allow_destructive:
            return True
        return self.safety_policy(plan, self.environment)

    def prepare_plan(self, plan: RollbackPlan) -> RollbackPlan:
        """Rate the plan's data loss risk and fill in handler settings."""
        plan.data_loss_risk = assess_data_loss_risk(plan)
        if plan.estimated_seconds is None:
            plan.estimated_seconds = float(
                ROLLBACK_SECONDS_PER_DOMAIN * len(plan.target_versions)
            )
        plan.skip_backup_verification = self.settings.skip_backup_verification
        logger.info(
            f"Rollback plan for {self.environment}: "
            f"data loss risk {plan.data_loss_risk.value}, "
            f"estimated {plan.estimated_seconds:g}s"
        )
        return plan

    async def perform_rollback(
        self, target_versions: dict[str, int], reason: str
    ) -> RollbackResult:
        """Roll the given domains back to the target versions.

        Args:
            target_versions: Version per domain; 0 resets the domain
            reason: Why the rollback was requested

        Returns:
            RollbackResult with ``success=True``. When a fallback produced the
            result, ``error`` still carries the ordinary rollback's failure.

        Raises:
            ConfigError: If no rollback planner is configured
            RollbackError: If planning fails, the rollback is refused as unsafe,
                or every fallback fails
        """
        if self.planner is None:
            raise ConfigError("rollback.planner", "No rollback planner configured")
        started = _utcnow()
        logger.info(
            f"Starting rollback for {self.environment}: targets={target_versions}, "
            f"reason={reason!r}"
        )

        try:
            plan = await self.planner.create_rollback_plan(
                target_versions, reason, self.requested_by
            )
        except Exception as exc:
            message = f"failed to create rollback plan: {exc}"
            raise RollbackError(
                message, self._failed(started, message, list(target_versions))
            ) from exc

        self.prepare_plan(plan)
        if not self.is_destructive_rollback_allowed(plan):
            message = (
                f"destructive rollback is not safe and not allowed "
                f"in {self.environment} "
                f"(data loss risk: {plan.data_loss_risk.value})"
            )
            raise RollbackError(
                message, self._failed(started, message, list(target_versions))
            )

        result, error = await self._execute_with_retry(self.planner, plan)
        if result is not None:
            result.started_at = started
            result.finished_at = _utcnow()
            return result

        if self.settings.emergency_mode:
            logger.warning(
                "Standard rollback failed, attempting emergency recreation..."
            )
            try:
                emergency = await self.perform_emergency_rollback()
            except RollbackError as exc:
                logger.error(f"Emergency rollback failed: {exc}")
            else:
                emergency.started_at = started
                emergency.error = error
                return emergency

        if self.settings.auto_recreate_on_failure and self.schemas.dry_run:
            logger.warning("Schema manager is a dry run, skipping recreation")
            error = f"rollback failed and recreation skipped (dry run): {error}"
        elif self.settings.auto_recreate_on_failure:
            logger.warning("Rollback failed, attempting schema recreation...")
            recreated, failed = await self._recreate(list(target_versions))
            if recreated:
                return RollbackResult(
                    success=True,
                    rolled_back_domains={d: FULL_RESET_VERSION for d in recreated},
                    failed_domains=failed,
                    recreated_schemas=recreated,
                    error=(
                        f"rollback failed but schemas recreated successfully: {error}"
                    ),
                    started_at=started,
                    finished_at=_utcnow(),
                )
            error = f"rollback failed and recreation failed: {error}"

        failed_result = self._failed(started, error, list(target_versions))
        failed_result.dry_run = self.schemas.dry_run
        raise RollbackError(error, failed_result, requires_manual_intervention=True)

    async def perform_emergency_rollback(self) -> RollbackResult:
        """Drop and recreate every configured domain schema.

        Domains that fail are skipped.

        Raises:
            RollbackError: If no domain could be recreated or the schema
                manager is a dry run
        """
        if self.schemas.dry_run:
            result = RollbackResult(
                emergency_mode=True,
                dry_run=True,
                error="emergency rollback skipped: schema manager is a dry run",
                finished_at=_utcnow(),
            )
            raise RollbackError(result.error, result)

        logger.warning(f"Performing emergency rollback for {self.environment}")
        recreated, failed = await self._recreate(self.domains)
        result = RollbackResult(
            success=bool(recreated),
            rolled_back_domains={d: FULL_RESET_VERSION for d in recreated},
            failed_domains=failed,
            recreated_schemas=recreated,
            emergency_mode=True,
            finished_at=_utcnow(),
        )
        if not recreated:
            result.error = "emergency rollback failed for all domains"
            raise RollbackError(result.error, result)
        return result

    async def recreate_from_scratch(self) -> RollbackResult:
        """Drop and recreate every configured domain, stopping at the first failure.

        With a dry-run schema manager the statements are only recorded and
        the result reports ``dry_run`` with ``success=False``.

        Raises:
            RollbackError: Naming the domain that could not be recreated
        """
        logger.warning(f"Recreating database from scratch in {self.environment}")
        result = RollbackResult(emergency_mode=True, dry_run=self.schemas.dry_run)

        for domain in self.domains:
            try:
                await self.schemas.recreate_schema(domain)
            except Exception as exc:
                result.error = f"failed to recreate domain {domain}: {exc}"
                result.failed_domains.append(domain)
                result.finished_at = _utcnow()
                raise RollbackError(result.error, result) from exc
            if result.dry_run:
                continue
            result.recreated_schemas.append(domain)
            result.rolled_back_domains[domain] = FULL_RESET_VERSION

        if result.dry_run:
            result.error = "no schema executor configured, nothing was recreated"
            result.finished_at = _utcnow()
            return result

        result.success = True
        result.recovery_steps = list(RECREATE_RECOVERY_STEPS)
        result.finished_at = _utcnow()
        return result

    async def validate_rollback_capability(self) -> None:
        """Dry-run the schema checks for every configured domain.

        Raises:
            RollbackError: Naming the first domain that cannot be rolled back
        """
        logger.info(f"Validating rollback capability for {self.environment}")
        for domain in self.domains:
            try:
                await self.schemas.validate_schema(domain)
            except Exception as exc:
                raise RollbackError(
                    f"rollback validation failed for domain {domain}: {exc}"
                ) from exc

    async def get_rollback_history(
        self, domain: str, limit: int = 10
    ) -> list[RollbackHistoryEntry]:
        """Return recent rollbacks of a domain from the history store.

        Raises:
            RollbackError: If no store is configured or the query fails
        """
        if self.history is None:
            raise RollbackError("no rollback history store configured")
        try:
            return await self.history.get_rollback_history(domain, limit)
        except Exception as exc:
            raise RollbackError(f"failed to get rollback history: {exc}") from exc

    async def _execute_with_retry(
        self, planner: RollbackPlanner, plan: RollbackPlan
    ) -> tuple[RollbackResult | None, str]:
        """Run the plan until it succeeds or attempts run out.

        Returns the successful result, or None with the last error.
        """
        attempts = self.settings.max_attempts
        timeout = self.settings.attempt_timeout
        last_error = ""

        for attempt in range(1, attempts + 1):
            logger.info(f"Rollback attempt {attempt} of {attempts}")
            try:
                result = await asyncio.wait_for(
                    planner.execute_rollback(plan), timeout=timeout
                )
            except asyncio.TimeoutError:
                last_error = f"timed out after {timeout:g}s"
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
            else:
                if result.success:
                    return result, ""
                last_error = result.error or "rollback reported failure"

            logger.warning(f"Rollback attempt {attempt} failed: {last_error}")
            if attempt < attempts:
                await self.sleep(self.settings.retry_backoff)

        return None, f"rollback failed after {attempts} attempts: {last_error}"

    async def _recreate(self, domains: list[str]) -> tuple[list[str], list[str]]:
        recreated: list[str] = []
        failed: list[str] = []
        for domain in domains:
            try:
                await self.schemas.recreate_schema(domain)
            except Exception as exc:
                logger.warning(f"Failed to recreate schema for domain {domain}: {exc}")
                failed.append(domain)
                continue
            recreated.append(domain)
            logger.info(f"Recreated schema for domain {domain}")
        return recreated, failed

    @staticmethod
    def _failed(started: datetime, error: str, domains: list[str]) -> RollbackResult:
        return RollbackResult(
            success=False,
            failed_domains=domains,
            error=error,
            started_at=started,
            finished_at=_utcnow(),
        )
