"""Validation phase runner for deployment plans."""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Iterable
from typing import Protocol

from rollgate.lib.errors import ValidationFailedError
from rollgate.lib.logging_config import get_logger
from rollgate.models.plan import (
    DeploymentPlan,
    ValidationOutcome,
    ValidationReport,
    ValidationStep,
    ValidationType,
)

logger = get_logger(__name__)

DEFAULT_STEP_TIMEOUT = 300.0  # seconds


class ValidationEventHandler(Protocol):
    """Receives validation lifecycle events."""

    def on_validation_started(self, environment: str, name: str) -> None: ...

    def on_validation_completed(
        self, environment: str, name: str, passed: bool, errors: list[str]
    ) -> None: ...


class LoggingValidationEventHandler:
    """Default event handler that writes validation events to the log."""

    def on_validation_started(self, environment: str, name: str) -> None:
        logger.debug(f"Validation '{name}' started for {environment}")

    def on_validation_completed(
        self, environment: str, name: str, passed: bool, errors: list[str]
    ) -> None:
        if passed:
            logger.info(f"Validation '{name}' passed for {environment}")
        else:
            logger.warning(
                f"Validation '{name}' failed for {environment}: {'; '.join(errors)}"
            )


class ValidationRunner:
    """Run the validation steps of one phase of a plan.

    Steps run in plan order, each bounded by its own timeout. A failing
    required step aborts the phase; a failing optional step is recorded and
    the phase continues. Retrying is left to the caller.
    """

    def __init__(
        self,
        default_timeout: float = DEFAULT_STEP_TIMEOUT,
        event_handler: ValidationEventHandler | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            default_timeout: Seconds allowed for steps without their own timeout
            event_handler: Receiver for started/completed events
        """
        self.default_timeout = default_timeout
        self.event_handler = event_handler or LoggingValidationEventHandler()

    async def run(
        self,
        plan: DeploymentPlan,
        phase: ValidationType,
        include: Iterable[ValidationType] = (),
    ) -> ValidationReport:
        """Run every step of ``phase`` plus any explicitly included step types.

        Args:
            plan: Plan whose validations are run
            phase: Phase to run (usually pre_deploy or post_deploy)
            include: Extra step types (security, compliance, contract) to run

        Returns:
            ValidationReport with one outcome per executed step

        Raises:
            ValidationFailedError: If a required step fails
        """
        selected = {phase, *include}
        report = ValidationReport(environment=plan.environment, phase=phase)

        for step in plan.validations:
            if step.type not in selected:
                continue

            self.event_handler.on_validation_started(plan.environment, step.name)
            outcome = await self._run_step(step, plan.environment)
            report.outcomes.append(outcome)

            if outcome.passed:
                self.event_handler.on_validation_completed(
                    plan.environment, step.name, True, []
                )
                continue

            self.event_handler.on_validation_completed(
                plan.environment, step.name, False, [outcome.error or "failed"]
            )
            if step.required:
                raise ValidationFailedError(
                    environment=plan.environment,
                    step_name=step.name,
                    phase=phase.value,
                    cause=outcome.error or "failed",
                    report=report,
                )

        return report

    async def _run_step(
        self, step: ValidationStep, environment: str
    ) -> ValidationOutcome:
        timeout = step.timeout or self.default_timeout
        started = time.monotonic()
        error: str | None = None

        try:
            result = await asyncio.wait_for(
                self._invoke(step, environment), timeout=timeout
            )
            if result is False:
                error = "check reported failure"
        except asyncio.TimeoutError:
            error = f"timed out after {timeout:g}s"
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__

        return ValidationOutcome(
            name=step.name,
            type=step.type,
            required=step.required,
            passed=error is None,
            error=error,
            duration=time.monotonic() - started,
        )

    @staticmethod
    async def _invoke(step: ValidationStep, environment: str) -> object:
        if inspect.iscoroutinefunction(step.check):
            return await step.check(environment)
        result = await asyncio.to_thread(step.check, environment)
        if inspect.isawaitable(result):
            return await result
        return result


def create_default_validations(
    environment: str, production_environment: str = "production"
) -> list[ValidationStep]:
    """Return the standard validation steps for an environment.

    The checks are placeholders that always pass; callers replace them with
    real health, security and smoke checks.
    """

    def _noop(env: str) -> None:
        return None

    validations = [
        ValidationStep(
            name="Infrastructure Health Check",
            type=ValidationType.PRE_DEPLOY,
            required=True,
            timeout=120,
            check=_noop,
        ),
        ValidationStep(
            name="Security Validation",
            type=ValidationType.SECURITY,
            required=True,
            timeout=180,
            check=_noop,
        ),
        ValidationStep(
            name="Post-Deploy Smoke Tests",
            type=ValidationType.POST_DEPLOY,
            required=True,
            timeout=300,
            check=_noop,
        ),
    ]

    if environment == production_environment:
        validations.append(
            ValidationStep(
                name="Compliance Validation",
                type=ValidationType.COMPLIANCE,
                required=True,
                timeout=300,
                check=_noop,
            )
        )

    return validations
