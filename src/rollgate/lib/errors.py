"""Custom exception hierarchy for Rollgate configuration and deployment runs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rollgate.models.plan import DeploymentResult, ValidationReport
    from rollgate.models.rollback import RollbackResult


class RollgateError(Exception):
    """Base exception for all Rollgate errors.

    All Rollgate-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI and in embedding services.
    """

    pass


class ConfigError(RollgateError):
    """Exception raised for configuration errors.

    Raised when configuration loading or parsing fails, and when a plan is
    missing a field an operation requires (for example a schedule).

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class DeploymentError(RollgateError):
    """Exception raised when a deployment operation fails.

    Attributes:
        operation: The pipeline operation that failed (validation, approval,
            provision, rollback, deploy)
        message: Human-readable error message
        result: The failed DeploymentResult, when one was produced
    """

    def __init__(
        self,
        operation: str,
        message: str,
        result: DeploymentResult | None = None,
    ) -> None:
        """Create a deployment error for an operation."""
        self.operation = operation
        self.message = message
        self.result = result
        super().__init__(message)


class ValidationFailedError(DeploymentError):
    """A required validation step failed. Not retryable at this layer.

    A post-deploy failure may be followed by a rollback; its failure is
    appended to the message and kept in ``rollback_error``.
    """

    def __init__(
        self,
        environment: str,
        step_name: str,
        phase: str,
        cause: str,
        report: ValidationReport | None = None,
        rollback_error: Exception | None = None,
    ) -> None:
        """Create a validation failure for a named step and phase."""
        self.environment = environment
        self.step_name = step_name
        self.phase = phase
        self.cause = cause
        self.report = report
        self.rollback_error = rollback_error
        message = (
            f"{phase} validation failed for environment '{environment}': "
            f"required validation '{step_name}' failed: {cause}"
        )
        if rollback_error is not None:
            message += f" (rollback also failed: {rollback_error})"
        super().__init__(operation="validation", message=message)


class ApprovalError(DeploymentError):
    """Approval was not granted, or the approval process itself failed.

    Attributes:
        environment: Environment the approval was requested for
        status: Approval status that stopped the deployment, if one was returned
        approval_id: Identifier of the approval request, if one was created
    """

    def __init__(
        self,
        environment: str | None,
        message: str,
        status: str | None = None,
        approval_id: str | None = None,
    ) -> None:
        """Create an approval error."""
        self.environment = environment
        self.status = status
        self.approval_id = approval_id
        super().__init__(operation="approval", message=message)


class ProvisioningError(DeploymentError):
    """The external provisioner failed for an environment.

    A best-effort rollback may follow; its failure is appended to the message
    and kept in ``rollback_error`` without replacing the original cause.
    """

    def __init__(
        self,
        environment: str,
        cause: str,
        rollback_error: Exception | None = None,
    ) -> None:
        """Create a provisioning error, optionally carrying a rollback failure."""
        self.environment = environment
        self.cause = cause
        self.rollback_error = rollback_error
        message = f"provisioning failed for environment '{environment}': {cause}"
        if rollback_error is not None:
            message += f" (rollback also failed: {rollback_error})"
        super().__init__(operation="provision", message=message)


class RollbackError(DeploymentError):
    """A rollback could not be planned, was refused, or exhausted every fallback.

    Attributes:
        rollback_result: Partial RollbackResult describing what was attempted
        requires_manual_intervention: True when retries, emergency mode and
            schema recreation all failed and an operator must step in
    """

    def __init__(
        self,
        message: str,
        rollback_result: RollbackResult | None = None,
        requires_manual_intervention: bool = False,
    ) -> None:
        """Create a rollback error."""
        self.rollback_result = rollback_result
        self.requires_manual_intervention = requires_manual_intervention
        if requires_manual_intervention:
            message = f"{message}; manual operator intervention required"
        super().__init__(operation="rollback", message=message)


class MultiEnvironmentDeploymentError(DeploymentError):
    """One or more plans of a multi-environment run failed.

    Attributes:
        results: DeploymentResult per environment that was attempted
        failures: Exception per failing environment
        not_attempted: Environments skipped after a sequential-mode failure
    """

    def __init__(
        self,
        results: dict[str, DeploymentResult],
        failures: dict[str, Exception],
        not_attempted: list[str] | None = None,
    ) -> None:
        """Create an aggregate error naming every failing environment."""
        self.results = results
        self.failures = failures
        self.not_attempted = list(not_attempted or [])
        details = "; ".join(f"{env}: {exc}" for env, exc in failures.items())
        message = (
            f"deployment failed for environments [{', '.join(failures)}]: {details}"
        )
        if self.not_attempted:
            message += f" (not attempted: {', '.join(self.not_attempted)})"
        super().__init__(operation="deploy", message=message)


class NotificationError(RollgateError):
    """One or more notification channels failed to deliver a message."""

    def __init__(self, failures: dict[str, Any]) -> None:
        """Create an error listing failing channels."""
        self.failures = failures
        details = ", ".join(
            f"channel {name} failed: {err}" for name, err in failures.items()
        )
        super().__init__(f"notification failures: {details}")
