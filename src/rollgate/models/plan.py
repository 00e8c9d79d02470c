"""Pydantic models for deployment plans and their results.

A DeploymentPlan is built by the caller before submission and stays
immutable while the orchestrator runs it. Validation checks and the
provisioning program are plain callables (sync or async).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rollgate.models.approval import ApprovalResult
from rollgate.models.rollback import RiskLevel, RollbackResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationType(str, Enum):
    """Phase or category a validation step belongs to."""

    PRE_DEPLOY = "pre_deploy"
    POST_DEPLOY = "post_deploy"
    SECURITY = "security"
    COMPLIANCE = "compliance"
    CONTRACT = "contract"


class DeploymentStage(str, Enum):
    """States of a single plan execution."""

    CREATED = "created"
    PRE_VALIDATED = "pre_validated"
    APPROVAL_PENDING = "approval_pending"
    APPROVED = "approved"
    PROVISIONED = "provisioned"
    POST_VALIDATED = "post_validated"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"


class ValidationStep(BaseModel):
    """A named check bound to a validation phase.

    Attributes:
        name: Human-readable step name used in events and errors
        type: Phase or category the step runs in
        required: A failing required step aborts its phase
        timeout: Seconds allowed for the check; None uses the runner default
        check: Callable taking the environment name. Raising or returning
            False is a failure. May be a coroutine function.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    type: ValidationType = Field(default=ValidationType.PRE_DEPLOY)
    required: bool = Field(default=True)
    timeout: float | None = Field(default=None, gt=0)
    check: Callable[[str], Any]


class DeploymentSchedule(BaseModel):
    """When a plan should run. Only validated today; nothing executes it."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    scheduled_time: datetime
    timezone: str = Field(default="UTC")
    recurrence_pattern: str | None = Field(
        default=None, description="Cron-style recurrence, if the plan repeats"
    )


class DeploymentPlan(BaseModel):
    """A unit of deployment work targeting one environment.

    Attributes:
        id: Unique plan identifier
        environment: Target environment name
        program: Opaque provisioning program handed to the provisioner
        dependencies: Ids of plans that must be deployed first
        validations: Ordered validation steps across all phases
        approval_required: Force the approval gate for this plan
        schedule: Optional schedule for deferred execution
        risk: Risk classification consumed by automated approval
        rollback_targets: Version per domain to roll back to on failure
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(..., min_length=1)
    environment: str = Field(..., min_length=1)
    program: Callable[..., Any]
    dependencies: list[str] = Field(default_factory=list)
    validations: list[ValidationStep] = Field(default_factory=list)
    approval_required: bool = Field(default=False)
    schedule: DeploymentSchedule | None = Field(default=None)
    risk: RiskLevel = Field(default=RiskLevel.LOW)
    rollback_targets: dict[str, int] | None = Field(default=None)

    @field_validator("dependencies")
    @classmethod
    def validate_dependencies(cls, v: list[str]) -> list[str]:
        """Reject duplicate dependency ids."""
        if len(set(v)) != len(v):
            raise ValueError(f"Duplicate plan ids in dependencies: {v}")
        return v


class ValidationOutcome(BaseModel):
    """Result of running one validation step."""

    model_config = ConfigDict(extra="forbid")

    name: str
    type: ValidationType
    required: bool
    passed: bool
    error: str | None = None
    duration: float = Field(default=0.0, ge=0)


class ValidationReport(BaseModel):
    """Outcomes of one validation phase for one environment."""

    model_config = ConfigDict(extra="forbid")

    environment: str
    phase: ValidationType
    outcomes: list[ValidationOutcome] = Field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        """True when every executed step passed, optional ones included."""
        return all(outcome.passed for outcome in self.outcomes)

    @property
    def failed(self) -> list[ValidationOutcome]:
        """Outcomes of the steps that failed."""
        return [outcome for outcome in self.outcomes if not outcome.passed]


class ProvisioningResult(BaseModel):
    """What the provisioner reported for one environment."""

    model_config = ConfigDict(extra="forbid")

    environment: str
    outputs: dict[str, Any] = Field(default_factory=dict)
    resources: list[str] = Field(default_factory=list)
    duration: float = Field(default=0.0, ge=0)


class StageTransition(BaseModel):
    """One entry of a plan execution's stage history."""

    model_config = ConfigDict(extra="forbid")

    stage: DeploymentStage
    at: datetime = Field(default_factory=_utcnow)


class DeploymentResult(BaseModel):
    """Outcome of one plan execution."""

    model_config = ConfigDict(extra="forbid")

    plan_id: str
    environment: str
    success: bool = False
    stage: DeploymentStage = DeploymentStage.CREATED
    stages: list[StageTransition] = Field(
        default_factory=lambda: [StageTransition(stage=DeploymentStage.CREATED)]
    )
    provisioning: ProvisioningResult | None = None
    pre_validation: ValidationReport | None = None
    post_validation: ValidationReport | None = None
    approval: ApprovalResult | None = None
    rollback: RollbackResult | None = None
    error: str | None = None

    def advance(self, stage: DeploymentStage) -> None:
        """Move to ``stage`` and record the transition."""
        self.stage = stage
        self.stages.append(StageTransition(stage=stage))

    @property
    def stage_names(self) -> list[str]:
        """Stage values in the order they were entered."""
        return [transition.stage.value for transition in self.stages]
