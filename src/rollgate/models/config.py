"""Pydantic models for the engine configuration file (rollgate.yaml)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rollgate.models.plan import ValidationType
from rollgate.models.rollback import RollbackSettings

DEFAULT_DOMAINS = ["content", "services", "identity"]
HANDLER_NAMES = ("manual", "automated")


class OrchestratorConfig(BaseModel):
    """Deployment pipeline settings.

    Attributes:
        allow_parallel_deployments: Run multi-environment plans concurrently
        require_approval_for: Environments that always pass the approval gate
        rollback_on_failure: Roll back when provisioning or post-deploy fails
        deployment_timeout: Seconds allowed for a provisioning call (None: no limit)
        validation_timeout: Default seconds for steps without their own timeout
        include_in_pre_deploy: Extra step types run with the pre-deploy phase
    """

    model_config = ConfigDict(extra="forbid")

    allow_parallel_deployments: bool = Field(default=False)
    require_approval_for: list[str] = Field(default_factory=lambda: ["production"])
    rollback_on_failure: bool = Field(default=True)
    deployment_timeout: float | None = Field(default=30 * 60.0, gt=0)
    validation_timeout: float = Field(default=5 * 60.0, gt=0)
    include_in_pre_deploy: list[ValidationType] = Field(default_factory=list)

    @field_validator("include_in_pre_deploy")
    @classmethod
    def validate_included_types(cls, v: list[ValidationType]) -> list[ValidationType]:
        """Only the category types can be folded into the pre-deploy phase."""
        phases = {ValidationType.PRE_DEPLOY, ValidationType.POST_DEPLOY}
        invalid = [t.value for t in v if t in phases]
        if invalid:
            raise ValueError(
                f"include_in_pre_deploy accepts security, compliance or contract, "
                f"got: {invalid}"
            )
        return v


class ApprovalConfig(BaseModel):
    """Approval gate settings.

    Attributes:
        production_environment: Name of the production-tier environment
        handlers: Explicit environment -> handler name mapping
        default_handler: Handler for environments without a mapping
        business_hours_start: First hour (0-23) of the business-hours window
        business_hours_end: Last hour (0-23) of the business-hours window
        auto_resolve_manual: Manual handler approves immediately as system-admin
    """

    model_config = ConfigDict(extra="forbid")

    production_environment: str = Field(default="production", min_length=1)
    handlers: dict[str, str] = Field(default_factory=dict)
    default_handler: str = Field(default="automated")
    business_hours_start: int = Field(default=8, ge=0, le=23)
    business_hours_end: int = Field(default=18, ge=0, le=23)
    auto_resolve_manual: bool = Field(default=True)

    @field_validator("default_handler")
    @classmethod
    def validate_default_handler(cls, v: str) -> str:
        """Default handler must be a known handler."""
        if v not in HANDLER_NAMES:
            raise ValueError(f"Unknown approval handler '{v}'")
        return v

    @model_validator(mode="after")
    def validate_business_hours(self) -> ApprovalConfig:
        """Business hours must form a non-empty window."""
        if self.business_hours_start > self.business_hours_end:
            raise ValueError(
                f"business_hours_start ({self.business_hours_start}) must be <= "
                f"business_hours_end ({self.business_hours_end})"
            )
        return self


class RollbackConfig(RollbackSettings):
    """Rollback settings plus the collaborators used by the CLI.

    Collaborators are ``module:attribute`` import paths naming either an
    instance or a zero-argument factory.
    """

    domains: list[str] = Field(default_factory=lambda: list(DEFAULT_DOMAINS))
    requested_by: str = Field(default="rollgate")
    planner: str | None = Field(default=None)
    schema_manager: str | None = Field(default=None)
    history_store: str | None = Field(default=None)

    @field_validator("domains")
    @classmethod
    def validate_domains(cls, v: list[str]) -> list[str]:
        """At least one domain, no duplicates."""
        if not v:
            raise ValueError("At least one rollback domain is required")
        if len(set(v)) != len(v):
            raise ValueError(f"Duplicate rollback domains: {v}")
        return v

    def settings(self) -> RollbackSettings:
        """Return only the retry/fallback policy fields."""
        return RollbackSettings(
            **self.model_dump(include=set(RollbackSettings.model_fields))
        )


class NotificationConfig(BaseModel):
    """Notification channels to register."""

    model_config = ConfigDict(extra="forbid")

    channels: list[str] = Field(default_factory=lambda: ["log"])
    webhook_url: str | None = Field(default=None)
    webhook_timeout: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def validate_webhook(self) -> NotificationConfig:
        """The webhook channel needs a URL."""
        if "webhook" in self.channels and not self.webhook_url:
            raise ValueError("webhook_url is required when the webhook channel is on")
        return self


class AuditConfig(BaseModel):
    """Approval audit storage."""

    model_config = ConfigDict(extra="forbid")

    path: str | None = Field(
        default=None, description="JSON file for the audit log; in-memory when unset"
    )


class EngineConfig(BaseModel):
    """Top-level rollgate.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    rollback: RollbackConfig = Field(default_factory=RollbackConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
