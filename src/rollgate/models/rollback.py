"""Rollback models shared by the rollback handler and its collaborators."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

FULL_RESET_VERSION = 0


class RiskLevel(str, Enum):
    """Risk classification for deployments and rollbacks."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RollbackSettings(BaseModel):
    """Retry and fallback policy for rollbacks.

    The defaults are permissive and intended for non-production tiers.

    Attributes:
        max_attempts: Number of ordinary rollback attempts before falling back
        attempt_timeout: Seconds allowed for each attempt
        retry_backoff: Seconds to wait between attempts
        allow_destructive: Execute destructive rollbacks without a safety check
        auto_recreate_on_failure: Recreate the target schemas when rollback fails
        emergency_mode: Drop and recreate every domain schema after retries run out
        skip_backup_verification: Stamped on each plan so planners can skip
            verifying backups before they roll back
    """

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=2, ge=1, description="Rollback attempts")
    attempt_timeout: float = Field(
        default=30.0, gt=0, description="Per-attempt timeout in seconds"
    )
    retry_backoff: float = Field(
        default=2.0, ge=0, description="Pause between attempts in seconds"
    )
    allow_destructive: bool = Field(
        default=True, description="Allow destructive rollback without safety check"
    )
    auto_recreate_on_failure: bool = Field(
        default=True, description="Recreate target schemas when rollback fails"
    )
    emergency_mode: bool = Field(
        default=True, description="Enable emergency drop-and-recreate fallback"
    )
    skip_backup_verification: bool = Field(
        default=True, description="Skip backup verification before rollback"
    )


class RollbackPlan(BaseModel):
    """Target versions per domain for one rollback request.

    Planners may report ``current_versions``; the handler compares them with
    the targets to assess ``data_loss_risk`` and fills ``estimated_seconds``
    when the planner left it empty.
    """

    model_config = ConfigDict(extra="forbid")

    environment: str = Field(..., description="Environment being rolled back")
    requested_by: str = Field(..., description="Actor requesting the rollback")
    requested_at: datetime = Field(default_factory=_utcnow)
    target_versions: dict[str, int] = Field(
        ..., description="Target version per domain; 0 means full reset"
    )
    reason: str = Field(default="", description="Why the rollback was requested")
    current_versions: dict[str, int] = Field(
        default_factory=dict, description="Version per domain before rollback"
    )
    data_loss_risk: RiskLevel = Field(default=RiskLevel.LOW)
    estimated_seconds: float | None = Field(default=None, ge=0)
    skip_backup_verification: bool = Field(default=False)

    @field_validator("target_versions")
    @classmethod
    def validate_target_versions(cls, v: dict[str, int]) -> dict[str, int]:
        """Require at least one domain and non-negative versions."""
        if not v:
            raise ValueError("target_versions must name at least one domain")
        negative = [domain for domain, version in v.items() if version < 0]
        if negative:
            raise ValueError(
                f"target versions must be >= 0, got negative for: {negative}"
            )
        return v

    @property
    def is_full_reset(self) -> bool:
        """True when every domain targets the full-reset sentinel."""
        return all(v == FULL_RESET_VERSION for v in self.target_versions.values())


class RollbackResult(BaseModel):
    """Outcome of one rollback invocation.

    Attributes:
        success: Whether the domains ended up rolled back or recreated
        rolled_back_domains: Version each domain was rolled back to
        failed_domains: Domains that could not be rolled back or recreated
        recreated_schemas: Domains whose schema was dropped and recreated
        emergency_mode: True when the emergency fallback produced this result
        recovery_steps: Ordered follow-up actions for the operator
        error: Error text, kept even on success when a fallback was used
        dry_run: True when the schema manager only recorded statements
    """

    model_config = ConfigDict(extra="forbid")

    success: bool = False
    rolled_back_domains: dict[str, int] = Field(default_factory=dict)
    failed_domains: list[str] = Field(default_factory=list)
    recreated_schemas: list[str] = Field(default_factory=list)
    emergency_mode: bool = False
    recovery_steps: list[str] = Field(default_factory=list)
    error: str | None = None
    dry_run: bool = False
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None


class RollbackHistoryEntry(BaseModel):
    """One executed rollback as reported by the history store."""

    model_config = ConfigDict(extra="forbid")

    domain: str
    from_version: int = Field(..., ge=0)
    to_version: int = Field(..., ge=0)
    executed_at: datetime
    executed_by: str
    reason: str = ""
    success: bool
