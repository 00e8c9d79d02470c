"""Collaborator interfaces used by the rollback handler."""

from __future__ import annotations

from abc import ABC, abstractmethod

from rollgate.models.rollback import (
    RollbackHistoryEntry,
    RollbackPlan,
    RollbackResult,
)


class RollbackPlanner(ABC):
    """Plans and executes migration rollbacks for a set of domains."""

    @abstractmethod
    async def create_rollback_plan(
        self,
        target_versions: dict[str, int],
        reason: str,
        requested_by: str,
    ) -> RollbackPlan:
        """Build a rollback plan for the requested target versions.

        Args:
            target_versions: Version per domain; 0 resets the domain entirely.
            reason: Why the rollback was requested.
            requested_by: Actor recorded on the plan.

        Returns:
            RollbackPlan describing the work.

        Raises:
            Exception: Any failure; the handler wraps it in RollbackError.
        """

    @abstractmethod
    async def execute_rollback(self, plan: RollbackPlan) -> RollbackResult:
        """Execute a plan once.

        Returns:
            RollbackResult. ``success=False`` counts as a failed attempt.

        Raises:
            Exception: Any failure; the handler retries it.
        """


class RollbackHistoryStore(ABC):
    """Read access to previously executed rollbacks."""

    @abstractmethod
    async def get_rollback_history(
        self, domain: str, limit: int
    ) -> list[RollbackHistoryEntry]:
        """Return at most ``limit`` entries for a domain, newest first."""


class SchemaManager(ABC):
    """Drops, recreates and checks per-domain database schemas.

    Managers that only record what they would run set ``dry_run``; the
    handler then never reports their recreations as executed.
    """

    dry_run: bool = False

    @abstractmethod
    async def recreate_schema(self, domain: str) -> None:
        """Drop and recreate the schema of a domain. Destructive."""

    @abstractmethod
    async def validate_schema(self, domain: str) -> None:
        """Check that a domain's schema could be recreated, without changing it.

        Raises:
            Exception: When the domain cannot be rolled back.
        """
