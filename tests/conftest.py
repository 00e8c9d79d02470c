"""Pytest configuration and shared fixtures for Rollgate tests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from datetime import datetime, timezone
from typing import Any

import pytest

from rollgate.deploy.notifications import Notifier
from rollgate.deploy.provisioner import Provisioner
from rollgate.deploy.rollback.base import (
    RollbackHistoryStore,
    RollbackPlanner,
    SchemaManager,
)
from rollgate.models.plan import (
    DeploymentPlan,
    ProvisioningResult,
    ValidationStep,
    ValidationType,
)
from rollgate.models.rollback import (
    RollbackHistoryEntry,
    RollbackPlan,
    RollbackResult,
)


def noop_program(environment: str) -> None:
    return None


def passing_check(environment: str) -> None:
    return None


def failing_check(environment: str) -> None:
    raise RuntimeError(f"{environment} is unhealthy")


class FakeProvisioner(Provisioner):
    """Records deploy calls; fails for the configured environments."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.calls: list[str] = []

    async def deploy(
        self, environment: str, program: Callable[..., Any]
    ) -> ProvisioningResult:
        self.calls.append(environment)
        if environment in self.fail_for:
            raise RuntimeError(f"stack update failed in {environment}")
        return ProvisioningResult(
            environment=environment,
            outputs={"url": f"https://{environment}.example.com"},
            resources=["app", "db"],
            duration=1.5,
        )


class RecordingNotifier(Notifier):
    """Records every notification; raises on each call when ``fail`` is set."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.events: list[tuple[str, str]] = []

    def _record(self, event: str, environment: str) -> None:
        self.events.append((event, environment))
        if self.fail:
            raise RuntimeError("notification channel down")

    def names(self, environment: str | None = None) -> list[str]:
        return [e for e, env in self.events if environment in (None, env)]

    async def send_deployment_started(self, environment: str, plan_id: str) -> None:
        self._record("deployment_started", environment)

    async def send_deployment_succeeded(
        self, environment: str, plan_id: str, result: ProvisioningResult | None
    ) -> None:
        self._record("deployment_succeeded", environment)

    async def send_deployment_failed(
        self, environment: str, plan_id: str, error: Exception
    ) -> None:
        self._record("deployment_failed", environment)

    async def send_validation_failed(
        self, environment: str, plan_id: str, error: Exception
    ) -> None:
        self._record("validation_failed", environment)

    async def send_rollback_started(
        self, environment: str, plan_id: str, original_error: Exception
    ) -> None:
        self._record("rollback_started", environment)

    async def send_approval_required(
        self,
        environment: str,
        plan_id: str,
        approval_id: str,
        approvers: list[str],
    ) -> None:
        self._record("approval_required", environment)


class FakePlanner(RollbackPlanner):
    """Rollback planner whose attempts fail a configurable number of times.

    Attributes:
        fail_times: Attempts that fail before one succeeds (-1: always fail)
        report_failure: Fail by returning success=False instead of raising
        plan_error: Raised from create_rollback_plan when set
        current_versions: Reported on every plan
    """

    def __init__(
        self,
        fail_times: int = 0,
        report_failure: bool = False,
        plan_error: Exception | None = None,
        current_versions: dict[str, int] | None = None,
    ) -> None:
        self.fail_times = fail_times
        self.report_failure = report_failure
        self.plan_error = plan_error
        self.current_versions = current_versions or {}
        self.attempts = 0
        self.plans: list[RollbackPlan] = []

    async def create_rollback_plan(
        self, target_versions: dict[str, int], reason: str, requested_by: str
    ) -> RollbackPlan:
        if self.plan_error is not None:
            raise self.plan_error
        plan = RollbackPlan(
            environment="development",
            requested_by=requested_by,
            target_versions=target_versions,
            reason=reason,
            current_versions=dict(self.current_versions),
        )
        self.plans.append(plan)
        return plan

    async def execute_rollback(self, plan: RollbackPlan) -> RollbackResult:
        self.attempts += 1
        if self.fail_times < 0 or self.attempts <= self.fail_times:
            if self.report_failure:
                return RollbackResult(success=False, error="migration down failed")
            raise RuntimeError(f"attempt {self.attempts} failed")
        return RollbackResult(
            success=True, rolled_back_domains=dict(plan.target_versions)
        )


class FakeSchemaManager(SchemaManager):
    """Records recreated domains; fails for the configured domains."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.recreated: list[str] = []
        self.validated: list[str] = []

    async def recreate_schema(self, domain: str) -> None:
        if domain in self.fail_for:
            raise RuntimeError(f"cannot drop {domain}_schema")
        self.recreated.append(domain)

    async def validate_schema(self, domain: str) -> None:
        if domain in self.fail_for:
            raise RuntimeError(f"{domain}_schema is locked")
        self.validated.append(domain)


class FakeHistoryStore(RollbackHistoryStore):
    """Returns canned history entries."""

    def __init__(self, entries: list[RollbackHistoryEntry] | None = None) -> None:
        self.entries = entries or []
        self.queries: list[tuple[str, int]] = []

    async def get_rollback_history(
        self, domain: str, limit: int
    ) -> list[RollbackHistoryEntry]:
        self.queries.append((domain, limit))
        return [e for e in self.entries if e.domain == domain][:limit]


@pytest.fixture(autouse=True)
def reset_rollgate_logger() -> Generator[None, None, None]:
    """Undo setup_logging calls made by CLI tests."""
    logger = logging.getLogger("rollgate")
    level, handlers = logger.level, list(logger.handlers)
    yield
    logger.setLevel(level)
    logger.handlers[:] = handlers


@pytest.fixture
def make_plan() -> Callable[..., DeploymentPlan]:
    """Create a DeploymentPlan factory with sensible defaults."""

    def _make(**overrides: Any) -> DeploymentPlan:
        environment = overrides.get("environment", "staging")
        data: dict[str, Any] = {
            "id": f"plan-{environment}",
            "environment": environment,
            "program": noop_program,
        }
        data.update(overrides)
        return DeploymentPlan(**data)

    return _make


@pytest.fixture
def make_step() -> Callable[..., ValidationStep]:
    """Create a ValidationStep factory; steps pass unless given a check."""

    def _make(
        name: str = "health",
        type: ValidationType = ValidationType.PRE_DEPLOY,
        **overrides: Any,
    ) -> ValidationStep:
        data: dict[str, Any] = {"name": name, "type": type, "check": passing_check}
        data.update(overrides)
        return ValidationStep(**data)

    return _make


@pytest.fixture
def fake_sleep() -> Callable[[float], Any]:
    """Replacement for asyncio.sleep that records delays and returns at once."""

    async def _sleep(delay: float) -> None:
        _sleep.delays.append(delay)  # type: ignore[attr-defined]

    _sleep.delays = []  # type: ignore[attr-defined]
    return _sleep


@pytest.fixture
def fixed_clock() -> Callable[[int], Callable[[], datetime]]:
    """Create a clock returning a fixed time at the given hour."""

    def _clock(hour: int) -> Callable[[], datetime]:
        return lambda: datetime(2024, 5, 14, hour, 30, tzinfo=timezone.utc)

    return _clock
