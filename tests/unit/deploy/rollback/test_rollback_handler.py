"""Tests for RollbackHandler's retry and fallback chain."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest
from conftest import FakeHistoryStore, FakePlanner, FakeSchemaManager

from rollgate.config.defaults import RECREATE_RECOVERY_STEPS
from rollgate.deploy.rollback import (
    RollbackHandler,
    SqlSchemaManager,
    assess_data_loss_risk,
)
from rollgate.lib.errors import ConfigError, RollbackError
from rollgate.models.rollback import (
    RiskLevel,
    RollbackHistoryEntry,
    RollbackPlan,
    RollbackResult,
    RollbackSettings,
)


class HangingPlanner(FakePlanner):
    """Planner whose rollbacks never finish."""

    async def execute_rollback(self, plan: RollbackPlan) -> RollbackResult:
        self.attempts += 1
        await asyncio.sleep(10)
        raise AssertionError("attempt should have timed out")


def _handler(
    planner: FakePlanner | None,
    schemas: FakeSchemaManager | SqlSchemaManager | None = None,
    sleep: Callable[[float], Any] | None = None,
    **kwargs: Any,
) -> RollbackHandler:
    settings = RollbackSettings(
        **{k: kwargs.pop(k) for k in list(kwargs) if k in RollbackSettings.model_fields}
    )
    if sleep is not None:
        kwargs["sleep"] = sleep
    return RollbackHandler(
        planner=planner,
        schemas=schemas or FakeSchemaManager(),
        settings=settings,
        **kwargs,
    )


@pytest.mark.unit
class TestOrdinaryRollback:
    """Rollbacks that succeed through the planner."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, fake_sleep: Any) -> None:
        planner = FakePlanner()
        handler = _handler(planner, sleep=fake_sleep, requested_by="ci-bot")

        result = await handler.perform_rollback({"content": 3}, "bad migration")

        assert result.success
        assert result.rolled_back_domains == {"content": 3}
        assert result.error is None
        assert result.finished_at is not None
        assert planner.attempts == 1
        assert planner.plans[0].requested_by == "ci-bot"
        assert planner.plans[0].reason == "bad migration"
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_with_backoff(self, fake_sleep: Any) -> None:
        planner = FakePlanner(fail_times=2)
        schemas = FakeSchemaManager()
        handler = _handler(
            planner, schemas, sleep=fake_sleep, max_attempts=3, retry_backoff=0.5
        )

        result = await handler.perform_rollback({"content": 3}, "bad migration")

        assert result.success
        assert not result.emergency_mode
        assert planner.attempts == 3
        assert fake_sleep.delays == [0.5, 0.5]
        assert schemas.recreated == []

    @pytest.mark.asyncio
    async def test_missing_planner_is_config_error(self) -> None:
        handler = _handler(None)

        with pytest.raises(ConfigError) as exc:
            await handler.perform_rollback({"content": 3}, "bad migration")

        assert exc.value.field == "rollback.planner"

    @pytest.mark.asyncio
    async def test_plan_creation_failure(self) -> None:
        planner = FakePlanner(plan_error=RuntimeError("no migrations found"))
        handler = _handler(planner)

        with pytest.raises(RollbackError) as exc:
            await handler.perform_rollback({"content": 3}, "bad migration")

        assert "failed to create rollback plan: no migrations found" in str(exc.value)
        assert exc.value.rollback_result is not None
        assert exc.value.rollback_result.failed_domains == ["content"]
        assert not exc.value.requires_manual_intervention
        assert planner.attempts == 0


def _plan(
    target_versions: dict[str, int],
    current_versions: dict[str, int] | None = None,
    **kwargs: Any,
) -> RollbackPlan:
    return RollbackPlan(
        environment="staging",
        requested_by="alice",
        target_versions=target_versions,
        current_versions=current_versions or {},
        **kwargs,
    )


@pytest.mark.unit
class TestDestructiveSafety:
    """The safety check runs before any attempt."""

    @pytest.mark.asyncio
    async def test_refused_in_production(self) -> None:
        planner = FakePlanner()
        handler = _handler(
            planner, allow_destructive=False, environment="production"
        )

        with pytest.raises(RollbackError, match="not safe and not allowed"):
            await handler.perform_rollback({"content": 3}, "bad migration")

        assert planner.attempts == 0

    @pytest.mark.asyncio
    async def test_full_reset_is_always_allowed(self) -> None:
        handler = _handler(
            FakePlanner(current_versions={"content": 40, "services": 40}),
            allow_destructive=False,
            environment="production",
        )

        result = await handler.perform_rollback(
            {"content": 0, "services": 0}, "reset"
        )

        assert result.success

    def test_default_policy_allows_non_production(self) -> None:
        handler = _handler(FakePlanner(), allow_destructive=False, environment="dev")

        assert handler.is_destructive_rollback_allowed(_plan({"content": 3}))

    def test_default_policy_refuses_critical_outside_production(self) -> None:
        handler = _handler(FakePlanner(), allow_destructive=False, environment="dev")
        plan = _plan({"content": 3}, data_loss_risk=RiskLevel.CRITICAL)

        assert not handler.is_destructive_rollback_allowed(plan)

    def test_custom_production_name(self) -> None:
        handler = _handler(
            FakePlanner(),
            allow_destructive=False,
            environment="prod",
            production_environment="prod",
        )

        assert not handler.is_destructive_rollback_allowed(_plan({"content": 3}))

    def test_custom_safety_policy(self) -> None:
        seen: list[tuple[dict[str, int], str]] = []

        def only_content(plan: RollbackPlan, environment: str) -> bool:
            seen.append((plan.target_versions, environment))
            return set(plan.target_versions) == {"content"}

        handler = _handler(
            FakePlanner(),
            allow_destructive=False,
            environment="staging",
            safety_policy=only_content,
        )

        assert handler.is_destructive_rollback_allowed(_plan({"content": 3}))
        assert not handler.is_destructive_rollback_allowed(_plan({"identity": 2}))
        assert seen[0] == ({"content": 3}, "staging")

    @pytest.mark.asyncio
    async def test_critical_risk_refused_in_production(self) -> None:
        planner = FakePlanner(current_versions={"content": 20})
        handler = _handler(planner, environment="production")

        with pytest.raises(RollbackError, match=r"data loss risk: critical"):
            await handler.perform_rollback({"content": 3}, "bad migration")

        assert planner.attempts == 0

    @pytest.mark.asyncio
    async def test_critical_risk_allowed_outside_production(self) -> None:
        planner = FakePlanner(current_versions={"content": 20})
        handler = _handler(planner, environment="staging")

        result = await handler.perform_rollback({"content": 3}, "bad migration")

        assert result.success
        assert planner.plans[0].data_loss_risk is RiskLevel.CRITICAL


@pytest.mark.unit
class TestDataLossAssessment:
    """Tests for assess_data_loss_risk and plan preparation."""

    @pytest.mark.parametrize(
        "current,expected",
        [
            (4, RiskLevel.LOW),
            (5, RiskLevel.LOW),
            (6, RiskLevel.MODERATE),
            (9, RiskLevel.HIGH),
            (14, RiskLevel.CRITICAL),
        ],
    )
    def test_rates_by_versions_rolled_back(
        self, current: int, expected: RiskLevel
    ) -> None:
        plan = _plan({"content": 3}, {"content": current})

        assert assess_data_loss_risk(plan) is expected

    def test_worst_domain_rates_the_plan(self) -> None:
        plan = _plan(
            {"content": 3, "identity": 1},
            {"content": 4, "identity": 8},
        )

        assert assess_data_loss_risk(plan) is RiskLevel.HIGH

    def test_unknown_current_version_is_critical(self) -> None:
        plan = _plan({"content": 3, "identity": 1}, {"content": 4})

        assert assess_data_loss_risk(plan) is RiskLevel.CRITICAL

    def test_keeps_planner_rating_without_current_versions(self) -> None:
        plan = _plan({"content": 3}, data_loss_risk=RiskLevel.HIGH)

        assert assess_data_loss_risk(plan) is RiskLevel.HIGH

    def test_planner_rating_is_a_floor(self) -> None:
        plan = _plan(
            {"content": 3}, {"content": 4}, data_loss_risk=RiskLevel.MODERATE
        )

        assert assess_data_loss_risk(plan) is RiskLevel.MODERATE

    @pytest.mark.asyncio
    async def test_plan_prepared_before_execution(self, fake_sleep: Any) -> None:
        planner = FakePlanner(current_versions={"content": 9, "services": 2})
        handler = _handler(
            planner, sleep=fake_sleep, skip_backup_verification=False
        )

        await handler.perform_rollback({"content": 3, "services": 2}, "bad")

        plan = planner.plans[0]
        assert plan.data_loss_risk is RiskLevel.HIGH
        assert plan.estimated_seconds == 60
        assert plan.skip_backup_verification is False

    def test_planner_estimate_is_kept(self) -> None:
        handler = _handler(FakePlanner())
        plan = _plan({"content": 3}, estimated_seconds=5)

        handler.prepare_plan(plan)

        assert plan.estimated_seconds == 5
        assert plan.skip_backup_verification is True
@pytest.mark.unit
class TestFallbackChain:
    """Emergency mode, auto-recreate and manual intervention."""

    @pytest.mark.asyncio
    async def test_emergency_recreates_every_domain(self, fake_sleep: Any) -> None:
        schemas = FakeSchemaManager()
        handler = _handler(FakePlanner(fail_times=-1), schemas, sleep=fake_sleep)

        result = await handler.perform_rollback({"content": 3}, "bad migration")

        assert result.success
        assert result.emergency_mode
        assert schemas.recreated == ["content", "services", "identity"]
        assert result.rolled_back_domains == {
            "content": 0,
            "services": 0,
            "identity": 0,
        }
        assert result.error == "rollback failed after 2 attempts: attempt 2 failed"

    @pytest.mark.asyncio
    async def test_emergency_skips_failing_domains(self, fake_sleep: Any) -> None:
        schemas = FakeSchemaManager(fail_for={"services"})
        handler = _handler(FakePlanner(fail_times=-1), schemas, sleep=fake_sleep)

        result = await handler.perform_rollback({"content": 3}, "bad migration")

        assert result.recreated_schemas == ["content", "identity"]
        assert result.failed_domains == ["services"]

    @pytest.mark.asyncio
    async def test_reported_failure_counts_as_attempt(self, fake_sleep: Any) -> None:
        planner = FakePlanner(fail_times=-1, report_failure=True)
        handler = _handler(planner, sleep=fake_sleep)

        result = await handler.perform_rollback({"content": 3}, "bad migration")

        assert planner.attempts == 2
        assert result.error == (
            "rollback failed after 2 attempts: migration down failed"
        )

    @pytest.mark.asyncio
    async def test_auto_recreate_after_emergency_fails(
        self, fake_sleep: Any
    ) -> None:
        schemas = FakeSchemaManager(fail_for={"services", "identity"})
        handler = _handler(
            FakePlanner(fail_times=-1),
            schemas,
            sleep=fake_sleep,
            domains=["services", "identity"],
        )

        result = await handler.perform_rollback({"content": 3}, "bad migration")

        assert result.success
        assert not result.emergency_mode
        assert result.recreated_schemas == ["content"]
        assert result.rolled_back_domains == {"content": 0}
        assert result.error is not None
        assert result.error.startswith(
            "rollback failed but schemas recreated successfully: "
            "rollback failed after 2 attempts"
        )

    @pytest.mark.asyncio
    async def test_recreation_failure_needs_manual_intervention(
        self, fake_sleep: Any
    ) -> None:
        schemas = FakeSchemaManager(fail_for={"content"})
        handler = _handler(
            FakePlanner(fail_times=-1),
            schemas,
            sleep=fake_sleep,
            emergency_mode=False,
        )

        with pytest.raises(RollbackError) as exc:
            await handler.perform_rollback({"content": 3}, "bad migration")

        assert exc.value.requires_manual_intervention
        assert "manual operator intervention required" in str(exc.value)
        result = exc.value.rollback_result
        assert result is not None
        assert not result.success
        assert result.error == (
            "rollback failed and recreation failed: "
            "rollback failed after 2 attempts: attempt 2 failed"
        )

    @pytest.mark.asyncio
    async def test_no_fallbacks_needs_manual_intervention(
        self, fake_sleep: Any
    ) -> None:
        schemas = FakeSchemaManager()
        handler = _handler(
            FakePlanner(fail_times=-1),
            schemas,
            sleep=fake_sleep,
            emergency_mode=False,
            auto_recreate_on_failure=False,
        )

        with pytest.raises(RollbackError) as exc:
            await handler.perform_rollback({"content": 3}, "bad migration")

        assert exc.value.requires_manual_intervention
        assert exc.value.rollback_result is not None
        assert exc.value.rollback_result.failed_domains == ["content"]
        assert schemas.recreated == []

    @pytest.mark.asyncio
    async def test_attempt_timeout(self) -> None:
        planner = HangingPlanner()
        handler = _handler(
            planner,
            max_attempts=1,
            attempt_timeout=0.01,
            emergency_mode=False,
            auto_recreate_on_failure=False,
        )

        with pytest.raises(RollbackError) as exc:
            await handler.perform_rollback({"content": 3}, "bad migration")

        assert planner.attempts == 1
        assert "rollback failed after 1 attempts: timed out after 0.01s" in str(
            exc.value
        )


@pytest.mark.unit
class TestSchemaOperations:
    """Emergency rollback, from-scratch recreation and validation."""

    @pytest.mark.asyncio
    async def test_emergency_rollback_fails_when_nothing_recreated(self) -> None:
        schemas = FakeSchemaManager(fail_for={"content"})
        handler = _handler(FakePlanner(), schemas, domains=["content"])

        with pytest.raises(RollbackError, match="failed for all domains") as exc:
            await handler.perform_emergency_rollback()

        assert exc.value.rollback_result is not None
        assert exc.value.rollback_result.emergency_mode
        assert exc.value.rollback_result.failed_domains == ["content"]

    @pytest.mark.asyncio
    async def test_recreate_from_scratch(self) -> None:
        schemas = FakeSchemaManager()
        handler = _handler(None, schemas)

        result = await handler.recreate_from_scratch()

        assert result.success
        assert result.recreated_schemas == ["content", "services", "identity"]
        assert result.recovery_steps == RECREATE_RECOVERY_STEPS

    @pytest.mark.asyncio
    async def test_recreate_from_scratch_stops_at_first_failure(self) -> None:
        schemas = FakeSchemaManager(fail_for={"services"})
        handler = _handler(None, schemas)

        with pytest.raises(RollbackError) as exc:
            await handler.recreate_from_scratch()

        assert str(exc.value) == (
            "failed to recreate domain services: cannot drop services_schema"
        )
        assert schemas.recreated == ["content"]
        assert exc.value.rollback_result is not None
        assert exc.value.rollback_result.failed_domains == ["services"]

    @pytest.mark.asyncio
    async def test_validate_rollback_capability(self) -> None:
        schemas = FakeSchemaManager()
        await _handler(None, schemas).validate_rollback_capability()

        assert schemas.validated == ["content", "services", "identity"]

    @pytest.mark.asyncio
    async def test_validation_names_failing_domain(self) -> None:
        schemas = FakeSchemaManager(fail_for={"identity"})

        with pytest.raises(RollbackError, match="for domain identity"):
            await _handler(None, schemas).validate_rollback_capability()

        assert schemas.validated == ["content", "services"]


@pytest.mark.unit
class TestDryRunSchemaManager:
    """A SqlSchemaManager without an executor never reports recreations."""

    @pytest.mark.asyncio
    async def test_recreate_from_scratch_is_not_successful(self) -> None:
        schemas = SqlSchemaManager()
        handler = _handler(None, schemas, domains=["content"])

        result = await handler.recreate_from_scratch()

        assert not result.success
        assert result.dry_run
        assert result.recreated_schemas == []
        assert result.rolled_back_domains == {}
        assert result.recovery_steps == []
        assert result.error == "no schema executor configured, nothing was recreated"
        assert schemas.statements == [
            "DROP SCHEMA IF EXISTS content_schema CASCADE",
            "CREATE SCHEMA IF NOT EXISTS content_schema",
        ]

    @pytest.mark.asyncio
    async def test_emergency_rollback_is_skipped(self) -> None:
        schemas = SqlSchemaManager()
        handler = _handler(None, schemas)

        with pytest.raises(RollbackError, match="schema manager is a dry run") as exc:
            await handler.perform_emergency_rollback()

        assert exc.value.rollback_result is not None
        assert exc.value.rollback_result.dry_run
        assert schemas.statements == []

    @pytest.mark.asyncio
    async def test_failed_rollback_needs_manual_intervention(
        self, fake_sleep: Any
    ) -> None:
        schemas = SqlSchemaManager()
        handler = _handler(FakePlanner(fail_times=-1), schemas, sleep=fake_sleep)

        with pytest.raises(RollbackError) as exc:
            await handler.perform_rollback({"content": 3}, "bad migration")

        assert exc.value.requires_manual_intervention
        result = exc.value.rollback_result
        assert result is not None
        assert result.dry_run
        assert result.error == (
            "rollback failed and recreation skipped (dry run): "
            "rollback failed after 2 attempts: attempt 2 failed"
        )
        assert schemas.statements == []

    @pytest.mark.asyncio
    async def test_executor_runs_statements(self) -> None:
        executed: list[str] = []
        schemas = SqlSchemaManager(execute=executed.append)
        handler = _handler(None, schemas, domains=["content"])

        result = await handler.recreate_from_scratch()

        assert result.success
        assert not result.dry_run
        assert result.recreated_schemas == ["content"]
        assert executed == schemas.statements


@pytest.mark.unit
class TestRollbackHistory:
    """Tests for get_rollback_history."""

    @pytest.mark.asyncio
    async def test_without_store_raises(self) -> None:
        with pytest.raises(RollbackError, match="no rollback history store"):
            await _handler(None).get_rollback_history("content")

    @pytest.mark.asyncio
    async def test_queries_store(self) -> None:
        entry = RollbackHistoryEntry(
            domain="content",
            from_version=4,
            to_version=3,
            executed_at=datetime(2024, 5, 14, tzinfo=timezone.utc),
            executed_by="alice",
            success=True,
        )
        store = FakeHistoryStore([entry])
        handler = _handler(None, history=store)

        history = await handler.get_rollback_history("content", limit=5)

        assert history == [entry]
        assert store.queries == [("content", 5)]

    @pytest.mark.asyncio
    async def test_store_failure_is_wrapped(self) -> None:
        class BrokenStore(FakeHistoryStore):
            async def get_rollback_history(
                self, domain: str, limit: int
            ) -> list[RollbackHistoryEntry]:
                raise RuntimeError("connection refused")

        handler = _handler(None, history=BrokenStore())

        with pytest.raises(RollbackError, match="connection refused"):
            await handler.get_rollback_history("content")
