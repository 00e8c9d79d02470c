"""Tests for the rule-based automated approval handler."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import pytest

from rollgate.deploy.approval.automated import (
    LOW_RISK,
    MANUAL_REQUIRED_COMMENT,
    NON_PRODUCTION,
    OUTSIDE_BUSINESS_HOURS,
    VALIDATIONS_PASSED,
    AutomatedApprovalHandler,
)
from rollgate.lib.errors import ApprovalError
from rollgate.models.approval import ApprovalStatus
from rollgate.models.plan import (
    DeploymentPlan,
    ValidationOutcome,
    ValidationReport,
    ValidationType,
)
from rollgate.models.rollback import RiskLevel


def _report(environment: str = "staging", passed: bool = True) -> ValidationReport:
    return ValidationReport(
        environment=environment,
        phase=ValidationType.PRE_DEPLOY,
        outcomes=[
            ValidationOutcome(
                name="health",
                type=ValidationType.PRE_DEPLOY,
                required=False,
                passed=passed,
            )
        ],
    )


@pytest.fixture
def night_handler(
    fixed_clock: Callable[[int], Callable[[], datetime]],
) -> AutomatedApprovalHandler:
    return AutomatedApprovalHandler(clock=fixed_clock(22))


@pytest.mark.unit
class TestAutomatedApproval:
    """Auto-approval holds only when all four conditions hold."""

    @pytest.mark.asyncio
    async def test_approves_when_every_condition_holds(
        self,
        night_handler: AutomatedApprovalHandler,
        make_plan: Callable[..., DeploymentPlan],
    ) -> None:
        result = await night_handler.request_approval(make_plan(), _report())

        assert result.status is ApprovalStatus.APPROVED
        assert result.approver == "automated-system"
        assert result.approved_at is not None
        assert result.id.startswith("auto-approval-staging-")
        assert result.conditions == [
            NON_PRODUCTION,
            LOW_RISK,
            VALIDATIONS_PASSED,
            OUTSIDE_BUSINESS_HOURS,
        ]

    @pytest.mark.asyncio
    async def test_production_tier_stays_pending(
        self,
        night_handler: AutomatedApprovalHandler,
        make_plan: Callable[..., DeploymentPlan],
    ) -> None:
        result = await night_handler.request_approval(
            make_plan(environment="production"), _report("production")
        )

        assert result.status is ApprovalStatus.PENDING
        assert result.comments == MANUAL_REQUIRED_COMMENT
        assert result.conditions == [f"unmet: {NON_PRODUCTION}"]
        assert result.id.startswith("manual-required-production-")

    @pytest.mark.asyncio
    async def test_high_risk_stays_pending(
        self,
        night_handler: AutomatedApprovalHandler,
        make_plan: Callable[..., DeploymentPlan],
    ) -> None:
        result = await night_handler.request_approval(
            make_plan(risk=RiskLevel.HIGH), _report()
        )

        assert result.status is ApprovalStatus.PENDING
        assert result.conditions == [f"unmet: {LOW_RISK}"]

    @pytest.mark.asyncio
    async def test_failed_validation_stays_pending(
        self,
        night_handler: AutomatedApprovalHandler,
        make_plan: Callable[..., DeploymentPlan],
    ) -> None:
        result = await night_handler.request_approval(
            make_plan(), _report(passed=False)
        )

        assert result.status is ApprovalStatus.PENDING
        assert result.conditions == [f"unmet: {VALIDATIONS_PASSED}"]

    @pytest.mark.asyncio
    async def test_missing_report_stays_pending(
        self,
        night_handler: AutomatedApprovalHandler,
        make_plan: Callable[..., DeploymentPlan],
    ) -> None:
        result = await night_handler.request_approval(make_plan())

        assert result.status is ApprovalStatus.PENDING
        assert result.conditions == [f"unmet: {VALIDATIONS_PASSED}"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hour", [8, 12, 18])
    async def test_business_hours_stay_pending(
        self,
        hour: int,
        fixed_clock: Callable[[int], Callable[[], datetime]],
        make_plan: Callable[..., DeploymentPlan],
    ) -> None:
        handler = AutomatedApprovalHandler(clock=fixed_clock(hour))

        result = await handler.request_approval(make_plan(), _report())

        assert result.status is ApprovalStatus.PENDING
        assert result.conditions == [f"unmet: {OUTSIDE_BUSINESS_HOURS}"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hour", [0, 7, 19, 23])
    async def test_outside_business_hours_approves(
        self,
        hour: int,
        fixed_clock: Callable[[int], Callable[[], datetime]],
        make_plan: Callable[..., DeploymentPlan],
    ) -> None:
        handler = AutomatedApprovalHandler(clock=fixed_clock(hour))

        result = await handler.request_approval(make_plan(), _report())

        assert result.status is ApprovalStatus.APPROVED

    def test_stops_at_first_unmet_condition(
        self,
        night_handler: AutomatedApprovalHandler,
        make_plan: Callable[..., DeploymentPlan],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        plan = make_plan(environment="production", risk=RiskLevel.CRITICAL)

        with caplog.at_level("INFO", logger="rollgate"):
            unmet = night_handler.unmet_condition(plan, None)

        assert unmet == NON_PRODUCTION
        assert NON_PRODUCTION in caplog.text
        assert LOW_RISK not in caplog.text

    def test_custom_production_environment(
        self,
        fixed_clock: Callable[[int], Callable[[], datetime]],
        make_plan: Callable[..., DeploymentPlan],
    ) -> None:
        handler = AutomatedApprovalHandler(
            production_environment="prod", clock=fixed_clock(22)
        )
        assert handler.unmet_condition(make_plan(environment="prod")) == (
            NON_PRODUCTION
        )
        assert handler.unmet_condition(
            make_plan(environment="production"), _report("production")
        ) is None


@pytest.mark.unit
class TestAutomatedApprovalStatus:
    """Tests for check_approval_status."""

    @pytest.mark.asyncio
    async def test_returns_stored_result(
        self,
        night_handler: AutomatedApprovalHandler,
        make_plan: Callable[..., DeploymentPlan],
    ) -> None:
        requested = await night_handler.request_approval(make_plan(), _report())

        polled = await night_handler.check_approval_status(requested.id)

        assert polled == requested

    @pytest.mark.asyncio
    async def test_unknown_id_raises(
        self, night_handler: AutomatedApprovalHandler
    ) -> None:
        with pytest.raises(ApprovalError, match="not found"):
            await night_handler.check_approval_status("auto-approval-x")
