"""
Integration tests for the Router.

Tests cover:
- End-to-end routing decisions over a real store and ledger
- Plan-tier gate short-circuits
- Ledger recording per decision
- Fail-closed handling of lookups, bad input and storage failures
"""

import math
from datetime import datetime
from pathlib import Path

import pytest

from tollgate.config import TollgateConfig
from tollgate.ledger import UsageLedger
from tollgate.router import APPROVED_MESSAGE, HANDOFF_MESSAGE, Router
from tollgate.schema import (
    AllowedMetadata,
    Decision,
    PeriodType,
    PolicyDraft,
    PolicyEvaluation,
    Tool,
    UsageEvent,
)
from tollgate.store import TollgateDB

FREE = "tenant-free"
PRO = "tenant-pro"
ENTERPRISE = "tenant-enterprise"


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def budgets(db: TollgateDB) -> TollgateDB:
    """Daily deny limits for FreeCo and ProCorp, monthly approval for EnterpriseLLC."""
    db.create_policy(
        PolicyDraft(tenant_id=FREE, scope="tenant", limit_type="daily", limit_value=2, decision="deny")
    )
    db.create_policy(
        PolicyDraft(tenant_id=PRO, scope="tenant", limit_type="daily", limit_value=50, decision="deny")
    )
    db.create_policy(
        PolicyDraft(
            tenant_id=ENTERPRISE,
            scope="tenant",
            limit_type="monthly",
            limit_value=500,
            decision="require_approval",
        )
    )
    return db


@pytest.fixture
def prior_spend(ledger: UsageLedger, now: datetime):
    """Record earlier allowed spend for a tenant."""

    def _prior_spend(tenant_id: str, cost: float, tool_id: str = "gpt-4") -> None:
        ledger.record(
            UsageEvent(
                timestamp=now,
                tenant_id=tenant_id,
                user_id="earlier-user",
                tool_id=tool_id,
                units=1,
                cost=cost,
                decision=Decision.ALLOWED,
                metadata=AllowedMetadata(),
            )
        )

    return _prior_spend


# =============================================================================
# Routing Decisions
# =============================================================================


class TestRoutingDecisions:
    """End-to-end decisions for each plan."""

    def test_free_plan_premium_tool_downgraded_at_gate(self, budgets: TollgateDB, router: Router) -> None:
        result = router.route(FREE, "user-1", "gpt-4", 1000)

        assert result.decision == Decision.DOWNGRADED
        assert result.final_tool_used == "gpt-3.5-turbo"
        assert result.cost_estimate == 0
        assert result.remaining_budget == 0
        assert result.result is None
        assert "not available on your plan" in result.message
        assert budgets.list_usage_events(FREE) == []

    def test_pro_within_budget_allowed(self, budgets: TollgateDB, router: Router) -> None:
        result = router.route(PRO, "user-1", "gpt-4", 1000, params={"prompt": "hi"})

        assert result.decision == Decision.ALLOWED
        assert result.final_tool_used == "gpt-4"
        assert result.cost_estimate == pytest.approx(0.03)
        assert result.remaining_budget == pytest.approx(49.97)
        assert result.message == APPROVED_MESSAGE
        assert result.result == {"message": HANDOFF_MESSAGE, "tool": "gpt-4", "params": {"prompt": "hi"}}

    def test_pro_over_daily_limit_denied(self, budgets: TollgateDB, router: Router, prior_spend) -> None:
        prior_spend(PRO, 49.99)

        result = router.route(PRO, "user-1", "gpt-4", 1000)

        assert result.decision == Decision.DENIED
        assert result.final_tool_used == "gpt-4"
        assert "daily limit" in result.message
        assert result.cost_estimate == pytest.approx(0.03)
        assert result.remaining_budget == pytest.approx(0.01)
        assert result.result is None

    def test_enterprise_monthly_limit_requires_approval(
        self,
        budgets: TollgateDB,
        router: Router,
        prior_spend,
    ) -> None:
        prior_spend(ENTERPRISE, 490.0)

        # 2000 requests at $0.01 projects monthly spend to $510
        result = router.route(ENTERPRISE, "user-1", "premium-search", 2000)

        assert result.decision == Decision.DENIED
        assert result.message == "Requires manual approval due to budget limit"

    def test_free_plan_without_alternative_denied(self, router: Router) -> None:
        result = router.route(FREE, "user-1", "vector-db", 10)

        assert result.decision == Decision.DENIED
        assert result.message == "Tool vector-db not available on your plan"
        assert result.cost_estimate == 0

    def test_no_policies_allows_with_unlimited_budget(self, router: Router) -> None:
        result = router.route(PRO, "user-1", "gpt-4", 1000)

        assert result.decision == Decision.ALLOWED
        assert result.remaining_budget == float("inf")

    def test_policy_downgrade_charges_fallback(self, db: TollgateDB, router: Router, prior_spend) -> None:
        db.create_policy(
            PolicyDraft(
                tenant_id=PRO,
                scope="tool",
                scope_id="gpt-4",
                limit_type="daily",
                limit_value=1,
                decision="downgrade",
                fallback_tool_id="gpt-3.5-turbo",
            )
        )
        prior_spend(PRO, 0.99)

        result = router.route(PRO, "user-1", "gpt-4", 1000)

        assert result.decision == Decision.DOWNGRADED
        assert result.final_tool_used == "gpt-3.5-turbo"
        assert result.cost_estimate == pytest.approx(0.0005)
        assert result.remaining_budget == pytest.approx(1 - 0.99 - 0.0005)
        assert result.message == "Downgrading to gpt-3.5-turbo due to budget limit"
        assert result.result["tool"] == "gpt-3.5-turbo"

    def test_missing_fallback_tool_denied(self, db: TollgateDB, ledger: UsageLedger) -> None:
        router = Router(db, ledger, evaluator=RetiredFallbackEvaluator())

        result = router.route(PRO, "user-1", "gpt-4", 1000)

        assert result.decision == Decision.DENIED
        assert result.message == "Fallback tool retired-model not found"
        assert result.cost_estimate == pytest.approx(0.03)
        assert result.remaining_budget == 1.0

        (event,) = db.list_usage_events(PRO)
        assert event.decision == Decision.DENIED
        assert event.tool_id == "gpt-4"
        assert event.cost == 0
        assert event.metadata.reason == "Fallback tool retired-model not found"


# =============================================================================
# Ledger Recording
# =============================================================================


class TestLedgerRecording:
    """Tests for what each decision leaves in the ledger."""

    def test_allowed_event(self, budgets: TollgateDB, router: Router, now: datetime) -> None:
        router.route(PRO, "user-1", "gpt-4", 1000, params={"k": "v"})

        (event,) = budgets.list_usage_events(PRO)
        assert event.decision == Decision.ALLOWED
        assert event.timestamp == now
        assert event.units == 1000
        assert event.cost == pytest.approx(0.03)
        assert event.metadata.kind == "allowed"
        assert event.metadata.params == {"k": "v"}

    def test_denied_event_charges_nothing(
        self,
        budgets: TollgateDB,
        router: Router,
        ledger: UsageLedger,
        prior_spend,
        now: datetime,
    ) -> None:
        prior_spend(PRO, 49.99)
        result = router.route(PRO, "user-1", "gpt-4", 1000)

        denied = [e for e in budgets.list_usage_events(PRO) if e.decision == Decision.DENIED]
        assert len(denied) == 1
        assert denied[0].cost == 0
        assert denied[0].metadata.kind == "denied"
        assert denied[0].metadata.reason == result.message
        assert ledger.current_usage(PRO, PeriodType.DAY, now) == pytest.approx(49.99)

    def test_downgraded_event_names_original_tool(self, db: TollgateDB, router: Router) -> None:
        db.create_policy(
            PolicyDraft(
                tenant_id=PRO,
                scope="tool",
                scope_id="gpt-4",
                limit_type="per_request",
                limit_value=0,
                decision="downgrade",
                fallback_tool_id="gpt-3.5-turbo",
            )
        )
        router.route(PRO, "user-1", "gpt-4", 1000)

        (event,) = db.list_usage_events(PRO)
        assert event.decision == Decision.DOWNGRADED
        assert event.tool_id == "gpt-3.5-turbo"
        assert event.metadata.original_tool == "gpt-4"

    def test_repeated_requests_accumulate(self, router: Router, ledger: UsageLedger, now: datetime) -> None:
        for _ in range(20):
            assert router.route(PRO, "user-1", "search-api", 3).decision == Decision.ALLOWED

        assert ledger.current_usage(PRO, PeriodType.DAY, now) == pytest.approx(20 * 0.003)
        assert ledger.current_usage(PRO, PeriodType.MONTH, now) == pytest.approx(20 * 0.003)

    def test_budget_runs_out_mid_stream(self, db: TollgateDB, router: Router) -> None:
        db.create_policy(
            PolicyDraft(tenant_id=PRO, scope="tenant", limit_type="daily", limit_value=0.01, decision="deny")
        )
        decisions = [router.route(PRO, "user-1", "search-api", 3).decision for _ in range(5)]
        assert decisions == [Decision.ALLOWED] * 3 + [Decision.DENIED] * 2

    def test_evaluation_is_repeatable(self, budgets: TollgateDB, router: Router, now: datetime) -> None:
        first = router.evaluator.evaluate(PRO, "user-1", "gpt-4", 0.03, at=now)
        second = router.evaluator.evaluate(PRO, "user-1", "gpt-4", 0.03, at=now)
        assert first == second
        assert budgets.list_usage_events(PRO) == []


# =============================================================================
# Fail-Closed Handling
# =============================================================================


class RetiredFallbackEvaluator:
    """Evaluator stand-in suggesting a tool that left the catalog."""

    def evaluate(self, *args, **kwargs) -> PolicyEvaluation:
        return PolicyEvaluation.downgrade(
            "Downgrading to retired-model due to budget limit",
            suggested_tool="retired-model",
            current_usage=0.0,
            limit=1.0,
        )


class ExplodingEvaluator:
    """Evaluator stand-in that fails unexpectedly."""

    def evaluate(self, *args, **kwargs):
        raise RuntimeError("boom")


class TestFailClosed:
    """Tests that errors always come back as denials."""

    def test_unknown_tool(self, router: Router) -> None:
        result = router.route(PRO, "user-1", "no-such-tool", 10)
        assert result.decision == Decision.DENIED
        assert result.message == "Tool no-such-tool not found"
        assert result.final_tool_used == "no-such-tool"

    def test_unknown_tenant(self, router: Router, db: TollgateDB) -> None:
        result = router.route("tenant-ghost", "user-1", "gpt-4", 10)
        assert result.decision == Decision.DENIED
        assert result.message == "Tenant tenant-ghost not found"
        assert db.list_usage_events("tenant-ghost") == []

    @pytest.mark.parametrize("units", [0, -5, math.inf, math.nan])
    def test_invalid_units(
        self,
        router: Router,
        db: TollgateDB,
        ledger: UsageLedger,
        units: float,
        now: datetime,
    ) -> None:
        result = router.route(ENTERPRISE, "user-1", "gpt-4", units)
        assert result.decision == Decision.DENIED
        assert result.message == "Invalid request: estimated_units"
        assert db.list_usage_events(ENTERPRISE) == []
        assert ledger.current_usage(ENTERPRISE, PeriodType.DAY, now) == 0

    def test_overflowing_cost_estimate(self, router: Router, db: TollgateDB) -> None:
        db.upsert_tool(
            Tool(id="gpu-hour", name="GPU Hour", category="custom", tier="standard", cost_per_unit=1000)
        )
        result = router.route(ENTERPRISE, "user-1", "gpu-hour", 1e308)
        assert result.decision == Decision.DENIED
        assert result.message == "Cost estimate for gpu-hour is out of range"
        assert db.list_usage_events(ENTERPRISE) == []

    def test_empty_identifiers(self, router: Router) -> None:
        result = router.route("", "", "gpt-4", 10)
        assert result.decision == Decision.DENIED
        assert result.message.startswith("Invalid request: ")
        assert "tenant_id" in result.message
        assert "user_id" in result.message

    def test_closed_store(self, router: Router, db: TollgateDB) -> None:
        db.close()
        result = router.route(PRO, "user-1", "gpt-4", 10)
        assert result.decision == Decision.DENIED
        assert result.message.startswith("Error processing request")
        assert result.cost_estimate == 0

    def test_unexpected_error(self, db: TollgateDB, ledger: UsageLedger) -> None:
        router = Router(db, ledger, evaluator=ExplodingEvaluator())
        result = router.route(PRO, "user-1", "gpt-4", 10)
        assert result.decision == Decision.DENIED
        assert result.message == "Error processing request: boom"


# =============================================================================
# Lifecycle
# =============================================================================


class TestFromConfig:
    """Tests for routers that own their store."""

    def test_routes_against_file_store(self, temp_dir: Path, catalog, tenants) -> None:
        config = TollgateConfig(db_path=temp_dir / "tollgate.db")

        with Router.from_config(config) as router:
            for tool in catalog:
                router.db.upsert_tool(tool)
            for tenant in tenants:
                router.db.upsert_tenant(tenant)
            assert router.route(PRO, "user-1", "gpt-4", 1000).decision == Decision.ALLOWED

        with TollgateDB(temp_dir / "tollgate.db") as reopened:
            assert len(reopened.list_usage_events(PRO)) == 1

    def test_close_releases_owned_store(self, temp_dir: Path) -> None:
        router = Router.from_config(TollgateConfig(db_path=temp_dir / "tollgate.db"))
        router.close()
        result = router.route(PRO, "user-1", "gpt-4", 1000)
        assert result.decision == Decision.DENIED
        assert result.message.startswith("Error processing request")

    def test_injected_store_left_open(self, db: TollgateDB, ledger: UsageLedger) -> None:
        Router(db, ledger).close()
        assert db.get_tool("gpt-4") is not None

    def test_async_aggregation(self, temp_dir: Path, catalog, tenants) -> None:
        config = TollgateConfig(db_path=temp_dir / "tollgate.db", async_aggregation=True)

        with Router.from_config(config) as router:
            for tool in catalog:
                router.db.upsert_tool(tool)
            for tenant in tenants:
                router.db.upsert_tenant(tenant)
            for _ in range(10):
                router.route(PRO, "user-1", "search-api", 1)
            router.ledger.flush()
            assert router.ledger.current_usage(PRO, PeriodType.DAY) == pytest.approx(0.01)
