"""
Plan-tier gate for Tollgate.

Some plans may not use some price tiers at all, whatever their budgets say.
The gate runs before cost estimation and policy evaluation, and when it
blocks a tool it proposes the cheapest tool of the same category instead.
"""

from dataclasses import dataclass

from tollgate.schema import PlanTier, PriceTier, Tool
from tollgate.store import TollgateDB

# Tiers each plan may not use
PLAN_BLOCKED_TIERS: dict[PlanTier, frozenset[PriceTier]] = {
    PlanTier.FREE: frozenset({PriceTier.PREMIUM}),
    PlanTier.PRO: frozenset(),
    PlanTier.ENTERPRISE: frozenset(),
}


@dataclass(frozen=True)
class GateOutcome:
    """
    Result of the plan-tier check.

    Attributes:
        permitted: Whether the plan may use the requested tool
        fallback_tool_id: Cheapest same-category alternative when not permitted
        message: Human-readable explanation
    """

    permitted: bool
    message: str
    fallback_tool_id: str | None = None


class PlanTierGate:
    """
    Bars tools whose price tier a tenant's plan does not include.

    Usage:
        gate = PlanTierGate(db)
        outcome = gate.check(PlanTier.FREE, tool)
        if not outcome.permitted and outcome.fallback_tool_id:
            # route to the fallback instead
    """

    def __init__(self, db: TollgateDB) -> None:
        self.db = db

    @staticmethod
    def permits(plan: PlanTier, tool: Tool) -> bool:
        """Whether `plan` may use `tool` at all."""
        return tool.tier not in PLAN_BLOCKED_TIERS.get(plan, frozenset())

    def check(self, plan: PlanTier, tool: Tool) -> GateOutcome:
        """Check a tool against a plan and look up an alternative if blocked."""
        if self.permits(plan, tool):
            return GateOutcome(permitted=True, message=f"Tool {tool.id} available on plan {plan.value}")

        fallback = self.db.find_cheapest_alternative(tool.category, exclude_tool_id=tool.id)
        if fallback is None:
            return GateOutcome(
                permitted=False,
                message=f"Tool {tool.id} not available on your plan",
            )
        return GateOutcome(
            permitted=False,
            message=f"Tool {tool.id} not available on your plan. Downgraded to {fallback}",
            fallback_tool_id=fallback,
        )
