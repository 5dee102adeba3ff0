"""
Request Router for Tollgate.

The Router is the orchestration layer every priced tool call goes through.
It coordinates between:
- Store: Tool catalog and tenant plans
- Plan-Tier Gate: Tiers a plan may never use
- Policy Evaluator: Budget policies
- Usage Ledger: Records every decision and the spend it implies

Routing Flow:
    1. Validate the request
    2. Resolve the tool and the tenant's plan
    3. Check the plan-tier gate (blocked tools short-circuit, nothing recorded)
    4. Estimate the cost and evaluate policies
    5. Record a denied, downgraded or allowed event and return the result

Design Principles:
    - Fail-closed: Any error is reported as a denial, never as an allowance
    - Full audit: Every request that reaches policy evaluation is recorded
    - Stable contract: RouteResult fields and decisions never change shape
"""

import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from tollgate.config import TollgateConfig
from tollgate.errors import (
    NotFoundError,
    TenantNotFoundError,
    TollgateError,
    ToolNotFoundError,
)
from tollgate.estimator import estimate_cost
from tollgate.ledger import UsageLedger
from tollgate.policy import PlanTierGate, PolicyEvaluator
from tollgate.schema import (
    AllowedMetadata,
    Decision,
    DeniedMetadata,
    DowngradedMetadata,
    PolicyEvaluation,
    RouteRequest,
    RouteResult,
    UsageEvent,
)
from tollgate.store import TollgateDB

logger = logging.getLogger("tollgate.router")

HANDOFF_MESSAGE = "Request would be routed to downstream tool here"
APPROVED_MESSAGE = "Request approved and routed"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Router:
    """
    Main entry point for routing priced tool calls.

    Collaborators are injected; the Router only closes what it opened
    itself (see from_config).

    Usage:
        with TollgateDB("tollgate.db") as db:
            router = Router(db, UsageLedger(db))
            result = router.route("tenant-1", "user-1", "gpt-4", 1000)
            print(f"{result.decision.value}: {result.message}")

    Attributes:
        db: Store providing tools, tenants and policies
        ledger: Ledger recording decisions
        evaluator: Policy evaluator (defaults to one over db and ledger)
        gate: Plan-tier gate (defaults to one over db)
    """

    def __init__(
        self,
        db: TollgateDB,
        ledger: UsageLedger,
        evaluator: PolicyEvaluator | None = None,
        gate: PlanTierGate | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the router.

        Args:
            db: Store for catalog and policy lookups
            ledger: Ledger recording usage events
            evaluator: Policy evaluator to use
            gate: Plan-tier gate to use
            clock: Source of "now" for windows and event timestamps
        """
        self.db = db
        self.ledger = ledger
        self.evaluator = evaluator or PolicyEvaluator(db, ledger)
        self.gate = gate or PlanTierGate(db)
        self.clock = clock or _utcnow
        self._owns_store = False

    @classmethod
    def from_config(cls, config: TollgateConfig) -> "Router":
        """
        Open a store and ledger as described by `config`.

        The returned router owns both and releases them on close().
        """
        db = TollgateDB(config.db_path, timeout=config.store_timeout_seconds)
        ledger = UsageLedger(
            db,
            async_aggregation=config.async_aggregation,
            recent_events_limit=config.recent_events_limit,
        )
        router = cls(db, ledger)
        router._owns_store = True
        return router

    def close(self) -> None:
        """Release the store and ledger if this router opened them."""
        if not self._owns_store:
            return
        try:
            self.ledger.close()
        finally:
            self.db.close()

    def __enter__(self) -> "Router":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    def route(
        self,
        tenant_id: str,
        user_id: str,
        tool_id: str,
        estimated_units: float,
        params: dict[str, Any] | None = None,
    ) -> RouteResult:
        """
        Decide on and record one priced tool call.

        This never raises: lookups of unknown entities, storage failures and
        unexpected errors all come back as a denied result.

        Args:
            tenant_id: Requesting tenant
            user_id: Requesting user
            tool_id: Requested tool
            estimated_units: Units the call is expected to consume
            params: Parameters to hand to the downstream tool

        Returns:
            RouteResult describing the decision
        """
        try:
            request = RouteRequest(
                tenant_id=tenant_id,
                user_id=user_id,
                tool_id=tool_id,
                estimated_units=estimated_units,
                params=params or {},
            )
        except ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            logger.info("Rejected malformed request for %r: %s", tool_id, fields)
            return RouteResult.denied(str(tool_id), f"Invalid request: {fields}")

        try:
            result = self._route(request)
        except NotFoundError as e:
            logger.info("Denied %s/%s on %s: %s", tenant_id, user_id, tool_id, e.message)
            return RouteResult.denied(request.tool_id, e.message)
        except TollgateError as e:
            logger.error("Routing %s for %s failed: %s", request.tool_id, request.tenant_id, e)
            return RouteResult.denied(request.tool_id, f"Error processing request: {e.message}")
        except Exception as e:
            logger.exception("Unexpected error routing %s for %s", request.tool_id, request.tenant_id)
            return RouteResult.denied(request.tool_id, f"Error processing request: {e}")

        logger.info(
            "%s %s/%s on %s -> %s (cost %.6f)",
            result.decision.value,
            request.tenant_id,
            request.user_id,
            request.tool_id,
            result.final_tool_used,
            result.cost_estimate,
        )
        return result

    def _route(self, request: RouteRequest) -> RouteResult:
        """The routing pipeline; errors propagate to route()."""
        now = self.clock()

        tool = self.db.get_tool(request.tool_id)
        if tool is None:
            raise ToolNotFoundError(tool_id=request.tool_id)

        plan = self.db.get_tenant_plan(request.tenant_id)
        if plan is None:
            raise TenantNotFoundError(tenant_id=request.tenant_id)

        outcome = self.gate.check(plan, tool)
        if not outcome.permitted:
            if outcome.fallback_tool_id is None:
                return RouteResult.denied(tool.id, outcome.message)
            return RouteResult(
                decision=Decision.DOWNGRADED,
                final_tool_used=outcome.fallback_tool_id,
                cost_estimate=0.0,
                remaining_budget=0.0,
                message=outcome.message,
            )

        estimated_cost = estimate_cost(tool, request.estimated_units)
        if not math.isfinite(estimated_cost):
            return RouteResult.denied(tool.id, f"Cost estimate for {tool.id} is out of range")

        evaluation = self.evaluator.evaluate(
            request.tenant_id,
            request.user_id,
            tool.id,
            estimated_cost,
            at=now,
        )

        if not evaluation.allowed:
            return self._deny(request, tool.id, estimated_cost, evaluation, evaluation.reason, now)

        if evaluation.suggested_tool:
            fallback = self.db.get_tool(evaluation.suggested_tool)
            if fallback is None:
                # The fallback's price is unknown, so its cost cannot be charged
                reason = f"Fallback tool {evaluation.suggested_tool} not found"
                return self._deny(request, tool.id, estimated_cost, evaluation, reason, now)

            fallback_cost = estimate_cost(fallback, request.estimated_units)
            if not math.isfinite(fallback_cost):
                reason = f"Cost estimate for {fallback.id} is out of range"
                return self._deny(request, tool.id, estimated_cost, evaluation, reason, now)

            self.ledger.record(
                UsageEvent(
                    timestamp=now,
                    tenant_id=request.tenant_id,
                    user_id=request.user_id,
                    tool_id=fallback.id,
                    units=request.estimated_units,
                    cost=fallback_cost,
                    decision=Decision.DOWNGRADED,
                    metadata=DowngradedMetadata(original_tool=tool.id, reason=evaluation.reason),
                )
            )
            return RouteResult(
                decision=Decision.DOWNGRADED,
                final_tool_used=fallback.id,
                cost_estimate=fallback_cost,
                remaining_budget=evaluation.limit - evaluation.current_usage - fallback_cost,
                message=evaluation.reason,
                result=self._handoff(fallback.id, request.params),
            )

        self.ledger.record(
            UsageEvent(
                timestamp=now,
                tenant_id=request.tenant_id,
                user_id=request.user_id,
                tool_id=tool.id,
                units=request.estimated_units,
                cost=estimated_cost,
                decision=Decision.ALLOWED,
                metadata=AllowedMetadata(params=request.params),
            )
        )
        return RouteResult(
            decision=Decision.ALLOWED,
            final_tool_used=tool.id,
            cost_estimate=estimated_cost,
            remaining_budget=evaluation.limit - evaluation.current_usage - estimated_cost,
            message=APPROVED_MESSAGE,
            result=self._handoff(tool.id, request.params),
        )

    def _deny(
        self,
        request: RouteRequest,
        tool_id: str,
        estimated_cost: float,
        evaluation: PolicyEvaluation,
        reason: str,
        now: datetime,
    ) -> RouteResult:
        """Record a zero-cost denial for an evaluated request and report its budget."""
        self.ledger.record(
            UsageEvent(
                timestamp=now,
                tenant_id=request.tenant_id,
                user_id=request.user_id,
                tool_id=tool_id,
                decision=Decision.DENIED,
                metadata=DeniedMetadata(reason=reason),
            )
        )
        return RouteResult(
            decision=Decision.DENIED,
            final_tool_used=tool_id,
            cost_estimate=estimated_cost,
            remaining_budget=evaluation.limit - evaluation.current_usage,
            message=reason,
        )

    @staticmethod
    def _handoff(tool_id: str, params: dict[str, Any]) -> dict[str, Any]:
        """What would be passed to the downstream tool."""
        return {"message": HANDOFF_MESSAGE, "tool": tool_id, "params": params}
