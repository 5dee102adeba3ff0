"""
Policy Evaluator for Tollgate.

Every routed request is measured against the budget policies of its tenant
before anything is recorded.

How it works:
    1. Collect the tenant's policies that govern this user and tool
    2. Order them tool > user > tenant (oldest first within a scope)
    3. For each policy, read the spend of its window and scope and project
       the request's cost onto it
    4. The first policy whose limit would be exceeded and whose action is
       not "allow" decides; policies that are not exceeded never stop the walk
    5. If nothing fires the request is allowed, reported against the most
       specific policy

per_request policies are counted against the daily window, so a per_request
limit of 0 fires on every paid use of its scope.
"""

import logging
from datetime import UTC, datetime

from tollgate.ledger import UsageLedger
from tollgate.schema import (
    SCOPE_SPECIFICITY,
    Policy,
    PolicyAction,
    PolicyEvaluation,
)
from tollgate.store import TollgateDB

logger = logging.getLogger("tollgate.policy")

REASON_NO_POLICIES = "No policies defined, allowing by default"
REASON_WITHIN_LIMITS = "Within budget limits"
REASON_REQUIRES_APPROVAL = "Requires manual approval due to budget limit"


class PolicyEvaluator:
    """
    Evaluates requests against stored budget policies.

    The evaluator never writes: policies are read from the store and spend
    from the ledger.

    Usage:
        evaluator = PolicyEvaluator(db, ledger)
        evaluation = evaluator.evaluate("tenant-1", "user-1", "gpt-4", 0.03)
        if evaluation.suggested_tool:
            # re-estimate against the fallback tool

    Attributes:
        db: Store holding the policies
        ledger: Ledger answering current-usage queries
    """

    def __init__(self, db: TollgateDB, ledger: UsageLedger) -> None:
        self.db = db
        self.ledger = ledger

    def evaluate(
        self,
        tenant_id: str,
        user_id: str,
        tool_id: str,
        estimated_cost: float,
        at: datetime | None = None,
    ) -> PolicyEvaluation:
        """
        Decide whether a request of `estimated_cost` fits the tenant's budgets.

        Args:
            tenant_id: Requesting tenant
            user_id: Requesting user
            tool_id: Requested tool
            estimated_cost: Projected cost in USD
            at: Evaluation time selecting the windows (default: now)

        Returns:
            PolicyEvaluation with the decision and the usage/limit it used
        """
        at = at or datetime.now(UTC)
        policies = self.applicable_policies(tenant_id, user_id, tool_id)

        if not policies:
            return PolicyEvaluation.allow(REASON_NO_POLICIES)

        reference: PolicyEvaluation | None = None
        for policy in policies:
            current_usage = self.ledger.usage_for_policy(policy, user_id, tool_id, at)
            if reference is None:
                reference = PolicyEvaluation.allow(
                    REASON_WITHIN_LIMITS,
                    current_usage=current_usage,
                    limit=policy.limit_value,
                    policy_id=policy.id,
                )

            projected = current_usage + estimated_cost
            if projected <= policy.limit_value:
                continue

            evaluation = self._on_breach(policy, current_usage)
            if evaluation is not None:
                logger.debug(
                    "Policy %s (%s/%s) fired for %s/%s on %s: projected %.6f > %.6f",
                    policy.id,
                    policy.scope.value,
                    policy.limit_type.value,
                    tenant_id,
                    user_id,
                    tool_id,
                    projected,
                    policy.limit_value,
                )
                return evaluation

        return reference

    def applicable_policies(
        self,
        tenant_id: str,
        user_id: str,
        tool_id: str,
    ) -> list[Policy]:
        """The tenant's policies governing this request, most specific first."""
        policies = [
            policy
            for policy in self.db.list_applicable_policies(tenant_id, user_id, tool_id)
            if policy.tenant_id == tenant_id and policy.applies_to(user_id, tool_id)
        ]
        # Stable sort keeps the store's oldest-first order within a scope
        return sorted(policies, key=lambda p: SCOPE_SPECIFICITY[p.scope])

    def _on_breach(self, policy: Policy, current_usage: float) -> PolicyEvaluation | None:
        """The outcome of a policy whose limit would be exceeded, or None to continue."""
        if policy.decision == PolicyAction.DENY:
            return PolicyEvaluation.deny(
                f"Would exceed {policy.limit_type.value} limit of ${policy.limit_value:.2f}",
                current_usage=current_usage,
                limit=policy.limit_value,
                policy_id=policy.id,
            )

        if policy.decision == PolicyAction.DOWNGRADE:
            if policy.fallback_tool_id is None:
                logger.warning("Downgrade policy %s has no fallback tool; skipping", policy.id)
                return None
            return PolicyEvaluation.downgrade(
                f"Downgrading to {policy.fallback_tool_id} due to budget limit",
                suggested_tool=policy.fallback_tool_id,
                current_usage=current_usage,
                limit=policy.limit_value,
                policy_id=policy.id,
            )

        if policy.decision == PolicyAction.REQUIRE_APPROVAL:
            return PolicyEvaluation.deny(
                REASON_REQUIRES_APPROVAL,
                current_usage=current_usage,
                limit=policy.limit_value,
                policy_id=policy.id,
                action=PolicyAction.REQUIRE_APPROVAL,
            )

        # "allow" policies never block
        return None
