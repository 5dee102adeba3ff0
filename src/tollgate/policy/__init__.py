"""
Policy module for Tollgate.

This module decides whether a priced request may go ahead.

Key concepts:
    - PlanTierGate: Plan-level tier restrictions, checked first
    - PolicyEvaluator: Budget policies, checked in specificity order
      (tool > user > tenant); the first firing policy wins
    - PolicyEvaluation: The decision and the usage/limit it was measured against
"""

from tollgate.policy.evaluator import PolicyEvaluator
from tollgate.policy.gate import PLAN_BLOCKED_TIERS, GateOutcome, PlanTierGate

__all__ = [
    "PLAN_BLOCKED_TIERS",
    "GateOutcome",
    "PlanTierGate",
    "PolicyEvaluator",
]
