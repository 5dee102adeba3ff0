"""
Usage ledger module for Tollgate.

The ledger is the append-only record of every routed request plus the
day/month counters derived from it. Counters are only ever increased by
an atomic add; windows roll over implicitly at UTC day and month starts.
"""

from tollgate.ledger.usage import UsageLedger, aggregate_key, period_bounds, period_start

__all__ = [
    "UsageLedger",
    "aggregate_key",
    "period_bounds",
    "period_start",
]
