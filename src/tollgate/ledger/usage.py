"""
Usage Ledger for Tollgate.

The ledger owns the event log and the running counters derived from it.

How it works:
    1. record() appends the event; the append is committed before anything else
    2. Allowed and downgraded events are then added to their day and month
       aggregates with one atomic increment per key
    3. current_usage() reads the aggregates for a window, falling back to a
       scan of the raw events only when no aggregate row exists yet

Windows are computed from wall-clock UTC time: a day starts at 00:00 UTC
and a month on the 1st at 00:00 UTC. Nothing is ever reset; a new window
simply has no rows yet.

With async_aggregation the increments run on a single background worker.
The event log is never eventually consistent, only the counters are.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, date, datetime
from typing import Any

from tollgate.schema import (
    AggregateKey,
    PeriodType,
    Policy,
    PolicyScope,
    ToolUsage,
    UsageEvent,
    UsageSummary,
)
from tollgate.store import TollgateDB

logger = logging.getLogger("tollgate.ledger")


def period_start(period_type: PeriodType, at: datetime) -> date:
    """
    First day of the period containing `at`, in UTC.

    Examples:
        period_start(DAY, 2026-10-19T23:59Z) -> 2026-10-19
        period_start(MONTH, 2026-10-19T23:59Z) -> 2026-10-01
    """
    if at.tzinfo is None:
        at = at.replace(tzinfo=UTC)
    day = at.astimezone(UTC).date()
    if period_type == PeriodType.DAY:
        return day
    return day.replace(day=1)


def period_bounds(period_type: PeriodType, at: datetime) -> tuple[datetime, datetime]:
    """The half-open window [start, end) of the period containing `at`."""
    start_day = period_start(period_type, at)
    start = datetime(start_day.year, start_day.month, start_day.day, tzinfo=UTC)
    if period_type == PeriodType.DAY:
        end = datetime.fromordinal(start_day.toordinal() + 1).replace(tzinfo=UTC)
    elif start_day.month == 12:
        end = datetime(start_day.year + 1, 1, 1, tzinfo=UTC)
    else:
        end = datetime(start_day.year, start_day.month + 1, 1, tzinfo=UTC)
    return start, end


def aggregate_key(event: UsageEvent, period_type: PeriodType) -> AggregateKey:
    """The aggregate an event is counted in for one period type."""
    return AggregateKey(
        tenant_id=event.tenant_id,
        user_id=event.user_id,
        tool_id=event.tool_id,
        period_type=period_type,
        period_start=period_start(period_type, event.timestamp),
    )


class UsageLedger:
    """
    Records usage events and maintains their aggregates.

    Usage:
        ledger = UsageLedger(db)
        ledger.record(event)
        spent_today = ledger.current_usage("tenant-1", PeriodType.DAY)

    Attributes:
        db: The store the log and counters live in
        async_aggregation: Whether increments run on a background worker
        recent_events_limit: Events listed by summarize()
    """

    def __init__(
        self,
        db: TollgateDB,
        async_aggregation: bool = False,
        recent_events_limit: int = 50,
    ) -> None:
        self.db = db
        self.async_aggregation = async_aggregation
        self.recent_events_limit = recent_events_limit
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()
        self._failures: list[Exception] = []
        self._failures_lock = threading.Lock()

    def close(self) -> None:
        """Wait for outstanding increments and stop the worker."""
        try:
            self.flush()
        finally:
            with self._executor_lock:
                executor, self._executor = self._executor, None
            if executor is not None:
                executor.shutdown(wait=True)

    def __enter__(self) -> "UsageLedger":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Recording
    # =========================================================================

    def record(self, event: UsageEvent) -> str:
        """
        Append an event and update its aggregates.

        The event is durably stored before any aggregate is touched. Denied
        events are logged but never counted.

        Returns:
            The stored event id
        """
        event_id = self.db.append_usage_event(event)

        if not event.charged:
            return event_id

        if self.async_aggregation:
            self._submit(event.model_copy(update={"id": event_id}))
        else:
            self._apply_aggregates(event)
        return event_id

    def flush(self, timeout: float | None = None) -> None:
        """
        Block until every queued aggregate increment has run.

        Raises:
            The first error raised by a queued increment, if any
        """
        with self._executor_lock:
            # Single worker: the marker runs after everything queued before it
            marker = self._executor.submit(lambda: None) if self._executor is not None else None
        if marker is not None:
            marker.result(timeout=timeout)

        with self._failures_lock:
            failures, self._failures = self._failures, []
        if failures:
            raise failures[0]

    def _submit(self, event: UsageEvent) -> None:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1,
                    thread_name_prefix="tollgate-aggregates",
                )
            self._executor.submit(self._apply_in_background, event)

    def _apply_in_background(self, event: UsageEvent) -> None:
        try:
            self._apply_aggregates(event)
        except Exception as e:
            logger.error("Aggregate update for event %s failed: %s", event.id, e)
            with self._failures_lock:
                self._failures.append(e)

    def _apply_aggregates(self, event: UsageEvent) -> None:
        for period_type in (PeriodType.DAY, PeriodType.MONTH):
            self.db.increment_aggregate(
                aggregate_key(event, period_type),
                cost_delta=event.cost,
                units_delta=event.units,
            )

    # =========================================================================
    # Reading
    # =========================================================================

    def current_usage(
        self,
        tenant_id: str,
        period_type: PeriodType,
        at: datetime | None = None,
        user_id: str | None = None,
        tool_id: str | None = None,
    ) -> float:
        """
        Spend in the period containing `at`.

        Args:
            tenant_id: Tenant whose spend is measured
            period_type: Day or month window
            at: Point in time selecting the window (default: now)
            user_id: Restrict to one user (None: all users)
            tool_id: Restrict to one tool (None: all tools)

        Returns:
            Total cost in USD
        """
        at = at or datetime.now(UTC)
        totals = self.db.sum_aggregates(
            tenant_id,
            period_type,
            period_start(period_type, at),
            user_id=user_id,
            tool_id=tool_id,
        )
        if totals is not None:
            return totals[0]

        start, end = period_bounds(period_type, at)
        cost, _ = self.db.sum_event_costs(
            tenant_id,
            start,
            end,
            user_id=user_id,
            tool_id=tool_id,
        )
        return cost

    def usage_for_policy(
        self,
        policy: Policy,
        user_id: str,
        tool_id: str,
        at: datetime | None = None,
    ) -> float:
        """
        Spend a policy is measured against.

        Tenant-scoped policies count the whole tenant, user-scoped policies
        count that user across tools, tool-scoped policies count that tool
        across users.
        """
        if policy.scope == PolicyScope.USER:
            return self.current_usage(policy.tenant_id, policy.window, at, user_id=user_id)
        if policy.scope == PolicyScope.TOOL:
            return self.current_usage(policy.tenant_id, policy.window, at, tool_id=tool_id)
        return self.current_usage(policy.tenant_id, policy.window, at)

    def summarize(
        self,
        tenant_id: str,
        user_id: str | None = None,
        period: PeriodType = PeriodType.DAY,
        start: datetime | None = None,
        end: datetime | None = None,
        at: datetime | None = None,
    ) -> UsageSummary:
        """
        Summarize spend over a window.

        The window defaults to the current day or month; `start` and `end`
        override either bound. Totals only count allowed and downgraded
        events, while recent_events lists every decision.
        """
        default_start, default_end = period_bounds(period, at or datetime.now(UTC))
        start = start or default_start
        end = end or default_end

        charged = self.db.list_usage_events(
            tenant_id,
            user_id=user_id,
            start=start,
            end=end,
            limit=None,
            charged_only=True,
        )

        by_tool: dict[str, dict[str, float]] = {}
        total_cost = 0.0
        total_units = 0.0
        for event in charged:
            total_cost += event.cost
            total_units += event.units
            slot = by_tool.setdefault(event.tool_id, {"cost": 0.0, "units": 0.0})
            slot["cost"] += event.cost
            slot["units"] += event.units

        breakdown = []
        for tool_id, slot in sorted(by_tool.items(), key=lambda item: -item[1]["cost"]):
            tool = self.db.get_tool(tool_id)
            breakdown.append(
                ToolUsage(
                    tool_id=tool_id,
                    tool_name=tool.name if tool else tool_id,
                    cost=slot["cost"],
                    units=slot["units"],
                )
            )

        recent = self.db.list_usage_events(
            tenant_id,
            user_id=user_id,
            start=start,
            end=end,
            limit=self.recent_events_limit,
        )

        return UsageSummary(
            tenant_id=tenant_id,
            user_id=user_id,
            period=period,
            window_start=start,
            window_end=end,
            total_cost=total_cost,
            total_units=total_units,
            by_tool=breakdown,
            recent_events=recent,
        )
