"""
SQLite storage for Tollgate.

This module is the single collaborator behind the routing core. It serves
the tool catalog, tenant plans, policy records, the usage event log and the
usage aggregates from one SQLite database file.

Design Principles:
    - Append-only events: usage_events rows are never modified
    - Additive aggregates: counters only change by a delta, in one statement
    - Fail loudly: every sqlite3.Error surfaces as a PersistenceUnavailableError

Tables:
    - tenants: Customer accounts and their plans
    - tools: Priced tool catalog
    - policies: Budget rules scoped to tenant, user or tool
    - usage_events: One row per routed request
    - usage_aggregates: Running totals per (tenant, user, tool, period)
"""

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Generator

from pydantic import TypeAdapter

from tollgate.errors import (
    PolicyNotFoundError,
    PolicyValidationError,
    StorageConnectionError,
    StorageReadError,
    StorageWriteError,
    TenantNotFoundError,
)
from tollgate.schema import (
    AggregateKey,
    Decision,
    EventMetadata,
    PeriodType,
    PlanTier,
    Policy,
    PolicyDraft,
    PolicyScope,
    Seed,
    Tenant,
    Tool,
    ToolCategory,
    UsageAggregate,
    UsageEvent,
)

# Schema version for migrations
SCHEMA_VERSION = 1

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tenants (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    plan TEXT NOT NULL CHECK (plan IN ('free', 'pro', 'enterprise')),
    soft_limit_usd REAL NOT NULL DEFAULT 0,
    hard_limit_usd REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tools (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    category TEXT NOT NULL CHECK (category IN ('llm', 'search', 'db', 'custom')),
    tier TEXT NOT NULL CHECK (tier IN ('cheap', 'standard', 'premium')),
    cost_per_unit REAL NOT NULL,
    unit_type TEXT NOT NULL DEFAULT 'tokens' CHECK (unit_type IN ('tokens', 'requests')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS policies (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    scope TEXT NOT NULL CHECK (scope IN ('tenant', 'user', 'tool')),
    scope_id TEXT,
    limit_type TEXT NOT NULL CHECK (limit_type IN ('daily', 'monthly', 'per_request')),
    limit_value REAL NOT NULL,
    decision TEXT NOT NULL DEFAULT 'allow'
        CHECK (decision IN ('allow', 'deny', 'downgrade', 'require_approval')),
    fallback_tool_id TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (tenant_id) REFERENCES tenants(id) ON DELETE CASCADE,
    FOREIGN KEY (fallback_tool_id) REFERENCES tools(id)
);

CREATE TABLE IF NOT EXISTS usage_events (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    tool_id TEXT NOT NULL,
    units REAL NOT NULL,
    cost REAL NOT NULL,
    decision TEXT NOT NULL CHECK (decision IN ('allowed', 'denied', 'downgraded')),
    metadata_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS usage_aggregates (
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    tool_id TEXT NOT NULL,
    period_type TEXT NOT NULL CHECK (period_type IN ('day', 'month')),
    period_start TEXT NOT NULL,
    total_units REAL NOT NULL DEFAULT 0,
    total_cost REAL NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (tenant_id, user_id, tool_id, period_type, period_start)
);

CREATE INDEX IF NOT EXISTS idx_policies_tenant_id ON policies(tenant_id);
CREATE INDEX IF NOT EXISTS idx_tools_category ON tools(category, cost_per_unit);
CREATE INDEX IF NOT EXISTS idx_usage_events_tenant_ts ON usage_events(tenant_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_usage_aggregates_period
    ON usage_aggregates(tenant_id, period_type, period_start);
"""

# Single-statement additive upsert; never select-then-update.
INCREMENT_AGGREGATE_SQL = """
INSERT INTO usage_aggregates (
    tenant_id, user_id, tool_id, period_type, period_start,
    total_units, total_cost, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (tenant_id, user_id, tool_id, period_type, period_start) DO UPDATE SET
    total_units = usage_aggregates.total_units + excluded.total_units,
    total_cost = usage_aggregates.total_cost + excluded.total_cost,
    updated_at = excluded.updated_at
"""

CHARGED_DECISIONS = (Decision.ALLOWED.value, Decision.DOWNGRADED.value)

_metadata_adapter: TypeAdapter = TypeAdapter(EventMetadata)


def generate_id() -> str:
    """Generate a unique ID for policies and events."""
    return str(uuid.uuid4())


def to_iso(moment: datetime) -> str:
    """
    Render a timestamp as sortable UTC ISO-8601 text.

    Naive datetimes are taken to be UTC. Microseconds are always present so
    that string comparison matches time ordering.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return to_iso(datetime.now(UTC))


class TollgateDB:
    """
    SQLite database for Tollgate storage.

    One instance wraps one connection. The connection may be shared across
    threads; statements and their commit are serialized by an internal lock.
    Separate instances (or processes) on the same file coordinate through
    SQLite's own locking, bounded by `timeout`.

    Usage:
        with TollgateDB("tollgate.db") as db:
            tool = db.get_tool("gpt-4")
            db.increment_aggregate(key, cost_delta=0.03, units_delta=1000)
    """

    def __init__(self, db_path: str | Path, timeout: float = 5.0) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
                     Will be created if it doesn't exist.
            timeout: Seconds to wait for a competing writer's lock
        """
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else None
        self._target = str(db_path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                self._target,
                timeout=self.timeout,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path is not None:
                self._conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=self._target,
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        with self._access("init_schema", write=True) as conn:
            conn.executescript(CREATE_TABLES_SQL).close()
            row = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, now_iso()),
                )

    @contextmanager
    def _access(
        self, operation: str, write: bool = False
    ) -> Generator[sqlite3.Connection, None, None]:
        """
        Run one unit of work under the connection lock.

        Writes are committed on success and rolled back on failure. Any
        sqlite3.Error is re-raised as StorageWriteError or StorageReadError.
        """
        with self._lock:
            if self._conn is None:
                raise StorageConnectionError(
                    db_path=self._target,
                    operation=operation,
                    message="Database connection is closed",
                )
            try:
                yield self._conn
                if write:
                    self._conn.commit()
            except sqlite3.Error as e:
                if write:
                    self._conn.rollback()
                    raise StorageWriteError(
                        operation=operation,
                        underlying_error=str(e),
                    ) from e
                raise StorageReadError(
                    operation=operation,
                    underlying_error=str(e),
                ) from e
            except Exception:
                if write:
                    self._conn.rollback()
                raise

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "TollgateDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Tenant Operations
    # =========================================================================

    def upsert_tenant(self, tenant: Tenant) -> None:
        """Insert a tenant or replace its attributes."""
        now = now_iso()
        with self._access("upsert_tenant", write=True) as conn:
            conn.execute(
                """
                INSERT INTO tenants (
                    id, name, plan, soft_limit_usd, hard_limit_usd, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    plan = excluded.plan,
                    soft_limit_usd = excluded.soft_limit_usd,
                    hard_limit_usd = excluded.hard_limit_usd,
                    updated_at = excluded.updated_at
                """,
                (
                    tenant.id,
                    tenant.name,
                    tenant.plan.value,
                    tenant.soft_limit_usd,
                    tenant.hard_limit_usd,
                    now,
                    now,
                ),
            )

    def get_tenant(self, tenant_id: str) -> Tenant | None:
        """Get a tenant by ID, or None if unknown."""
        with self._access("get_tenant") as conn:
            row = conn.execute("SELECT * FROM tenants WHERE id = ?", (tenant_id,)).fetchone()
        return _row_to_tenant(row) if row else None

    def get_tenant_plan(self, tenant_id: str) -> PlanTier | None:
        """Get a tenant's plan, or None if the tenant is unknown."""
        with self._access("get_tenant_plan") as conn:
            row = conn.execute("SELECT plan FROM tenants WHERE id = ?", (tenant_id,)).fetchone()
        return PlanTier(row["plan"]) if row else None

    def list_tenants(self) -> list[Tenant]:
        """List all tenants by name."""
        with self._access("list_tenants") as conn:
            rows = conn.execute("SELECT * FROM tenants ORDER BY name").fetchall()
        return [_row_to_tenant(row) for row in rows]

    # =========================================================================
    # Tool Catalog Operations
    # =========================================================================

    def upsert_tool(self, tool: Tool) -> None:
        """Insert a tool or replace its attributes."""
        now = now_iso()
        with self._access("upsert_tool", write=True) as conn:
            conn.execute(
                """
                INSERT INTO tools (
                    id, name, category, tier, cost_per_unit, unit_type, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    category = excluded.category,
                    tier = excluded.tier,
                    cost_per_unit = excluded.cost_per_unit,
                    unit_type = excluded.unit_type,
                    updated_at = excluded.updated_at
                """,
                (
                    tool.id,
                    tool.name,
                    tool.category.value,
                    tool.tier.value,
                    tool.cost_per_unit,
                    tool.unit_type.value,
                    now,
                    now,
                ),
            )

    def get_tool(self, tool_id: str) -> Tool | None:
        """Get a tool by ID, or None if it is not in the catalog."""
        with self._access("get_tool") as conn:
            row = conn.execute("SELECT * FROM tools WHERE id = ?", (tool_id,)).fetchone()
        return _row_to_tool(row) if row else None

    def list_tools(self, category: ToolCategory | None = None) -> list[Tool]:
        """List catalog tools, cheapest first within each category."""
        sql = "SELECT * FROM tools"
        params: list[Any] = []
        if category is not None:
            sql += " WHERE category = ?"
            params.append(category.value)
        sql += " ORDER BY category, cost_per_unit, id"
        with self._access("list_tools") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_tool(row) for row in rows]

    def find_cheapest_alternative(
        self,
        category: ToolCategory,
        exclude_tool_id: str,
    ) -> str | None:
        """
        Find the lowest-cost tool in a category other than `exclude_tool_id`.

        Ties on price are broken by tool id so the answer is stable.
        """
        with self._access("find_cheapest_alternative") as conn:
            row = conn.execute(
                """
                SELECT id FROM tools
                WHERE category = ? AND id != ?
                ORDER BY cost_per_unit ASC, id ASC
                LIMIT 1
                """,
                (category.value, exclude_tool_id),
            ).fetchone()
        return row["id"] if row else None

    # =========================================================================
    # Policy Operations
    # =========================================================================

    def create_policy(self, draft: PolicyDraft) -> Policy:
        """
        Store a new policy.

        Args:
            draft: The validated policy to store

        Returns:
            The stored Policy with its generated id

        Raises:
            TenantNotFoundError: If the owning tenant is unknown
            PolicyValidationError: If the fallback tool is not in the catalog
        """
        policy = Policy(id=generate_id(), **draft.model_dump())
        with self._access("create_policy", write=True) as conn:
            if conn.execute(
                "SELECT 1 FROM tenants WHERE id = ?", (policy.tenant_id,)
            ).fetchone() is None:
                raise TenantNotFoundError(tenant_id=policy.tenant_id)
            if policy.fallback_tool_id is not None and conn.execute(
                "SELECT 1 FROM tools WHERE id = ?", (policy.fallback_tool_id,)
            ).fetchone() is None:
                raise PolicyValidationError(
                    message=f"Fallback tool {policy.fallback_tool_id} not found",
                    field_name="fallback_tool_id",
                )
            conn.execute(
                """
                INSERT INTO policies (
                    id, tenant_id, scope, scope_id, limit_type, limit_value,
                    decision, fallback_tool_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    policy.id,
                    policy.tenant_id,
                    policy.scope.value,
                    policy.scope_id,
                    policy.limit_type.value,
                    policy.limit_value,
                    policy.decision.value,
                    policy.fallback_tool_id,
                    to_iso(policy.created_at),
                ),
            )
        return policy

    def get_policy(self, policy_id: str) -> Policy | None:
        """Get a policy by ID."""
        with self._access("get_policy") as conn:
            row = conn.execute("SELECT * FROM policies WHERE id = ?", (policy_id,)).fetchone()
        return _row_to_policy(row) if row else None

    def list_policies(self, tenant_id: str) -> list[Policy]:
        """List a tenant's policies, newest first."""
        with self._access("list_policies") as conn:
            rows = conn.execute(
                "SELECT * FROM policies WHERE tenant_id = ? ORDER BY created_at DESC, id",
                (tenant_id,),
            ).fetchall()
        return [_row_to_policy(row) for row in rows]

    def list_applicable_policies(
        self,
        tenant_id: str,
        user_id: str,
        tool_id: str,
    ) -> list[Policy]:
        """
        List the policies governing one request, most specific first.

        Order: tool-scoped, then user-scoped, then tenant-scoped; within a
        scope, oldest first.
        """
        with self._access("list_applicable_policies") as conn:
            rows = conn.execute(
                """
                SELECT * FROM policies
                WHERE tenant_id = ?
                  AND (
                    scope = 'tenant'
                    OR (scope = 'user' AND scope_id = ?)
                    OR (scope = 'tool' AND scope_id = ?)
                  )
                ORDER BY
                    CASE scope WHEN 'tool' THEN 0 WHEN 'user' THEN 1 ELSE 2 END,
                    created_at,
                    id
                """,
                (tenant_id, user_id, tool_id),
            ).fetchall()
        return [_row_to_policy(row) for row in rows]

    def delete_policy(self, policy_id: str) -> None:
        """
        Delete a policy.

        Raises:
            PolicyNotFoundError: If no policy has this id
        """
        with self._access("delete_policy", write=True) as conn:
            cursor = conn.execute("DELETE FROM policies WHERE id = ?", (policy_id,))
            if cursor.rowcount == 0:
                raise PolicyNotFoundError(policy_id=policy_id)

    # =========================================================================
    # Usage Event Operations
    # =========================================================================

    def append_usage_event(self, event: UsageEvent) -> str:
        """
        Durably append a usage event.

        Args:
            event: The event to record; an id is generated if it has none

        Returns:
            The event id
        """
        event_id = event.id or generate_id()
        with self._access("append_usage_event", write=True) as conn:
            conn.execute(
                """
                INSERT INTO usage_events (
                    id, timestamp, tenant_id, user_id, tool_id,
                    units, cost, decision, metadata_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event_id,
                    to_iso(event.timestamp),
                    event.tenant_id,
                    event.user_id,
                    event.tool_id,
                    event.units,
                    event.cost,
                    event.decision.value,
                    event.metadata.model_dump_json(),
                ),
            )
        return event_id

    def list_usage_events(
        self,
        tenant_id: str,
        user_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = 50,
        charged_only: bool = False,
    ) -> list[UsageEvent]:
        """
        List a tenant's events, most recent first.

        Args:
            tenant_id: Tenant to list
            user_id: Restrict to one user
            start: Inclusive lower bound on timestamp
            end: Exclusive upper bound on timestamp
            limit: Maximum rows, or None for all
            charged_only: Only allowed and downgraded events
        """
        sql = "SELECT * FROM usage_events WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if start is not None:
            sql += " AND timestamp >= ?"
            params.append(to_iso(start))
        if end is not None:
            sql += " AND timestamp < ?"
            params.append(to_iso(end))
        if charged_only:
            sql += " AND decision IN (?, ?)"
            params.extend(CHARGED_DECISIONS)
        sql += " ORDER BY timestamp DESC, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._access("list_usage_events") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_event(row) for row in rows]

    def sum_event_costs(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
        user_id: str | None = None,
        tool_id: str | None = None,
    ) -> tuple[float, float]:
        """
        Total (cost, units) of charged events in [start, end).

        This rescans the raw log and is only used when no aggregate row
        exists yet for a window.
        """
        sql = """
            SELECT COALESCE(SUM(cost), 0) AS cost, COALESCE(SUM(units), 0) AS units
            FROM usage_events
            WHERE tenant_id = ? AND timestamp >= ? AND timestamp < ?
              AND decision IN (?, ?)
        """
        params: list[Any] = [tenant_id, to_iso(start), to_iso(end), *CHARGED_DECISIONS]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if tool_id is not None:
            sql += " AND tool_id = ?"
            params.append(tool_id)
        with self._access("sum_event_costs") as conn:
            row = conn.execute(sql, params).fetchone()
        return float(row["cost"]), float(row["units"])

    # =========================================================================
    # Aggregate Operations
    # =========================================================================

    def increment_aggregate(
        self,
        key: AggregateKey,
        cost_delta: float,
        units_delta: float,
    ) -> None:
        """
        Atomically add to the counters of one aggregate key.

        Inserts the row if absent, otherwise adds the deltas to the stored
        totals, in a single conditional write.
        """
        with self._access("increment_aggregate", write=True) as conn:
            conn.execute(
                INCREMENT_AGGREGATE_SQL,
                (
                    key.tenant_id,
                    key.user_id,
                    key.tool_id,
                    key.period_type.value,
                    key.period_start.isoformat(),
                    units_delta,
                    cost_delta,
                    now_iso(),
                ),
            )

    def get_aggregate(self, key: AggregateKey) -> UsageAggregate | None:
        """Get the counters of one aggregate key, or None if absent."""
        with self._access("get_aggregate") as conn:
            row = conn.execute(
                """
                SELECT * FROM usage_aggregates
                WHERE tenant_id = ? AND user_id = ? AND tool_id = ?
                  AND period_type = ? AND period_start = ?
                """,
                (
                    key.tenant_id,
                    key.user_id,
                    key.tool_id,
                    key.period_type.value,
                    key.period_start.isoformat(),
                ),
            ).fetchone()
        if row is None:
            return None
        return UsageAggregate(
            key=key,
            total_units=row["total_units"],
            total_cost=row["total_cost"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def sum_aggregates(
        self,
        tenant_id: str,
        period_type: PeriodType,
        period_start: date,
        user_id: str | None = None,
        tool_id: str | None = None,
    ) -> tuple[float, float] | None:
        """
        Total (cost, units) over every aggregate row matching a filter.

        user_id / tool_id of None match any value. Returns None when no row
        matches, so callers can tell "no usage recorded" from "zero usage".
        """
        sql = """
            SELECT COUNT(*) AS n,
                   COALESCE(SUM(total_cost), 0) AS cost,
                   COALESCE(SUM(total_units), 0) AS units
            FROM usage_aggregates
            WHERE tenant_id = ? AND period_type = ? AND period_start = ?
        """
        params: list[Any] = [tenant_id, period_type.value, period_start.isoformat()]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if tool_id is not None:
            sql += " AND tool_id = ?"
            params.append(tool_id)
        with self._access("sum_aggregates") as conn:
            row = conn.execute(sql, params).fetchone()
        if row["n"] == 0:
            return None
        return float(row["cost"]), float(row["units"])

    # =========================================================================
    # Seeding
    # =========================================================================

    def apply_seed(self, seed: Seed) -> dict[str, int]:
        """
        Load a seed document.

        Tools and tenants are upserted. A seeded policy is skipped when an
        identical one already exists, so seeding twice is harmless.

        Returns:
            Counts of tools, tenants and newly created policies
        """
        for tool in seed.tools:
            self.upsert_tool(tool)
        for tenant in seed.tenants:
            self.upsert_tenant(tenant)

        created = 0
        for draft in seed.policies:
            if not self._policy_exists(draft):
                self.create_policy(draft)
                created += 1

        return {"tools": len(seed.tools), "tenants": len(seed.tenants), "policies": created}

    def _policy_exists(self, draft: PolicyDraft) -> bool:
        """Whether a policy with exactly these attributes is stored."""
        with self._access("policy_exists") as conn:
            row = conn.execute(
                """
                SELECT 1 FROM policies
                WHERE tenant_id = ? AND scope = ? AND scope_id IS ?
                  AND limit_type = ? AND limit_value = ? AND decision = ?
                  AND fallback_tool_id IS ?
                """,
                (
                    draft.tenant_id,
                    draft.scope.value,
                    draft.scope_id,
                    draft.limit_type.value,
                    draft.limit_value,
                    draft.decision.value,
                    draft.fallback_tool_id,
                ),
            ).fetchone()
        return row is not None


# =============================================================================
# Row Conversion
# =============================================================================


def _row_to_tenant(row: sqlite3.Row) -> Tenant:
    return Tenant(
        id=row["id"],
        name=row["name"],
        plan=PlanTier(row["plan"]),
        soft_limit_usd=row["soft_limit_usd"],
        hard_limit_usd=row["hard_limit_usd"],
    )


def _row_to_tool(row: sqlite3.Row) -> Tool:
    return Tool(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        tier=row["tier"],
        cost_per_unit=row["cost_per_unit"],
        unit_type=row["unit_type"],
    )


def _row_to_policy(row: sqlite3.Row) -> Policy:
    return Policy(
        id=row["id"],
        tenant_id=row["tenant_id"],
        scope=PolicyScope(row["scope"]),
        scope_id=row["scope_id"],
        limit_type=row["limit_type"],
        limit_value=row["limit_value"],
        decision=row["decision"],
        fallback_tool_id=row["fallback_tool_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_event(row: sqlite3.Row) -> UsageEvent:
    return UsageEvent(
        id=row["id"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        tenant_id=row["tenant_id"],
        user_id=row["user_id"],
        tool_id=row["tool_id"],
        units=row["units"],
        cost=row["cost"],
        decision=Decision(row["decision"]),
        metadata=_metadata_adapter.validate_python(json.loads(row["metadata_json"])),
    )
