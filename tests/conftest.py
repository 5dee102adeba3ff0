"""
Pytest configuration and fixtures for Tollgate tests.

This module provides shared fixtures used across unit and integration tests:
a small tool catalog, three tenants (one per plan) and in-memory stores.
"""

import logging
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Generator

import pytest

from tollgate.ledger import UsageLedger
from tollgate.router import Router
from tollgate.schema import PlanTier, PriceTier, Tenant, Tool, ToolCategory, UnitType
from tollgate.store import TollgateDB

FREE_TENANT = "tenant-free"
PRO_TENANT = "tenant-pro"
ENTERPRISE_TENANT = "tenant-enterprise"

# Mid-month, mid-day: far from any window boundary
FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def restore_tollgate_logger() -> Generator[None, None, None]:
    """Undo handler, level and propagation changes made by configure_logging."""
    logger = logging.getLogger("tollgate")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def now() -> datetime:
    """The pinned clock value used by the router fixture."""
    return FIXED_NOW


@pytest.fixture
def catalog() -> list[Tool]:
    """A catalog in which gpt-3.5-turbo is the cheapest LLM."""
    return [
        Tool(
            id="gpt-4",
            name="GPT-4",
            category=ToolCategory.LLM,
            tier=PriceTier.PREMIUM,
            cost_per_unit=0.00003,
        ),
        Tool(
            id="gpt-4-turbo",
            name="GPT-4 Turbo",
            category=ToolCategory.LLM,
            tier=PriceTier.PREMIUM,
            cost_per_unit=0.00001,
        ),
        Tool(
            id="gpt-3.5-turbo",
            name="GPT-3.5 Turbo",
            category=ToolCategory.LLM,
            tier=PriceTier.CHEAP,
            cost_per_unit=0.0000005,
        ),
        Tool(
            id="search-api",
            name="Search API",
            category=ToolCategory.SEARCH,
            tier=PriceTier.STANDARD,
            cost_per_unit=0.001,
            unit_type=UnitType.REQUESTS,
        ),
        Tool(
            id="premium-search",
            name="Premium Search",
            category=ToolCategory.SEARCH,
            tier=PriceTier.PREMIUM,
            cost_per_unit=0.01,
            unit_type=UnitType.REQUESTS,
        ),
        Tool(
            id="vector-db",
            name="Vector Database",
            category=ToolCategory.DB,
            tier=PriceTier.PREMIUM,
            cost_per_unit=0.0001,
            unit_type=UnitType.REQUESTS,
        ),
    ]


@pytest.fixture
def tenants() -> list[Tenant]:
    """One tenant per plan."""
    return [
        Tenant(id=FREE_TENANT, name="FreeCo", plan=PlanTier.FREE, soft_limit_usd=1, hard_limit_usd=2),
        Tenant(id=PRO_TENANT, name="ProCorp", plan=PlanTier.PRO, soft_limit_usd=40, hard_limit_usd=50),
        Tenant(
            id=ENTERPRISE_TENANT,
            name="EnterpriseLLC",
            plan=PlanTier.ENTERPRISE,
            soft_limit_usd=400,
            hard_limit_usd=500,
        ),
    ]


@pytest.fixture
def db(catalog: list[Tool], tenants: list[Tenant]) -> Generator[TollgateDB, None, None]:
    """An in-memory store holding the catalog and tenants."""
    database = TollgateDB(":memory:")
    for tool in catalog:
        database.upsert_tool(tool)
    for tenant in tenants:
        database.upsert_tenant(tenant)
    yield database
    database.close()


@pytest.fixture
def ledger(db: TollgateDB) -> Generator[UsageLedger, None, None]:
    """A synchronous ledger over the in-memory store."""
    with UsageLedger(db) as usage_ledger:
        yield usage_ledger


@pytest.fixture
def router(db: TollgateDB, ledger: UsageLedger) -> Router:
    """A router whose clock is pinned to FIXED_NOW."""
    return Router(db, ledger, clock=lambda: FIXED_NOW)


@pytest.fixture
def seed_yaml() -> str:
    """A small seed document."""
    return f"""
tools:
  - {{id: gpt-4, name: GPT-4, category: llm, tier: premium, cost_per_unit: 0.00003}}
  - {{id: gpt-3.5-turbo, name: GPT-3.5 Turbo, category: llm, tier: cheap, cost_per_unit: 0.0000005}}
tenants:
  - {{id: {PRO_TENANT}, name: ProCorp, plan: pro}}
policies:
  - tenant_id: {PRO_TENANT}
    scope: tenant
    limit_type: daily
    limit_value: 50
    decision: deny
  - tenant_id: {PRO_TENANT}
    scope: tool
    scope_id: gpt-4
    limit_type: daily
    limit_value: 1
    decision: downgrade
    fallback_tool_id: gpt-3.5-turbo
"""
