"""
Integration tests for the Tollgate CLI.

Tests cover:
- Database initialization and seeding
- Routing exit codes and JSON output
- Usage summaries
- Policy management
- Error reporting
"""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from tollgate import __version__
from tollgate.cli import app
from tollgate.store import TollgateDB

PRO = "tenant-pro"
DEMO_FREECO = "11111111-1111-1111-1111-111111111111"

runner = CliRunner()


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "tollgate.db"


@pytest.fixture
def seed_file(temp_dir: Path, seed_yaml: str) -> Path:
    path = temp_dir / "seed.yaml"
    path.write_text(seed_yaml)
    return path


@pytest.fixture
def seeded(db_path: Path, seed_file: Path) -> Path:
    """A database loaded from the small test seed."""
    result = runner.invoke(app, ["seed", str(seed_file), "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    return db_path


def invoke_json(*args: str) -> tuple[int, object]:
    result = runner.invoke(app, [*args, "--json"])
    return result.exit_code, json.loads(result.stdout)


# =============================================================================
# Setup Commands
# =============================================================================


class TestSetupCommands:
    """Tests for version, init and seed."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"tollgate version {__version__}" in result.output

    def test_init_creates_database(self, db_path: Path) -> None:
        result = runner.invoke(app, ["init", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "Initialized database" in result.output
        assert db_path.exists()

    def test_init_is_repeatable(self, db_path: Path) -> None:
        assert runner.invoke(app, ["init", "--db", str(db_path)]).exit_code == 0
        assert runner.invoke(app, ["init", "--db", str(db_path)]).exit_code == 0

    def test_seed_demo_catalog(self, db_path: Path) -> None:
        code, payload = invoke_json("seed", "--db", str(db_path))
        assert code == 0
        assert payload["tools"] == 8
        assert payload["tenants"] == 3
        assert payload["seed"].endswith("demo_seed.yaml")

    def test_demo_free_plan_premium_model_downgraded(self, db_path: Path) -> None:
        runner.invoke(app, ["seed", "--db", str(db_path)])
        code, payload = invoke_json(
            "route", "-t", DEMO_FREECO, "-u", "alice", "--tool", "gpt-4", "-n", "1000",
            "--db", str(db_path),
        )
        assert code == 0
        assert payload["decision"] == "downgraded"
        assert payload["final_tool_used"] == "claude-3-haiku"
        assert payload["cost_estimate"] == 0

    def test_seed_skips_existing_policies(self, seeded: Path, seed_file: Path) -> None:
        code, payload = invoke_json("seed", str(seed_file), "--db", str(seeded))
        assert code == 0
        assert payload["tools"] == 2
        assert payload["policies"] == 0

    def test_seed_rejects_invalid_file(self, db_path: Path, temp_dir: Path) -> None:
        bad = temp_dir / "bad.yaml"
        bad.write_text("tools:\n  - {id: x}\n")
        code, payload = invoke_json("seed", str(bad), "--db", str(db_path))
        assert code == 1
        assert payload["error"] is True
        assert "Invalid seed file" in payload["message"]

    def test_config_file(self, temp_dir: Path, db_path: Path) -> None:
        config = temp_dir / "tollgate.yaml"
        config.write_text(f"db_path: {db_path}\n")
        result = runner.invoke(app, ["init", "--config", str(config)])
        assert result.exit_code == 0
        assert db_path.exists()


# =============================================================================
# Catalog
# =============================================================================


class TestToolsCommand:
    """Tests for the tools command."""

    def test_empty_catalog(self, db_path: Path) -> None:
        result = runner.invoke(app, ["tools", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "No tools found" in result.output

    def test_cheapest_first(self, seeded: Path) -> None:
        code, payload = invoke_json("tools", "--db", str(seeded))
        assert code == 0
        assert [tool["id"] for tool in payload] == ["gpt-3.5-turbo", "gpt-4"]

    def test_category_filter(self, seeded: Path) -> None:
        code, payload = invoke_json("tools", "--category", "search", "--db", str(seeded))
        assert code == 0
        assert payload == []

    def test_table_output(self, seeded: Path) -> None:
        result = runner.invoke(app, ["tools", "--db", str(seeded)])
        assert result.exit_code == 0
        assert "Tool Catalog" in result.output


# =============================================================================
# Routing
# =============================================================================


class TestRouteCommand:
    """Tests for the route command."""

    def test_allowed_exits_zero(self, seeded: Path) -> None:
        code, payload = invoke_json(
            "route", "-t", PRO, "-u", "alice", "--tool", "gpt-4", "--units", "1000",
            "-p", "prompt=hello", "--db", str(seeded),
        )
        assert code == 0
        assert payload["decision"] == "allowed"
        assert payload["final_tool_used"] == "gpt-4"
        assert payload["cost_estimate"] == pytest.approx(0.03)
        assert payload["result"]["params"] == {"prompt": "hello"}

    def test_downgraded_exits_zero(self, seeded: Path) -> None:
        # 40000 tokens of gpt-4 cost $1.20, over the $1 tool limit
        code, payload = invoke_json(
            "route", "-t", PRO, "-u", "alice", "--tool", "gpt-4", "--units", "40000",
            "--db", str(seeded),
        )
        assert code == 0
        assert payload["decision"] == "downgraded"
        assert payload["final_tool_used"] == "gpt-3.5-turbo"

    def test_denied_exits_one(self, seeded: Path) -> None:
        code, payload = invoke_json(
            "route", "-t", PRO, "-u", "alice", "--tool", "no-such-tool", "--units", "10",
            "--db", str(seeded),
        )
        assert code == 1
        assert payload["decision"] == "denied"
        assert payload["message"] == "Tool no-such-tool not found"

    def test_infinite_units_denied(self, seeded: Path) -> None:
        code, payload = invoke_json(
            "route", "-t", PRO, "-u", "alice", "--tool", "gpt-4", "--units", "inf", "--db", str(seeded),
        )
        assert code == 1
        assert payload["message"] == "Invalid request: estimated_units"
        with TollgateDB(seeded) as store:
            assert store.list_usage_events(PRO) == []

    def test_prompt_estimate(self, seeded: Path) -> None:
        code, payload = invoke_json(
            "route", "-t", PRO, "-u", "alice", "--tool", "gpt-3.5-turbo",
            "--prompt", "abcd", "--max-output-tokens", "99", "--db", str(seeded),
        )
        assert code == 0
        assert payload["cost_estimate"] == pytest.approx(100 * 0.0000005)

    def test_requires_units_or_prompt(self, seeded: Path) -> None:
        result = runner.invoke(
            app, ["route", "-t", PRO, "-u", "alice", "--tool", "gpt-4", "--db", str(seeded)]
        )
        assert result.exit_code == 2

    def test_malformed_param(self, seeded: Path) -> None:
        result = runner.invoke(
            app,
            ["route", "-t", PRO, "-u", "alice", "--tool", "gpt-4", "-n", "1", "-p", "oops", "--db", str(seeded)],
        )
        assert result.exit_code == 2

    def test_pretty_output(self, seeded: Path) -> None:
        result = runner.invoke(
            app, ["route", "-t", PRO, "-u", "alice", "--tool", "gpt-4", "-n", "1000", "--db", str(seeded)]
        )
        assert result.exit_code == 0
        assert "ALLOWED" in result.output.upper()


# =============================================================================
# Usage
# =============================================================================


class TestUsageCommand:
    """Tests for the usage command."""

    def test_reports_routed_spend(self, seeded: Path) -> None:
        runner.invoke(app, ["route", "-t", PRO, "-u", "alice", "--tool", "gpt-4", "-n", "1000", "--db", str(seeded)])
        runner.invoke(app, ["route", "-t", PRO, "-u", "bob", "--tool", "gpt-4", "-n", "1000", "--db", str(seeded)])

        code, payload = invoke_json("usage", "-t", PRO, "--db", str(seeded))
        assert code == 0
        assert payload["total_cost"] == pytest.approx(0.06)
        assert payload["by_tool"][0]["tool_id"] == "gpt-4"
        assert len(payload["recent_events"]) == 2

        code, payload = invoke_json("usage", "-t", PRO, "-u", "bob", "--period", "month", "--db", str(seeded))
        assert payload["total_cost"] == pytest.approx(0.03)
        assert payload["period"] == "month"

    def test_unknown_tenant(self, seeded: Path) -> None:
        code, payload = invoke_json("usage", "-t", "tenant-ghost", "--db", str(seeded))
        assert code == 1
        assert payload["message"] == "Tenant tenant-ghost not found"

    def test_table_output(self, seeded: Path) -> None:
        result = runner.invoke(app, ["usage", "-t", PRO, "--no-events", "--db", str(seeded)])
        assert result.exit_code == 0


# =============================================================================
# Policy Management
# =============================================================================


class TestPolicyCommands:
    """Tests for the policy subcommands."""

    def test_set_list_delete(self, seeded: Path) -> None:
        code, created = invoke_json(
            "policy", "set", "-t", PRO, "--scope", "user", "--scope-id", "alice",
            "--limit-type", "monthly", "--limit", "20", "--decision", "require_approval",
            "--db", str(seeded),
        )
        assert code == 0
        assert created["scope"] == "user"
        assert created["limit_value"] == 20

        code, listed = invoke_json("policy", "list", "-t", PRO, "--db", str(seeded))
        assert code == 0
        assert len(listed) == 3
        assert created["id"] in {policy["id"] for policy in listed}

        code, deleted = invoke_json("policy", "delete", created["id"], "--db", str(seeded))
        assert code == 0
        assert deleted == {"deleted": created["id"]}

        with TollgateDB(seeded) as store:
            assert len(store.list_policies(PRO)) == 2

    def test_new_policy_applies_to_routing(self, seeded: Path) -> None:
        runner.invoke(
            app,
            ["policy", "set", "-t", PRO, "--limit-type", "per_request", "--limit", "0",
             "--decision", "deny", "--db", str(seeded)],
        )
        code, payload = invoke_json(
            "route", "-t", PRO, "-u", "alice", "--tool", "gpt-3.5-turbo", "-n", "10", "--db", str(seeded)
        )
        assert code == 1
        assert payload["decision"] == "denied"

    def test_invalid_policy(self, seeded: Path) -> None:
        code, payload = invoke_json(
            "policy", "set", "-t", PRO, "--scope", "tool", "--limit-type", "daily", "--limit", "1",
            "--db", str(seeded),
        )
        assert code == 1
        assert payload["error"] is True
        assert payload["message"].startswith("Invalid policy")

    def test_unknown_fallback(self, seeded: Path) -> None:
        code, payload = invoke_json(
            "policy", "set", "-t", PRO, "--limit-type", "daily", "--limit", "1",
            "--decision", "downgrade", "--fallback", "retired-model", "--db", str(seeded),
        )
        assert code == 1
        assert payload["message"] == "Fallback tool retired-model not found"

    def test_delete_unknown(self, seeded: Path) -> None:
        result = runner.invoke(app, ["policy", "delete", "missing", "--db", str(seeded)])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_list_empty(self, db_path: Path) -> None:
        runner.invoke(app, ["init", "--db", str(db_path)])
        result = runner.invoke(app, ["policy", "list", "-t", PRO, "--db", str(db_path)])
        assert result.exit_code == 0
        assert "No policies defined." in result.output
