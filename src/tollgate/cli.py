"""
CLI entry point for Tollgate.

This module provides the Typer-based command-line interface for Tollgate.
It owns the store's lifecycle: every command opens the database, does its
work and closes it again.

Commands:
    init        Create the database schema
    seed        Load tools, tenants and policies from a YAML seed
    route       Route one priced tool call and record the decision
    usage       Summarize a tenant's spend for the current day or month
    tools       List the tool catalog
    policy      Create, list and delete budget policies

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to the
    router, ledger and store. The same objects can be used programmatically
    without the CLI.
"""

import json
import traceback
from pathlib import Path
from typing import Annotated, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from tollgate import __version__
from tollgate.config import TollgateConfig, configure_logging, load_config
from tollgate.errors import (
    ConfigError,
    PolicyValidationError,
    TenantNotFoundError,
    TollgateError,
)
from tollgate.estimator import estimate_tokens
from tollgate.ledger import UsageLedger
from tollgate.report import (
    generate_json,
    print_policies,
    print_route_result,
    print_tools,
    print_usage_summary,
)
from tollgate.router import Router
from tollgate.schema import (
    Decision,
    LimitType,
    PeriodType,
    PolicyAction,
    PolicyDraft,
    PolicyScope,
    ToolCategory,
    load_seed,
)
from tollgate.store import TollgateDB

DEMO_SEED_PATH = Path(__file__).resolve().parent / "data" / "demo_seed.yaml"

# Initialize Typer app with metadata
app = typer.Typer(
    name="tollgate",
    help="Policy and budget firewall for priced tool calls.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()


# Options shared by every command
DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        envvar="TOLLGATE_DB",
        help="Path to the SQLite database. Overrides db_path from the config file.",
    ),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        envvar="TOLLGATE_CONFIG",
        help="Path to a YAML configuration file.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output results in JSON format.",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option(
        "--verbose",
        help="Enable debug logging.",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]tollgate[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    Tollgate - Policy and budget firewall for priced tool calls.

    Decide whether each call to a priced tool is allowed, denied or
    downgraded, and keep per-tenant spend counters.
    """
    pass


# =============================================================================
# Helpers
# =============================================================================


def _settings(config_path: Optional[Path], db: Optional[Path], verbose: bool) -> TollgateConfig:
    """Load configuration, apply --db and install logging."""
    config = load_config(config_path)
    if db is not None:
        config = config.model_copy(update={"db_path": db})
    configure_logging("DEBUG" if verbose else config.log_level)
    return config


def _open_db(config: TollgateConfig) -> TollgateDB:
    return TollgateDB(config.db_path, timeout=config.store_timeout_seconds)


def _fail(json_output: bool, error: Exception, verbose: bool = False) -> None:
    """Report an error and exit with code 1."""
    if json_output:
        if isinstance(error, TollgateError):
            output = {"error": True, **error.to_dict()}
        else:
            output = {"error": True, "error_type": type(error).__name__, "message": str(error)}
        if verbose:
            output["traceback"] = traceback.format_exc()
        print(json.dumps(output, indent=2, default=str))
    else:
        console.print(f"[red]Error: {escape(str(error))}[/red]")
        if verbose:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _parse_params(pairs: list[str]) -> dict[str, str]:
    """Turn KEY=VALUE pairs into a dict."""
    params: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--param")
        params[key.strip()] = value
    return params


# =============================================================================
# Commands
# =============================================================================


@app.command()
def init(
    db: DbOption = None,
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Create the database schema.

    Safe to run on an existing database.

    Example:
        $ tollgate init --db tollgate.db
    """
    try:
        config = _settings(config_path, db, verbose)
        with _open_db(config):
            pass
    except TollgateError as e:
        _fail(False, e, verbose)

    console.print(f"[green]✓[/green] Initialized database at [bold]{config.db_path}[/bold]")


@app.command()
def seed(
    seed_path: Annotated[
        Optional[Path],
        typer.Argument(
            help="Path to a seed YAML file. Defaults to the bundled demo seed.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    db: DbOption = None,
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Load tools, tenants and policies from a YAML seed.

    Tools and tenants are upserted; policies already present are skipped.

    Example:
        $ tollgate seed
        $ tollgate seed my_catalog.yaml
    """
    path = seed_path or DEMO_SEED_PATH
    try:
        config = _settings(config_path, db, verbose)
        try:
            document = load_seed(path)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            raise ConfigError(path=str(path), message=f"Invalid seed file {path}: {e}") from e
        with _open_db(config) as store:
            counts = store.apply_seed(document)
    except TollgateError as e:
        _fail(json_output, e, verbose)

    if json_output:
        print(json.dumps({"seed": str(path), **counts}, indent=2))
        return
    console.print(
        f"[green]✓[/green] Seeded {counts['tools']} tools, {counts['tenants']} tenants, "
        f"{counts['policies']} new policies from [dim]{path}[/dim]"
    )


@app.command()
def route(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant id.")],
    user: Annotated[str, typer.Option("--user", "-u", help="User id.")],
    tool: Annotated[str, typer.Option("--tool", help="Requested tool id.")],
    units: Annotated[
        Optional[float],
        typer.Option("--units", "-n", help="Estimated units (tokens or requests)."),
    ] = None,
    prompt: Annotated[
        Optional[str],
        typer.Option("--prompt", help="Estimate token units from this prompt text."),
    ] = None,
    max_output_tokens: Annotated[
        int,
        typer.Option("--max-output-tokens", help="Output budget added to the prompt estimate."),
    ] = 1000,
    param: Annotated[
        Optional[list[str]],
        typer.Option("--param", "-p", help="Downstream parameter as KEY=VALUE. Repeatable."),
    ] = None,
    db: DbOption = None,
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Route one priced tool call and record the decision.

    Exits with 0 when the call is allowed or downgraded and 1 when denied.

    Example:
        $ tollgate route -t <tenant> -u <user> --tool gpt-4 --units 1500
        $ tollgate route -t <tenant> -u <user> --tool gpt-4 --prompt "Summarize..."
    """
    params = _parse_params(param or [])
    if units is None:
        if prompt is None:
            raise typer.BadParameter("Provide --units or --prompt", param_hint="--units")
        units = float(estimate_tokens(prompt, max_output_tokens))

    try:
        config = _settings(config_path, db, verbose)
        with Router.from_config(config) as router:
            result = router.route(tenant, user, tool, units, params)
    except TollgateError as e:
        _fail(json_output, e, verbose)

    if json_output:
        print(generate_json(result))
    else:
        print_route_result(result, requested_tool=tool, console=console)

    raise typer.Exit(code=1 if result.decision == Decision.DENIED else 0)


@app.command()
def usage(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant id.")],
    user: Annotated[
        Optional[str],
        typer.Option("--user", "-u", help="Restrict to one user."),
    ] = None,
    period: Annotated[
        PeriodType,
        typer.Option("--period", help="Summarize the current day or month."),
    ] = PeriodType.DAY,
    events: Annotated[
        bool,
        typer.Option("--events/--no-events", help="List recent events."),
    ] = True,
    db: DbOption = None,
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Summarize a tenant's spend for the current day or month.

    Example:
        $ tollgate usage -t <tenant> --period month
    """
    try:
        config = _settings(config_path, db, verbose)
        with _open_db(config) as store:
            if store.get_tenant(tenant) is None:
                raise TenantNotFoundError(tenant_id=tenant)
            with UsageLedger(store, recent_events_limit=config.recent_events_limit) as ledger:
                summary = ledger.summarize(tenant, user_id=user, period=period)
    except TollgateError as e:
        _fail(json_output, e, verbose)

    if json_output:
        print(generate_json(summary))
    else:
        print_usage_summary(summary, console=console, show_events=events)


@app.command()
def tools(
    category: Annotated[
        Optional[ToolCategory],
        typer.Option("--category", help="Only list tools of this category."),
    ] = None,
    db: DbOption = None,
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    List the tool catalog, cheapest first.

    Example:
        $ tollgate tools --category llm
    """
    try:
        config = _settings(config_path, db, verbose)
        with _open_db(config) as store:
            catalog = store.list_tools(category=category)
    except TollgateError as e:
        _fail(json_output, e, verbose)

    if json_output:
        print(generate_json(catalog))
        return
    if not catalog:
        console.print("[dim]No tools found. Run 'tollgate seed' to load the demo catalog.[/dim]")
        return
    print_tools(catalog, console=console)


# =============================================================================
# Policy Subcommand Group
# =============================================================================

policy_app = typer.Typer(
    name="policy",
    help="Create, list and delete budget policies.",
    no_args_is_help=True,
)
app.add_typer(policy_app, name="policy")


@policy_app.command("set")
def policy_set(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Owning tenant id.")],
    limit_type: Annotated[
        LimitType,
        typer.Option("--limit-type", help="Window the limit is counted over."),
    ],
    limit: Annotated[float, typer.Option("--limit", help="Limit in USD.")],
    scope: Annotated[
        PolicyScope,
        typer.Option("--scope", help="What the policy applies to."),
    ] = PolicyScope.TENANT,
    scope_id: Annotated[
        Optional[str],
        typer.Option("--scope-id", help="User or tool id for user/tool scopes."),
    ] = None,
    decision: Annotated[
        PolicyAction,
        typer.Option("--decision", help="Action when the limit would be exceeded."),
    ] = PolicyAction.ALLOW,
    fallback: Annotated[
        Optional[str],
        typer.Option("--fallback", help="Fallback tool id for downgrade policies."),
    ] = None,
    db: DbOption = None,
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Create a budget policy.

    Example:
        $ tollgate policy set -t <tenant> --limit-type daily --limit 10 --decision deny
        $ tollgate policy set -t <tenant> --scope tool --scope-id gpt-4 \\
            --limit-type daily --limit 1 --decision downgrade --fallback gpt-3.5-turbo
    """
    try:
        config = _settings(config_path, db, verbose)
        try:
            draft = PolicyDraft(
                tenant_id=tenant,
                scope=scope,
                scope_id=scope_id,
                limit_type=limit_type,
                limit_value=limit,
                decision=decision,
                fallback_tool_id=fallback,
            )
        except ValidationError as e:
            messages = "; ".join(err["msg"] for err in e.errors())
            raise PolicyValidationError(message=f"Invalid policy: {messages}") from e
        with _open_db(config) as store:
            created = store.create_policy(draft)
    except TollgateError as e:
        _fail(json_output, e, verbose)

    if json_output:
        print(generate_json(created))
        return
    console.print(f"[green]✓[/green] Created policy [bold]{created.id}[/bold]")
    print_policies([created], console=console)


@policy_app.command("list")
def policy_list(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant id.")],
    db: DbOption = None,
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    List a tenant's policies, newest first.

    Example:
        $ tollgate policy list -t <tenant>
    """
    try:
        config = _settings(config_path, db, verbose)
        with _open_db(config) as store:
            policies = store.list_policies(tenant)
    except TollgateError as e:
        _fail(json_output, e, verbose)

    if json_output:
        print(generate_json(policies))
        return
    print_policies(policies, console=console)


@policy_app.command("delete")
def policy_delete(
    policy_id: Annotated[str, typer.Argument(help="Id of the policy to delete.")],
    db: DbOption = None,
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Delete a policy.

    Example:
        $ tollgate policy delete <policy-id>
    """
    try:
        config = _settings(config_path, db, verbose)
        with _open_db(config) as store:
            store.delete_policy(policy_id)
    except TollgateError as e:
        _fail(json_output, e, verbose)

    if json_output:
        print(json.dumps({"deleted": policy_id}, indent=2))
        return
    console.print(f"[green]✓[/green] Deleted policy [bold]{policy_id}[/bold]")


if __name__ == "__main__":
    app()
