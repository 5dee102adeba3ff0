"""
Console report generator for Tollgate.

Renders routing decisions, usage summaries and catalog listings with Rich.

Design Principles:
    - Decision at a glance: Icons and colors for allowed/downgraded/denied
    - Money to the micro-dollar: Prices go down to 1e-7 per unit
    - Summary first: Totals before breakdowns before raw events
"""

import math

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tollgate.schema import Decision, Policy, RouteResult, Tool, UsageSummary

# Decision icons
ICON_ALLOWED = "[green]✓[/green]"
ICON_DOWNGRADED = "[yellow]↓[/yellow]"
ICON_DENIED = "[red]✗[/red]"

DECISION_STYLES = {
    Decision.ALLOWED: ("green", ICON_ALLOWED),
    Decision.DOWNGRADED: ("yellow", ICON_DOWNGRADED),
    Decision.DENIED: ("red", ICON_DENIED),
}


def format_usd(value: float) -> str:
    """Format a dollar amount, keeping micro-dollar precision."""
    if math.isinf(value):
        return "unlimited" if value > 0 else "-unlimited"
    return f"${value:,.6f}"


def print_route_result(
    result: RouteResult,
    requested_tool: str,
    console: Console | None = None,
) -> None:
    """
    Print a routing decision.

    Args:
        result: The router's result
        requested_tool: Tool the caller asked for
        console: Rich Console instance (creates one if not provided)
    """
    if console is None:
        console = Console()

    style, icon = DECISION_STYLES[result.decision]

    header = Text()
    header.append(" Decision ", style="bold")
    header.append(result.decision.value.upper(), style=f"bold {style}")
    header.append(" │ ", style="dim")
    header.append(requested_tool, style="cyan")
    if result.final_tool_used != requested_tool:
        header.append(" → ", style="dim")
        header.append(result.final_tool_used, style="bold cyan")
    console.print(Panel(header, expand=False))

    console.print(f"  {icon} {result.message}")
    console.print(f"  [dim]Cost estimate:[/dim]    {format_usd(result.cost_estimate)}")
    console.print(f"  [dim]Remaining budget:[/dim] {format_usd(result.remaining_budget)}")


def print_usage_summary(
    summary: UsageSummary,
    console: Console | None = None,
    show_events: bool = True,
) -> None:
    """Print a usage summary with its per-tool breakdown."""
    if console is None:
        console = Console()

    who = summary.tenant_id if summary.user_id is None else f"{summary.tenant_id}/{summary.user_id}"
    console.print(f"[bold]Usage[/bold] for [cyan]{who}[/cyan]")
    console.print(
        f"  [dim]Window:[/dim] {summary.window_start.strftime('%Y-%m-%d %H:%M')} → "
        f"{summary.window_end.strftime('%Y-%m-%d %H:%M')} UTC ({summary.period.value})"
    )
    console.print(f"  [dim]Total cost:[/dim]  {format_usd(summary.total_cost)}")
    console.print(f"  [dim]Total units:[/dim] {summary.total_units:,.0f}")
    console.print()

    if summary.by_tool:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Tool", style="cyan")
        table.add_column("Name")
        table.add_column("Units", justify="right")
        table.add_column("Cost", justify="right")
        for usage in summary.by_tool:
            table.add_row(usage.tool_id, usage.tool_name, f"{usage.units:,.0f}", format_usd(usage.cost))
        console.print(table)
    else:
        console.print("[dim]No charged usage in this window.[/dim]")

    if show_events and summary.recent_events:
        console.print()
        console.print("[bold]Recent events[/bold]")
        events = Table(show_header=True, header_style="bold")
        events.add_column("Time", style="dim")
        events.add_column("User")
        events.add_column("Tool", style="cyan")
        events.add_column("Decision", justify="center")
        events.add_column("Cost", justify="right")
        for event in summary.recent_events:
            _, icon = DECISION_STYLES[event.decision]
            events.add_row(
                event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                event.user_id,
                event.tool_id,
                f"{icon} {event.decision.value}",
                format_usd(event.cost),
            )
        console.print(events)


def print_policies(policies: list[Policy], console: Console | None = None) -> None:
    """Print a tenant's policies."""
    if console is None:
        console = Console()

    if not policies:
        console.print("[dim]No policies defined.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim", overflow="fold")
    table.add_column("Scope")
    table.add_column("Limit")
    table.add_column("Decision")
    table.add_column("Fallback", style="cyan")
    for policy in policies:
        scope = policy.scope.value if policy.scope_id is None else f"{policy.scope.value}:{policy.scope_id}"
        table.add_row(
            policy.id,
            scope,
            f"{format_usd(policy.limit_value)} {policy.limit_type.value}",
            policy.decision.value,
            policy.fallback_tool_id or "",
        )
    console.print(table)


def print_tools(tools: list[Tool], console: Console | None = None) -> None:
    """Print the tool catalog."""
    if console is None:
        console = Console()

    table = Table(title="Tool Catalog", show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Tier")
    table.add_column("Cost / unit", justify="right")
    table.add_column("Unit")
    for tool in tools:
        table.add_row(
            tool.id,
            tool.name,
            tool.category.value,
            tool.tier.value,
            f"${tool.cost_per_unit:.7f}",
            tool.unit_type.value,
        )
    console.print(table)
