"""
Reporting module for Tollgate.

Output formats:
    - Console: Rich terminal output with decision icons and tables
    - JSON: Structured output for programmatic consumption

Example:
    from tollgate.report import generate_json, print_route_result

    print_route_result(result, requested_tool="gpt-4")
    print(generate_json(result))
"""

from tollgate.report.console import (
    format_usd,
    print_policies,
    print_route_result,
    print_tools,
    print_usage_summary,
)
from tollgate.report.json import generate_json, to_jsonable

__all__ = [
    "format_usd",
    "generate_json",
    "print_policies",
    "print_route_result",
    "print_tools",
    "print_usage_summary",
    "to_jsonable",
]
