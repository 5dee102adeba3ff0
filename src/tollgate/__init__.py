"""
Tollgate - Policy and budget firewall for priced tool calls.

Tollgate sits between callers and priced tools (model invocations, searches,
vector-db lookups). For every call it:
- Checks the tenant's plan may use the tool at all
- Evaluates budget policies scoped to the tenant, a user or a tool
- Allows, denies, downgrades to a cheaper tool, or asks for approval
- Records the decision and keeps day/month spend counters in SQLite

Example usage:
    $ tollgate init
    $ tollgate seed
    $ tollgate route --tenant <id> --user <id> --tool gpt-4 --units 1000
    $ tollgate usage --tenant <id>
"""

__version__ = "0.1.0"
__author__ = "Tollgate Contributors"

__all__ = [
    "__version__",
    "__author__",
]
