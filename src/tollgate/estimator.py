"""
Cost estimation for priced tools.

Costs are plain floats in USD. Price tables go down to 1e-7 per unit, so
callers should keep at least micro-dollar precision when displaying them.
"""

import math

from tollgate.schema import Tool

CHARS_PER_TOKEN = 4
DEFAULT_MAX_OUTPUT_TOKENS = 1000


def estimate_cost(tool: Tool, units: float) -> float:
    """Cost of consuming `units` of `tool`."""
    return tool.cost_per_unit * units


def estimate_tokens(text: str, max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS) -> int:
    """
    Rough token count for an LLM call.

    Assumes about four characters per input token and that the model may use
    its whole output budget.

    Examples:
        estimate_tokens("", 0) -> 0
        estimate_tokens("abcde", 100) -> 102
    """
    if max_output_tokens < 0:
        raise ValueError("max_output_tokens must be non-negative")
    return math.ceil(len(text) / CHARS_PER_TOKEN) + max_output_tokens
