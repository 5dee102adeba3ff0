"""
JSON report generator for Tollgate.

Design Principles:
    - Same field names as the models: RouteResult keys are the caller contract
    - ISO timestamps
    - Strict JSON: unbounded limits are written as null, never Infinity
"""

import json
import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel


def to_jsonable(value: Any) -> Any:
    """
    Convert models and containers to plain JSON-compatible values.

    Non-finite floats become None.
    """
    if isinstance(value, BaseModel):
        return to_jsonable(value.model_dump())
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [to_jsonable(v) for v in value]
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def generate_json(value: Any, indent: int = 2) -> str:
    """
    Serialize a model (or list of models) to a JSON string.

    Args:
        value: Model, dict or list to serialize
        indent: JSON indentation level (default: 2)
    """
    return json.dumps(to_jsonable(value), indent=indent, default=_json_serializer)


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if hasattr(obj, "value"):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
