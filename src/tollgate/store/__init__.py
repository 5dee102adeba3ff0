"""
Storage module for Tollgate.

This module provides SQLite-based persistence for everything the routing
core consults or records: the tool catalog, tenants, policies, usage events
and usage aggregates.

Design principles:
    - Append-only event log
    - Aggregates updated by a single atomic upsert per key
    - Every driver error mapped to PersistenceUnavailableError
"""

from tollgate.store.db import TollgateDB, generate_id, to_iso

__all__ = [
    "TollgateDB",
    "generate_id",
    "to_iso",
]
