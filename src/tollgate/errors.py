"""
Exception hierarchy for Tollgate.

All Tollgate exceptions inherit from TollgateError, allowing callers to catch
every Tollgate-specific failure with a single except clause.

Exception Categories:
    - NotFoundError: Unknown tool, tenant or policy
    - PolicyValidationError: Malformed policy rejected at write time
    - PersistenceUnavailableError: The backing store could not be used
    - ConfigError: Invalid configuration or seed file

The router never lets any of these escape: every one of them is turned into
a denied decision (fail-closed).
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Policy errors: 1xxx
ERROR_POLICY_INVALID = 1001
ERROR_POLICY_NOT_FOUND = 1002

# Catalog errors: 2xxx
ERROR_TOOL_NOT_FOUND = 2001
ERROR_TENANT_NOT_FOUND = 2002

# Configuration errors: 3xxx
ERROR_CONFIG_INVALID = 3001

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class TollgateError(Exception):
    """
    Base exception for all Tollgate errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Not Found Errors
# =============================================================================


@dataclass
class NotFoundError(TollgateError):
    """
    Base class for lookups of unknown entities.

    The router reports these as a denied decision with an explanatory
    message, never as a hard failure.
    """


@dataclass
class ToolNotFoundError(NotFoundError):
    """Raised when a tool id is not in the catalog."""

    tool_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tool {self.tool_id} not found"
        if self.code == 0:
            self.code = ERROR_TOOL_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check the tool id or add it to the catalog"
        self.context["tool_id"] = self.tool_id


@dataclass
class TenantNotFoundError(NotFoundError):
    """Raised when a tenant id is unknown."""

    tenant_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tenant {self.tenant_id} not found"
        if self.code == 0:
            self.code = ERROR_TENANT_NOT_FOUND
        self.context["tenant_id"] = self.tenant_id


@dataclass
class PolicyNotFoundError(NotFoundError):
    """Raised when a policy id is unknown."""

    policy_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy {self.policy_id} not found"
        if self.code == 0:
            self.code = ERROR_POLICY_NOT_FOUND
        self.context["policy_id"] = self.policy_id


# =============================================================================
# Policy Errors
# =============================================================================


@dataclass
class PolicyValidationError(TollgateError):
    """
    Raised when a policy is rejected at write time.

    The evaluator assumes stored policies are structurally valid, so every
    scope/decision rule is enforced before a policy reaches the store.

    Attributes:
        field_name: The offending field, if a single one is to blame
    """

    field_name: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Invalid policy"
        if self.code == 0:
            self.code = ERROR_POLICY_INVALID
        self.context["field"] = self.field_name


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigError(TollgateError):
    """Raised when a configuration or seed file cannot be loaded."""

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration: {self.path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["path"] = self.path


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class PersistenceUnavailableError(TollgateError):
    """
    Base class for storage failures.

    Any of these during routing yields a denial; the engine never allows a
    request because the store could not be consulted.

    Attributes:
        operation: The operation that failed (e.g., "get_tool", "increment_aggregate")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(PersistenceUnavailableError):
    """Raised when the database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(PersistenceUnavailableError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(PersistenceUnavailableError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error
