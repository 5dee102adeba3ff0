"""
Schema definitions for Tollgate.

This module defines all the Pydantic models used throughout Tollgate:
- Tenant/Tool: Read-only catalog entries consulted during routing
- Policy/PolicyDraft: Budget rules and the write-side shape that validates them
- UsageEvent/UsageAggregate: The append-only ledger and its derived counters
- PolicyEvaluation/RouteRequest/RouteResult: Runtime decisions
- UsageSummary/ToolUsage: Reporting views over the ledger
- Seed: A YAML document used to populate a store

Design Decisions:
    - Models are immutable where possible (frozen=True)
    - Unknown fields are rejected (extra="forbid")
    - Event metadata is a closed, tagged union rather than a free-form map
"""

import math
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================


class PlanTier(str, Enum):
    """Subscription plan of a tenant."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class PriceTier(str, Enum):
    """Price band of a tool."""

    CHEAP = "cheap"
    STANDARD = "standard"
    PREMIUM = "premium"


class ToolCategory(str, Enum):
    """Kind of capability a tool provides."""

    LLM = "llm"
    SEARCH = "search"
    DB = "db"
    CUSTOM = "custom"


class UnitType(str, Enum):
    """What a tool's units count."""

    TOKENS = "tokens"
    REQUESTS = "requests"


class PolicyScope(str, Enum):
    """
    What a policy applies to.

    Specificity runs TOOL > USER > TENANT; see SCOPE_SPECIFICITY.
    """

    TENANT = "tenant"
    USER = "user"
    TOOL = "tool"


class LimitType(str, Enum):
    """The window a policy limit is measured over."""

    DAILY = "daily"
    MONTHLY = "monthly"
    PER_REQUEST = "per_request"


class PolicyAction(str, Enum):
    """What happens when a policy's limit would be exceeded."""

    ALLOW = "allow"
    DENY = "deny"
    DOWNGRADE = "downgrade"
    REQUIRE_APPROVAL = "require_approval"


class Decision(str, Enum):
    """Terminal outcome of a routed request."""

    ALLOWED = "allowed"
    DENIED = "denied"
    DOWNGRADED = "downgraded"


class PeriodType(str, Enum):
    """Aggregation period of a usage counter."""

    DAY = "day"
    MONTH = "month"


# Lower rank = more specific
SCOPE_SPECIFICITY: dict[PolicyScope, int] = {
    PolicyScope.TOOL: 0,
    PolicyScope.USER: 1,
    PolicyScope.TENANT: 2,
}

# per_request limits are counted against the daily window
LIMIT_WINDOWS: dict[LimitType, PeriodType] = {
    LimitType.DAILY: PeriodType.DAY,
    LimitType.MONTHLY: PeriodType.MONTH,
    LimitType.PER_REQUEST: PeriodType.DAY,
}


# =============================================================================
# Catalog Models
# =============================================================================


class Tenant(BaseModel):
    """
    A customer account.

    Attributes:
        id: Tenant identifier
        name: Display name
        plan: Subscription plan, used by the plan-tier gate
        soft_limit_usd: Informational soft spending limit
        hard_limit_usd: Informational hard spending limit
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, description="Tenant identifier")
    name: str = Field(..., min_length=1, description="Display name")
    plan: PlanTier = Field(..., description="Subscription plan")
    soft_limit_usd: float = Field(default=0.0, ge=0, allow_inf_nan=False, description="Soft limit in USD")
    hard_limit_usd: float = Field(default=0.0, ge=0, allow_inf_nan=False, description="Hard limit in USD")


class Tool(BaseModel):
    """
    A priced, externally invoked capability.

    Attributes:
        id: Tool identifier (e.g., "gpt-4", "search-api")
        name: Display name
        category: Capability kind; downgrades stay within a category
        tier: Price band
        cost_per_unit: USD per unit, down to 1e-7
        unit_type: What a unit counts
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, description="Tool identifier")
    name: str = Field(..., min_length=1, description="Display name")
    category: ToolCategory = Field(..., description="Capability kind")
    tier: PriceTier = Field(..., description="Price band")
    cost_per_unit: float = Field(..., ge=0, allow_inf_nan=False, description="USD per unit")
    unit_type: UnitType = Field(default=UnitType.TOKENS, description="What a unit counts")


# =============================================================================
# Policy Models
# =============================================================================


class PolicyDraft(BaseModel):
    """
    A policy as submitted for creation.

    All structural rules are enforced here so that stored policies can be
    trusted by the evaluator:
        - scope_id is required iff scope is not "tenant"
        - fallback_tool_id is required iff decision is "downgrade"

    Attributes:
        tenant_id: Owning tenant
        scope: tenant, user or tool
        scope_id: User or tool id the policy targets
        limit_type: daily, monthly or per_request
        limit_value: Limit in USD
        decision: Action taken when the limit would be exceeded
        fallback_tool_id: Replacement tool for downgrade policies
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tenant_id: str = Field(..., min_length=1, description="Owning tenant")
    scope: PolicyScope = Field(..., description="What the policy applies to")
    scope_id: str | None = Field(default=None, description="Targeted user or tool id")
    limit_type: LimitType = Field(..., description="Counting window")
    limit_value: float = Field(..., ge=0, allow_inf_nan=False, description="Limit in USD")
    decision: PolicyAction = Field(
        default=PolicyAction.ALLOW,
        description="Action when the limit would be exceeded",
    )
    fallback_tool_id: str | None = Field(
        default=None,
        description="Replacement tool for downgrade policies",
    )

    @field_validator("tenant_id", "scope_id", "fallback_tool_id")
    @classmethod
    def strip_ids(cls, v: str | None) -> str | None:
        """Trim whitespace; blank optional ids become None."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def check_scope_and_decision(self) -> "PolicyDraft":
        """Enforce the scope/scope_id and decision/fallback pairings."""
        if self.scope == PolicyScope.TENANT and self.scope_id is not None:
            raise ValueError("scope_id must be empty for tenant-scoped policies")
        if self.scope != PolicyScope.TENANT and self.scope_id is None:
            raise ValueError(f"scope_id is required for {self.scope.value}-scoped policies")
        if self.decision == PolicyAction.DOWNGRADE and self.fallback_tool_id is None:
            raise ValueError("fallback_tool_id is required for downgrade policies")
        if self.decision != PolicyAction.DOWNGRADE and self.fallback_tool_id is not None:
            raise ValueError("fallback_tool_id is only valid for downgrade policies")
        return self


class Policy(PolicyDraft):
    """
    A stored budget rule.

    Attributes:
        id: Policy identifier
        created_at: When the policy was stored
    """

    id: str = Field(..., description="Policy identifier")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the policy was stored",
    )

    @property
    def window(self) -> PeriodType:
        """The aggregation period this policy is counted against."""
        return LIMIT_WINDOWS[self.limit_type]

    def applies_to(self, user_id: str, tool_id: str) -> bool:
        """Whether this policy governs a request by user_id for tool_id."""
        if self.scope == PolicyScope.TENANT:
            return True
        if self.scope == PolicyScope.USER:
            return self.scope_id == user_id
        return self.scope_id == tool_id


# =============================================================================
# Ledger Models
# =============================================================================


class AllowedMetadata(BaseModel):
    """Metadata of an allowed event: the parameters handed downstream."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["allowed"] = "allowed"
    params: dict[str, Any] = Field(default_factory=dict)


class DeniedMetadata(BaseModel):
    """Metadata of a denied event."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["denied"] = "denied"
    reason: str


class DowngradedMetadata(BaseModel):
    """Metadata of a downgraded event."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["downgraded"] = "downgraded"
    original_tool: str
    reason: str


EventMetadata = Annotated[
    Union[AllowedMetadata, DeniedMetadata, DowngradedMetadata],
    Field(discriminator="kind"),
]


class UsageEvent(BaseModel):
    """
    An immutable fact about one routed request.

    Denied requests are recorded with zero units and zero cost.

    Attributes:
        id: Event identifier (assigned by the store when absent)
        timestamp: When the request was routed (UTC)
        tenant_id: Tenant that made the request
        user_id: User that made the request
        tool_id: Tool charged (the fallback tool for downgrades)
        units: Units charged
        cost: USD charged
        decision: allowed, denied or downgraded
        metadata: Tagged variant matching the decision
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str | None = Field(default=None, description="Event identifier")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the request was routed",
    )
    tenant_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    tool_id: str = Field(..., min_length=1)
    units: float = Field(default=0, ge=0, allow_inf_nan=False)
    cost: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    decision: Decision
    metadata: EventMetadata

    @model_validator(mode="after")
    def check_metadata_matches(self) -> "UsageEvent":
        """The metadata variant must describe the same decision."""
        if self.metadata.kind != self.decision.value:
            raise ValueError(
                f"metadata kind {self.metadata.kind!r} does not match decision {self.decision.value!r}"
            )
        if self.decision == Decision.DENIED and (self.units or self.cost):
            raise ValueError("denied events must carry zero units and cost")
        return self

    @property
    def charged(self) -> bool:
        """Whether this event counts towards aggregates."""
        return self.decision in (Decision.ALLOWED, Decision.DOWNGRADED)


class AggregateKey(BaseModel):
    """Identity of one running usage counter."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tenant_id: str
    user_id: str
    tool_id: str
    period_type: PeriodType
    period_start: date


class UsageAggregate(BaseModel):
    """
    Running totals for one AggregateKey.

    total_cost equals the sum of costs of the key's allowed and downgraded
    events; it is only ever changed by adding a delta.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: AggregateKey
    total_units: float = Field(default=0, ge=0, allow_inf_nan=False)
    total_cost: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    updated_at: datetime | None = None


# =============================================================================
# Runtime Models
# =============================================================================


class PolicyEvaluation(BaseModel):
    """
    Result of evaluating a request against a tenant's policies.

    Attributes:
        allowed: Whether the request may proceed
        reason: Human-readable explanation of the decision
        suggested_tool: Fallback tool when a downgrade policy fired
        current_usage: Usage in the window the deciding policy is measured over
        limit: Limit of the deciding (or most specific) policy; +inf when none
        policy_id: Which policy decided, if any
        action: The action of the deciding policy, if one fired
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed: bool
    reason: str
    suggested_tool: str | None = None
    current_usage: float = 0.0
    limit: float = math.inf
    policy_id: str | None = None
    action: PolicyAction | None = None

    @classmethod
    def allow(
        cls,
        reason: str,
        current_usage: float = 0.0,
        limit: float = math.inf,
        policy_id: str | None = None,
    ) -> "PolicyEvaluation":
        """Create an ALLOW evaluation."""
        return cls(
            allowed=True,
            reason=reason,
            current_usage=current_usage,
            limit=limit,
            policy_id=policy_id,
        )

    @classmethod
    def deny(
        cls,
        reason: str,
        current_usage: float,
        limit: float,
        policy_id: str | None = None,
        action: PolicyAction = PolicyAction.DENY,
    ) -> "PolicyEvaluation":
        """Create a DENY (or require-approval) evaluation."""
        return cls(
            allowed=False,
            reason=reason,
            current_usage=current_usage,
            limit=limit,
            policy_id=policy_id,
            action=action,
        )

    @classmethod
    def downgrade(
        cls,
        reason: str,
        suggested_tool: str,
        current_usage: float,
        limit: float,
        policy_id: str | None = None,
    ) -> "PolicyEvaluation":
        """Create a DOWNGRADE evaluation."""
        return cls(
            allowed=True,
            reason=reason,
            suggested_tool=suggested_tool,
            current_usage=current_usage,
            limit=limit,
            policy_id=policy_id,
            action=PolicyAction.DOWNGRADE,
        )


class RouteRequest(BaseModel):
    """A request to route one priced tool call."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tenant_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    tool_id: str = Field(..., min_length=1)
    estimated_units: float = Field(..., gt=0, allow_inf_nan=False)
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("tenant_id", "user_id", "tool_id", mode="before")
    @classmethod
    def strip_ids(cls, v: Any) -> Any:
        """Trim stray whitespace around identifiers."""
        if isinstance(v, str):
            return v.strip()
        return v


class RouteResult(BaseModel):
    """
    The caller-facing outcome of Router.route.

    This field set and its decision vocabulary are the stable contract that
    any transport exposing the router must preserve.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    decision: Decision
    final_tool_used: str
    cost_estimate: float
    remaining_budget: float
    message: str
    result: dict[str, Any] | None = None

    @classmethod
    def denied(cls, tool_id: str, message: str) -> "RouteResult":
        """A denial that charges nothing and reports no budget."""
        return cls(
            decision=Decision.DENIED,
            final_tool_used=tool_id,
            cost_estimate=0.0,
            remaining_budget=0.0,
            message=message,
        )


class ToolUsage(BaseModel):
    """Per-tool slice of a usage summary."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tool_id: str
    tool_name: str
    cost: float
    units: float


class UsageSummary(BaseModel):
    """Spend of a tenant (optionally one user) over a window."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tenant_id: str
    user_id: str | None = None
    period: PeriodType
    window_start: datetime
    window_end: datetime
    total_cost: float = 0.0
    total_units: float = 0
    by_tool: list[ToolUsage] = Field(default_factory=list)
    recent_events: list[UsageEvent] = Field(default_factory=list)


# =============================================================================
# Seed Documents
# =============================================================================


class Seed(BaseModel):
    """
    Catalog, tenants and policies to load into a store.

    Example:
        tools:
          - {id: gpt-4, name: GPT-4, category: llm, tier: premium, cost_per_unit: 0.00003}
        tenants:
          - {id: t1, name: FreeCo, plan: free}
        policies:
          - {tenant_id: t1, scope: tenant, limit_type: daily, limit_value: 2, decision: deny}
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tools: list[Tool] = Field(default_factory=list)
    tenants: list[Tenant] = Field(default_factory=list)
    policies: list[PolicyDraft] = Field(default_factory=list)


def load_seed(path: Path | str) -> Seed:
    """
    Load a seed document from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return Seed.model_validate(data or {})


def load_seed_from_string(content: str) -> Seed:
    """Load a seed document from a YAML string."""
    data = yaml.safe_load(content)
    return Seed.model_validate(data or {})
