"""
policies/models.py -- Domain dataclasses for security policies.

Pure data containers with zero logic. Validation lives in policies/rules.py,
persistence in policies/store.py. The API layer maps these to its camelCase
Pydantic response models in api/models.py.

A SecurityPolicy owns two ordered collections -- conditions and actions --
and is referenced by an append-only trail of PolicyExecution records.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class PolicyCondition:
    """One predicate of a policy, combined with the previous one by logical_operator.

    value is stored as text: strings verbatim, anything else JSON-encoded.
    """

    condition_type: str
    operator: str
    value: Optional[str]
    logical_operator: str = "AND"  # "AND" | "OR"
    condition_order: int = 1
    id: Optional[int] = None
    policy_id: Optional[int] = None


@dataclass
class PolicyAction:
    """One step run when a policy matches, in execution_order."""

    action_type: str
    action_config: dict = field(default_factory=dict)
    execution_order: int = 1
    delay_minutes: int = 0
    is_enabled: bool = True
    id: Optional[int] = None
    policy_id: Optional[int] = None


@dataclass
class PolicyExecution:
    """Append-only audit record. This service only writes "pending" rows (manual trigger)."""

    policy_id: Optional[int]
    employee_id: Optional[int]
    status: str = "pending"  # "pending" | "success" | "failed" | "skipped"
    violation_id: Optional[int] = None
    action_type: Optional[str] = None
    details: dict = field(default_factory=dict)
    error_message: Optional[str] = None
    created_at: str = ""
    id: Optional[int] = None
    # Joined context (read side only)
    employee_name: Optional[str] = None
    violation_type: Optional[str] = None
    violation_severity: Optional[str] = None


@dataclass
class PolicyStats:
    conditions: int = 0
    actions: int = 0
    recent_executions: int = 0  # last 30 days


@dataclass
class SecurityPolicy:
    """A security policy scoped globally, to a group, or to one user.

    global -> target_id and target_type are both None
    group  -> target_type in ("department", "role"), target_id required
    user   -> target_type == "user", target_id required

    policy_level and the target are immutable after creation.
    Higher priority is evaluated first.

    id is None before the record is written to the database.
    """

    name: str
    policy_level: str  # "global" | "group" | "user"
    description: Optional[str] = None
    target_id: Optional[str] = None
    target_type: Optional[str] = None  # "department" | "role" | "user"
    is_active: bool = True
    priority: int = 0
    created_by: Optional[int] = None
    created_by_name: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    id: Optional[int] = None
    stats: Optional[PolicyStats] = None
    conditions: list[PolicyCondition] = field(default_factory=list)
    actions: list[PolicyAction] = field(default_factory=list)
    recent_executions: list[PolicyExecution] = field(default_factory=list)


@dataclass
class Employee:
    """A monitored employee (owned by the monitoring pipeline, read-only here)."""

    id: int
    name: str
    email: str
    department: Optional[str] = None
    job_title: Optional[str] = None


@dataclass(frozen=True)
class PolicyFilters:
    """Validated list filters. None means "do not filter on this column"."""

    level: Optional[str] = None
    active: Optional[bool] = None
    target_type: Optional[str] = None


# Shape handed back by an EffectivePolicyResolver, one per applicable policy.
EffectivePolicyRow = dict[str, Any]
