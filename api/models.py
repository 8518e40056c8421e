"""
API request and response models for the SecureWatch REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py and
policies/models.py, which own the internal domain representation. Route
handlers map between the two.

JSON field names are camelCase (currentPassword, policyLevel, isActive...).
_ApiModel generates the aliases; handlers use snake_case attributes.

Request fields that carry a business rule (email, password, policyLevel...)
are Optional on purpose: the handler, not Pydantic, rejects them so the
client gets the stable code (MISSING_CREDENTIALS, INVALID_POLICY_LEVEL...)
rather than a generic VALIDATION_ERROR.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import User
from core.database import MAX_ID
from policies.models import Employee, PolicyAction, PolicyCondition, PolicyExecution, SecurityPolicy


# Integer body fields are bounded to what an INTEGER column stores.
RowId = Annotated[int, Field(ge=1, le=MAX_ID)]
Int32 = Annotated[int, Field(ge=-MAX_ID - 1, le=MAX_ID)]


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(_ApiModel):
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


class UserPublic(_ApiModel):
    """Sanitized identity returned by login, /me, /status and /profile."""

    id: int
    email: str
    name: str
    role: str
    department: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(**user.public_fields())


class LoginResponse(_ApiModel):
    message: str = "Login successful"
    user: UserPublic


class UserEnvelope(_ApiModel):
    user: UserPublic


class AuthStatusResponse(_ApiModel):
    authenticated: bool
    user: Optional[UserPublic] = None


class ChangePasswordRequest(_ApiModel):
    current_password: Optional[str] = Field(default=None, max_length=255)
    new_password: Optional[str] = Field(default=None, max_length=255)


class ProfileUpdate(_ApiModel):
    name: Optional[str] = Field(default=None, max_length=255)
    department: Optional[str] = Field(default=None, max_length=255)


class ProfileResponse(_ApiModel):
    message: str = "Profile updated successfully"
    user: UserPublic


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


class UserDetail(_ApiModel):
    """Full user row for admins. Never includes the password hash."""

    id: int
    email: str
    name: str
    role: str
    department: Optional[str] = None
    is_active: bool
    last_login: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserDetail":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            department=user.department,
            is_active=user.is_active,
            last_login=user.last_login,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class UserListResponse(_ApiModel):
    users: list[UserDetail]


class UserDetailResponse(_ApiModel):
    message: Optional[str] = None
    user: UserDetail


class UserCreate(_ApiModel):
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = None
    department: Optional[str] = Field(default=None, max_length=255)


class UserUpdate(_ApiModel):
    email: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = None
    department: Optional[str] = Field(default=None, max_length=255)
    is_active: Optional[bool] = None


class PasswordReset(_ApiModel):
    new_password: Optional[str] = Field(default=None, max_length=255)


class RoleInfo(_ApiModel):
    name: str
    label: str
    description: str


class RolesResponse(_ApiModel):
    roles: list[RoleInfo]


# ---------------------------------------------------------------------------
# Policies -- requests
# ---------------------------------------------------------------------------


class ConditionIn(_ApiModel):
    type: Optional[str] = Field(default=None, max_length=50)
    operator: Optional[str] = Field(default=None, max_length=20)
    value: Any = None
    logical_operator: Optional[str] = None
    order: Optional[Int32] = None


class ActionIn(_ApiModel):
    type: Optional[str] = Field(default=None, max_length=50)
    config: Optional[dict] = None
    order: Optional[Int32] = None
    delay: Optional[Int32] = None
    is_enabled: Optional[bool] = None


class PolicyCreate(_ApiModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    policy_level: Optional[str] = None
    target_id: Optional[str | int] = None
    target_type: Optional[str] = None
    is_active: Optional[bool] = None
    priority: Optional[Int32] = None
    conditions: list[ConditionIn] = Field(default_factory=list, max_length=100)
    actions: list[ActionIn] = Field(default_factory=list, max_length=100)


class PolicyUpdate(_ApiModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    priority: Optional[Int32] = None


class TriggerRequest(_ApiModel):
    employee_id: Optional[RowId] = None
    violation_id: Optional[RowId] = None


# ---------------------------------------------------------------------------
# Policies -- responses
# ---------------------------------------------------------------------------


class PolicyStatsOut(_ApiModel):
    conditions: int
    actions: int
    recent_executions: int


class ConditionOut(_ApiModel):
    id: int
    type: str
    operator: str
    value: Optional[str]
    logical_operator: str
    order: int

    @classmethod
    def from_domain(cls, cond: PolicyCondition) -> "ConditionOut":
        return cls(
            id=cond.id,
            type=cond.condition_type,
            operator=cond.operator,
            value=cond.value,
            logical_operator=cond.logical_operator,
            order=cond.condition_order,
        )


class ActionOut(_ApiModel):
    id: int
    type: str
    config: dict
    order: int
    delay: int
    is_enabled: bool

    @classmethod
    def from_domain(cls, action: PolicyAction) -> "ActionOut":
        return cls(
            id=action.id,
            type=action.action_type,
            config=action.action_config,
            order=action.execution_order,
            delay=action.delay_minutes,
            is_enabled=action.is_enabled,
        )


class ExecutionOut(_ApiModel):
    id: int
    employee_name: Optional[str] = None
    violation_type: Optional[str] = None
    violation_severity: Optional[str] = None
    action_type: Optional[str] = None
    status: str
    executed_at: str
    details: dict

    @classmethod
    def from_domain(cls, execution: PolicyExecution) -> "ExecutionOut":
        return cls(
            id=execution.id,
            employee_name=execution.employee_name,
            violation_type=execution.violation_type,
            violation_severity=execution.violation_severity,
            action_type=execution.action_type,
            status=execution.status,
            executed_at=execution.created_at,
            details=execution.details,
        )


class PolicyOut(_ApiModel):
    """A policy row. stats on list results; children on the detail view."""

    id: int
    name: str
    description: Optional[str] = None
    policy_level: str
    target_id: Optional[str] = None
    target_type: Optional[str] = None
    is_active: bool
    priority: int
    created_at: str
    updated_at: str
    created_by: Optional[str] = None
    stats: Optional[PolicyStatsOut] = None
    conditions: Optional[list[ConditionOut]] = None
    actions: Optional[list[ActionOut]] = None
    recent_executions: Optional[list[ExecutionOut]] = None

    @classmethod
    def from_domain(cls, policy: SecurityPolicy, detail: bool = False) -> "PolicyOut":
        out = cls(
            id=policy.id,
            name=policy.name,
            description=policy.description,
            policy_level=policy.policy_level,
            target_id=policy.target_id,
            target_type=policy.target_type,
            is_active=policy.is_active,
            priority=policy.priority,
            created_at=policy.created_at,
            updated_at=policy.updated_at,
            created_by=policy.created_by_name,
        )
        if policy.stats is not None:
            out.stats = PolicyStatsOut(
                conditions=policy.stats.conditions,
                actions=policy.stats.actions,
                recent_executions=policy.stats.recent_executions,
            )
        if detail:
            out.conditions = [ConditionOut.from_domain(c) for c in policy.conditions]
            out.actions = [ActionOut.from_domain(a) for a in policy.actions]
            out.recent_executions = [ExecutionOut.from_domain(e) for e in policy.recent_executions]
        return out


class PolicyListResponse(_ApiModel):
    policies: list[PolicyOut]
    total: int


class PolicyEnvelope(_ApiModel):
    message: str
    policy: PolicyOut


class PolicyToggleOut(_ApiModel):
    id: int
    name: str
    is_active: bool


class PolicyToggleResponse(_ApiModel):
    message: str
    policy: PolicyToggleOut


class PolicyDeleteResponse(_ApiModel):
    message: str = "Policy deleted successfully"
    deleted_id: int


class EffectivePolicyOut(_ApiModel):
    id: Optional[int] = None
    name: Optional[str] = None
    level: Optional[str] = None
    priority: Optional[int] = None
    conditions: Any = None
    actions: Any = None


class EffectivePoliciesResponse(_ApiModel):
    employee_id: int
    effective_policies: list[EffectivePolicyOut]


class TriggerExecutionOut(_ApiModel):
    id: int
    policy_id: int
    policy_name: str
    employee_id: int
    employee_name: str
    employee_email: str
    status: str

    @classmethod
    def build(cls, execution_id: int, policy: SecurityPolicy, employee: Employee) -> "TriggerExecutionOut":
        return cls(
            id=execution_id,
            policy_id=policy.id,
            policy_name=policy.name,
            employee_id=employee.id,
            employee_name=employee.name,
            employee_email=employee.email,
            status="pending",
        )


class TriggerResponse(_ApiModel):
    message: str = "Policy execution triggered successfully"
    execution: TriggerExecutionOut


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class SettingValueIn(_ApiModel):
    # Any JSON; the handler rejects non-objects with INVALID_VALUE.
    value: Any = None


class SettingEntry(_ApiModel):
    value: dict
    updated_at: str


class SettingsResponse(_ApiModel):
    settings: dict[str, SettingEntry]


class SettingResponse(_ApiModel):
    message: Optional[str] = None
    key: str
    value: dict
    updated_at: str


class CompanyInfoIn(_ApiModel):
    name: Optional[str] = Field(default=None, max_length=255)
    domain: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = None
    phone: Optional[str] = None
    industry: Optional[str] = None
    employee_count: Optional[Int32] = None
    logo_url: Optional[str] = None


class CompanyInfoResponse(_ApiModel):
    message: Optional[str] = None
    company_info: dict
    updated_at: Optional[str] = None


class EmailConfigIn(_ApiModel):
    host: Optional[str] = Field(default=None, max_length=255)
    port: Optional[int] = None
    encryption: Optional[str] = None
    username: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)
    from_address: Optional[str] = Field(default=None, max_length=255)


class EmailConfigResponse(_ApiModel):
    message: Optional[str] = None
    email_config: dict
    updated_at: Optional[str] = None


class EmailTestResponse(_ApiModel):
    message: str = "Email connection test successful"
    status: str = "success"


class DashboardConfigIn(_ApiModel):
    refresh_interval: Optional[int] = None
    default_view: Optional[str] = None
    alerts_enabled: Optional[bool] = None
    auto_refresh: Optional[bool] = None


class DashboardConfigResponse(_ApiModel):
    message: Optional[str] = None
    dashboard_config: dict
    updated_at: Optional[str] = None
