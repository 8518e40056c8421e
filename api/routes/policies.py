"""
api/routes/policies.py -- Security policy REST endpoints.

Routes:
  GET    /api/policies                          -- list with counts (filters: level, active, targetType)
  GET    /api/policies/effective/{employeeId}   -- policies that apply to one employee
  GET    /api/policies/{id}                     -- detail: conditions, actions, recent executions
  POST   /api/policies                          -- create policy + conditions + actions atomically
  PUT    /api/policies/{id}                     -- partial update (name, description, isActive, priority)
  DELETE /api/policies/{id}                     -- hard delete
  PATCH  /api/policies/{id}/toggle              -- flip isActive
  POST   /api/policies/trigger/{id}             -- record a pending manual execution

Every route requires a session. Input validation lives in policies/rules.py;
this module maps PolicyValidationError and IntegrityError onto the API error
taxonomy and shapes responses.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.errors import ConflictError, InternalError, NotFoundError, ValidationError
from api.limiter import limiter
from api.models import (
    EffectivePoliciesResponse,
    EffectivePolicyOut,
    PolicyCreate,
    PolicyDeleteResponse,
    PolicyEnvelope,
    PolicyListResponse,
    PolicyOut,
    PolicyToggleOut,
    PolicyToggleResponse,
    PolicyUpdate,
    TriggerExecutionOut,
    TriggerRequest,
    TriggerResponse,
)
from auth.dependencies import get_current_user
from auth.models import User
from core.config import get_settings
from core.database import classify_integrity_error, now_iso
from policies.models import PolicyExecution
from policies.resolver import EffectivePolicyResolver
from policies.rules import (
    PolicyValidationError,
    normalize_actions,
    normalize_conditions,
    parse_filters,
    parse_id,
    validate_new_policy,
)
from policies.store import PolicyStore

logger = logging.getLogger("securewatch.policies")

router = APIRouter(dependencies=[Depends(get_current_user)])


def _store(request: Request) -> PolicyStore:
    return request.app.state.policy_store


def _policy_id(raw: str) -> int:
    try:
        return parse_id(raw)
    except PolicyValidationError as exc:
        raise ValidationError(exc.code, exc.message) from None


def _raise_integrity(exc: IntegrityError, fallback_code: str, fallback_message: str) -> None:
    kind = classify_integrity_error(exc)
    if kind == "unique":
        raise ConflictError("DUPLICATE_POLICY_NAME", "A policy with this name already exists.") from exc
    if kind in ("check", "not_null"):
        raise ValidationError("CONSTRAINT_VIOLATION", "Policy data violates a database constraint.") from exc
    logger.error("Unclassified integrity error: %s", exc.orig)
    raise InternalError(fallback_code, fallback_message) from exc


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/policies", response_model=PolicyListResponse, response_model_exclude_none=True)
def list_policies(
    request: Request,
    level: Optional[str] = Query(default=None),
    active: Optional[str] = Query(default=None),
    target_type: Optional[str] = Query(default=None, alias="targetType"),
) -> PolicyListResponse:
    """List policies, highest priority first. Unknown filter values are ignored."""
    policies = _store(request).list_policies(parse_filters(level, active, target_type))
    return PolicyListResponse(
        policies=[PolicyOut.from_domain(p) for p in policies],
        total=len(policies),
    )


@router.get("/policies/effective/{employee_id}", response_model=EffectivePoliciesResponse)
def effective_policies(request: Request, employee_id: str) -> EffectivePoliciesResponse:
    try:
        emp_id = parse_id(employee_id, code="INVALID_EMPLOYEE_ID", label="employee ID")
    except PolicyValidationError as exc:
        raise ValidationError(exc.code, exc.message) from None

    resolver: EffectivePolicyResolver = request.app.state.policy_resolver
    try:
        rows = resolver.resolve(emp_id)
    except SQLAlchemyError:
        logger.exception("Effective policy lookup failed for employee_id=%s", emp_id)
        raise InternalError("EFFECTIVE_POLICIES_ERROR", "Failed to fetch effective policies.") from None

    return EffectivePoliciesResponse(
        employee_id=emp_id,
        effective_policies=[
            EffectivePolicyOut(
                id=row.get("policy_id"),
                name=row.get("policy_name"),
                level=row.get("policy_level"),
                priority=row.get("priority"),
                conditions=row.get("conditions"),
                actions=row.get("actions"),
            )
            for row in rows
        ],
    )


@router.get("/policies/{policy_id}", response_model=PolicyEnvelope, response_model_exclude_none=True)
def get_policy(request: Request, policy_id: str) -> PolicyEnvelope:
    policy = _store(request).get_policy(_policy_id(policy_id))
    if policy is None:
        raise NotFoundError("POLICY_NOT_FOUND", "Policy not found.")
    return PolicyEnvelope(message="Policy retrieved successfully", policy=PolicyOut.from_domain(policy, detail=True))


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@router.post("/policies", response_model=PolicyEnvelope, status_code=201, response_model_exclude_none=True)
def create_policy(
    request: Request,
    body: Optional[PolicyCreate] = None,
    current_user: User = Depends(get_current_user),
) -> PolicyEnvelope:
    """Create a policy with its conditions and actions in one transaction.

    Either everything is written or nothing is: a bad condition or action
    rolls back the policy row too.
    """
    body = body or PolicyCreate()
    try:
        policy = validate_new_policy(
            body.name,
            body.policy_level,
            target_id=body.target_id,
            target_type=body.target_type,
            description=body.description,
            is_active=body.is_active,
            priority=body.priority,
        )
    except PolicyValidationError as exc:
        raise ValidationError(exc.code, exc.message) from None
    policy.created_by = current_user.id

    conditions = normalize_conditions(c.model_dump() for c in body.conditions)
    actions = normalize_actions(a.model_dump() for a in body.actions)

    try:
        created = _store(request).create_policy(policy, conditions, actions)
    except IntegrityError as exc:
        _raise_integrity(exc, "POLICY_CREATE_ERROR", "Failed to create policy.")
    except SQLAlchemyError:
        logger.exception("Policy create failed for name=%r", policy.name)
        raise InternalError("POLICY_CREATE_ERROR", "Failed to create policy.") from None

    if created is None:
        raise InternalError("POLICY_CREATE_ERROR", "Failed to create policy.")
    logger.info("Policy id=%s created by user_id=%s", created.id, current_user.id)
    return PolicyEnvelope(message="Policy created successfully", policy=PolicyOut.from_domain(created))


@router.put("/policies/{policy_id}", response_model=PolicyEnvelope, response_model_exclude_none=True)
def update_policy(request: Request, policy_id: str, body: Optional[PolicyUpdate] = None) -> PolicyEnvelope:
    """Partial update. Omitted fields keep their value; level and target never change."""
    body = body or PolicyUpdate()
    pid = _policy_id(policy_id)
    name = body.name.strip() if body.name is not None else None

    try:
        updated = _store(request).update_policy(
            pid,
            name=name or None,
            description=body.description,
            is_active=body.is_active,
            priority=body.priority,
        )
    except IntegrityError as exc:
        _raise_integrity(exc, "POLICY_UPDATE_ERROR", "Failed to update policy.")

    if updated is None:
        raise NotFoundError("POLICY_NOT_FOUND", "Policy not found.")
    return PolicyEnvelope(message="Policy updated successfully", policy=PolicyOut.from_domain(updated))


@router.delete("/policies/{policy_id}", response_model=PolicyDeleteResponse)
def delete_policy(request: Request, policy_id: str) -> PolicyDeleteResponse:
    pid = _policy_id(policy_id)
    if not _store(request).delete_policy(pid):
        raise NotFoundError("POLICY_NOT_FOUND", "Policy not found.")
    logger.info("Policy id=%s deleted", pid)
    return PolicyDeleteResponse(deleted_id=pid)


@router.patch("/policies/{policy_id}/toggle", response_model=PolicyToggleResponse)
def toggle_policy(request: Request, policy_id: str) -> PolicyToggleResponse:
    policy = _store(request).toggle_policy(_policy_id(policy_id))
    if policy is None:
        raise NotFoundError("POLICY_NOT_FOUND", "Policy not found.")
    state = "activated" if policy.is_active else "deactivated"
    return PolicyToggleResponse(
        message=f"Policy {state} successfully",
        policy=PolicyToggleOut(id=policy.id, name=policy.name, is_active=policy.is_active),
    )


@limiter.limit("30/minute")
@router.post("/policies/trigger/{policy_id}", response_model=TriggerResponse)
def trigger_policy(
    request: Request,
    policy_id: str,
    body: Optional[TriggerRequest] = None,
    current_user: User = Depends(get_current_user),
) -> TriggerResponse:
    """Record a pending execution of an active policy for one employee.

    Only the audit row is written; the actions themselves are run elsewhere.
    Without employeeId an arbitrary employee is used, and only when
    POLICY_TRIGGER_TEST_MODE is enabled.
    """
    body = body or TriggerRequest()
    store = _store(request)
    policy = store.get_active_policy(_policy_id(policy_id))
    if policy is None:
        raise NotFoundError("POLICY_NOT_FOUND", "Policy not found or inactive.")

    if body.employee_id is not None:
        employee = store.get_employee(body.employee_id)
        if employee is None:
            raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    elif get_settings().policy_trigger_test_mode:
        employee = store.any_employee()
        if employee is None:
            raise ValidationError("NO_EMPLOYEES", "No employees found for testing.")
    else:
        raise ValidationError("MISSING_EMPLOYEE_ID", "employeeId is required.")

    if body.violation_id is not None and not store.violation_exists(body.violation_id):
        raise NotFoundError("VIOLATION_NOT_FOUND", "Violation not found.")

    execution_id = store.record_execution(
        PolicyExecution(
            policy_id=policy.id,
            employee_id=employee.id,
            violation_id=body.violation_id,
            status="pending",
            details={
                "triggered_manually": True,
                "triggered_by": current_user.id,
                "triggered_at": now_iso(),
            },
        )
    )
    logger.info(
        "Policy id=%s triggered for employee_id=%s by user_id=%s (execution_id=%s)",
        policy.id,
        employee.id,
        current_user.id,
        execution_id,
    )
    return TriggerResponse(execution=TriggerExecutionOut.build(execution_id, policy, employee))
