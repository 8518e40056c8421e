"""
policies/store.py -- SQLAlchemy Core persistence for security policies.

Pattern: Repository + Data Mapper, same as auth/store.py. PolicyStore is the
repository; the _row_to_* functions are the mappers.

Transactions:
  create_policy() writes the policy, its conditions and its actions inside a
  single engine.begin() block. Any exception (constraint violation, driver
  error) rolls the whole block back before it propagates, so a partially
  created policy can never be observed.

  toggle_policy() flips is_active with one UPDATE (is_active = 1 - is_active)
  and reads the result back in the same transaction.

Uniqueness of policy names is enforced by the UNIQUE constraint, not by a
read-then-write check: of two concurrent creates with the same name exactly
one commits, the other raises IntegrityError.

Security: all queries use bound parameters. Filters are appended to the
select() only after policies/rules.parse_filters() has matched them against
their allow-lists.

Layer rule: no imports from api/, auth/, or appsettings/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine

from core.database import create_schema, now_iso
from core.schema import employees as _employees
from core.schema import policy_actions as _actions
from core.schema import policy_conditions as _conditions
from core.schema import policy_executions as _executions
from core.schema import security_policies as _policies
from core.schema import users as _users
from core.schema import violations as _violations
from policies.models import (
    Employee,
    PolicyAction,
    PolicyCondition,
    PolicyExecution,
    PolicyFilters,
    PolicyStats,
    SecurityPolicy,
)

logger = logging.getLogger("securewatch.policies")

# Window for the recentExecutions count in list results.
RECENT_EXECUTION_DAYS = 30
# Number of executions returned with a policy's detail view.
DETAIL_EXECUTION_LIMIT = 10

# Fields update_policy() may change. Level and target are immutable.
_UPDATABLE_FIELDS: frozenset[str] = frozenset({"name", "description", "is_active", "priority"})


class PolicyStore:
    """Repository for SecurityPolicy aggregates.

    Usage:
        store = PolicyStore(engine)
        policy = store.create_policy(policy, conditions, actions)
        store.toggle_policy(policy.id)
        store.list_policies(PolicyFilters(level="global"))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        create_schema(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_policies(self, filters: PolicyFilters = PolicyFilters()) -> list[SecurityPolicy]:
        """Return policies with counts, ordered by priority desc then created_at desc.

        Counts are correlated scalar subqueries rather than joins so that
        conditions and actions do not multiply each other.
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(days=RECENT_EXECUTION_DAYS)).isoformat()
        condition_count = (
            select(func.count(_conditions.c.id))
            .where(_conditions.c.policy_id == _policies.c.id)
            .scalar_subquery()
        )
        action_count = (
            select(func.count(_actions.c.id)).where(_actions.c.policy_id == _policies.c.id).scalar_subquery()
        )
        execution_count = (
            select(func.count(_executions.c.id))
            .where((_executions.c.policy_id == _policies.c.id) & (_executions.c.created_at >= cutoff))
            .scalar_subquery()
        )
        stmt = select(
            _policies,
            _users.c.name.label("created_by_name"),
            condition_count.label("condition_count"),
            action_count.label("action_count"),
            execution_count.label("execution_count"),
        ).select_from(_policies.outerjoin(_users, _policies.c.created_by == _users.c.id))

        if filters.level is not None:
            stmt = stmt.where(_policies.c.policy_level == filters.level)
        if filters.active is not None:
            stmt = stmt.where(_policies.c.is_active == (1 if filters.active else 0))
        if filters.target_type is not None:
            stmt = stmt.where(_policies.c.target_type == filters.target_type)

        stmt = stmt.order_by(_policies.c.priority.desc(), _policies.c.created_at.desc(), _policies.c.id.desc())

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()

        policies = []
        for row in rows:
            policy = _row_to_policy(row)
            policy.stats = PolicyStats(
                conditions=row.condition_count or 0,
                actions=row.action_count or 0,
                recent_executions=row.execution_count or 0,
            )
            policies.append(policy)
        return policies

    def get_policy(self, policy_id: int, with_details: bool = True) -> Optional[SecurityPolicy]:
        """Return one policy with ordered conditions, ordered actions and the
        most recent executions (joined with employee and violation context).

        with_details=False skips the child queries.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_policies, _users.c.name.label("created_by_name"))
                .select_from(_policies.outerjoin(_users, _policies.c.created_by == _users.c.id))
                .where(_policies.c.id == policy_id)
            ).fetchone()
            if row is None:
                return None
            policy = _row_to_policy(row)
            if not with_details:
                return policy

            policy.conditions = [
                _row_to_condition(r)
                for r in conn.execute(
                    _conditions.select()
                    .where(_conditions.c.policy_id == policy_id)
                    .order_by(_conditions.c.condition_order, _conditions.c.id)
                ).fetchall()
            ]
            policy.actions = [
                _row_to_action(r)
                for r in conn.execute(
                    _actions.select()
                    .where(_actions.c.policy_id == policy_id)
                    .order_by(_actions.c.execution_order, _actions.c.id)
                ).fetchall()
            ]
            executions = conn.execute(
                select(
                    _executions,
                    _employees.c.name.label("employee_name"),
                    _violations.c.type.label("violation_type"),
                    _violations.c.severity.label("violation_severity"),
                )
                .select_from(
                    _executions.outerjoin(_employees, _executions.c.employee_id == _employees.c.id).outerjoin(
                        _violations, _executions.c.violation_id == _violations.c.id
                    )
                )
                .where(_executions.c.policy_id == policy_id)
                .order_by(_executions.c.created_at.desc(), _executions.c.id.desc())
                .limit(DETAIL_EXECUTION_LIMIT)
            ).fetchall()
            policy.recent_executions = [_row_to_execution(r) for r in executions]
        return policy

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_policy(
        self,
        policy: SecurityPolicy,
        conditions: list[PolicyCondition],
        actions: list[PolicyAction],
    ) -> Optional[SecurityPolicy]:
        """Insert policy + conditions + actions atomically and return the stored policy.

        Raises sqlalchemy.exc.IntegrityError (duplicate name, CHECK or NOT
        NULL violation) after the transaction has been rolled back.
        """
        now = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _policies.insert().values(
                    name=policy.name,
                    description=policy.description,
                    policy_level=policy.policy_level,
                    target_id=policy.target_id,
                    target_type=policy.target_type,
                    is_active=1 if policy.is_active else 0,
                    priority=policy.priority,
                    created_by=policy.created_by,
                    created_at=now,
                    updated_at=now,
                )
            )
            policy_id = result.inserted_primary_key[0]
            for cond in conditions:
                conn.execute(
                    _conditions.insert().values(
                        policy_id=policy_id,
                        condition_type=cond.condition_type,
                        operator=cond.operator,
                        value=cond.value,
                        logical_operator=cond.logical_operator,
                        condition_order=cond.condition_order,
                        created_at=now,
                    )
                )
            for action in actions:
                conn.execute(
                    _actions.insert().values(
                        policy_id=policy_id,
                        action_type=action.action_type,
                        action_config=json.dumps(action.action_config),
                        execution_order=action.execution_order,
                        delay_minutes=action.delay_minutes,
                        is_enabled=1 if action.is_enabled else 0,
                        created_at=now,
                    )
                )
        logger.info(
            "Created policy id=%s name=%r (%d conditions, %d actions)",
            policy_id,
            policy.name,
            len(conditions),
            len(actions),
        )
        return self.get_policy(policy_id, with_details=False)

    def update_policy(self, policy_id: int, **fields) -> Optional[SecurityPolicy]:
        """Partial update with coalesce semantics: None values are left unchanged.

        Accepted fields: name, description, is_active, priority. Returns the
        updated policy, or None when policy_id does not exist. Raises
        IntegrityError when a rename collides with another policy's name.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown policy fields: {unknown!r}")
        values = {k: v for k, v in fields.items() if v is not None}
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        values["updated_at"] = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_policies.update().where(_policies.c.id == policy_id).values(**values))
        if result.rowcount == 0:
            return None
        return self.get_policy(policy_id, with_details=False)

    def delete_policy(self, policy_id: int) -> bool:
        """Hard delete a policy together with its conditions and actions.

        Children are deleted explicitly in the same transaction, so the result
        does not depend on the database enforcing ON DELETE CASCADE.
        Executions keep their rows (policy_id becomes NULL).
        """
        with self.engine.begin() as conn:
            conn.execute(delete(_conditions).where(_conditions.c.policy_id == policy_id))
            conn.execute(delete(_actions).where(_actions.c.policy_id == policy_id))
            conn.execute(
                _executions.update().where(_executions.c.policy_id == policy_id).values(policy_id=None)
            )
            result = conn.execute(delete(_policies).where(_policies.c.id == policy_id))
        return result.rowcount > 0

    def toggle_policy(self, policy_id: int) -> Optional[SecurityPolicy]:
        """Flip is_active atomically and return the policy in its new state."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _policies.update()
                .where(_policies.c.id == policy_id)
                .values(is_active=1 - _policies.c.is_active, updated_at=now_iso())
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(_policies.select().where(_policies.c.id == policy_id)).fetchone()
        return _row_to_policy(row)

    # ------------------------------------------------------------------
    # Manual trigger
    # ------------------------------------------------------------------

    def get_active_policy(self, policy_id: int) -> Optional[SecurityPolicy]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _policies.select().where((_policies.c.id == policy_id) & (_policies.c.is_active == 1))
            ).fetchone()
        return _row_to_policy(row) if row is not None else None

    def get_employee(self, employee_id: int) -> Optional[Employee]:
        with self.engine.connect() as conn:
            row = conn.execute(_employees.select().where(_employees.c.id == employee_id)).fetchone()
        return _row_to_employee(row) if row is not None else None

    def any_employee(self) -> Optional[Employee]:
        """Return an arbitrary employee (lowest id). Only for trigger test mode."""
        with self.engine.connect() as conn:
            row = conn.execute(_employees.select().order_by(_employees.c.id).limit(1)).fetchone()
        return _row_to_employee(row) if row is not None else None

    def violation_exists(self, violation_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_violations.c.id).where(_violations.c.id == violation_id)).fetchone()
        return row is not None

    def record_execution(self, execution: PolicyExecution) -> int:
        """Append a PolicyExecution row and return its id."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _executions.insert().values(
                    policy_id=execution.policy_id,
                    employee_id=execution.employee_id,
                    violation_id=execution.violation_id,
                    action_type=execution.action_type,
                    execution_status=execution.status,
                    execution_details=json.dumps(execution.details),
                    error_message=execution.error_message,
                    created_at=execution.created_at or now_iso(),
                )
            )
            return result.inserted_primary_key[0]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _load_json(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


def _row_to_policy(row) -> SecurityPolicy:
    return SecurityPolicy(
        id=row.id,
        name=row.name,
        description=row.description,
        policy_level=row.policy_level,
        target_id=row.target_id,
        target_type=row.target_type,
        is_active=bool(row.is_active),
        priority=row.priority,
        created_by=row.created_by,
        created_by_name=getattr(row, "created_by_name", None),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_condition(row) -> PolicyCondition:
    return PolicyCondition(
        id=row.id,
        policy_id=row.policy_id,
        condition_type=row.condition_type,
        operator=row.operator,
        value=row.value,
        logical_operator=row.logical_operator,
        condition_order=row.condition_order,
    )


def _row_to_action(row) -> PolicyAction:
    return PolicyAction(
        id=row.id,
        policy_id=row.policy_id,
        action_type=row.action_type,
        action_config=_load_json(row.action_config),
        execution_order=row.execution_order,
        delay_minutes=row.delay_minutes,
        is_enabled=bool(row.is_enabled),
    )


def _row_to_execution(row) -> PolicyExecution:
    return PolicyExecution(
        id=row.id,
        policy_id=row.policy_id,
        employee_id=row.employee_id,
        violation_id=row.violation_id,
        action_type=row.action_type,
        status=row.execution_status,
        details=_load_json(row.execution_details),
        error_message=row.error_message,
        created_at=row.created_at,
        employee_name=row.employee_name,
        violation_type=row.violation_type,
        violation_severity=row.violation_severity,
    )


def _row_to_employee(row) -> Employee:
    return Employee(
        id=row.id,
        name=row.name,
        email=row.email,
        department=row.department,
        job_title=row.job_title,
    )
