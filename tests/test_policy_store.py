"""
tests/test_policy_store.py -- Unit tests for PolicyStore against SQLite.

Covers:
  - Atomic create: a failing condition leaves no policy, condition or action row
  - Unique names enforced by the database
  - Listing: filters, ordering, counts
  - Detail view: ordered children, recent executions with joined context
  - Update (coalesce), toggle, delete (children removed, executions kept)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from core.database import classify_integrity_error
from core.schema import policy_actions, policy_conditions, policy_executions, security_policies
from policies.models import PolicyExecution, PolicyFilters
from policies.rules import normalize_actions, normalize_conditions, validate_new_policy


def _count(engine, table) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar()


def _create(store, name="Policy", level="global", priority=0, conditions=(), actions=(), **kw):
    policy = validate_new_policy(name, level, priority=priority, **kw)
    return store.create_policy(policy, normalize_conditions(conditions), normalize_actions(actions))


class TestCreate:
    def test_create_with_children(self, stores) -> None:
        created = _create(
            stores.policies,
            name="USB exfiltration",
            conditions=[
                {"type": "violation_type", "operator": "equals", "value": "usb"},
                {"type": "severity", "operator": "in", "value": ["high", "critical"], "logical_operator": "OR"},
            ],
            actions=[{"type": "email_alert", "config": {"to": "soc@example.com"}}, {"type": "lock_account"}],
        )
        assert created is not None and created.id is not None
        detail = stores.policies.get_policy(created.id)
        assert [c.condition_type for c in detail.conditions] == ["violation_type", "severity"]
        assert detail.conditions[1].logical_operator == "OR"
        assert [a.action_type for a in detail.actions] == ["email_alert", "lock_account"]
        assert detail.actions[0].action_config == {"to": "soc@example.com"}

    def test_failed_condition_rolls_back_everything(self, stores) -> None:
        """The second condition has no value: NOT NULL fails and nothing is written."""
        with pytest.raises(IntegrityError) as exc_info:
            _create(
                stores.policies,
                name="Half written",
                conditions=[
                    {"type": "violation_type", "operator": "equals", "value": "usb"},
                    {"type": "severity", "operator": "equals"},
                ],
                actions=[{"type": "email_alert"}],
            )
        assert classify_integrity_error(exc_info.value) == "not_null"
        assert _count(stores.engine, security_policies) == 0
        assert _count(stores.engine, policy_conditions) == 0
        assert _count(stores.engine, policy_actions) == 0

    def test_duplicate_name_is_unique_violation(self, stores) -> None:
        _create(stores.policies, name="Same")
        with pytest.raises(IntegrityError) as exc_info:
            _create(stores.policies, name="Same")
        assert classify_integrity_error(exc_info.value) == "unique"
        assert _count(stores.engine, security_policies) == 1

    def test_created_by_name_is_joined(self, stores) -> None:
        policy = validate_new_policy("Owned", "global")
        policy.created_by = stores.admin_id
        created = stores.policies.create_policy(policy, [], [])
        assert created.created_by_name == "Ada Admin"


class TestList:
    def test_order_priority_then_newest(self, stores) -> None:
        _create(stores.policies, name="low", priority=1)
        _create(stores.policies, name="high", priority=10)
        _create(stores.policies, name="low-newer", priority=1)
        names = [p.name for p in stores.policies.list_policies()]
        assert names == ["high", "low-newer", "low"]

    def test_filters(self, stores) -> None:
        _create(stores.policies, name="g")
        _create(stores.policies, name="d", level="group", target_id="Finance", target_type="department")
        r = _create(stores.policies, name="r", level="group", target_id="analyst", target_type="role")
        stores.policies.toggle_policy(r.id)

        assert {p.name for p in stores.policies.list_policies(PolicyFilters(level="group"))} == {"d", "r"}
        assert {p.name for p in stores.policies.list_policies(PolicyFilters(active=False))} == {"r"}
        assert {p.name for p in stores.policies.list_policies(PolicyFilters(target_type="department"))} == {"d"}

    def test_counts(self, stores, make_employee) -> None:
        created = _create(
            stores.policies,
            name="counted",
            conditions=[{"type": "a", "operator": "eq", "value": "1"}] * 3,
            actions=[{"type": "x"}] * 2,
        )
        emp = make_employee()
        stores.policies.record_execution(PolicyExecution(policy_id=created.id, employee_id=emp))
        old = (datetime.now(timezone.utc) - timedelta(days=45)).isoformat()
        stores.policies.record_execution(PolicyExecution(policy_id=created.id, employee_id=emp, created_at=old))

        (listed,) = stores.policies.list_policies()
        assert (listed.stats.conditions, listed.stats.actions, listed.stats.recent_executions) == (3, 2, 1)


class TestDetail:
    def test_missing_policy(self, stores) -> None:
        assert stores.policies.get_policy(999) is None

    def test_children_follow_explicit_order(self, stores) -> None:
        created = _create(
            stores.policies,
            conditions=[
                {"type": "second", "operator": "eq", "value": "b", "order": 2},
                {"type": "first", "operator": "eq", "value": "a", "order": 1},
            ],
        )
        detail = stores.policies.get_policy(created.id)
        assert [c.condition_type for c in detail.conditions] == ["first", "second"]

    def test_recent_executions_are_limited_and_joined(self, stores, make_employee, make_violation) -> None:
        created = _create(stores.policies)
        emp = make_employee(name="Eve Example", email="eve@example.com")
        vio = make_violation(emp, type_="usb_copy", severity="critical")
        for i in range(12):
            ts = (datetime.now(timezone.utc) - timedelta(minutes=i)).isoformat()
            stores.policies.record_execution(
                PolicyExecution(policy_id=created.id, employee_id=emp, violation_id=vio, created_at=ts)
            )
        detail = stores.policies.get_policy(created.id)
        assert len(detail.recent_executions) == 10
        first = detail.recent_executions[0]
        assert (first.employee_name, first.violation_type, first.violation_severity) == (
            "Eve Example",
            "usb_copy",
            "critical",
        )
        stamps = [e.created_at for e in detail.recent_executions]
        assert stamps == sorted(stamps, reverse=True)


class TestWrites:
    def test_update_is_coalescing(self, stores) -> None:
        created = _create(stores.policies, name="before", priority=3, description="keep me")
        updated = stores.policies.update_policy(created.id, name="after", description=None, priority=None)
        assert updated.name == "after"
        assert updated.description == "keep me"
        assert updated.priority == 3
        assert updated.policy_level == "global"

    def test_update_unknown_policy(self, stores) -> None:
        assert stores.policies.update_policy(404, name="x") is None

    def test_update_rejects_immutable_fields(self, stores) -> None:
        created = _create(stores.policies)
        with pytest.raises(ValueError):
            stores.policies.update_policy(created.id, policy_level="user")

    def test_rename_onto_existing_name(self, stores) -> None:
        _create(stores.policies, name="taken")
        other = _create(stores.policies, name="free")
        with pytest.raises(IntegrityError):
            stores.policies.update_policy(other.id, name="taken")

    def test_toggle_twice_restores_state(self, stores) -> None:
        created = _create(stores.policies)
        assert stores.policies.toggle_policy(created.id).is_active is False
        assert stores.policies.toggle_policy(created.id).is_active is True

    def test_toggle_unknown_policy(self, stores) -> None:
        assert stores.policies.toggle_policy(12345) is None

    def test_delete_removes_children_and_keeps_executions(self, stores, make_employee) -> None:
        created = _create(
            stores.policies,
            conditions=[{"type": "a", "operator": "eq", "value": "1"}],
            actions=[{"type": "x"}],
        )
        emp = make_employee()
        exec_id = stores.policies.record_execution(PolicyExecution(policy_id=created.id, employee_id=emp))

        assert stores.policies.delete_policy(created.id) is True
        assert stores.policies.get_policy(created.id) is None
        assert _count(stores.engine, policy_conditions) == 0
        assert _count(stores.engine, policy_actions) == 0
        with stores.engine.connect() as conn:
            row = conn.execute(select(policy_executions).where(policy_executions.c.id == exec_id)).fetchone()
        assert row is not None and row.policy_id is None

    def test_delete_unknown_policy(self, stores) -> None:
        assert stores.policies.delete_policy(777) is False


class TestTriggerHelpers:
    def test_get_active_policy_skips_inactive(self, stores) -> None:
        created = _create(stores.policies)
        assert stores.policies.get_active_policy(created.id) is not None
        stores.policies.toggle_policy(created.id)
        assert stores.policies.get_active_policy(created.id) is None

    def test_employee_lookups(self, stores, make_employee) -> None:
        assert stores.policies.any_employee() is None
        first = make_employee(name="A", email="a@example.com")
        make_employee(name="B", email="b@example.com")
        assert stores.policies.any_employee().id == first
        assert stores.policies.get_employee(first).email == "a@example.com"
        assert stores.policies.get_employee(999) is None

    def test_violation_exists(self, stores, make_employee, make_violation) -> None:
        emp = make_employee()
        vio = make_violation(emp)
        assert stores.policies.violation_exists(vio)
        assert not stores.policies.violation_exists(vio + 100)
