"""
tests/test_policy_routes.py -- Integration tests for /api/policies.

Covers:
  - Every route requires a session (any role)
  - Create: validation codes, defaults, 201 body, DUPLICATE_POLICY_NAME,
    CONSTRAINT_VIOLATION with nothing written
  - List filters and counts, detail view, update, delete, toggle
  - Effective policies via the injected resolver
  - Manual trigger: pending execution, POLICY_NOT_FOUND, EMPLOYEE_NOT_FOUND,
    MISSING_EMPLOYEE_ID, test-mode substitution
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from core.config import get_settings
from core.schema import policy_actions, policy_conditions, policy_executions, security_policies

GLOBAL_POLICY = {
    "name": "After-hours USB copy",
    "description": "Alert on large USB transfers outside business hours",
    "policyLevel": "global",
    "priority": 5,
    "conditions": [
        {"type": "violation_type", "operator": "equals", "value": "usb_copy"},
        {"type": "hour", "operator": "not_between", "value": [8, 18], "logicalOperator": "AND"},
    ],
    "actions": [
        {"type": "email_alert", "config": {"recipients": ["soc@example.com"]}},
        {"type": "increase_monitoring", "delay": 30},
    ],
}


@pytest.fixture()
def viewer(login_as) -> dict[str, str]:
    return login_as("viewer@example.com", "viewerpass123")


def _count(engine, table) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar()


def _create(client: TestClient, headers, **overrides) -> dict:
    resp = client.post("/api/policies", json={**GLOBAL_POLICY, **overrides}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["policy"]


class TestAccess:
    @pytest.mark.parametrize(
        "method,url",
        [
            ("get", "/api/policies"),
            ("get", "/api/policies/1"),
            ("post", "/api/policies"),
            ("put", "/api/policies/1"),
            ("delete", "/api/policies/1"),
            ("patch", "/api/policies/1/toggle"),
            ("get", "/api/policies/effective/1"),
            ("post", "/api/policies/trigger/1"),
        ],
    )
    def test_requires_session(self, client: TestClient, method: str, url: str) -> None:
        resp = getattr(client, method)(url)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "NOT_AUTHENTICATED"

    def test_any_role_may_manage_policies(self, client: TestClient, viewer) -> None:
        assert client.post("/api/policies", json=GLOBAL_POLICY, headers=viewer).status_code == 201


class TestCreate:
    def test_created_body(self, client: TestClient, viewer, stores) -> None:
        resp = client.post("/api/policies", json=GLOBAL_POLICY, headers=viewer)
        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "Policy created successfully"
        policy = body["policy"]
        assert policy["name"] == "After-hours USB copy"
        assert policy["policyLevel"] == "global"
        assert policy["isActive"] is True
        assert policy["priority"] == 5
        assert policy["createdBy"] == "Vic Viewer"
        assert _count(stores.engine, policy_conditions) == 2
        assert _count(stores.engine, policy_actions) == 2

    @pytest.mark.parametrize(
        "overrides,code",
        [
            ({"name": "  "}, "MISSING_POLICY_NAME"),
            ({"policyLevel": "team"}, "INVALID_POLICY_LEVEL"),
            ({"targetId": "5"}, "INVALID_GLOBAL_POLICY"),
            ({"policyLevel": "group", "targetType": "department"}, "MISSING_TARGET_INFO"),
            ({"policyLevel": "user", "targetId": 5}, "MISSING_TARGET_INFO"),
            ({"policyLevel": "group", "targetId": "5", "targetType": "user"}, "INVALID_TARGET_TYPE"),
            ({"policyLevel": "user", "targetId": "5", "targetType": "role"}, "INVALID_TARGET_TYPE"),
        ],
    )
    def test_validation_codes(self, client: TestClient, viewer, stores, overrides, code) -> None:
        resp = client.post("/api/policies", json={**GLOBAL_POLICY, **overrides}, headers=viewer)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == code
        assert _count(stores.engine, security_policies) == 0

    def test_user_policy_with_numeric_target(self, client: TestClient, viewer) -> None:
        policy = _create(client, viewer, name="Watch user 7", policyLevel="user", targetId=7, targetType="user")
        assert (policy["targetId"], policy["targetType"]) == ("7", "user")

    def test_duplicate_name(self, client: TestClient, viewer, stores) -> None:
        _create(client, viewer)
        resp = client.post("/api/policies", json=GLOBAL_POLICY, headers=viewer)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "DUPLICATE_POLICY_NAME"
        assert _count(stores.engine, security_policies) == 1

    def test_bad_condition_rolls_back_policy(self, client: TestClient, viewer, stores) -> None:
        body = {
            **GLOBAL_POLICY,
            "conditions": [
                {"type": "violation_type", "operator": "equals", "value": "usb_copy"},
                {"type": "severity", "operator": "equals"},
            ],
        }
        resp = client.post("/api/policies", json=body, headers=viewer)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "CONSTRAINT_VIOLATION"
        assert _count(stores.engine, security_policies) == 0
        assert _count(stores.engine, policy_conditions) == 0
        assert _count(stores.engine, policy_actions) == 0

    def test_invalid_logical_operator_is_a_constraint_violation(self, client: TestClient, viewer, stores) -> None:
        body = {**GLOBAL_POLICY, "conditions": [{"type": "t", "operator": "eq", "value": "v", "logicalOperator": "XOR"}]}
        resp = client.post("/api/policies", json=body, headers=viewer)
        assert resp.json()["error"]["code"] == "CONSTRAINT_VIOLATION"
        assert _count(stores.engine, security_policies) == 0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"priority": 2**40},
            {"conditions": [{"type": "a", "operator": "eq", "value": "1", "order": 2**31}]},
            {"actions": [{"type": "x", "delay": -(2**40)}]},
        ],
    )
    def test_integers_beyond_column_range(self, client: TestClient, viewer, stores, overrides) -> None:
        resp = client.post("/api/policies", json={**GLOBAL_POLICY, **overrides}, headers=viewer)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert _count(stores.engine, security_policies) == 0

    def test_driver_message_is_not_leaked(self, client: TestClient, viewer) -> None:
        body = {**GLOBAL_POLICY, "conditions": [{"type": "t", "operator": "eq"}]}
        resp = client.post("/api/policies", json=body, headers=viewer)
        assert "NOT NULL" not in resp.text
        assert "policy_conditions" not in resp.text


class TestQueries:
    def test_list_with_counts_and_filters(self, client: TestClient, viewer) -> None:
        _create(client, viewer)
        _create(
            client,
            viewer,
            name="Finance group",
            policyLevel="group",
            targetId="Finance",
            targetType="department",
            priority=10,
            conditions=[],
            actions=[],
        )
        body = client.get("/api/policies", headers=viewer).json()
        assert body["total"] == 2
        assert [p["name"] for p in body["policies"]] == ["Finance group", "After-hours USB copy"]
        usb = body["policies"][1]
        assert usb["stats"] == {"conditions": 2, "actions": 2, "recentExecutions": 0}

        groups = client.get("/api/policies", params={"level": "group"}, headers=viewer).json()
        assert [p["name"] for p in groups["policies"]] == ["Finance group"]
        by_target = client.get("/api/policies", params={"targetType": "department"}, headers=viewer).json()
        assert by_target["total"] == 1
        ignored = client.get("/api/policies", params={"level": "bogus", "active": "maybe"}, headers=viewer).json()
        assert ignored["total"] == 2

    def test_detail(self, client: TestClient, viewer) -> None:
        created = _create(client, viewer)
        resp = client.get(f"/api/policies/{created['id']}", headers=viewer)
        assert resp.status_code == 200
        policy = resp.json()["policy"]
        assert [c["type"] for c in policy["conditions"]] == ["violation_type", "hour"]
        assert policy["conditions"][1]["value"] == "[8, 18]"
        assert [a["type"] for a in policy["actions"]] == ["email_alert", "increase_monitoring"]
        assert policy["actions"][1]["delay"] == 30
        assert policy["actions"][0]["config"] == {"recipients": ["soc@example.com"]}
        assert policy["recentExecutions"] == []

    def test_detail_invalid_id(self, client: TestClient, viewer) -> None:
        resp = client.get("/api/policies/abc", headers=viewer)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_POLICY_ID"

    @pytest.mark.parametrize(
        "method,suffix",
        [("get", ""), ("put", ""), ("delete", ""), ("patch", "/toggle")],
    )
    @pytest.mark.parametrize("raw", ["0", "-7", "99999999999999999999"])
    def test_out_of_range_id(self, client: TestClient, viewer, method, suffix, raw) -> None:
        kwargs = {"json": {"name": "x"}} if method == "put" else {}
        resp = getattr(client, method)(f"/api/policies/{raw}{suffix}", headers=viewer, **kwargs)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_POLICY_ID"

    def test_detail_not_found(self, client: TestClient, viewer) -> None:
        resp = client.get("/api/policies/404", headers=viewer)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "POLICY_NOT_FOUND"


class TestWrites:
    def test_partial_update(self, client: TestClient, viewer) -> None:
        created = _create(client, viewer)
        resp = client.put(f"/api/policies/{created['id']}", json={"priority": 99}, headers=viewer)
        assert resp.status_code == 200
        policy = resp.json()["policy"]
        assert policy["priority"] == 99
        assert policy["name"] == created["name"]
        assert policy["description"] == created["description"]

    def test_update_ignores_level_and_target(self, client: TestClient, viewer) -> None:
        created = _create(client, viewer)
        resp = client.put(
            f"/api/policies/{created['id']}",
            json={"policyLevel": "user", "targetId": "1", "targetType": "user"},
            headers=viewer,
        )
        policy = resp.json()["policy"]
        assert policy["policyLevel"] == "global"
        assert policy.get("targetId") is None

    def test_rename_onto_existing(self, client: TestClient, viewer) -> None:
        _create(client, viewer)
        other = _create(client, viewer, name="Other")
        resp = client.put(f"/api/policies/{other['id']}", json={"name": GLOBAL_POLICY["name"]}, headers=viewer)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "DUPLICATE_POLICY_NAME"

    def test_update_not_found(self, client: TestClient, viewer) -> None:
        resp = client.put("/api/policies/321", json={"priority": 1}, headers=viewer)
        assert resp.status_code == 404

    def test_delete(self, client: TestClient, viewer, stores) -> None:
        created = _create(client, viewer)
        resp = client.delete(f"/api/policies/{created['id']}", headers=viewer)
        assert resp.status_code == 200
        assert resp.json() == {"message": "Policy deleted successfully", "deletedId": created["id"]}
        assert client.get(f"/api/policies/{created['id']}", headers=viewer).status_code == 404
        assert _count(stores.engine, policy_conditions) == 0
        assert _count(stores.engine, policy_actions) == 0

    def test_delete_not_found(self, client: TestClient, viewer) -> None:
        assert client.delete("/api/policies/999", headers=viewer).status_code == 404

    def test_toggle_round_trip(self, client: TestClient, viewer) -> None:
        created = _create(client, viewer)
        off = client.patch(f"/api/policies/{created['id']}/toggle", headers=viewer).json()
        assert off["message"] == "Policy deactivated successfully"
        assert off["policy"] == {"id": created["id"], "name": created["name"], "isActive": False}
        on = client.patch(f"/api/policies/{created['id']}/toggle", headers=viewer).json()
        assert on["message"] == "Policy activated successfully"
        assert on["policy"]["isActive"] is True

    def test_toggle_not_found(self, client: TestClient, viewer) -> None:
        resp = client.patch("/api/policies/999/toggle", headers=viewer)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "POLICY_NOT_FOUND"


class TestEffective:
    def test_reshapes_resolver_rows(self, client: TestClient, viewer, stores) -> None:
        stores.resolver.rows[7] = [
            {
                "policy_id": 3,
                "policy_name": "Finance group",
                "policy_level": "group",
                "priority": 10,
                "conditions": [{"type": "t"}],
                "actions": [{"type": "email_alert"}],
            }
        ]
        resp = client.get("/api/policies/effective/7", headers=viewer)
        assert resp.status_code == 200
        assert resp.json() == {
            "employeeId": 7,
            "effectivePolicies": [
                {
                    "id": 3,
                    "name": "Finance group",
                    "level": "group",
                    "priority": 10,
                    "conditions": [{"type": "t"}],
                    "actions": [{"type": "email_alert"}],
                }
            ],
        }
        assert stores.resolver.calls == [7]

    def test_unknown_employee_has_no_policies(self, client: TestClient, viewer) -> None:
        body = client.get("/api/policies/effective/55", headers=viewer).json()
        assert body == {"employeeId": 55, "effectivePolicies": []}

    def test_invalid_employee_id(self, client: TestClient, viewer, stores) -> None:
        resp = client.get("/api/policies/effective/abc", headers=viewer)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_EMPLOYEE_ID"
        assert stores.resolver.calls == []

    def test_out_of_range_employee_id(self, client: TestClient, viewer, stores) -> None:
        resp = client.get("/api/policies/effective/99999999999999999999", headers=viewer)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_EMPLOYEE_ID"
        assert stores.resolver.calls == []

    def test_resolver_failure(self, client: TestClient, viewer, stores) -> None:
        stores.resolver.error = OperationalError("SELECT", {}, Exception("no such function"))
        resp = client.get("/api/policies/effective/1", headers=viewer)
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "EFFECTIVE_POLICIES_ERROR"
        assert "no such function" not in resp.text


class TestTrigger:
    def test_records_pending_execution(self, client: TestClient, viewer, stores, make_employee) -> None:
        created = _create(client, viewer)
        emp = make_employee(name="Jane Doe", email="jane@example.com")
        resp = client.post(f"/api/policies/trigger/{created['id']}", json={"employeeId": emp}, headers=viewer)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["message"] == "Policy execution triggered successfully"
        execution = body["execution"]
        assert execution["policyId"] == created["id"]
        assert execution["employeeId"] == emp
        assert execution["employeeName"] == "Jane Doe"
        assert execution["employeeEmail"] == "jane@example.com"
        assert execution["status"] == "pending"
        assert _count(stores.engine, policy_executions) == 1

        detail = client.get(f"/api/policies/{created['id']}", headers=viewer).json()["policy"]
        assert detail["recentExecutions"][0]["status"] == "pending"
        assert detail["recentExecutions"][0]["employeeName"] == "Jane Doe"

    def test_with_violation(self, client: TestClient, viewer, make_employee, make_violation) -> None:
        created = _create(client, viewer)
        emp = make_employee()
        vio = make_violation(emp, type_="usb_copy", severity="critical")
        resp = client.post(
            f"/api/policies/trigger/{created['id']}",
            json={"employeeId": emp, "violationId": vio},
            headers=viewer,
        )
        assert resp.status_code == 200
        detail = client.get(f"/api/policies/{created['id']}", headers=viewer).json()["policy"]
        assert detail["recentExecutions"][0]["violationType"] == "usb_copy"

    def test_unknown_violation(self, client: TestClient, viewer, make_employee) -> None:
        created = _create(client, viewer)
        emp = make_employee()
        resp = client.post(
            f"/api/policies/trigger/{created['id']}",
            json={"employeeId": emp, "violationId": 999},
            headers=viewer,
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "VIOLATION_NOT_FOUND"

    def test_inactive_policy(self, client: TestClient, viewer, make_employee) -> None:
        created = _create(client, viewer)
        client.patch(f"/api/policies/{created['id']}/toggle", headers=viewer)
        resp = client.post(
            f"/api/policies/trigger/{created['id']}", json={"employeeId": make_employee()}, headers=viewer
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "POLICY_NOT_FOUND"

    def test_unknown_employee(self, client: TestClient, viewer) -> None:
        created = _create(client, viewer)
        resp = client.post(f"/api/policies/trigger/{created['id']}", json={"employeeId": 12345}, headers=viewer)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "EMPLOYEE_NOT_FOUND"

    def test_out_of_range_policy_id(self, client: TestClient, viewer, make_employee) -> None:
        resp = client.post(
            "/api/policies/trigger/99999999999999999999", json={"employeeId": make_employee()}, headers=viewer
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_POLICY_ID"

    @pytest.mark.parametrize(
        "body", [{"employeeId": 99999999999999999999}, {"employeeId": 0}, {"employeeId": 1, "violationId": 2**31}]
    )
    def test_out_of_range_body_ids(self, client: TestClient, viewer, stores, body) -> None:
        created = _create(client, viewer)
        resp = client.post(f"/api/policies/trigger/{created['id']}", json=body, headers=viewer)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert _count(stores.engine, policy_executions) == 0

    def test_missing_employee_outside_test_mode(self, client: TestClient, viewer, stores, make_employee) -> None:
        created = _create(client, viewer)
        make_employee()
        resp = client.post(f"/api/policies/trigger/{created['id']}", json={}, headers=viewer)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "MISSING_EMPLOYEE_ID"
        assert _count(stores.engine, policy_executions) == 0

    def test_test_mode_substitutes_an_employee(self, client: TestClient, viewer, make_employee, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "policy_trigger_test_mode", True)
        created = _create(client, viewer)
        emp = make_employee()
        resp = client.post(f"/api/policies/trigger/{created['id']}", headers=viewer)
        assert resp.status_code == 200
        assert resp.json()["execution"]["employeeId"] == emp

    def test_test_mode_without_employees(self, client: TestClient, viewer, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "policy_trigger_test_mode", True)
        created = _create(client, viewer)
        resp = client.post(f"/api/policies/trigger/{created['id']}", headers=viewer)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "NO_EMPLOYEES"
