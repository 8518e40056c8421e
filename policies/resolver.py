"""
policies/resolver.py -- Effective-policy resolution for one employee.

Which policies apply to an employee (global + department/role group + user,
merged by precedence) is decided by the database function
get_effective_policies(employee_id), not by this service. The API only
reshapes the rows it returns.

EffectivePolicyResolver is the seam: the app holds one instance on
app.state.policy_resolver, production uses SqlFunctionResolver, and tests
inject a fake (SQLite has no stored functions).
"""

from __future__ import annotations

import json
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine

from policies.models import EffectivePolicyRow


class EffectivePolicyResolver(Protocol):
    def resolve(self, employee_id: int) -> list[EffectivePolicyRow]: ...


class SqlFunctionResolver:
    """Calls the database-side get_effective_policies() set-returning function.

    Expected columns: policy_id, policy_name, policy_level, priority,
    conditions, actions (the last two JSON).
    """

    _QUERY = text("SELECT * FROM get_effective_policies(:employee_id)")

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def resolve(self, employee_id: int) -> list[EffectivePolicyRow]:
        with self.engine.connect() as conn:
            rows = conn.execute(self._QUERY, {"employee_id": employee_id}).mappings().fetchall()
        return [_decode(dict(r)) for r in rows]


def _decode(row: EffectivePolicyRow) -> EffectivePolicyRow:
    # psycopg decodes json columns itself; other drivers hand back text.
    for key in ("conditions", "actions"):
        if isinstance(row.get(key), str):
            try:
                row[key] = json.loads(row[key])
            except ValueError:
                row[key] = []
    return row
