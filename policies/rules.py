"""
policies/rules.py -- Validation and normalization for policy input.

Everything here runs before the store is touched, so an invalid policy never
produces a write. Failures raise PolicyValidationError carrying a stable
code; the API layer answers 400 with that code.

Level/target invariant:
  global -> no target_id, no target_type       (else INVALID_GLOBAL_POLICY)
  group  -> target_id + target_type in {department, role}
  user   -> target_id + target_type == user
  missing target on group/user                 -> MISSING_TARGET_INFO
  target_type not allowed for the level        -> INVALID_TARGET_TYPE

The database carries the same rule as a CHECK constraint; this module is the
first line, the constraint the last.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Optional

from core.database import MAX_ID
from policies.models import PolicyAction, PolicyCondition, PolicyFilters, SecurityPolicy

POLICY_LEVELS: tuple[str, ...] = ("global", "group", "user")
TARGET_TYPES: tuple[str, ...] = ("department", "role", "user")
LEVEL_TARGET_TYPES: dict[str, tuple[str, ...]] = {
    "group": ("department", "role"),
    "user": ("user",),
}
LOGICAL_OPERATORS: tuple[str, ...] = ("AND", "OR")


class PolicyValidationError(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_id(raw: str, code: str = "INVALID_POLICY_ID", label: str = "policy ID") -> int:
    """Parse a path id.

    Non-numeric input, or a value outside 1..MAX_ID, raises
    PolicyValidationError(code).
    """
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise PolicyValidationError(code, f"Invalid {label}.") from None
    if not 1 <= value <= MAX_ID:
        raise PolicyValidationError(code, f"Invalid {label}.")
    return value


def parse_filters(level: Optional[str], active: Optional[str], target_type: Optional[str]) -> PolicyFilters:
    """Keep only filter values that are in their allow-list. Others are ignored."""
    active_flag: Optional[bool] = None
    if active is not None and active.lower() in ("true", "false"):
        active_flag = active.lower() == "true"
    return PolicyFilters(
        level=level if level in POLICY_LEVELS else None,
        active=active_flag,
        target_type=target_type if target_type in TARGET_TYPES else None,
    )


def validate_new_policy(
    name: Optional[str],
    policy_level: Optional[str],
    target_id: Any = None,
    target_type: Optional[str] = None,
    description: Optional[str] = None,
    is_active: Optional[bool] = None,
    priority: Optional[int] = None,
) -> SecurityPolicy:
    """Check name, level and the level/target invariant; return a normalized policy."""
    if _blank(name):
        raise PolicyValidationError("MISSING_POLICY_NAME", "Policy name is required.")
    if policy_level not in POLICY_LEVELS:
        raise PolicyValidationError(
            "INVALID_POLICY_LEVEL",
            "Valid policy level is required (global, group, user).",
        )

    has_target_id = not _blank(target_id)
    has_target_type = not _blank(target_type)
    if policy_level == "global":
        if has_target_id or has_target_type:
            raise PolicyValidationError("INVALID_GLOBAL_POLICY", "Global policies cannot have target ID or type.")
    else:
        if not (has_target_id and has_target_type):
            raise PolicyValidationError(
                "MISSING_TARGET_INFO",
                "Group and user policies must have target ID and type.",
            )
        if target_type not in LEVEL_TARGET_TYPES[policy_level]:
            allowed = ", ".join(LEVEL_TARGET_TYPES[policy_level])
            raise PolicyValidationError(
                "INVALID_TARGET_TYPE",
                f"Target type for {policy_level} policies must be one of: {allowed}.",
            )

    return SecurityPolicy(
        name=name.strip(),
        policy_level=policy_level,
        description=(description or "").strip() or None,
        target_id=str(target_id).strip() if has_target_id else None,
        target_type=target_type if has_target_type else None,
        is_active=True if is_active is None else bool(is_active),
        priority=priority if priority is not None else 0,
    )


def _condition_value(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


def normalize_conditions(items: Iterable[Mapping[str, Any]]) -> list[PolicyCondition]:
    """Apply defaults: logical operator AND, order = 1-based input position.

    Values are passed through untouched otherwise; a missing value is left
    as None and rejected by the NOT NULL constraint inside the transaction.
    """
    conditions: list[PolicyCondition] = []
    for position, item in enumerate(items, start=1):
        order = item.get("order")
        conditions.append(
            PolicyCondition(
                condition_type=item.get("type"),
                operator=item.get("operator"),
                value=_condition_value(item.get("value")),
                logical_operator=item.get("logical_operator") or "AND",
                condition_order=order if order is not None else position,
            )
        )
    return conditions


def normalize_actions(items: Iterable[Mapping[str, Any]]) -> list[PolicyAction]:
    """Apply defaults: order = 1-based position, delay 0, enabled, config {}."""
    actions: list[PolicyAction] = []
    for position, item in enumerate(items, start=1):
        order = item.get("order")
        delay = item.get("delay")
        enabled = item.get("is_enabled")
        actions.append(
            PolicyAction(
                action_type=item.get("type"),
                action_config=item.get("config") or {},
                execution_order=order if order is not None else position,
                delay_minutes=delay if delay is not None else 0,
                is_enabled=True if enabled is None else bool(enabled),
            )
        )
    return actions
