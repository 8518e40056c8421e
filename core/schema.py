"""
core/schema.py -- SQLAlchemy Core table definitions for SecureWatch.

Every table lives on the single shared `metadata` object so foreign keys
between the auth, policy, and settings tables resolve no matter which store
creates the schema first. The stores own the queries; this module only owns
the shape.

Conventions (same as the rest of the codebase):
  - Timestamps are ISO 8601 UTC strings (String(32)). Lexicographic order of
    these strings matches chronological order, so ORDER BY and range filters
    work on both SQLite and PostgreSQL.
  - Booleans are 0/1 integers so the same SQL runs on both dialects.
  - JSON blobs are serialized to Text by the store that writes them.

employees and violations are written by the monitoring pipeline, not by this
service. They are declared here so SQLite test databases get the same shape
and so joins from policy_executions can be expressed with Core constructs.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

# ---------------------------------------------------------------------------
# Users and sessions
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("password_hash", String(255), nullable=False),
    Column("name", String(255), nullable=False),
    Column("role", String(20), nullable=False, server_default="viewer"),
    Column("department", String(255)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    CheckConstraint("role IN ('admin', 'analyst', 'viewer')", name="ck_users_role"),
)

user_sessions = Table(
    "user_sessions",
    metadata,
    # HMAC-SHA256 of the opaque token; the raw token never touches the DB.
    Column("id", String(64), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_seen_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", String(255)),
    Index("idx_user_sessions_user", "user_id"),
    Index("idx_user_sessions_expires", "expires_at"),
)

# ---------------------------------------------------------------------------
# Monitoring data (read-only from this service)
# ---------------------------------------------------------------------------

employees = Table(
    "employees",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("department", String(255)),
    Column("job_title", String(255)),
)

violations = Table(
    "violations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("employee_id", Integer, ForeignKey("employees.id", ondelete="CASCADE")),
    Column("type", String(100), nullable=False),
    Column("severity", String(20), nullable=False),
    Column("created_at", String(32)),
)

# ---------------------------------------------------------------------------
# Security policies
# ---------------------------------------------------------------------------

security_policies = Table(
    "security_policies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("description", Text),
    Column("policy_level", String(20), nullable=False),
    Column("target_id", String(255)),
    Column("target_type", String(20)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("priority", Integer, nullable=False, server_default="0"),
    Column("created_by", Integer, ForeignKey("users.id")),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    CheckConstraint("policy_level IN ('global', 'group', 'user')", name="ck_policy_level"),
    CheckConstraint(
        "(policy_level = 'global' AND target_id IS NULL AND target_type IS NULL) OR "
        "(policy_level = 'group' AND target_id IS NOT NULL AND target_type IN ('department', 'role')) OR "
        "(policy_level = 'user' AND target_id IS NOT NULL AND target_type = 'user')",
        name="ck_policy_target_combination",
    ),
    Index("idx_security_policies_priority", "priority", "created_at"),
)

policy_conditions = Table(
    "policy_conditions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "policy_id",
        Integer,
        ForeignKey("security_policies.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("condition_type", String(50), nullable=False),
    Column("operator", String(20), nullable=False),
    Column("value", Text, nullable=False),
    Column("logical_operator", String(10), nullable=False, server_default="AND"),
    Column("condition_order", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    CheckConstraint("logical_operator IN ('AND', 'OR')", name="ck_condition_logical_operator"),
    Index("idx_policy_conditions_policy", "policy_id"),
)

policy_actions = Table(
    "policy_actions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "policy_id",
        Integer,
        ForeignKey("security_policies.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("action_type", String(50), nullable=False),
    Column("action_config", Text, nullable=False, server_default="{}"),  # JSON object
    Column("execution_order", Integer, nullable=False, server_default="1"),
    Column("delay_minutes", Integer, nullable=False, server_default="0"),
    Column("is_enabled", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    CheckConstraint("delay_minutes >= 0", name="ck_action_delay"),
    Index("idx_policy_actions_policy", "policy_id", "execution_order"),
)

policy_executions = Table(
    "policy_executions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # SET NULL keeps the audit trail when a policy is deleted.
    Column("policy_id", Integer, ForeignKey("security_policies.id", ondelete="SET NULL")),
    Column("employee_id", Integer, ForeignKey("employees.id")),
    Column("violation_id", Integer, ForeignKey("violations.id")),
    Column("action_type", String(50)),
    Column("execution_status", String(20), nullable=False, server_default="pending"),
    Column("execution_details", Text, nullable=False, server_default="{}"),  # JSON object
    Column("error_message", Text),
    Column("created_at", String(32), nullable=False),
    CheckConstraint(
        "execution_status IN ('pending', 'success', 'failed', 'skipped')",
        name="ck_execution_status",
    ),
    Index("idx_policy_executions_policy", "policy_id", "created_at"),
)

# ---------------------------------------------------------------------------
# Application settings (key/value, JSON values)
# ---------------------------------------------------------------------------

app_settings = Table(
    "app_settings",
    metadata,
    Column("key", String(100), primary_key=True),
    Column("value", Text, nullable=False),  # JSON object
    Column("updated_at", String(32), nullable=False),
)
