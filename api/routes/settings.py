"""
api/routes/settings.py -- Application settings endpoints.

Routes:
  GET  /api/settings                   -- every setting (SMTP password masked)
  GET  /api/settings/{key}             -- one setting
  PUT  /api/settings/{key}             -- upsert (admin)
  GET  /api/settings/company/info      -- company profile
  PUT  /api/settings/company/info      -- (admin)
  GET  /api/settings/email/config      -- SMTP settings, password masked (admin)
  PUT  /api/settings/email/config      -- (admin)
  POST /api/settings/email/test        -- SMTP connect + login check (admin)
  GET  /api/settings/dashboard/config  -- dashboard preferences
  PUT  /api/settings/dashboard/config  -- (admin)

Known keys are validated against their variant in appsettings/models.py;
other keys hold any JSON object. The SMTP password never leaves the server.
"""

from __future__ import annotations

import logging
from typing import Optional

import pydantic
from fastapi import APIRouter, Depends, Request

from api.errors import NotFoundError, ValidationError
from api.limiter import limiter
from api.models import (
    CompanyInfoIn,
    CompanyInfoResponse,
    DashboardConfigIn,
    DashboardConfigResponse,
    EmailConfigIn,
    EmailConfigResponse,
    EmailTestResponse,
    SettingEntry,
    SettingResponse,
    SettingsResponse,
    SettingValueIn,
)
from appsettings.models import (
    COMPANY_INFO,
    DASHBOARD_CONFIG,
    DASHBOARD_VIEWS,
    EMAIL_CONFIG,
    ENCRYPTION_MODES,
    PASSWORD_MASK,
    first_error,
    masked_value,
    parse_setting,
    restore_masked_password,
    setting_to_json,
)
from appsettings.smtp import SmtpCheckError, verify_smtp_connection
from appsettings.store import SettingsStore, StoredSetting
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from core.config import get_settings

logger = logging.getLogger("securewatch.settings")

router = APIRouter(dependencies=[Depends(get_current_user)])


def _store(request: Request) -> SettingsStore:
    return request.app.state.settings_store


def _save(store: SettingsStore, key: str, value: dict) -> StoredSetting:
    """Validate value against the variant for key, then upsert it."""
    try:
        setting = parse_setting(key, value)
    except pydantic.ValidationError as exc:
        raise ValidationError("VALIDATION_ERROR", first_error(exc)) from None
    return store.put(key, setting_to_json(setting))


# ---------------------------------------------------------------------------
# Company info
# ---------------------------------------------------------------------------


@router.get("/settings/company/info", response_model=CompanyInfoResponse, response_model_exclude_none=True)
def get_company_info(request: Request) -> CompanyInfoResponse:
    stored = _store(request).get(COMPANY_INFO)
    if stored is None:
        raise NotFoundError("COMPANY_INFO_NOT_FOUND", "Company information not found.")
    return CompanyInfoResponse(company_info=stored.value, updated_at=stored.updated_at)


@router.put("/settings/company/info", response_model=CompanyInfoResponse)
def put_company_info(
    request: Request,
    body: Optional[CompanyInfoIn] = None,
    admin: User = Depends(require_admin),
) -> CompanyInfoResponse:
    body = body or CompanyInfoIn()
    if not (body.name or "").strip() or not (body.domain or "").strip():
        raise ValidationError("MISSING_REQUIRED_FIELDS", "Company name and domain are required.")

    stored = _save(_store(request), COMPANY_INFO, body.model_dump(exclude_none=True))
    logger.info("Company info updated by user_id=%s", admin.id)
    return CompanyInfoResponse(
        message="Company information updated successfully",
        company_info=stored.value,
        updated_at=stored.updated_at,
    )


# ---------------------------------------------------------------------------
# Email (SMTP)
# ---------------------------------------------------------------------------


def _check_email_fields(body: EmailConfigIn) -> None:
    if not (body.host or "").strip() or body.port is None or not (body.username or "").strip():
        raise ValidationError("MISSING_EMAIL_FIELDS", "SMTP host, port, and username are required.")
    if not 1 <= body.port <= 65535:
        raise ValidationError("INVALID_PORT", "Port must be between 1 and 65535.")
    if body.encryption is not None and body.encryption not in ENCRYPTION_MODES:
        raise ValidationError("INVALID_ENCRYPTION", f"Encryption must be one of: {', '.join(ENCRYPTION_MODES)}.")


@router.get(
    "/settings/email/config",
    response_model=EmailConfigResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_admin)],
)
def get_email_config(request: Request) -> EmailConfigResponse:
    stored = _store(request).get(EMAIL_CONFIG)
    if stored is None:
        raise NotFoundError("EMAIL_CONFIG_NOT_FOUND", "Email configuration not found.")
    return EmailConfigResponse(email_config=masked_value(EMAIL_CONFIG, stored.value), updated_at=stored.updated_at)


@router.put("/settings/email/config", response_model=EmailConfigResponse)
def put_email_config(
    request: Request,
    body: Optional[EmailConfigIn] = None,
    admin: User = Depends(require_admin),
) -> EmailConfigResponse:
    """Save SMTP settings.

    An empty or masked password, and an empty fromAddress, keep the stored
    value.
    """
    body = body or EmailConfigIn()
    _check_email_fields(body)

    store = _store(request)
    previous = store.get(EMAIL_CONFIG)
    previous_value = previous.value if previous is not None else {}

    value = {
        "host": body.host.strip(),
        "port": body.port,
        "encryption": body.encryption or "ssl",
        "username": body.username.strip(),
        "password": body.password or previous_value.get("password", ""),
        "fromAddress": body.from_address or previous_value.get("fromAddress") or body.username.strip(),
    }
    value = restore_masked_password(EMAIL_CONFIG, value, previous_value)
    stored = _save(store, EMAIL_CONFIG, value)
    logger.info("Email config updated by user_id=%s", admin.id)
    return EmailConfigResponse(
        message="Email configuration updated successfully",
        email_config=masked_value(EMAIL_CONFIG, stored.value),
        updated_at=stored.updated_at,
    )


@limiter.limit("5/minute")
@router.post("/settings/email/test", response_model=EmailTestResponse, dependencies=[Depends(require_admin)])
def test_email_config(request: Request, body: Optional[EmailConfigIn] = None) -> EmailTestResponse:
    """Connect and log in to the SMTP server. No message is sent.

    The stored password is used when the request carries none, or carries
    the mask.
    """
    body = body or EmailConfigIn()
    _check_email_fields(body)

    password = body.password
    if not password or password == PASSWORD_MASK:
        stored = _store(request).get(EMAIL_CONFIG)
        password = stored.value.get("password") if stored is not None else None
    if not password:
        raise ValidationError("MISSING_PASSWORD", "Password is required for the connection test.")

    try:
        verify_smtp_connection(
            body.host.strip(),
            body.port,
            body.encryption or "ssl",
            body.username.strip(),
            password,
            timeout=get_settings().smtp_timeout_seconds,
        )
    except SmtpCheckError as exc:
        raise ValidationError("EMAIL_TEST_FAILED", str(exc)) from None
    return EmailTestResponse()


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@router.get("/settings/dashboard/config", response_model=DashboardConfigResponse, response_model_exclude_none=True)
def get_dashboard_config(request: Request) -> DashboardConfigResponse:
    stored = _store(request).get(DASHBOARD_CONFIG)
    if stored is None:
        raise NotFoundError("DASHBOARD_CONFIG_NOT_FOUND", "Dashboard configuration not found.")
    return DashboardConfigResponse(dashboard_config=stored.value, updated_at=stored.updated_at)


@router.put("/settings/dashboard/config", response_model=DashboardConfigResponse)
def put_dashboard_config(
    request: Request,
    body: Optional[DashboardConfigIn] = None,
    admin: User = Depends(require_admin),
) -> DashboardConfigResponse:
    """Update dashboard preferences. Omitted fields keep their stored (or default) value."""
    body = body or DashboardConfigIn()
    if body.refresh_interval is not None and not 5 <= body.refresh_interval <= 300:
        raise ValidationError("INVALID_REFRESH_INTERVAL", "Refresh interval must be between 5 and 300 seconds.")
    if body.default_view is not None and body.default_view not in DASHBOARD_VIEWS:
        raise ValidationError("INVALID_DEFAULT_VIEW", f"Default view must be one of: {', '.join(DASHBOARD_VIEWS)}.")

    store = _store(request)
    previous = store.get(DASHBOARD_CONFIG)
    value = dict(previous.value) if previous is not None else {}
    value.update(body.model_dump(exclude_none=True))

    stored = _save(store, DASHBOARD_CONFIG, value)
    logger.info("Dashboard config updated by user_id=%s", admin.id)
    return DashboardConfigResponse(
        message="Dashboard configuration updated successfully",
        dashboard_config=stored.value,
        updated_at=stored.updated_at,
    )


# ---------------------------------------------------------------------------
# Generic key/value
# ---------------------------------------------------------------------------


@router.get("/settings", response_model=SettingsResponse)
def list_settings(request: Request) -> SettingsResponse:
    return SettingsResponse(
        settings={
            s.key: SettingEntry(value=masked_value(s.key, s.value), updated_at=s.updated_at)
            for s in _store(request).list_settings()
        }
    )


@router.get("/settings/{key}", response_model=SettingResponse, response_model_exclude_none=True)
def get_setting(request: Request, key: str) -> SettingResponse:
    stored = _store(request).get(key)
    if stored is None:
        raise NotFoundError("SETTING_NOT_FOUND", "Setting not found.")
    return SettingResponse(key=stored.key, value=masked_value(stored.key, stored.value), updated_at=stored.updated_at)


@router.put("/settings/{key}", response_model=SettingResponse)
def put_setting(
    request: Request,
    key: str,
    body: Optional[SettingValueIn] = None,
    admin: User = Depends(require_admin),
) -> SettingResponse:
    """Upsert one setting. The value must be a JSON object."""
    value = body.value if body is not None else None
    if not isinstance(value, dict):
        raise ValidationError("INVALID_VALUE", "Setting value must be a JSON object.")

    store = _store(request)
    previous = store.get(key)
    value = restore_masked_password(key, value, previous.value if previous is not None else None)
    stored = _save(store, key, value)
    logger.info("Setting %r updated by user_id=%s", key, admin.id)
    return SettingResponse(
        message="Setting updated successfully",
        key=stored.key,
        value=masked_value(stored.key, stored.value),
        updated_at=stored.updated_at,
    )
