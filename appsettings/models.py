"""
appsettings/models.py -- Typed variants for application settings.

app_settings is a key/value table whose values are JSON objects. Three keys
are well known and get a validated schema; every other key is accepted as an
opaque object, as custom settings always have been:

    company_info      -> CompanyInfo
    email_config      -> EmailConfig
    dashboard_config  -> DashboardConfig
    anything else     -> OpaqueSetting

parse_setting() picks the variant from the key. The stored JSON keeps the
field names the console has always written (snake_case, except
fromAddress), so existing rows keep loading.
"""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field

COMPANY_INFO = "company_info"
EMAIL_CONFIG = "email_config"
DASHBOARD_CONFIG = "dashboard_config"

PASSWORD_MASK = "********"

ENCRYPTION_MODES: tuple[str, ...] = ("ssl", "tls", "none")
DASHBOARD_VIEWS: tuple[str, ...] = ("high-risk", "all-employees", "violations", "departments")


class CompanyInfo(BaseModel):
    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    domain: str = Field(min_length=1, max_length=255)
    address: str = ""
    phone: str = ""
    industry: str = ""
    employee_count: int = Field(default=0, ge=0)
    logo_url: str = ""


class EmailConfig(BaseModel):
    """SMTP settings. password is stored as given and masked on every read."""

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True, populate_by_name=True)

    host: str = Field(min_length=1, max_length=255)
    port: int = Field(ge=1, le=65535)
    encryption: Literal["ssl", "tls", "none"] = "ssl"
    username: str = Field(min_length=1, max_length=255)
    password: str = ""
    from_address: str = Field(default="", alias="fromAddress")


class DashboardConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    refresh_interval: int = Field(default=30, ge=5, le=300)
    default_view: Literal["high-risk", "all-employees", "violations", "departments"] = "high-risk"
    alerts_enabled: bool = True
    auto_refresh: bool = True


class OpaqueSetting(BaseModel):
    """Any unrecognized key: an arbitrary JSON object, stored verbatim."""

    data: dict


SettingValue = Union[CompanyInfo, EmailConfig, DashboardConfig, OpaqueSetting]

_KNOWN: dict[str, type[BaseModel]] = {
    COMPANY_INFO: CompanyInfo,
    EMAIL_CONFIG: EmailConfig,
    DASHBOARD_CONFIG: DashboardConfig,
}


def parse_setting(key: str, value: dict) -> SettingValue:
    """Validate value against the variant for key.

    Raises pydantic.ValidationError when a known key does not match its
    schema.
    """
    model = _KNOWN.get(key)
    if model is None:
        return OpaqueSetting(data=value)
    return model.model_validate(value)


def setting_to_json(setting: SettingValue) -> dict:
    """Serialize a variant to the JSON object stored in app_settings.value."""
    if isinstance(setting, OpaqueSetting):
        return setting.data
    return setting.model_dump(by_alias=True)


def masked_value(key: str, value: dict) -> dict:
    """Return value with the SMTP password hidden when key is email_config."""
    if key != EMAIL_CONFIG or not value.get("password"):
        return value
    return {**value, "password": PASSWORD_MASK}


def restore_masked_password(key: str, value: dict, stored: dict | None) -> dict:
    """Undo masked_value() on a write.

    A client that echoes back the masked password keeps the stored one.
    """
    if key != EMAIL_CONFIG or value.get("password") != PASSWORD_MASK:
        return value
    return {**value, "password": (stored or {}).get("password", "")}


def first_error(exc, fallback: str = "Invalid setting value.") -> str:
    """Human message for the first problem in a pydantic ValidationError."""
    errors = exc.errors()
    if not errors:
        return fallback
    err = errors[0]
    field_path = ".".join(str(p) for p in err.get("loc", ()))
    return f"{field_path}: {err.get('msg', fallback)}" if field_path else err.get("msg", fallback)
