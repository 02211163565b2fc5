"""Report package — column discovery, row flattening, and the run engine."""

from .models import (
    IDENTITY_COLUMNS,
    SENTINEL,
    ComplianceReport,
    Device,
    PolicyRef,
    ReportRow,
    SettingState,
)
from .columns import (
    build_row,
    build_rows,
    discover_columns,
    flatten_device,
    resolve_setting_name,
    setting_column,
)
from .engine import ReportAbortedError, generate_report, list_fleet

__all__ = [
    "IDENTITY_COLUMNS",
    "SENTINEL",
    "ComplianceReport",
    "Device",
    "PolicyRef",
    "ReportRow",
    "SettingState",
    "build_row",
    "build_rows",
    "discover_columns",
    "flatten_device",
    "resolve_setting_name",
    "setting_column",
    "ReportAbortedError",
    "generate_report",
    "list_fleet",
]
