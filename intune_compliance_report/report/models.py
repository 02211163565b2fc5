"""
Report data models — devices, compliance policy/setting states, and flattened rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


# Cell value for a setting the device has no recorded state for.
SENTINEL = "none"

IDENTITY_COLUMNS = [
    "DeviceName",
    "UserPrincipalName",
    "DeviceId",
    "ComplianceState",
    "LastSyncDateTime",
]


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class Device:
    """A managed device as listed by Intune."""
    id: str
    device_name: str = ""
    user_principal_name: str = ""
    compliance_state: str = ""
    last_sync_date_time: str = ""

    @classmethod
    def from_graph(cls, item: dict) -> "Device":
        return cls(
            id=_text(item.get("id")),
            device_name=_text(item.get("deviceName")),
            user_principal_name=_text(item.get("userPrincipalName")),
            compliance_state=_text(item.get("complianceState")),
            last_sync_date_time=_text(item.get("lastSyncDateTime")),
        )

    @property
    def label(self) -> str:
        """Name used in log messages."""
        return f"{self.device_name} ({self.id})" if self.device_name else self.id

    def identity_fields(self) -> dict[str, str]:
        return {
            "DeviceName": self.device_name,
            "UserPrincipalName": self.user_principal_name,
            "DeviceId": self.id,
            "ComplianceState": self.compliance_state,
            "LastSyncDateTime": self.last_sync_date_time,
        }


@dataclass(frozen=True)
class PolicyRef:
    """One compliance policy applied to a device."""
    id: str
    display_name: str = ""
    state: str = ""

    @classmethod
    def from_graph(cls, item: dict) -> "PolicyRef":
        return cls(
            id=_text(item.get("id")),
            display_name=_text(item.get("displayName")),
            state=_text(item.get("state")),
        )


@dataclass(frozen=True)
class SettingState:
    """
    One setting's evaluated state within a device's compliance policy.

    ``setting_name`` is the primary name field; ``setting`` is the fallback.
    """
    setting_name: Optional[str] = None
    setting: Optional[str] = None
    state: Optional[str] = None

    @classmethod
    def from_graph(cls, item: dict) -> "SettingState":
        return cls(
            setting_name=item.get("settingName"),
            setting=item.get("setting"),
            state=item.get("state"),
        )


@dataclass
class ReportRow:
    """One device's flattened row: identity fields, then one cell per column."""
    identity: dict[str, str]
    settings: dict[str, str]

    def to_dict(self) -> dict[str, str]:
        return {**self.identity, **self.settings}


@dataclass
class ComplianceReport:
    """The rectangular result of a run, ready for export."""
    columns: list[str] = field(default_factory=list)
    rows: list[ReportRow] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=lambda: {
        "started_at": None,
        "completed_at": None,
        "duration_seconds": 0,
        "device_filter": None,
        "device_count": 0,
        "column_count": 0,
        "discovery_failures": 0,
        "row_failures": 0,
        "warnings": [],
    })

    @property
    def header(self) -> list[str]:
        return IDENTITY_COLUMNS + self.columns

    def add_warning(self, stage: str, message: str):
        """Record a per-device failure for the given pass ("discovery" or "row")."""
        self.metadata["warnings"].append({"stage": stage, "message": message})
        self.metadata[f"{stage}_failures"] += 1

    def to_dict(self) -> dict:
        return {
            "metadata": self.metadata,
            "columns": self.header,
            "rows": [row.to_dict() for row in self.rows],
        }
