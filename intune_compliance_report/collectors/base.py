"""
Base source class — the narrow interface the report core reads devices
and compliance states through.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..report.models import Device, PolicyRef, SettingState


class ComplianceSource(ABC):
    """
    Abstract base class for device/compliance-state sources.

    Implementations raise on failure; the report core decides whether a
    failure is fatal (device listing) or per-device (policy/setting fetches).
    """

    name: str = "base"
    description: str = "Base compliance source"

    @abstractmethod
    async def list_devices(self, device_filter: Optional[str] = None) -> list["Device"]:
        """Return every device matching ``device_filter``, across all pages."""
        raise NotImplementedError

    @abstractmethod
    async def list_compliance_policies(self, device_id: str) -> list["PolicyRef"]:
        """Return the compliance policies evaluated on a device."""
        raise NotImplementedError

    @abstractmethod
    async def list_setting_states(self, device_id: str, policy_id: str) -> list["SettingState"]:
        """Return the setting states of one policy on one device."""
        raise NotImplementedError
