"""
Intune Compliance Source
Enumerates managed devices and, per device, the compliance policy states
and their setting states.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from ..config import CollectionConfig
from ..graph.client import GraphClient
from ..report.models import Device, PolicyRef, SettingState
from .base import ComplianceSource

logger = logging.getLogger("intune_compliance_report.collectors.compliance")

DEVICE_SELECT = "id,deviceName,userPrincipalName,complianceState,lastSyncDateTime"


class IntuneComplianceSource(ComplianceSource):
    name = "intune_compliance"
    description = "Intune managed devices and per-device compliance setting states"

    def __init__(self, graph: GraphClient, config: CollectionConfig):
        self.graph = graph
        self.config = config

    def _device_path(self, device_id: str) -> str:
        return f"deviceManagement/managedDevices/{quote(device_id, safe='')}"

    async def list_devices(self, device_filter: Optional[str] = None) -> list[Device]:
        params = {"$select": DEVICE_SELECT}
        if device_filter:
            params["$filter"] = device_filter

        items = await self.graph.get_all_pages(
            "deviceManagement/managedDevices",
            params=params,
            beta=self.config.use_beta,
            top=self.config.page_size,
        )
        devices = [Device.from_graph(item) for item in items if item.get("id")]
        logger.info(f"Listed {len(devices)} managed devices")
        return devices

    async def list_compliance_policies(self, device_id: str) -> list[PolicyRef]:
        items = await self.graph.get_all_pages(
            f"{self._device_path(device_id)}/deviceCompliancePolicyStates",
            beta=self.config.use_beta,
            skip_top=True,
        )
        return [PolicyRef.from_graph(item) for item in items if item.get("id")]

    async def list_setting_states(self, device_id: str, policy_id: str) -> list[SettingState]:
        data = await self.graph.get(
            f"{self._device_path(device_id)}/deviceCompliancePolicyStates/{quote(policy_id, safe='')}",
            beta=self.config.use_beta,
        )
        if data.get("_not_found"):
            logger.debug(f"Policy state {policy_id} vanished from device {device_id}")
            return []
        return [SettingState.from_graph(s) for s in data.get("settingStates") or []]
