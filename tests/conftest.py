from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from intune_compliance_report.collectors.base import ComplianceSource
from intune_compliance_report.report.models import Device, PolicyRef, SettingState


class FetchFailed(Exception):
    pass


class FakeComplianceSource(ComplianceSource):
    """
    In-memory source. ``policies`` maps device id -> list of
    (policy id, [SettingState, ...]) in the order Graph would return them.
    """

    name = "fake"

    def __init__(self, devices, policies=None, fail_devices=(), fail_discovery_only=()):
        self.devices = list(devices)
        self.policies = policies or {}
        self.fail_devices = set(fail_devices)
        self.fail_discovery_only = set(fail_discovery_only)
        self.policy_calls: dict[str, int] = {}
        self.list_error: Optional[Exception] = None

    async def list_devices(self, device_filter=None):
        if self.list_error:
            raise self.list_error
        return list(self.devices)

    async def list_compliance_policies(self, device_id):
        calls = self.policy_calls.get(device_id, 0) + 1
        self.policy_calls[device_id] = calls
        await asyncio.sleep(0)
        if device_id in self.fail_devices:
            raise FetchFailed(f"policies unavailable for {device_id}")
        if device_id in self.fail_discovery_only and calls == 1:
            raise FetchFailed(f"transient failure for {device_id}")
        return [PolicyRef(id=pid) for pid, _ in self.policies.get(device_id, [])]

    async def list_setting_states(self, device_id, policy_id):
        await asyncio.sleep(0)
        for pid, settings in self.policies.get(device_id, []):
            if pid == policy_id:
                return list(settings)
        return []


def device(device_id: str, name: Optional[str] = None, **kwargs) -> Device:
    return Device(
        id=device_id,
        device_name=name or f"PC-{device_id}",
        user_principal_name=kwargs.get("upn", f"{device_id.lower()}@contoso.com"),
        compliance_state=kwargs.get("state", "compliant"),
        last_sync_date_time=kwargs.get("last_sync", "2024-05-01T08:00:00Z"),
    )


def setting(name: Optional[str], state: Optional[str], fallback: Optional[str] = None) -> SettingState:
    return SettingState(setting_name=name, setting=fallback, state=state)


@pytest.fixture
def fleet_ab():
    """Device A reports BitLocker only; device B reports BitLocker and Firewall."""
    devices = [device("A"), device("B")]
    policies = {
        "A": [("p1", [setting("BitLocker", "compliant")])],
        "B": [("p1", [setting("BitLocker", "error"), setting("Firewall", "compliant")])],
    }
    return devices, policies
