"""
Column discovery and row flattening.

The report is built in two passes over every device's compliance policy
states. Pass one collects the union of setting names across the fleet so
the export has a fixed header; pass two fills one row per device against
that header. Both passes fetch independently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional, Sequence

from ..collectors.base import ComplianceSource
from .models import IDENTITY_COLUMNS, SENTINEL, Device, ReportRow, SettingState

logger = logging.getLogger("intune_compliance_report.report")

WarningHook = Optional[Callable[[str], None]]

SETTING_PREFIX = "Setting."


def resolve_setting_name(setting: SettingState) -> Optional[str]:
    """Return ``settingName``, else ``setting``, else None."""
    return setting.setting_name or setting.setting or None


def setting_column(setting: SettingState) -> Optional[str]:
    """
    Column a setting lands in. Names that clash with an identity column
    are prefixed with ``Setting.`` so the device's own fields are never
    overwritten.
    """
    name = resolve_setting_name(setting)
    if name in IDENTITY_COLUMNS:
        return f"{SETTING_PREFIX}{name}"
    return name


async def fetch_setting_states(source: ComplianceSource, device: Device) -> list[SettingState]:
    """All setting states for a device, in policy order as returned by Graph."""
    settings: list[SettingState] = []
    for policy in await source.list_compliance_policies(device.id):
        settings.extend(await source.list_setting_states(device.id, policy.id))
    return settings


def _warn(on_warning: WarningHook, message: str):
    logger.warning(message)
    if on_warning:
        on_warning(message)


async def discover_columns(
    source: ComplianceSource,
    devices: Sequence[Device],
    concurrency: int = 1,
    on_warning: WarningHook = None,
) -> list[str]:
    """
    Collect the sorted, de-duplicated setting names seen on any device.

    A device whose states cannot be fetched contributes no columns; the
    failure is reported through ``on_warning`` and discovery continues.
    Names are ordered by plain code-point comparison (case-sensitive).
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def scan(device: Device) -> set[str]:
        async with semaphore:
            try:
                settings = await fetch_setting_states(source, device)
            except Exception as e:
                _warn(
                    on_warning,
                    f"Column discovery skipped device {device.label}: {type(e).__name__}: {e}",
                )
                return set()
        return {name for name in map(setting_column, settings) if name}

    names: set[str] = set()
    for found in await asyncio.gather(*(scan(d) for d in devices)):
        names |= found
    return sorted(names)


def flatten_device(
    device: Device,
    columns: Iterable[str],
    settings: Iterable[SettingState],
) -> ReportRow:
    """
    Lay a device's setting states onto the fixed column set.

    Columns without a state stay at SENTINEL. When several policies report
    the same setting, the one returned last by Graph wins; Graph does not
    guarantee policy order. Names missing from ``columns`` are dropped.
    """
    values = dict.fromkeys(columns, SENTINEL)
    for setting in settings:
        name = setting_column(setting)
        if name is None:
            continue
        if name not in values:
            logger.debug(f"Setting '{name}' on {device.label} is not in the column set; dropped")
            continue
        values[name] = SENTINEL if setting.state is None else str(setting.state)
    return ReportRow(identity=device.identity_fields(), settings=values)


async def build_row(
    source: ComplianceSource,
    device: Device,
    columns: Sequence[str],
    on_warning: WarningHook = None,
) -> ReportRow:
    """
    Fetch a device's setting states and flatten them onto ``columns``.
    On fetch failure the row keeps every setting column at SENTINEL.
    """
    try:
        settings = await fetch_setting_states(source, device)
    except Exception as e:
        _warn(
            on_warning,
            f"Row for device {device.label} left at '{SENTINEL}': {type(e).__name__}: {e}",
        )
        settings = []
    return flatten_device(device, columns, settings)


async def build_rows(
    source: ComplianceSource,
    devices: Sequence[Device],
    columns: Sequence[str],
    concurrency: int = 1,
    on_warning: WarningHook = None,
) -> list[ReportRow]:
    """One row per device, in the order the devices were given."""
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def bounded(device: Device) -> ReportRow:
        async with semaphore:
            return await build_row(source, device, columns, on_warning)

    return list(await asyncio.gather(*(bounded(d) for d in devices)))
