"""
Report engine — lists the fleet, then runs column discovery and row building.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Optional

import httpx

from ..collectors.base import ComplianceSource
from ..graph.client import GraphAPIError, GraphAuthorizationError
from .columns import build_rows, discover_columns
from .models import ComplianceReport, Device

logger = logging.getLogger("intune_compliance_report.report")


class ReportAbortedError(Exception):
    """Raised when no report can be produced for the requested scope."""

    def __init__(self, message: str, authorization: bool = False):
        self.authorization = authorization
        super().__init__(message)


async def list_fleet(source: ComplianceSource, device_filter: Optional[str] = None) -> list[Device]:
    """
    List the devices to report on.
    Any listing failure, or an empty result, aborts the run.
    """
    scope = f"filter '{device_filter}'" if device_filter else "all managed devices"
    try:
        devices = await source.list_devices(device_filter)
    except GraphAuthorizationError as e:
        logger.error(f"Not authorized to list managed devices ({scope}): {e}")
        raise ReportAbortedError(f"Insufficient permissions to list devices: {e}", authorization=True) from e
    except (GraphAPIError, httpx.HTTPError) as e:
        logger.error(f"Failed to list managed devices ({scope}): {type(e).__name__}: {e}")
        raise ReportAbortedError(f"Device listing failed: {e}") from e

    if not devices:
        logger.error(f"No managed devices returned for {scope}")
        raise ReportAbortedError(f"No managed devices matched {scope}.")
    return devices


async def generate_report(
    source: ComplianceSource,
    device_filter: Optional[str] = None,
    concurrency: int = 1,
) -> ComplianceReport:
    """
    Produce the full report: device listing, column discovery, then rows.
    Raises ReportAbortedError when the fleet cannot be listed.
    """
    report = ComplianceReport()
    report.metadata["started_at"] = time.time()
    report.metadata["device_filter"] = device_filter

    devices = await list_fleet(source, device_filter)
    report.metadata["device_count"] = len(devices)

    report.columns = await discover_columns(
        source,
        devices,
        concurrency=concurrency,
        on_warning=functools.partial(report.add_warning, "discovery"),
    )
    report.metadata["column_count"] = len(report.columns)
    logger.info(f"Discovered {len(report.columns)} setting columns across {len(devices)} devices")

    report.rows = await build_rows(
        source,
        devices,
        report.columns,
        concurrency=concurrency,
        on_warning=functools.partial(report.add_warning, "row"),
    )

    report.metadata["completed_at"] = time.time()
    report.metadata["duration_seconds"] = round(
        report.metadata["completed_at"] - report.metadata["started_at"], 2
    )
    return report
