"""
JSON exporter — the same report with run metadata, for downstream tooling.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from .. import __version__
from ..report.models import ComplianceReport
from .csv_export import ExportError, atomic_open


def export_json(report: ComplianceReport, path: Path) -> Path:
    """
    Write columns, rows, and metadata to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    path = Path(path)
    payload = {
        "generator": {
            "name": "intune-compliance-report",
            "version": __version__,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
            "mode": "READ-ONLY",
        },
        **report.to_dict(),
    }
    try:
        with atomic_open(path) as fh:
            json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)
    except (OSError, TypeError) as e:
        raise ExportError(path, report, e) from e
    return path
