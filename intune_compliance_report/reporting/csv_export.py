"""
CSV exporter — writes the flattened compliance report as one rectangular table.
"""

from __future__ import annotations

import contextlib
import csv
import os
import stat
import tempfile
from pathlib import Path
from typing import Iterator, TextIO

from ..report.models import ComplianceReport


class ExportError(Exception):
    """Raised when a report file cannot be written. Carries the built report."""

    def __init__(self, path: Path, report: ComplianceReport, cause: Exception):
        self.path = path
        self.report = report
        super().__init__(f"Failed to write {path}: {cause}")


def _target_mode(path: Path) -> int:
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


@contextlib.contextmanager
def atomic_open(path: Path, encoding: str = "utf-8", newline: str | None = None) -> Iterator[TextIO]:
    """
    Open a temporary file beside ``path`` for writing and move it into
    place on success. An existing file at ``path`` is untouched on failure.
    The result keeps the replaced file's mode, or the umask default for a new file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline=newline) as fh:
            yield fh
        os.chmod(tmp_name, _target_mode(path))
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def export_csv(report: ComplianceReport, path: Path) -> Path:
    """
    Write the report to ``path``: identity columns, then setting columns.

    Returns:
        Path to the created CSV file.
    """
    path = Path(path)
    header = report.header
    try:
        with atomic_open(path, newline="") as fh:
            writer = csv.DictWriter(fh, fieldnames=header)
            writer.writeheader()
            for row in report.rows:
                writer.writerow(row.to_dict())
    except (OSError, ValueError) as e:
        raise ExportError(path, report, e) from e
    return path
