"""Reporting package — CSV and JSON output."""

from .csv_export import ExportError, export_csv
from .json_export import export_json

__all__ = [
    "ExportError",
    "export_csv",
    "export_json",
]
