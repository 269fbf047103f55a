"""Service layer for the migrator."""

from .retry import RetryPolicy
from .intake import load_records_csv, parse_records_csv, read_records
from .report import render_report, report_filename, summarize, write_report

__all__ = [
    "RetryPolicy",
    "load_records_csv",
    "parse_records_csv",
    "read_records",
    "render_report",
    "report_filename",
    "summarize",
    "write_report",
]
