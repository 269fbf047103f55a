"""CSV report of run outcomes."""

import csv
import io
import json
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, TextIO

from ..models.record import OutcomeRecord, STATUS_PRESENTATION, count_outcomes

REPORT_COLUMNS = [
    "External ID",
    "Team Name",
    "Email",
    "Status",
    "Result",
    "Customer ID",
    "Subscription ID",
    "Team ID",
    "Old Currency",
    "New Currency",
    "Start Date",
    "Coupon",
    "Error",
    "Team Error",
    "Team Status",
    "Team Response Data",
    "Warnings",
]


def report_row(outcome: OutcomeRecord) -> Dict[str, str]:
    """Flatten one outcome into report columns."""
    body = outcome.team_response_body
    if body is not None and not isinstance(body, str):
        body = json.dumps(body, default=str)

    return {
        "External ID": outcome.external_id,
        "Team Name": outcome.team_name,
        "Email": outcome.email,
        "Status": outcome.status.value,
        "Result": STATUS_PRESENTATION[outcome.status].label,
        "Customer ID": outcome.customer_ref or "",
        "Subscription ID": outcome.subscription_ref or "",
        "Team ID": outcome.team_ref or "",
        "Old Currency": (outcome.old_currency or "").upper(),
        "New Currency": (outcome.new_currency or "").upper(),
        "Start Date": outcome.start_date or "",
        "Coupon": outcome.coupon_ref or "",
        "Error": outcome.error_message or "",
        "Team Error": outcome.team_error_message or "",
        "Team Status": str(outcome.team_http_status) if outcome.team_http_status is not None else "",
        "Team Response Data": body or "",
        "Warnings": "; ".join(outcome.warnings),
    }


def write_report(outcomes: Iterable[OutcomeRecord], fp: TextIO) -> int:
    """Write outcomes as CSV. Returns the number of rows written."""
    writer = csv.DictWriter(fp, fieldnames=REPORT_COLUMNS)
    writer.writeheader()
    count = 0
    for outcome in outcomes:
        writer.writerow(report_row(outcome))
        count += 1
    return count


def render_report(outcomes: Iterable[OutcomeRecord]) -> str:
    buffer = io.StringIO()
    write_report(outcomes, buffer)
    return buffer.getvalue()


def report_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"subscription_team_migration_{now.strftime('%Y-%m-%d_%H-%M-%S')}.csv"


def summarize(outcomes: List[OutcomeRecord]) -> Dict[str, int]:
    """Summary counts for a run: total, success, partial and failed."""
    return count_outcomes(outcomes)
