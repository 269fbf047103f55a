"""CSV intake: turn an uploaded customer list into InputRecords."""

import csv
import io
import logging
from pathlib import Path
from typing import Dict, List, Optional, TextIO, Union

from ..exceptions import InvalidRequestError
from ..models.record import InputRecord

logger = logging.getLogger(__name__)

# Accepted header spellings, matched case-insensitively. Bare "id" and
# "name" are not accepted: they collide with unrelated columns.
COLUMN_ALIASES: Dict[str, List[str]] = {
    "external_id": ["external id", "external_id", "externalid", "user id", "user_id", "owner id", "owner_id"],
    "email": ["email", "email address", "email_address", "emailaddress"],
    "team_name": ["team name", "team_name", "teamname"],
}

COLUMN_LABELS = {
    "external_id": "External ID",
    "email": "Email",
    "team_name": "Team name",
}


def find_columns(headers: List[str]) -> Dict[str, Optional[str]]:
    """Map each required field to the matching header, or None."""
    normalized = {h.strip().lower(): h for h in headers if h}
    mapping = {}
    for field_name, aliases in COLUMN_ALIASES.items():
        mapping[field_name] = next(
            (normalized[alias] for alias in aliases if alias in normalized), None
        )
    return mapping


def read_records(source: TextIO, delimiter: Optional[str] = None) -> List[InputRecord]:
    """
    Read InputRecords from an open CSV stream.

    Rows missing any required value are skipped with a warning.

    Raises:
        InvalidRequestError: If a required column is missing or no row is usable
    """
    sample = source.read(8192)
    source.seek(0)

    if delimiter is None:
        try:
            delimiter = csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            delimiter = ","

    reader = csv.DictReader(source, delimiter=delimiter)
    headers = reader.fieldnames or []
    columns = find_columns(headers)
    logger.debug(f"Column mapping: {columns}")

    missing = [COLUMN_LABELS[name] for name, header in columns.items() if header is None]
    if missing:
        raise InvalidRequestError(
            f"Could not find columns for: {', '.join(missing)}. "
            f"File has columns: {', '.join(headers) or 'none'}"
        )

    records = []
    skipped = 0
    for row_num, row in enumerate(reader, start=1):
        values = {
            name: (row.get(header) or "").strip()
            for name, header in columns.items()
        }
        if not all(values.values()):
            skipped += 1
            empty = [COLUMN_LABELS[name] for name, value in values.items() if not value]
            logger.warning(f"Row {row_num}: missing {', '.join(empty)}, skipping")
            continue
        records.append(InputRecord(**values))

    if not records:
        raise InvalidRequestError("No valid rows found: every row is missing a required value")

    logger.info(f"Loaded {len(records)} records ({skipped} skipped)")
    return records


def load_records_csv(path: Union[str, Path, TextIO], encoding: str = "utf-8-sig") -> List[InputRecord]:
    """Read InputRecords from a CSV file path or an open text stream."""
    if hasattr(path, "read"):
        return read_records(path)

    path = Path(path)
    if path.suffix.lower() != ".csv":
        raise InvalidRequestError(f"Expected a .csv file, got: {path.name}")
    if not path.exists():
        raise InvalidRequestError(f"File not found: {path}")

    logger.info(f"Processing file: {path}")
    with open(path, "r", encoding=encoding, newline="") as f:
        return read_records(f)


def parse_records_csv(text: str) -> List[InputRecord]:
    """Read InputRecords from CSV text."""
    return read_records(io.StringIO(text))
