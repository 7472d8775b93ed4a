"""Row tables for the DWD POI report CSV files and their per-day merge.

A report file starts with three header/metadata rows followed by one data row
per observation; the first field of a data row is the observation date in
``DD.MM.YY`` form. Parsing is a plain split on line breaks and on the field
delimiter, rows of different width are kept as they are.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

HEADER_ROWS = 3
DEFAULT_DELIMITER = ";"
REPORT_DATE_FORMATS = ("%d.%m.%y", "%d.%m.%Y")

Row = List[str]
RowTable = List[Row]


def parse(text: str, delimiter: str = DEFAULT_DELIMITER) -> RowTable:
    text = text.replace("\r\n", "\n")
    return [line.split(delimiter) for line in text.split("\n")]


def serialize(table: Sequence[Sequence[str]], delimiter: str = DEFAULT_DELIMITER) -> str:
    return "\n".join(delimiter.join(row) for row in table)


def parse_report_date(value: str) -> Optional[datetime]:
    raw = value.strip()
    if not raw:
        return None
    for fmt in REPORT_DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def partition_dates(table: Sequence[Sequence[str]]) -> List[str]:
    """Distinct ``YYYYMMDD`` dates of the data rows, in order of first appearance."""
    dates: List[str] = []
    seen = set()
    for row in table[HEADER_ROWS:]:
        if not row:
            continue
        parsed = parse_report_date(row[0])
        if parsed is None:
            continue
        date_string = f"{parsed.year:04d}{parsed.month:02d}{parsed.day:02d}"
        if date_string not in seen:
            seen.add(date_string)
            dates.append(date_string)
    return dates


def partition_token(date_string: str) -> str:
    """Turn a ``YYYYMMDD`` partition key into the ``DD.MM.YY`` form used in data rows."""
    if len(date_string) != 8 or not date_string.isdigit():
        raise ValueError(f"partition date is invalid: {date_string!r}")
    return f"{date_string[6:8]}.{date_string[4:6]}.{date_string[2:4]}"


def _rows_for_token(table: Sequence[Sequence[str]], token: str) -> RowTable:
    return [list(row) for row in table[HEADER_ROWS:] if row and row[0] == token]


def partition_table(table: Sequence[Sequence[str]], token: str) -> RowTable:
    """Header rows of ``table`` plus only the data rows dated ``token``."""
    return [list(row) for row in table[:HEADER_ROWS]] + _rows_for_token(table, token)


def merge(
    existing_text: str,
    incoming_text: str,
    token: str,
    delimiter: str = DEFAULT_DELIMITER,
    deduplicate: bool = False,
) -> str:
    """
    Fold the rows of ``incoming_text`` dated ``token`` into ``existing_text``.

    The result is the existing header rows, then the matching incoming rows in
    source order, then every existing data row. Rows are not compared against
    what is already stored unless ``deduplicate`` is set, so merging the same
    upstream file twice stores its rows twice.
    """
    existing = parse(existing_text, delimiter)
    incoming = parse(incoming_text, delimiter)

    merged: RowTable = [list(row) for row in existing[:HEADER_ROWS]]
    new_rows = _rows_for_token(incoming, token)
    if deduplicate:
        known = {tuple(row) for row in existing[HEADER_ROWS:]}
        unique_rows: RowTable = []
        for row in new_rows:
            key = tuple(row)
            if key in known:
                continue
            known.add(key)
            unique_rows.append(row)
        new_rows = unique_rows
    merged.extend(new_rows)
    merged.extend(list(row) for row in existing[HEADER_ROWS:])
    return serialize(merged, delimiter)
