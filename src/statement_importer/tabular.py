"""CSV/TSV extraction into headers and string rows.

Parsers never see raw bytes.  They receive the trimmed header row plus the
non-blank body rows produced here, and look values up by header substring
through :func:`cell`.
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from statement_importer.errors import InvalidTabularData

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def read_csv_file(path: Path) -> tuple[list[str], list[list[str]]]:
    """Read a CSV or TSV file from disk.

    The delimiter is a tab for ``.tsv`` files and a comma otherwise.

    Raises:
        InvalidTabularData: If the file is not tabular (see :func:`read_csv`).
    """
    delimiter = "\t" if path.suffix.lower() == ".tsv" else ","
    return read_csv(path.read_bytes(), delimiter=delimiter)


def read_csv(data: bytes, delimiter: str = ",") -> tuple[list[str], list[list[str]]]:
    """Split CSV bytes into a header row and body rows.

    The header is the first non-blank row, with each cell trimmed.  Blank
    body rows are dropped.  Quoted fields are handled by :mod:`csv`.

    Args:
        data: Raw file contents.  UTF-8 with an optional BOM.
        delimiter: Field delimiter.

    Returns:
        ``(headers, rows)``.

    Raises:
        InvalidTabularData: When the bytes cannot be decoded, there is no
            header row, every header cell is empty, or no body row has the
            header's column count.
    """
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise InvalidTabularData(f"Could not decode CSV data: {exc}") from exc

    try:
        raw_rows = list(csv.reader(io.StringIO(text, newline=""), delimiter=delimiter))
    except csv.Error as exc:
        raise InvalidTabularData(f"Malformed CSV data: {exc}") from exc

    rows = [row for row in raw_rows if any(c.strip() for c in row)]
    if not rows:
        raise InvalidTabularData()

    headers = [c.strip() for c in rows[0]]
    if not any(headers):
        raise InvalidTabularData()

    body = rows[1:]
    if body and not any(len(row) == len(headers) for row in body):
        raise InvalidTabularData(
            f"No row matches the {len(headers)}-column header; the data is not tabular."
        )

    logger.debug("Read %d header cells and %d rows", len(headers), len(body))
    return headers, body


def header_index(headers: list[str], key: str) -> int | None:
    """Return the index of the first header containing *key* (case-insensitive)."""
    key = key.lower()
    for i, h in enumerate(headers):
        if key in h.lower():
            return i
    return None


def exact_header_index(headers: list[str], key: str) -> int | None:
    """Return the index of the header equal to *key* (case-insensitive)."""
    key = key.lower()
    for i, h in enumerate(headers):
        if h.strip().lower() == key:
            return i
    return None


def cell(row: list[str], headers: list[str], key: str) -> str | None:
    """Look up a trimmed value by header substring.

    Returns ``None`` when no header matches, the row is too short, or the
    value is empty after trimming.
    """
    idx = header_index(headers, key)
    return cell_at(row, idx)


def cell_at(row: list[str], idx: int | None) -> str | None:
    """Return the trimmed, non-empty value at *idx*, or ``None``."""
    if idx is None or idx < 0 or idx >= len(row):
        return None
    value = row[idx].strip()
    return value or None


def sanitize_amount(text: str | None) -> Decimal | None:
    """Parse a CSV amount, stripping ``,`` and ``$``.

    Parenthesized values are negative.  Returns ``None`` for empty or
    unparseable text.
    """
    if text is None:
        return None
    cleaned = text.replace(",", "").replace("$", "").strip()
    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1].strip()
    if not cleaned:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    return -value if negative else value


_DATE_FORMATS = ("%m/%d/%Y", "%Y-%m-%d", "%m/%d/%y")


def parse_date(text: str | None, formats: tuple[str, ...] = _DATE_FORMATS) -> date | None:
    """Parse *text* with the first matching format, or return ``None``."""
    if not text:
        return None
    text = text.strip()
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None
