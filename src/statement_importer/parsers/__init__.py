"""Parser registry for statement formats.

Each parser is a module exposing ``PARSER_ID``, ``can_parse(headers)`` and
``parse(rows, headers)``; the latter returns a
:class:`~statement_importer.models.StagedImport`.  ``DEFAULT_PARSERS`` is
the fixed selection order, ``PARSERS`` maps ids to parsers, and
``select_parser()`` returns the first parser that accepts a header row.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from statement_importer.models import StagedImport
from statement_importer.parsers import (
    bank_csv,
    brokerage_csv,
    fidelity_csv,
    holdings_csv,
    pdf_summary,
    pdf_transactions,
)


@dataclass(frozen=True)
class StatementParser:
    """A registered parser: its id plus its two entry points."""

    id: str
    can_parse: Callable[[list[str]], bool]
    parse: Callable[[list[list[str]], list[str]], StagedImport]


def _entry(module) -> StatementParser:
    return StatementParser(id=module.PARSER_ID, can_parse=module.can_parse, parse=module.parse)


DEFAULT_PARSERS: tuple[StatementParser, ...] = (
    _entry(pdf_summary),
    _entry(pdf_transactions),
    _entry(bank_csv),
    _entry(brokerage_csv),
    _entry(fidelity_csv),
    _entry(holdings_csv),
)

PARSERS: dict[str, StatementParser] = {p.id: p for p in DEFAULT_PARSERS}


def get_parser(parser_id: str) -> StatementParser:
    """Look up a parser by id.

    Args:
        parser_id: Parser id, e.g. "bank.csv".

    Returns:
        The registered parser.

    Raises:
        KeyError: If no parser is registered under the given id.
    """
    return PARSERS[parser_id]


def select_parser(
    headers: list[str], start_after: str | None = None
) -> StatementParser | None:
    """Return the first parser whose ``can_parse`` accepts *headers*.

    Args:
        headers: Raw header row.
        start_after: Optional parser id; the scan starts after it.  PDF
            transactions mode uses this to skip ``pdf.summary``.

    Returns:
        The selected parser, or ``None`` when nothing matches.
    """
    candidates = DEFAULT_PARSERS
    if start_after is not None:
        ids = [p.id for p in DEFAULT_PARSERS]
        candidates = DEFAULT_PARSERS[ids.index(start_after) + 1:]
    for parser in candidates:
        if parser.can_parse(headers):
            return parser
    return None
