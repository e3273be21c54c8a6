"""Generic holdings statement CSV parser.

A looser sibling of :mod:`~statement_importer.parsers.fidelity_csv`.  It
accepts either a summary header (account plus an ending/market value
column) or a holdings header (symbol, description, quantity).

Holdings tables look like::

    Symbol,Description,Quantity,Price,Beginning Value,Ending Value,Cost Basis

Trailing columns may be missing.  Rows are read until a ``Subtotal`` row.
The as-of date of every balance and holding is the day of staging.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from statement_importer.models import AccountType, StagedBalance, StagedHolding, StagedImport
from statement_importer.tabular import cell, sanitize_amount

logger = logging.getLogger(__name__)

PARSER_ID = "generic.holdings.statement.csv"

HOLDINGS_HEADER = (
    "symbol", "description", "quantity", "price", "beginning value", "ending value", "cost basis",
)
_BALANCE_KEYS = ("ending net value", "ending mkt value", "ending value", "market value")
_SECTION_ROWS = ("stocks", "core account", "mutual funds")


def can_parse(headers: list[str]) -> bool:
    joined = ",".join(h.strip().lower() for h in headers)
    summary = ("account" in joined) and any(
        k in joined for k in ("ending mkt value", "ending net value", "ending value", "market value")
    )
    holdings = "symbol" in joined and "description" in joined and "quantity" in joined
    return summary or holdings


def parse(rows: list[list[str]], headers: list[str]) -> StagedImport:
    """Parse a holdings statement: one balance from the first row plus holdings tables."""
    as_of = date.today()
    balances: list[StagedBalance] = []

    if rows and rows[0]:
        for key in _BALANCE_KEYS:
            value = sanitize_amount(cell(rows[0], headers, key))
            if value is not None:
                balances.append(StagedBalance(as_of_date=as_of, balance=value))
                break

    if matches_holdings_header([h.strip().lower() for h in headers], HOLDINGS_HEADER):
        holdings = read_holding_rows(rows, 0, as_of, _SECTION_ROWS, _market_value)[0]
    else:
        holdings = scan_holdings(rows, HOLDINGS_HEADER, as_of, _SECTION_ROWS, _market_value)

    logger.debug("%s: %d balances, %d holdings", PARSER_ID, len(balances), len(holdings))
    return StagedImport(
        parser_id=PARSER_ID,
        source_file_name="Unknown.csv",
        suggested_account_type=AccountType.BROKERAGE,
        holdings=holdings,
        balances=balances,
    )


# ---------------------------------------------------------------------------
# Shared holdings-table helpers
# ---------------------------------------------------------------------------


def matches_holdings_header(lower_row: list[str], expected: tuple[str, ...]) -> bool:
    """Return True when *lower_row* starts with the *expected* tokens in order.

    The row may be shorter than *expected* (missing trailing columns) but
    must have at least three cells.  Each cell only needs to contain its
    token, so ``symbol`` accepts ``Symbol/CUSIP``.
    """
    count = min(len(lower_row), len(expected))
    if count < 3:
        return False
    return all(expected[j] in lower_row[j] for j in range(count))


def scan_holdings(
    rows: list[list[str]],
    expected: tuple[str, ...],
    as_of: date,
    section_rows: tuple[str, ...],
    market_value,
    skip_single=None,
) -> list[StagedHolding]:
    """Find every holdings header block in *rows* and read the holdings below it."""
    holdings: list[StagedHolding] = []
    i = 0
    while i < len(rows):
        lower_row = [c.strip().lower() for c in rows[i]]
        if matches_holdings_header(lower_row, expected):
            block, i = read_holding_rows(rows, i + 1, as_of, section_rows, market_value, skip_single)
            holdings.extend(block)
        i += 1
    return holdings


def read_holding_rows(
    rows: list[list[str]],
    start: int,
    as_of: date,
    section_rows: tuple[str, ...],
    market_value,
    skip_single=None,
) -> tuple[list[StagedHolding], int]:
    """Read holdings from ``rows[start:]`` up to a subtotal row.

    Returns:
        ``(holdings, index)`` where *index* is the subtotal row (or
        ``len(rows)``).
    """
    holdings: list[StagedHolding] = []
    i = start
    while i < len(rows):
        r = [c.strip() for c in rows[i]]
        i += 1
        if not any(r):
            continue
        first = r[0].lower()
        if first.startswith("subtotal"):
            return holdings, i - 1
        if len(r) == 1 and (skip_single is None or skip_single(first)):
            continue
        if first in section_rows or len(r) < 3:
            continue
        symbol = r[0]
        if "symbol" in symbol.lower():
            continue
        quantity = sanitize_amount(r[2]) or Decimal("0")
        holdings.append(
            StagedHolding(
                as_of_date=as_of,
                symbol=symbol,
                quantity=quantity,
                market_value=market_value(r),
            )
        )
    return holdings, i


def _market_value(r: list[str]) -> Decimal | None:
    if len(r) > 5:
        return sanitize_amount(r[5])
    if len(r) > 4:
        return sanitize_amount(r[4])
    return None
