"""Fidelity statement CSV parser.

Fidelity statement exports open with an account summary block::

    Account Type,Account,Beginning mkt Value,Change in Investment,Ending mkt Value,...

followed by one or more holdings blocks::

    Symbol/CUSIP,Description,Quantity,Price,Beginning Value,Ending Value,Cost Basis

The first summary row yields the account balance.  Holdings are read
until a ``Subtotal`` row; section labels such as ``Stocks`` and ``Core
Account`` and lone account-number rows are skipped.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from statement_importer.models import AccountType, StagedBalance, StagedImport
from statement_importer.parsers.holdings_csv import scan_holdings
from statement_importer.tabular import cell, sanitize_amount

PARSER_ID = "fidelity.statement.csv"

HOLDINGS_HEADER = (
    "symbol/cusip", "description", "quantity", "price", "beginning value", "ending value", "cost basis",
)
_SECTION_ROWS = ("stocks", "core account")


def can_parse(headers: list[str]) -> bool:
    lower = [h.strip().lower() for h in headers]
    return any("account type" in h for h in lower) and any(
        "ending mkt value" in h or "ending net value" in h for h in lower
    )


def parse(rows: list[list[str]], headers: list[str]) -> StagedImport:
    as_of = date.today()
    balances: list[StagedBalance] = []

    if rows and rows[0]:
        value = sanitize_amount(cell(rows[0], headers, "ending net value"))
        if value is None:
            value = sanitize_amount(cell(rows[0], headers, "ending mkt value"))
        if value is not None:
            balances.append(StagedBalance(as_of_date=as_of, balance=value))

    holdings = scan_holdings(
        rows, HOLDINGS_HEADER, as_of, _SECTION_ROWS, _market_value, skip_single=_is_separator
    )
    return StagedImport(
        parser_id=PARSER_ID,
        source_file_name="Unknown.csv",
        suggested_account_type=AccountType.BROKERAGE,
        holdings=holdings,
        balances=balances,
    )


def _is_separator(first_cell: str) -> bool:
    """A lone cell that is empty or an account number separates sections."""
    return first_cell == "" or first_cell.replace(",", "").isdigit()


def _market_value(r: list[str]) -> Decimal | None:
    return sanitize_amount(r[5]) if len(r) > 5 else None
