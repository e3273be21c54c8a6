"""Generic bank CSV parser.

Accepted shape:
    a date column, a description/payee/memo column, and either an
    ``Amount`` column or ``Debit``/``Credit`` columns.  An optional running
    ``Balance`` column yields opening and closing balance snapshots.

Sign convention:
    ``Amount`` is taken as-is.  A ``Debit`` value becomes negative and a
    ``Credit`` value positive.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from statement_importer.errors import ParseFailure
from statement_importer.models import (
    AccountType,
    StagedBalance,
    StagedImport,
    StagedTransaction,
    TransactionKind,
)
from statement_importer.tabular import cell, header_index, parse_date, sanitize_amount

logger = logging.getLogger(__name__)

PARSER_ID = "bank.csv"

_DATE_FORMATS = ("%m/%d/%Y", "%Y-%m-%d")


def can_parse(headers: list[str]) -> bool:
    """Return True for headers with a date, a description and an amount source."""
    lower = [h.lower() for h in headers]
    has_date = any("date" in h for h in lower)
    has_desc = any("description" in h or "payee" in h or "memo" in h for h in lower)
    has_amount = "amount" in lower or "debit" in lower or "credit" in lower
    return has_date and has_desc and has_amount


def parse(rows: list[list[str]], headers: list[str]) -> StagedImport:
    """Parse bank CSV rows into a :class:`StagedImport`.

    Rows without a parseable date are skipped.

    Raises:
        ParseFailure: If a dated row has no usable amount.
    """
    transactions: list[StagedTransaction] = []
    has_balance = header_index(headers, "balance") is not None

    earliest = None  # (date, amount, running balance)
    latest = None  # (date, running balance)

    for row in rows:
        posted = parse_date(cell(row, headers, "date"), _DATE_FORMATS)
        if posted is None:
            continue

        payee = cell(row, headers, "description") or cell(row, headers, "payee") or "Unknown"
        memo = cell(row, headers, "memo")
        amount = _row_amount(row, headers)

        if has_balance:
            running = sanitize_amount(cell(row, headers, "balance"))
            if running is not None:
                if earliest is None or posted < earliest[0]:
                    earliest = (posted, amount, running)
                if latest is None or posted > latest[0]:
                    latest = (posted, running)

        transactions.append(
            StagedTransaction(
                date_posted=posted,
                amount=amount,
                payee=payee,
                memo=memo,
                kind=TransactionKind.BANK,
                external_id=cell(row, headers, "id"),
            )
        )

    balances: list[StagedBalance] = []
    if earliest is not None:
        posted, amount, running = earliest
        balances.append(StagedBalance(as_of_date=posted, balance=running - amount))
    if latest is not None:
        balances.append(StagedBalance(as_of_date=latest[0], balance=latest[1]))

    logger.debug("bank.csv: %d transactions, %d balances", len(transactions), len(balances))
    return StagedImport(
        parser_id=PARSER_ID,
        source_file_name="Unknown.csv",
        suggested_account_type=AccountType.CHECKING,
        transactions=transactions,
        balances=balances,
    )


def _row_amount(row: list[str], headers: list[str]) -> Decimal:
    amount = sanitize_amount(cell(row, headers, "amount"))
    if amount is not None:
        return amount
    debit = sanitize_amount(cell(row, headers, "debit"))
    if debit is not None:
        return -debit
    credit = sanitize_amount(cell(row, headers, "credit"))
    if credit is not None:
        return credit
    raise ParseFailure("Missing amount")
