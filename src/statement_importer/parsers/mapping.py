"""Manual column mapping for CSVs no registered parser accepts.

The user picks column indices for the date, description and amount (or
debit/credit) columns; :func:`apply_bank_mapping` turns the rows into the
same :class:`~statement_importer.models.StagedImport` a parser would
produce.  The mapping is not a registered parser: it never takes part in
header-based selection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from statement_importer.errors import MissingRequiredField
from statement_importer.models import (
    AccountType,
    StagedBalance,
    StagedImport,
    StagedTransaction,
    TransactionKind,
)
from statement_importer.tabular import cell_at, parse_date, sanitize_amount

logger = logging.getLogger(__name__)

PARSER_ID = "mapping.bank"

_DATE_FORMATS = ("%m/%d/%Y", "%Y-%m-%d")


@dataclass
class BankColumnMapping:
    """User-selected column indices for a bank CSV.

    Attributes:
        date_index: Column holding the posting date.  Required.
        description_index: Column holding the payee text.
        amount_index: Signed amount column.
        debit_index: Debit column (becomes negative).
        credit_index: Credit column (stays positive).
        balance_index: Running balance column.
        date_format: Optional :func:`~datetime.datetime.strptime` format
            tried before the defaults.
    """

    date_index: int | None = None
    description_index: int | None = None
    amount_index: int | None = None
    debit_index: int | None = None
    credit_index: int | None = None
    balance_index: int | None = None
    date_format: str | None = None


def apply_bank_mapping(rows: list[list[str]], mapping: BankColumnMapping) -> StagedImport:
    """Build bank transactions from *rows* using *mapping*.

    Rows without a parseable date or without any usable amount are skipped.
    When a balance column is mapped, the opening balance (earliest running
    balance minus its amount) and the latest running balance are staged.

    Raises:
        MissingRequiredField: If no date column, or no amount source, is mapped.
    """
    if mapping.date_index is None:
        raise MissingRequiredField("date_index")
    if mapping.amount_index is None and mapping.debit_index is None and mapping.credit_index is None:
        raise MissingRequiredField("amount_index")

    formats = ((mapping.date_format,) if mapping.date_format else ()) + _DATE_FORMATS
    transactions: list[StagedTransaction] = []
    running: list[tuple] = []

    for row in rows:
        posted = parse_date(cell_at(row, mapping.date_index), formats)
        if posted is None:
            continue
        amount = _mapped_amount(row, mapping)
        if amount is None:
            continue
        transactions.append(
            StagedTransaction(
                date_posted=posted,
                amount=amount,
                payee=cell_at(row, mapping.description_index) or "Unknown",
                kind=TransactionKind.BANK,
            )
        )
        balance = sanitize_amount(cell_at(row, mapping.balance_index))
        if balance is not None:
            running.append((posted, amount, balance))

    balances: list[StagedBalance] = []
    if running:
        first = min(running, key=lambda r: r[0])
        last = max(running, key=lambda r: r[0])
        balances.append(StagedBalance(as_of_date=first[0], balance=first[2] - first[1]))
        balances.append(StagedBalance(as_of_date=last[0], balance=last[2]))

    logger.debug("%s: %d transactions from %d rows", PARSER_ID, len(transactions), len(rows))
    return StagedImport(
        parser_id=PARSER_ID,
        source_file_name="Mapped.csv",
        suggested_account_type=AccountType.CHECKING,
        transactions=transactions,
        balances=balances,
    )


def _mapped_amount(row: list[str], mapping: BankColumnMapping) -> Decimal | None:
    amount = sanitize_amount(cell_at(row, mapping.amount_index))
    if amount is not None:
        return amount
    debit = sanitize_amount(cell_at(row, mapping.debit_index))
    if debit is not None:
        return -debit
    return sanitize_amount(cell_at(row, mapping.credit_index))
