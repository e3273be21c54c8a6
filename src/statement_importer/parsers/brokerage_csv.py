"""Brokerage activity CSV parser.

Accepted shape:
    Date, Action, Symbol, Quantity, Price, Fees, Amount (any order; the
    last four are optional).

Sign convention:
    An explicit ``Amount`` is taken as-is.  Otherwise the amount is
    ``quantity * price - fees``, negated for buys (cash leaves the account).
"""

from __future__ import annotations

from decimal import Decimal

from statement_importer.models import AccountType, StagedImport, StagedTransaction, TransactionKind
from statement_importer.tabular import cell, parse_date, sanitize_amount

PARSER_ID = "brokerage.csv"

_DATE_FORMATS = ("%m/%d/%Y", "%Y-%m-%d")

_ACTION_KINDS = {
    "buy": TransactionKind.BUY,
    "sell": TransactionKind.SELL,
    "dividend": TransactionKind.DIVIDEND,
    "deposit": TransactionKind.DEPOSIT,
    "withdrawal": TransactionKind.WITHDRAWAL,
}


def can_parse(headers: list[str]) -> bool:
    lower = [h.lower() for h in headers]
    return (
        any("action" in h for h in lower)
        and any("symbol" in h for h in lower)
        and any("date" in h for h in lower)
    )


def parse(rows: list[list[str]], headers: list[str]) -> StagedImport:
    """Parse brokerage activity rows; undated rows are skipped."""
    transactions: list[StagedTransaction] = []

    for row in rows:
        posted = parse_date(cell(row, headers, "date"), _DATE_FORMATS)
        if posted is None:
            continue

        action = (cell(row, headers, "action") or "").lower()
        symbol = cell(row, headers, "symbol")
        quantity = sanitize_amount(cell(row, headers, "quantity"))
        price = sanitize_amount(cell(row, headers, "price"))
        fees = sanitize_amount(cell(row, headers, "fees"))
        amount = sanitize_amount(cell(row, headers, "amount"))
        kind = _ACTION_KINDS.get(action, TransactionKind.BANK)

        if amount is None:
            if quantity is not None and price is not None:
                amount = quantity * price
                if fees is not None:
                    amount -= fees
                if kind == TransactionKind.BUY:
                    amount = -amount
            else:
                amount = Decimal("0")

        payee = f"{action.capitalize()} {symbol}" if symbol else action.capitalize()
        transactions.append(
            StagedTransaction(
                date_posted=posted,
                amount=amount,
                payee=payee,
                kind=kind,
                external_id=cell(row, headers, "id"),
                symbol=symbol,
                quantity=quantity,
                price=price,
                fees=fees,
            )
        )

    return StagedImport(
        parser_id=PARSER_ID,
        source_file_name="Unknown.csv",
        suggested_account_type=AccountType.BROKERAGE,
        transactions=transactions,
    )
